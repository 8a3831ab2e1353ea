"""Decision Orchestrator - message or wait, for one member and one trigger.

Pipeline:
    1. Idempotency: a (user_id, trigger_id) already recorded is a no-op
    2. Engagement throttle (interval, then strike cap)
    3. Ranking refresh
    4. Context bundle -> Decision Oracle
    5. Oracle says wait -> ``declined`` attempt, next check after extend_days
    6. Oracle says message -> drop threads the engine does not know about,
       then in one write transaction: re-check the interval, mark each
       opportunity thread presented, record the ``sent`` attempt and
       schedule the next check

Ranking or oracle failures fail safe: nothing is sent, nothing is
recorded as an attempt, and a retry is scheduled for the next day.
The orchestrator never writes message text. It returns structured thread
descriptors for the renderer.

Usage:
    from warmline.autonomous.decision import DecisionOrchestrator

    orchestrator = DecisionOrchestrator(db, oracle)
    result = orchestrator.run("u-1", trigger_id="task:42")
    if result.outcome == DecisionOutcome.MESSAGE:
        render(result.threads)
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from warmline.ai.oracle import DecisionOracle, OracleContext, OracleDecision, ThreadSelection
from warmline.core.config import get_config
from warmline.core.exceptions import (
    DatabaseError,
    IntegrityWarning,
    NotFoundError,
    OracleError,
    OracleTimeoutError,
    OracleUnavailableError,
    RankingUnavailableError,
)
from warmline.core.logging import get_logger
from warmline.db.database import Database
from warmline.db.models import (
    GOAL_ITEM_TYPE,
    RANKABLE_STATUSES,
    AttemptOutcome,
    AuditRecord,
    EngagementAttempt,
    GoalCandidate,
    OpportunityKind,
    PresentationKind,
    User,
)
from warmline.engine.follow_ups import days_from, schedule_check
from warmline.engine.presentation import PresentationTracker
from warmline.engine.ranking import RankingAggregator, RankingResult
from warmline.engine.throttle import EngagementThrottle, ThrottleDecision

logger = get_logger(__name__)

ACTOR = "decision_orchestrator"

_OPPORTUNITY_TYPES = {kind.value for kind in OpportunityKind}


class DecisionOutcome(str, Enum):
    """What a run ended with."""

    MESSAGE = "message"
    NO_MESSAGE = "no_message"
    BLOCKED = "blocked"
    DUPLICATE = "duplicate"


@dataclass
class ThreadDescriptor:
    """One thread handed to the phrasing renderer. Structure only, no prose."""

    item_type: str
    item_id: str
    priority: int
    guidance: str = ""
    rank: Optional[int] = None
    value_score: Optional[int] = None
    description: Optional[str] = None


@dataclass
class DecisionResult:
    """Outcome of one orchestrator run.

    Attributes:
        user_id: Member
        trigger_id: Idempotency key component
        outcome: message, no_message, blocked or duplicate
        reason: Why, when the outcome is not a message
        threads: Threads to address (message only)
        dropped: Oracle threads dropped as unknown or unpresentable
        next_check_at: When the next check is scheduled, if any
        throttle: Throttle decision, when the throttle ran
        attempt_id: Recorded attempt, if any
        dry_run: Nothing was recorded because dry run is on
    """

    user_id: str
    trigger_id: str
    outcome: DecisionOutcome
    reason: Optional[str] = None
    threads: list[ThreadDescriptor] = field(default_factory=list)
    dropped: list[ThreadSelection] = field(default_factory=list)
    next_check_at: Optional[datetime] = None
    throttle: Optional[ThrottleDecision] = None
    attempt_id: Optional[int] = None
    dry_run: bool = False


class _SendAborted(Exception):
    """Internal signal to roll back the send transaction."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def call_oracle(oracle: DecisionOracle, context: OracleContext, timeout: float) -> OracleDecision:
    """Call the oracle with a hard deadline.

    Raises:
        OracleTimeoutError: If no answer arrived within timeout seconds
        OracleUnavailableError: If the oracle failed in any other way
    """
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="warmline-oracle")
    future = pool.submit(oracle.decide, context)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as e:
        raise OracleTimeoutError(f"Oracle gave no answer within {timeout}s") from e
    except OracleError:
        raise
    except Exception as e:
        raise OracleUnavailableError(f"Oracle failed: {e}") from e
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
        if future.running():
            # Python cannot interrupt the thread; it ends when decide returns
            logger.warning(
                "Oracle call abandoned while still running",
                extra={"context": {"user_id": context.user_id, "oracle": oracle.name}},
            )


class DecisionOrchestrator:
    """Composes throttle, ranking, oracle and presentation tracking."""

    def __init__(
        self,
        db: Database,
        oracle: DecisionOracle,
        throttle: Optional[EngagementThrottle] = None,
        ranking: Optional[RankingAggregator] = None,
        tracker: Optional[PresentationTracker] = None,
    ):
        self.config = get_config()
        self.db = db
        self.oracle = oracle
        self.throttle = throttle or EngagementThrottle(db)
        self.ranking = ranking or RankingAggregator(db)
        self.tracker = tracker or PresentationTracker(db)

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def run(
        self,
        user_id: str,
        trigger_id: str,
        goal_candidates: Iterable[GoalCandidate] = (),
    ) -> DecisionResult:
        """Decide whether to contact a member now.

        Args:
            user_id: Member
            trigger_id: Identifies the scheduled task or inbound event
            goal_candidates: Extra pre-scored items to rank alongside opportunities

        Returns:
            DecisionResult

        Raises:
            NotFoundError: If the member does not exist
        """
        if self.db.get_attempt_by_trigger(user_id, trigger_id) is not None:
            logger.info(
                "Trigger already decided",
                extra={"context": {"user_id": user_id, "trigger_id": trigger_id}},
            )
            return DecisionResult(user_id, trigger_id, DecisionOutcome.DUPLICATE)

        user = self.db.get_user(user_id)
        if user is None:
            raise NotFoundError(f"No user with id {user_id}")

        gate = self.throttle.check(user_id, trigger_id)
        if gate.duplicate:
            return DecisionResult(user_id, trigger_id, DecisionOutcome.DUPLICATE, throttle=gate)
        if not gate.allowed:
            return DecisionResult(
                user_id,
                trigger_id,
                DecisionOutcome.BLOCKED,
                reason=gate.reason,
                next_check_at=gate.next_check_at,
                throttle=gate,
                attempt_id=gate.attempt_id,
            )

        goals = list(goal_candidates)
        try:
            ranking = self.ranking.refresh(user_id, goals)
        except (RankingUnavailableError, DatabaseError) as e:
            return self._fail_safe(user_id, trigger_id, "ranking_unavailable", e, gate)

        context = self.build_context(user, ranking, gate, trigger_id, goals)

        try:
            decision = call_oracle(self.oracle, context, self.config.oracle_timeout_seconds)
        except OracleTimeoutError as e:
            return self._fail_safe(user_id, trigger_id, "oracle_timeout", e, gate)
        except OracleUnavailableError as e:
            return self._fail_safe(user_id, trigger_id, "oracle_unavailable", e, gate)
        except OracleError as e:
            return self._fail_safe(user_id, trigger_id, "oracle_error", e, gate)

        if not decision.should_message:
            return self._decline(user_id, trigger_id, decision, gate)

        threads, dropped = self.validate_threads(user_id, decision.threads, ranking, context)
        if not threads:
            return self._fail_safe(
                user_id,
                trigger_id,
                "no_valid_threads",
                None,
                gate,
                dropped=dropped,
            )

        if self.config.dry_run:
            logger.info(
                "Dry run: message decided but not recorded",
                extra={"context": {"user_id": user_id, "threads": len(threads)}},
            )
            return DecisionResult(
                user_id,
                trigger_id,
                DecisionOutcome.MESSAGE,
                threads=threads,
                dropped=dropped,
                throttle=gate,
                dry_run=True,
            )

        return self._send(user_id, trigger_id, decision, threads, dropped, gate)

    # =========================================================================
    # CONTEXT
    # =========================================================================

    def build_context(
        self,
        user: User,
        ranking: RankingResult,
        gate: ThrottleDecision,
        trigger_id: str,
        goals: Iterable[GoalCandidate] = (),
    ) -> OracleContext:
        """Assemble the bundle the oracle is allowed to see."""
        descriptions: dict[tuple[str, str], Optional[str]] = {
            (GOAL_ITEM_TYPE, str(goal.item_id)): goal.description for goal in goals
        }
        ranked_items: list[dict[str, Any]] = []
        for entry in ranking.entries:
            description = descriptions.get((entry.item_type, entry.item_id))
            if entry.item_type in _OPPORTUNITY_TYPES:
                opportunity = self.db.get_opportunity_by_item(entry.item_type, entry.item_id)
                description = opportunity.counterpart_descriptor if opportunity else None
            ranked_items.append(
                {
                    "rank": entry.rank,
                    "item_type": entry.item_type,
                    "item_id": entry.item_id,
                    "value_score": entry.value_score,
                    "status": entry.status,
                    "description": description,
                }
            )

        requests = [
            {
                "item_type": request.item_type,
                "item_id": request.item_id,
                "description": request.description,
                "created_at": request.created_at.isoformat() if request.created_at else None,
            }
            for request in self.db.get_outstanding_requests(user.id)
        ]

        messages = [
            {
                "direction": message.direction.value,
                "content": message.content,
                "created_at": message.created_at.isoformat() if message.created_at else None,
            }
            for message in self.db.get_recent_messages(user.id, self.config.recent_message_window)
        ]

        profile = dict(user.profile)
        if user.display_name:
            profile.setdefault("name", user.display_name)

        return OracleContext(
            user_id=user.id,
            ranked_items=ranked_items,
            outstanding_requests=requests,
            recent_messages=messages,
            profile_facts=profile,
            reengagement_metadata={
                "trigger_id": trigger_id,
                "now": self.db.clock.now().isoformat(),
                "days_since_last_contact": (
                    round(gate.days_since_last, 2) if gate.days_since_last is not None else None
                ),
                "unanswered_count": gate.unanswered_count,
                "ranking_version": ranking.version,
            },
        )

    def validate_threads(
        self,
        user_id: str,
        selections: list[ThreadSelection],
        ranking: RankingResult,
        context: OracleContext,
    ) -> tuple[list[ThreadDescriptor], list[ThreadSelection]]:
        """Keep only threads that reference a ranked item or an outstanding request.

        Returns:
            (kept descriptors in oracle order, dropped selections)
        """
        ranked = {(e.item_type, e.item_id): e for e in ranking.entries}
        requests = {
            (r["item_type"], str(r["item_id"])): r for r in context.outstanding_requests
        }
        kept: list[ThreadDescriptor] = []
        dropped: list[ThreadSelection] = []
        seen: set[tuple[str, str]] = set()

        for selection in selections:
            ref = (selection.item_type, str(selection.item_id))
            if ref in seen:
                continue
            seen.add(ref)

            if ref in ranked:
                entry = ranked[ref]
                kept.append(
                    ThreadDescriptor(
                        item_type=selection.item_type,
                        item_id=str(selection.item_id),
                        priority=selection.priority,
                        guidance=selection.guidance,
                        rank=entry.rank,
                        value_score=entry.value_score,
                    )
                )
            elif ref in requests:
                kept.append(
                    ThreadDescriptor(
                        item_type=selection.item_type,
                        item_id=str(selection.item_id),
                        priority=selection.priority,
                        guidance=selection.guidance,
                        description=requests[ref]["description"],
                    )
                )
            else:
                dropped.append(selection)
                self._integrity_warning(user_id, selection, "unknown_item")

        return kept, dropped

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    def _decline(
        self,
        user_id: str,
        trigger_id: str,
        decision: OracleDecision,
        gate: ThrottleDecision,
    ) -> DecisionResult:
        extend_days = decision.extend_days or self.config.default_extend_days
        now = self.db.clock.now()
        next_at = days_from(now, extend_days)

        with self.db.transaction(immediate=True):
            attempt_id = self.db.record_attempt(
                EngagementAttempt(
                    user_id=user_id,
                    outcome=AttemptOutcome.DECLINED,
                    trigger_id=trigger_id,
                    created_at=now,
                    metadata={"reasoning": decision.reasoning, "extend_days": extend_days},
                )
            )
            if attempt_id is None:
                return DecisionResult(user_id, trigger_id, DecisionOutcome.DUPLICATE, throttle=gate)

            schedule_check(
                self.db, user_id, next_at, reason="declined", context={"extend_days": extend_days}
            )
            self.db.write_audit(
                AuditRecord(
                    actor_component=ACTOR,
                    action="decision",
                    user_id=user_id,
                    details={
                        "outcome": AttemptOutcome.DECLINED.value,
                        "extend_days": extend_days,
                        "reasoning": decision.reasoning,
                        "trigger_id": trigger_id,
                    },
                )
            )

        logger.info(
            "Oracle chose to wait",
            extra={"context": {"user_id": user_id, "extend_days": extend_days}},
        )
        return DecisionResult(
            user_id,
            trigger_id,
            DecisionOutcome.NO_MESSAGE,
            reason="oracle_declined",
            next_check_at=next_at,
            throttle=gate,
            attempt_id=attempt_id,
        )

    def _send(
        self,
        user_id: str,
        trigger_id: str,
        decision: OracleDecision,
        threads: list[ThreadDescriptor],
        dropped: list[ThreadSelection],
        gate: ThrottleDecision,
    ) -> DecisionResult:
        sent: list[ThreadDescriptor] = []
        try:
            with self.db.transaction(immediate=True):
                now = self.db.clock.now()

                if self.db.get_attempt_by_trigger(user_id, trigger_id) is not None:
                    raise _SendAborted("duplicate")
                if self.throttle.last_sent_within_interval(user_id, now) is not None:
                    raise _SendAborted("interval")

                for thread in threads:
                    if thread.item_type not in _OPPORTUNITY_TYPES:
                        sent.append(thread)
                        continue
                    if self._present(user_id, thread, trigger_id):
                        sent.append(thread)
                    else:
                        dropped.append(
                            ThreadSelection(
                                thread.item_type, thread.item_id, thread.priority, thread.guidance
                            )
                        )

                if not sent:
                    raise _SendAborted("no_presentable_threads")

                attempt_id = self.db.record_attempt(
                    EngagementAttempt(
                        user_id=user_id,
                        outcome=AttemptOutcome.SENT,
                        trigger_id=trigger_id,
                        created_at=now,
                        metadata={
                            "reasoning": decision.reasoning,
                            "threads": [
                                {"item_type": t.item_type, "item_id": t.item_id} for t in sent
                            ],
                        },
                    )
                )
                if attempt_id is None:
                    raise _SendAborted("duplicate")

                next_at = days_from(now, self.throttle.min_interval_days)
                schedule_check(self.db, user_id, next_at, reason="sent")
                self.db.write_audit(
                    AuditRecord(
                        actor_component=ACTOR,
                        action="decision",
                        user_id=user_id,
                        details={
                            "outcome": AttemptOutcome.SENT.value,
                            "threads": [
                                {"item_type": t.item_type, "item_id": t.item_id} for t in sent
                            ],
                            "dropped": len(dropped),
                            "reasoning": decision.reasoning,
                            "trigger_id": trigger_id,
                        },
                    )
                )
        except _SendAborted as e:
            if e.reason == "duplicate":
                return DecisionResult(user_id, trigger_id, DecisionOutcome.DUPLICATE, throttle=gate)
            if e.reason == "interval":
                logger.info(
                    "Another trigger sent first, standing down",
                    extra={"context": {"user_id": user_id, "trigger_id": trigger_id}},
                )
                return DecisionResult(
                    user_id, trigger_id, DecisionOutcome.BLOCKED, reason="interval", throttle=gate
                )
            return self._fail_safe(user_id, trigger_id, e.reason, None, gate, dropped=dropped)

        logger.info(
            "Message decided",
            extra={
                "context": {
                    "user_id": user_id,
                    "threads": [f"{t.item_type}:{t.item_id}" for t in sent],
                    "dropped": len(dropped),
                }
            },
        )
        return DecisionResult(
            user_id,
            trigger_id,
            DecisionOutcome.MESSAGE,
            threads=sent,
            dropped=dropped,
            next_check_at=next_at,
            throttle=gate,
            attempt_id=attempt_id,
        )

    def _present(self, user_id: str, thread: ThreadDescriptor, trigger_id: str) -> bool:
        """Record a dedicated exposure. False if the item can no longer be shown."""
        try:
            result = self.tracker.mark_presented(
                thread.item_type,
                thread.item_id,
                PresentationKind.DEDICATED,
                exposure_key=trigger_id,
            )
        except NotFoundError:
            self._integrity_warning(
                user_id,
                ThreadSelection(thread.item_type, thread.item_id, thread.priority),
                "item_vanished",
            )
            return False
        if result.counted:
            return True
        # Exposure already claimed by this trigger: still shown if presentable
        return result.status_after in RANKABLE_STATUSES

    def _fail_safe(
        self,
        user_id: str,
        trigger_id: str,
        reason: str,
        error: Optional[Exception],
        gate: Optional[ThrottleDecision],
        dropped: Optional[list[ThreadSelection]] = None,
    ) -> DecisionResult:
        """Do not message; try again after the retry delay."""
        next_at = days_from(self.db.clock.now(), self.config.retry_delay_days)
        with self.db.transaction(immediate=True):
            schedule_check(self.db, user_id, next_at, reason="retry", context={"cause": reason})
            self.db.write_audit(
                AuditRecord(
                    actor_component=ACTOR,
                    action="fail_safe",
                    user_id=user_id,
                    details={
                        "reason": reason,
                        "error": str(error) if error else None,
                        "trigger_id": trigger_id,
                        "next_check_at": next_at.isoformat(),
                    },
                )
            )
        logger.warning(
            "Decision failed safe, no message",
            extra={
                "context": {
                    "user_id": user_id,
                    "reason": reason,
                    "error": str(error) if error else None,
                }
            },
        )
        return DecisionResult(
            user_id,
            trigger_id,
            DecisionOutcome.NO_MESSAGE,
            reason=reason,
            dropped=dropped or [],
            next_check_at=next_at,
            throttle=gate,
        )

    def _integrity_warning(self, user_id: str, selection: ThreadSelection, cause: str) -> None:
        warning = IntegrityWarning(
            f"Oracle referenced {selection.item_type}:{selection.item_id} ({cause})"
        )
        logger.warning(
            str(warning),
            extra={
                "context": {
                    "user_id": user_id,
                    "item_type": selection.item_type,
                    "item_id": selection.item_id,
                    "cause": cause,
                }
            },
        )
        self.db.write_audit(
            AuditRecord(
                actor_component=ACTOR,
                action="integrity_warning",
                user_id=user_id,
                item_type=selection.item_type,
                item_id=selection.item_id,
                details={"cause": cause},
            )
        )
