"""Engagement throttle.

Gate run before any proactive contact. Two checks, always in this order:

1. Minimum interval: a ``sent`` attempt inside the last 7 days blocks.
   A ``throttled`` attempt is recorded and the next check is scheduled
   for when the interval runs out (ceil of the remaining days).

2. Strike cap: walk ``sent`` attempts from the last 90 days, newest first.
   An attempt is answered if the member wrote anything at or after it
   (optionally only within a response window). The first answered
   attempt ends the walk. Three or more unanswered in a row blocks: a
   ``paused`` attempt is recorded, pending checks are cancelled, and
   nothing is scheduled. Only a manual override lifts the pause.

Both checks run in one write transaction, so the history they read cannot
change before the outcome is recorded.

Usage:
    from warmline.engine.throttle import EngagementThrottle

    throttle = EngagementThrottle(db)
    decision = throttle.check("u-1", trigger_id="task:42")
    if not decision.allowed:
        ...
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from warmline.core.config import get_config
from warmline.core.exceptions import NotFoundError
from warmline.core.logging import get_logger
from warmline.db.database import Database
from warmline.db.models import (
    AttemptOutcome,
    AuditRecord,
    EngagementAttempt,
    TaskType,
)
from warmline.engine.follow_ups import days_from, schedule_check

logger = get_logger(__name__)

ACTOR = "engagement_throttle"

REASON_INTERVAL = "interval"
REASON_STRIKE_CAP = "strike_cap"


@dataclass
class ThrottleDecision:
    """Result of a throttle check.

    Attributes:
        allowed: Contact may proceed
        reason: interval or strike_cap when blocked
        outcome: Attempt outcome recorded when blocked
        next_check_at: When the next check was scheduled (None when paused)
        requires_manual_override: The member is paused by the strike cap
        unanswered_count: Current unanswered streak
        days_since_last: Days since the last sent attempt, if any
        attempt_id: Recorded attempt, if any
        duplicate: The trigger had already been recorded
    """

    allowed: bool
    reason: Optional[str] = None
    outcome: Optional[AttemptOutcome] = None
    next_check_at: Optional[datetime] = None
    requires_manual_override: bool = False
    unanswered_count: int = 0
    days_since_last: Optional[float] = None
    attempt_id: Optional[int] = None
    duplicate: bool = False


class EngagementThrottle:
    """Minimum-interval and strike-cap pacing."""

    def __init__(
        self,
        db: Database,
        min_interval_days: Optional[int] = None,
        strike_window_days: Optional[int] = None,
        max_unanswered: Optional[int] = None,
        response_window_days: Optional[int] = None,
    ):
        config = get_config()
        self.db = db
        self.min_interval_days = (
            min_interval_days if min_interval_days is not None else config.min_interval_days
        )
        self.strike_window_days = (
            strike_window_days if strike_window_days is not None else config.strike_window_days
        )
        self.max_unanswered = (
            max_unanswered if max_unanswered is not None else config.max_unanswered
        )
        self.response_window_days = (
            response_window_days
            if response_window_days is not None
            else config.response_window_days
        )

    # =========================================================================
    # QUERIES
    # =========================================================================

    def last_sent_within_interval(
        self, user_id: str, now: datetime
    ) -> Optional[EngagementAttempt]:
        """Most recent sent attempt strictly inside the interval."""
        since = now - timedelta(days=self.min_interval_days)
        recent = self.db.get_attempts(user_id, AttemptOutcome.SENT, since=since, limit=1)
        return recent[0] if recent else None

    def count_unanswered(self, user_id: str, now: datetime) -> int:
        """Length of the current unanswered streak of sent attempts."""
        window_start = now - timedelta(days=self.strike_window_days)
        user = self.db.get_user(user_id)
        if user and user.manual_override_at and user.manual_override_at > window_start:
            window_start = user.manual_override_at

        streak = 0
        for attempt in self.db.get_attempts(user_id, AttemptOutcome.SENT, since=window_start):
            assert attempt.created_at is not None
            answer_deadline = (
                attempt.created_at + timedelta(days=self.response_window_days)
                if self.response_window_days
                else None
            )
            if self.db.has_inbound_message(user_id, attempt.created_at, answer_deadline):
                break
            streak += 1
        return streak

    def _last_sent_days(self, user_id: str, now: datetime) -> Optional[float]:
        last = self.db.get_attempts(user_id, AttemptOutcome.SENT, limit=1)
        if not last or last[0].created_at is None:
            return None
        return (now - last[0].created_at).total_seconds() / 86400

    # =========================================================================
    # GATE
    # =========================================================================

    def check(self, user_id: str, trigger_id: Optional[str] = None) -> ThrottleDecision:
        """Run both checks and record the outcome.

        Every decision is audited. A blocked decision also records an
        attempt and, for the interval rule, schedules the next check.

        Args:
            user_id: Member
            trigger_id: Idempotency key stored on any recorded attempt

        Returns:
            ThrottleDecision

        Raises:
            NotFoundError: If the member does not exist
        """
        with self.db.transaction(immediate=True):
            if self.db.get_user(user_id) is None:
                raise NotFoundError(f"No user with id {user_id}")

            now = self.db.clock.now()

            last = self.last_sent_within_interval(user_id, now)
            if last is not None:
                assert last.created_at is not None
                return self._block_interval(user_id, trigger_id, now, last.created_at)

            unanswered = self.count_unanswered(user_id, now)
            if unanswered >= self.max_unanswered:
                return self._block_strikes(user_id, trigger_id, now, unanswered)

            days_since = self._last_sent_days(user_id, now)
            self.db.write_audit(
                AuditRecord(
                    actor_component=ACTOR,
                    action="throttle_decision",
                    user_id=user_id,
                    details={
                        "outcome": "allowed",
                        "unanswered_count": unanswered,
                        "days_since_last": (
                            round(days_since, 3) if days_since is not None else None
                        ),
                        "trigger_id": trigger_id,
                    },
                )
            )
            return ThrottleDecision(
                allowed=True,
                unanswered_count=unanswered,
                days_since_last=days_since,
            )

    def is_allowed(self, user_id: str) -> bool:
        """Read-only version of check(): nothing is recorded or scheduled."""
        now = self.db.clock.now()
        with self.db.transaction():
            if self.last_sent_within_interval(user_id, now) is not None:
                return False
            return self.count_unanswered(user_id, now) < self.max_unanswered

    def _block_interval(
        self, user_id: str, trigger_id: Optional[str], now: datetime, last_sent_at: datetime
    ) -> ThrottleDecision:
        days_since = (now - last_sent_at).total_seconds() / 86400
        wait_days = max(1, math.ceil(self.min_interval_days - days_since))
        next_at = days_from(now, wait_days)

        attempt_id = self.db.record_attempt(
            EngagementAttempt(
                user_id=user_id,
                outcome=AttemptOutcome.THROTTLED,
                trigger_id=trigger_id,
                created_at=now,
                metadata={
                    "reason": REASON_INTERVAL,
                    "days_since_last": round(days_since, 3),
                    "extend_days": wait_days,
                },
            )
        )
        if attempt_id is None:
            return ThrottleDecision(allowed=False, reason=REASON_INTERVAL, duplicate=True)

        schedule_check(
            self.db,
            user_id,
            next_at,
            reason="throttled",
            context={"days_since_last": round(days_since, 3)},
        )
        self.db.write_audit(
            AuditRecord(
                actor_component=ACTOR,
                action="throttle_decision",
                user_id=user_id,
                details={
                    "outcome": AttemptOutcome.THROTTLED.value,
                    "reason": REASON_INTERVAL,
                    "days_since_last": round(days_since, 3),
                    "next_check_at": next_at.isoformat(),
                    "trigger_id": trigger_id,
                },
            )
        )
        logger.info(
            "Engagement throttled (interval)",
            extra={
                "context": {
                    "user_id": user_id,
                    "days_since_last": round(days_since, 2),
                    "extend_days": wait_days,
                }
            },
        )
        return ThrottleDecision(
            allowed=False,
            reason=REASON_INTERVAL,
            outcome=AttemptOutcome.THROTTLED,
            next_check_at=next_at,
            days_since_last=days_since,
            attempt_id=attempt_id,
        )

    def _block_strikes(
        self, user_id: str, trigger_id: Optional[str], now: datetime, unanswered: int
    ) -> ThrottleDecision:
        attempt_id = self.db.record_attempt(
            EngagementAttempt(
                user_id=user_id,
                outcome=AttemptOutcome.PAUSED,
                trigger_id=trigger_id,
                created_at=now,
                metadata={
                    "reason": REASON_STRIKE_CAP,
                    "unanswered_count": unanswered,
                    "requiresManualOverride": True,
                },
            )
        )
        if attempt_id is None:
            return ThrottleDecision(
                allowed=False,
                reason=REASON_STRIKE_CAP,
                requires_manual_override=True,
                unanswered_count=unanswered,
                duplicate=True,
            )

        self.db.cancel_pending_tasks(
            reason="strike_cap_paused",
            user_id=user_id,
            task_type=TaskType.REENGAGEMENT_CHECK,
        )
        self.db.write_audit(
            AuditRecord(
                actor_component=ACTOR,
                action="throttle_decision",
                user_id=user_id,
                details={
                    "outcome": AttemptOutcome.PAUSED.value,
                    "reason": REASON_STRIKE_CAP,
                    "unanswered_count": unanswered,
                    "requiresManualOverride": True,
                    "trigger_id": trigger_id,
                },
            )
        )
        logger.warning(
            "Engagement paused (strike cap), manual override required",
            extra={"context": {"user_id": user_id, "unanswered": unanswered}},
        )
        return ThrottleDecision(
            allowed=False,
            reason=REASON_STRIKE_CAP,
            outcome=AttemptOutcome.PAUSED,
            requires_manual_override=True,
            unanswered_count=unanswered,
            attempt_id=attempt_id,
        )

    # =========================================================================
    # MANUAL OVERRIDE
    # =========================================================================

    def clear_pause(self, user_id: str, operator: Optional[str] = None) -> int:
        """Lift a strike-cap pause.

        Sends before now stop counting toward the streak. History is not
        rewritten; the override is stamped on the member and audited.

        Returns:
            ID of the re-engagement check scheduled for now

        Raises:
            NotFoundError: If the member does not exist
        """
        with self.db.transaction(immediate=True):
            if self.db.get_user(user_id) is None:
                raise NotFoundError(f"No user with id {user_id}")
            now = self.db.clock.now()
            self.db.set_manual_override(user_id, now)
            self.db.write_audit(
                AuditRecord(
                    actor_component=ACTOR,
                    action="manual_override",
                    user_id=user_id,
                    details={"operator": operator},
                )
            )
            task_id = schedule_check(self.db, user_id, now, reason="manual_override")

        logger.info(
            "Strike-cap pause cleared",
            extra={"context": {"user_id": user_id, "operator": operator}},
        )
        return task_id
