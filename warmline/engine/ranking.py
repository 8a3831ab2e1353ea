"""Per-member priority ranking.

Merges a member's live opportunities (open or presented) with externally
supplied goal candidates, scores them, and keeps the top N.

Order: highest score first, then earliest created_at, then item type and
item id so equal inputs always give an equal list.

The result is written to ``user_priorities`` as a new version and the head
pointer is swapped in the same transaction. A refresh that produces the
same list as the current version does not create a new one.

Usage:
    from warmline.engine.ranking import RankingAggregator

    aggregator = RankingAggregator(db)
    result = aggregator.refresh("u-1")
    for entry in result.entries:
        print(entry.rank, entry.item_type, entry.item_id, entry.value_score)
"""

import hashlib
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from warmline.core.clock import ensure_utc
from warmline.core.config import get_config
from warmline.core.exceptions import RankingUnavailableError
from warmline.core.logging import get_logger
from warmline.db.database import Database
from warmline.db.models import (
    RANKABLE_STATUSES,
    GoalCandidate,
    OpportunityStatus,
    UserPriorityEntry,
)
from warmline.engine.scoring import DEFAULT_WEIGHTS, ScoreWeights, score

logger = get_logger(__name__)

# Goal candidates without a timestamp sort after everything else on ties
_NO_TIMESTAMP = datetime.max.replace(tzinfo=timezone.utc)

_SWAP_ATTEMPTS = 3


@dataclass
class RankingCandidate:
    """One scored item competing for a slot."""

    item_type: str
    item_id: str
    value_score: int
    status: str
    created_at: datetime

    def sort_key(self) -> tuple:
        return (
            -self.value_score,
            self.created_at,
            self.item_type,
            len(self.item_id),
            self.item_id,
        )


@dataclass
class RankingResult:
    """Outcome of a refresh.

    Attributes:
        user_id: Member
        version: Current projection version after the refresh
        entries: Ranked entries, rank 1 first
        changed: Whether a new version was written
    """

    user_id: str
    version: int
    entries: list[UserPriorityEntry] = field(default_factory=list)
    changed: bool = False

    def item_refs(self) -> set[tuple[str, str]]:
        return {(e.item_type, e.item_id) for e in self.entries}


def rank_candidates(candidates: Iterable[RankingCandidate], limit: int) -> list[RankingCandidate]:
    """Sort candidates and keep the top ``limit``."""
    return sorted(candidates, key=RankingCandidate.sort_key)[:limit]


def fingerprint(entries: list[UserPriorityEntry]) -> str:
    """Stable hash of a ranked list."""
    payload = [
        (e.rank, e.item_type, e.item_id, e.value_score, e.status) for e in entries
    ]
    return hashlib.sha256(json.dumps(payload).encode("utf-8")).hexdigest()


class RankingAggregator:
    """Builds and publishes ranked priority lists."""

    def __init__(
        self,
        db: Database,
        limit: Optional[int] = None,
        weights: ScoreWeights = DEFAULT_WEIGHTS,
        timeout_seconds: Optional[float] = None,
    ):
        config = get_config()
        self.db = db
        self.limit = limit if limit is not None else config.ranking_limit
        self.weights = weights
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else config.ranking_timeout_seconds
        )

    def collect(
        self,
        user_id: str,
        goal_candidates: Iterable[GoalCandidate] = (),
        now: Optional[datetime] = None,
    ) -> list[RankingCandidate]:
        """Score every eligible item for a member.

        Dormant, paused and terminal opportunities are never candidates.
        """
        now = now or self.db.clock.now()
        candidates: list[RankingCandidate] = []

        for opportunity in self.db.get_opportunities(user_id, statuses=RANKABLE_STATUSES):
            value = score(opportunity, now, self.weights)
            if opportunity.value_score != value and opportunity.id is not None:
                self.db.update_value_score(opportunity.id, opportunity.status, value)
            candidates.append(
                RankingCandidate(
                    item_type=opportunity.item_type,
                    item_id=opportunity.item_id,
                    value_score=value,
                    status=opportunity.status.value,
                    created_at=opportunity.created_at or _NO_TIMESTAMP,
                )
            )

        for goal in goal_candidates:
            candidates.append(
                RankingCandidate(
                    item_type=goal.item_type,
                    item_id=str(goal.item_id),
                    value_score=max(int(goal.value_score), 0),
                    status=OpportunityStatus.OPEN.value,
                    created_at=ensure_utc(goal.created_at) if goal.created_at else _NO_TIMESTAMP,
                )
            )

        return candidates

    def build(
        self,
        user_id: str,
        goal_candidates: Iterable[GoalCandidate] = (),
        now: Optional[datetime] = None,
    ) -> list[UserPriorityEntry]:
        """Compute the ranked list without publishing it."""
        top = rank_candidates(self.collect(user_id, goal_candidates, now), self.limit)
        return [
            UserPriorityEntry(
                user_id=user_id,
                rank=position,
                item_type=c.item_type,
                item_id=c.item_id,
                value_score=c.value_score,
                status=c.status,
            )
            for position, c in enumerate(top, start=1)
        ]

    def refresh(
        self,
        user_id: str,
        goal_candidates: Iterable[GoalCandidate] = (),
    ) -> RankingResult:
        """Recompute and publish a member's ranking.

        Raises:
            RankingUnavailableError: If the recompute overruns its time budget
                or keeps losing the swap to concurrent refreshes
        """
        goals = list(goal_candidates)
        started = time.monotonic()

        for _ in range(_SWAP_ATTEMPTS):
            head = self.db.get_priority_head(user_id)
            current_version = head["current_version"] if head else 0
            entries = self.build(user_id, goals)
            content_hash = fingerprint(entries)

            if time.monotonic() - started > self.timeout_seconds:
                raise RankingUnavailableError(
                    f"Ranking for {user_id} exceeded {self.timeout_seconds}s"
                )

            if head is not None and head["content_hash"] == content_hash:
                self.db.touch_priorities(user_id)
                for entry in entries:
                    entry.version = current_version
                logger.debug(
                    "Ranking unchanged",
                    extra={"context": {"user_id": user_id, "version": current_version}},
                )
                return RankingResult(user_id, current_version, entries, changed=False)

            new_version = self.db.swap_priorities(user_id, entries, content_hash, current_version)
            if new_version is not None:
                for entry in entries:
                    entry.version = new_version
                logger.info(
                    "Ranking published",
                    extra={
                        "context": {
                            "user_id": user_id,
                            "version": new_version,
                            "items": len(entries),
                        }
                    },
                )
                return RankingResult(user_id, new_version, entries, changed=True)

            logger.info(
                "Ranking swap lost to a concurrent refresh, retrying",
                extra={"context": {"user_id": user_id}},
            )

        raise RankingUnavailableError(f"Could not publish ranking for {user_id}")

    def current(self, user_id: str) -> list[UserPriorityEntry]:
        """Read the published ranking."""
        return self.db.get_priorities(user_id)
