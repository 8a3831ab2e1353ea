"""Presentation tracking.

Every time an opportunity is shown to its member the count goes up by
exactly one:

    open       --1st exposure-->  presented
    presented  --2nd exposure-->  dormant   (unless the member responded)

Going dormant stamps dormant_at and cancels every pending task that
references the item. Dormant items never come back into the ranking.

Only open and presented items can be presented. Anything else is logged
and left alone; the caller's view of the item was stale.

Usage:
    from warmline.engine.presentation import PresentationTracker

    tracker = PresentationTracker(db)
    result = tracker.mark_presented("connector_opportunity", "12", "dedicated")
"""

from dataclasses import dataclass
from typing import Optional, Union

from warmline.core.exceptions import NotFoundError, ValidationError
from warmline.core.logging import get_logger
from warmline.db.database import Database
from warmline.db.models import (
    RANKABLE_STATUSES,
    AuditRecord,
    OpportunityStatus,
    PresentationKind,
)

logger = get_logger(__name__)

ACTOR = "presentation_tracker"


@dataclass
class PresentationResult:
    """What a mark_presented call did.

    Attributes:
        item_type: Item type presented
        item_id: Item id presented
        status_before: Status when loaded
        status_after: Status after the call
        presentation_count: Count after the call
        counted: False if the exposure was a duplicate or the item was not presentable
        cancelled_tasks: Pending tasks cancelled because the item went dormant
    """

    item_type: str
    item_id: str
    status_before: OpportunityStatus
    status_after: OpportunityStatus
    presentation_count: int
    counted: bool
    cancelled_tasks: int = 0

    @property
    def went_dormant(self) -> bool:
        return self.counted and self.status_after == OpportunityStatus.DORMANT


def next_status(
    status: OpportunityStatus, new_count: int, responded: bool = False
) -> OpportunityStatus:
    """Status after one more exposure."""
    if status == OpportunityStatus.OPEN:
        return OpportunityStatus.PRESENTED
    if status == OpportunityStatus.PRESENTED and new_count >= 2 and not responded:
        return OpportunityStatus.DORMANT
    return status


class PresentationTracker:
    """Records exposures and detects dormancy."""

    def __init__(self, db: Database):
        self.db = db

    def mark_presented(
        self,
        item_type: str,
        item_id: Union[str, int],
        presentation_kind: Union[PresentationKind, str],
        exposure_key: Optional[str] = None,
        responded: bool = False,
    ) -> PresentationResult:
        """Record one exposure of an opportunity.

        Runs in one write transaction (or joins the caller's).

        Args:
            item_type: Opportunity kind value
            item_id: Opportunity id
            presentation_kind: dedicated or natural
            exposure_key: Identifies one logical exposure; repeats are ignored
            responded: The member responded in this exposure, so it cannot
                make the item dormant

        Returns:
            PresentationResult

        Raises:
            NotFoundError: If the item does not exist
            ValidationError: If presentation_kind is unknown
        """
        try:
            kind = PresentationKind(presentation_kind)
        except ValueError as e:
            raise ValidationError(f"Unknown presentation kind: {presentation_kind!r}") from e

        item_id = str(item_id)

        with self.db.transaction(immediate=True):
            opportunity = self.db.get_opportunity_by_item(item_type, item_id)
            if opportunity is None or opportunity.id is None:
                raise NotFoundError(f"No {item_type} with id {item_id}")

            before = opportunity.status
            count = opportunity.presentation_count

            if before not in RANKABLE_STATUSES:
                logger.info(
                    "Opportunity not presentable, already handled",
                    extra={
                        "context": {
                            "item_type": item_type,
                            "item_id": item_id,
                            "status": before.value,
                        }
                    },
                )
                return PresentationResult(item_type, item_id, before, before, count, False)

            if exposure_key and not self.db.claim_exposure(
                item_type, item_id, exposure_key, kind.value
            ):
                logger.debug(
                    "Duplicate exposure ignored",
                    extra={
                        "context": {
                            "item_type": item_type,
                            "item_id": item_id,
                            "exposure_key": exposure_key,
                        }
                    },
                )
                return PresentationResult(item_type, item_id, before, before, count, False)

            new_count = count + 1
            after = next_status(before, new_count, responded)
            now = self.db.clock.now()
            dormant_at = now if after == OpportunityStatus.DORMANT else None

            if not self.db.record_presentation(
                opportunity.id, before, count, after, now, dormant_at
            ):
                logger.info(
                    "Presentation lost to a concurrent update, already handled",
                    extra={"context": {"item_type": item_type, "item_id": item_id}},
                )
                return PresentationResult(item_type, item_id, before, before, count, False)

            cancelled = 0
            if after == OpportunityStatus.DORMANT:
                cancelled = self.db.cancel_pending_tasks(
                    reason="opportunity_dormant", item_type=item_type, item_id=item_id
                )

            if after != before:
                self.db.update_priority_status(
                    opportunity.owner_user_id, item_type, item_id, before.value, after.value
                )

            self.db.write_audit(
                AuditRecord(
                    actor_component=ACTOR,
                    action="mark_presented",
                    user_id=opportunity.owner_user_id,
                    item_type=item_type,
                    item_id=item_id,
                    status_before=before.value,
                    status_after=after.value,
                    details={
                        "presentation_kind": kind.value,
                        "presentation_count": new_count,
                        "responded": responded,
                        "exposure_key": exposure_key,
                        "cancelled_tasks": cancelled,
                    },
                )
            )

        log_context = {
            "item_type": item_type,
            "item_id": item_id,
            "from": before.value,
            "to": after.value,
            "count": new_count,
        }
        if after == OpportunityStatus.DORMANT:
            logger.info(
                "Opportunity went dormant",
                extra={"context": {**log_context, "cancelled_tasks": cancelled}},
            )
        else:
            logger.info("Opportunity presented", extra={"context": log_context})

        return PresentationResult(item_type, item_id, before, after, new_count, True, cancelled)
