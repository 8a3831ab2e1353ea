"""Sibling conflict resolution for connector opportunities.

Several members can hold a connector opportunity for the same prospect.
Once one of them is accepted the others wait; once it is completed the
others are closed out:

    accepted   ->  open/presented siblings  -> paused
    completed  ->  paused siblings          -> cancelled

Both handlers are idempotent, tolerate zero siblings, never touch a
sibling in any other status, and do nothing for other opportunity kinds.
A handler called for an opportunity not in its status leaves siblings alone.
Each sibling change is a guarded single-row update with one audit record.

Usage:
    from warmline.engine.conflicts import ConflictResolver

    resolver = ConflictResolver(db)
    paused_ids = resolver.on_accepted(opportunity_id)
"""

from typing import Iterable

from warmline.core.exceptions import NotFoundError
from warmline.core.logging import get_logger
from warmline.db.database import Database
from warmline.db.models import (
    AuditRecord,
    ConnectorOpportunity,
    OpportunityStatus,
)

logger = get_logger(__name__)

ACTOR = "conflict_resolver"


class ConflictResolver:
    """Pauses and cancels sibling opportunities."""

    def __init__(self, db: Database):
        self.db = db

    def on_accepted(self, opportunity_id: int) -> list[int]:
        """Pause open or presented siblings of an accepted opportunity.

        Returns:
            IDs of siblings this call paused

        Raises:
            NotFoundError: If the opportunity does not exist
        """
        return self._resolve(
            opportunity_id,
            trigger="accepted",
            required=OpportunityStatus.ACCEPTED,
            from_statuses=(OpportunityStatus.OPEN, OpportunityStatus.PRESENTED),
            to_status=OpportunityStatus.PAUSED,
        )

    def on_completed(self, opportunity_id: int) -> list[int]:
        """Cancel paused siblings of a completed opportunity.

        Returns:
            IDs of siblings this call cancelled

        Raises:
            NotFoundError: If the opportunity does not exist
        """
        return self._resolve(
            opportunity_id,
            trigger="completed",
            required=OpportunityStatus.COMPLETED,
            from_statuses=(OpportunityStatus.PAUSED,),
            to_status=OpportunityStatus.CANCELLED,
        )

    def _resolve(
        self,
        opportunity_id: int,
        trigger: str,
        required: OpportunityStatus,
        from_statuses: Iterable[OpportunityStatus],
        to_status: OpportunityStatus,
    ) -> list[int]:
        from_statuses = tuple(from_statuses)
        changed: list[int] = []

        with self.db.transaction(immediate=True):
            opportunity = self.db.get_opportunity(opportunity_id)
            if opportunity is None:
                raise NotFoundError(f"No opportunity with id {opportunity_id}")

            if not isinstance(opportunity, ConnectorOpportunity) or not opportunity.prospect_id:
                return changed

            if opportunity.status != required:
                logger.info(
                    f"Opportunity not {required.value}, siblings left alone",
                    extra={
                        "context": {
                            "opportunity_id": opportunity_id,
                            "status": opportunity.status.value,
                        }
                    },
                )
                return changed

            for sibling in self.db.get_siblings(
                opportunity.prospect_id, opportunity_id, from_statuses
            ):
                assert sibling.id is not None
                if not self.db.update_opportunity_status(sibling.id, (sibling.status,), to_status):
                    logger.info(
                        "Sibling already handled",
                        extra={"context": {"opportunity_id": sibling.id}},
                    )
                    continue

                self.db.update_priority_status(
                    sibling.owner_user_id,
                    sibling.item_type,
                    sibling.item_id,
                    sibling.status.value,
                    to_status.value,
                )
                if to_status == OpportunityStatus.CANCELLED:
                    self.db.cancel_pending_tasks(
                        reason="sibling_completed",
                        item_type=sibling.item_type,
                        item_id=sibling.item_id,
                    )
                self.db.write_audit(
                    AuditRecord(
                        actor_component=ACTOR,
                        action=f"sibling_{to_status.value}",
                        user_id=sibling.owner_user_id,
                        item_type=sibling.item_type,
                        item_id=sibling.item_id,
                        status_before=sibling.status.value,
                        status_after=to_status.value,
                        details={
                            "prospect_id": opportunity.prospect_id,
                            "caused_by": opportunity_id,
                            "trigger": trigger,
                        },
                    )
                )
                changed.append(sibling.id)

        if changed:
            logger.info(
                f"Siblings {to_status.value}",
                extra={
                    "context": {
                        "opportunity_id": opportunity_id,
                        "prospect_id": opportunity.prospect_id,
                        "siblings": changed,
                    }
                },
            )
        return changed
