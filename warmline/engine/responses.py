"""Member responses to opportunities.

Accept, decline and complete are the only member-driven status changes.
Accepting and declining count as an exposure in which the member
responded, so they bump presentation_count but never make the item dormant.

    accept:    open | presented          -> accepted   (+ pause siblings)
    decline:   open | presented | paused -> declined
    complete:  accepted                  -> completed  (+ cancel paused siblings)

Each handler runs in one BEGIN IMMEDIATE transaction. If the item is no
longer in an expected status the call is a logged no-op returning False.

Usage:
    from warmline.engine.responses import accept_opportunity

    if accept_opportunity(db, opportunity_id):
        ...
"""

from typing import Iterable, Optional

from warmline.core.exceptions import NotFoundError
from warmline.core.logging import get_logger
from warmline.db.database import Database
from warmline.db.models import (
    RANKABLE_STATUSES,
    AuditRecord,
    MessageDirection,
    OpportunityStatus,
    PresentationKind,
    UserMessage,
)
from warmline.engine.conflicts import ConflictResolver
from warmline.engine.presentation import PresentationTracker

logger = get_logger(__name__)

ACTOR = "response_handler"


class _AlreadyHandled(Exception):
    """Internal signal to roll back a response whose precondition failed."""


def _respond(
    db: Database,
    opportunity_id: int,
    allowed_from: Iterable[OpportunityStatus],
    new_status: OpportunityStatus,
    action: str,
    exposure_key: Optional[str] = None,
) -> bool:
    allowed_from = tuple(allowed_from)
    try:
        with db.transaction(immediate=True):
            opportunity = db.get_opportunity(opportunity_id)
            if opportunity is None:
                raise NotFoundError(f"No opportunity with id {opportunity_id}")

            before = opportunity.status
            if before not in allowed_from:
                raise _AlreadyHandled(before.value)

            if before in RANKABLE_STATUSES:
                PresentationTracker(db).mark_presented(
                    opportunity.item_type,
                    opportunity.item_id,
                    PresentationKind.NATURAL,
                    exposure_key=exposure_key,
                    responded=True,
                )
                refreshed = db.get_opportunity(opportunity_id)
                assert refreshed is not None
                before = refreshed.status

            if not db.update_opportunity_status(opportunity_id, (before,), new_status):
                raise _AlreadyHandled(before.value)

            db.update_priority_status(
                opportunity.owner_user_id,
                opportunity.item_type,
                opportunity.item_id,
                before.value,
                new_status.value,
            )
            if new_status in (OpportunityStatus.DECLINED, OpportunityStatus.COMPLETED):
                db.cancel_pending_tasks(
                    reason=f"opportunity_{new_status.value}",
                    item_type=opportunity.item_type,
                    item_id=opportunity.item_id,
                )
            db.write_audit(
                AuditRecord(
                    actor_component=ACTOR,
                    action=action,
                    user_id=opportunity.owner_user_id,
                    item_type=opportunity.item_type,
                    item_id=opportunity.item_id,
                    status_before=before.value,
                    status_after=new_status.value,
                )
            )

            resolver = ConflictResolver(db)
            if new_status == OpportunityStatus.ACCEPTED:
                resolver.on_accepted(opportunity_id)
            elif new_status == OpportunityStatus.COMPLETED:
                resolver.on_completed(opportunity_id)

    except _AlreadyHandled as e:
        logger.info(
            f"Cannot {action} opportunity, already handled",
            extra={"context": {"opportunity_id": opportunity_id, "status": str(e)}},
        )
        return False

    logger.info(
        f"Opportunity {new_status.value}",
        extra={"context": {"opportunity_id": opportunity_id}},
    )
    return True


def accept_opportunity(
    db: Database, opportunity_id: int, exposure_key: Optional[str] = None
) -> bool:
    """Accept an opportunity and pause its siblings.

    Two racing accepts of siblings for the same prospect end with exactly
    one accepted: the loser finds its item paused, or hits the one-accepted
    index, and returns False.

    Raises:
        NotFoundError: If the opportunity does not exist
    """
    return _respond(
        db,
        opportunity_id,
        allowed_from=(OpportunityStatus.OPEN, OpportunityStatus.PRESENTED),
        new_status=OpportunityStatus.ACCEPTED,
        action="accept",
        exposure_key=exposure_key,
    )


def decline_opportunity(
    db: Database, opportunity_id: int, exposure_key: Optional[str] = None
) -> bool:
    """Decline an opportunity.

    Raises:
        NotFoundError: If the opportunity does not exist
    """
    return _respond(
        db,
        opportunity_id,
        allowed_from=(
            OpportunityStatus.OPEN,
            OpportunityStatus.PRESENTED,
            OpportunityStatus.PAUSED,
        ),
        new_status=OpportunityStatus.DECLINED,
        action="decline",
        exposure_key=exposure_key,
    )


def complete_opportunity(db: Database, opportunity_id: int) -> bool:
    """Mark an accepted opportunity completed and cancel paused siblings.

    Raises:
        NotFoundError: If the opportunity does not exist
    """
    return _respond(
        db,
        opportunity_id,
        allowed_from=(OpportunityStatus.ACCEPTED,),
        new_status=OpportunityStatus.COMPLETED,
        action="complete",
    )


def record_user_message(db: Database, user_id: str, content: str) -> int:
    """Store an inbound message from the member.

    Any inbound message answers every earlier sent attempt as far as the
    strike cap is concerned.

    Raises:
        NotFoundError: If the member does not exist
    """
    if db.get_user(user_id) is None:
        raise NotFoundError(f"No user with id {user_id}")
    message_id = db.record_message(
        UserMessage(user_id=user_id, direction=MessageDirection.INBOUND, content=content)
    )
    logger.debug(
        "Inbound message recorded",
        extra={"context": {"user_id": user_id, "message_id": message_id}},
    )
    return message_id
