"""Scheduling of re-engagement checks and item follow-ups.

A member has at most one pending re-engagement check: scheduling a new one
cancels the older pending ones (status flip, never a delete).

Usage:
    from warmline.engine.follow_ups import schedule_check, schedule_follow_up

    task_id = schedule_check(db, "u-1", days_from(now, 7), reason="sent")
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from warmline.core.logging import get_logger
from warmline.db.database import Database
from warmline.db.models import AnyOpportunity, EngagementTask, TaskType

logger = get_logger(__name__)


def days_from(now: datetime, days: float) -> datetime:
    """now + days."""
    return now + timedelta(days=days)


def schedule_check(
    db: Database,
    user_id: str,
    when: datetime,
    reason: str,
    context: Optional[dict[str, Any]] = None,
) -> int:
    """Schedule the member's next re-engagement check.

    Args:
        db: Database
        user_id: Member
        when: Due time
        reason: Why (throttled, declined, sent, retry, ...)
        context: Extra data stored on the task

    Returns:
        New task ID
    """
    with db.transaction():
        superseded = db.cancel_pending_tasks(
            reason="superseded",
            user_id=user_id,
            task_type=TaskType.REENGAGEMENT_CHECK,
        )
        task_id = db.create_task(
            EngagementTask(
                user_id=user_id,
                task_type=TaskType.REENGAGEMENT_CHECK,
                scheduled_for=when,
                context={"reason": reason, **(context or {})},
            )
        )

    logger.info(
        "Re-engagement check scheduled",
        extra={
            "context": {
                "user_id": user_id,
                "task_id": task_id,
                "scheduled_for": when.isoformat(),
                "reason": reason,
                "superseded": superseded,
            }
        },
    )
    return task_id


def schedule_follow_up(
    db: Database,
    opportunity: AnyOpportunity,
    when: datetime,
    note: Optional[str] = None,
) -> int:
    """Schedule a follow-up about one opportunity.

    Follow-ups are cancelled automatically when the opportunity goes dormant.

    Returns:
        New task ID
    """
    task_id = db.create_task(
        EngagementTask(
            user_id=opportunity.owner_user_id,
            task_type=TaskType.FOLLOW_UP,
            scheduled_for=when,
            item_type=opportunity.item_type,
            item_id=opportunity.item_id,
            context={"note": note} if note else {},
        )
    )
    logger.info(
        "Follow-up scheduled",
        extra={
            "context": {
                "task_id": task_id,
                "item_type": opportunity.item_type,
                "item_id": opportunity.item_id,
                "scheduled_for": when.isoformat(),
            }
        },
    )
    return task_id
