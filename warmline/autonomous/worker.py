"""Engagement worker - runs due engagement tasks.

One sweep:
    1. Load pending tasks that are due
    2. Keep the earliest task per member (the rest wait for the next sweep)
    3. Run each member as an independent unit on the TaskManager pool
       (a member whose unit from an overlapping sweep is still running is
       skipped).
       Each unit opens its own Database connection, claims its task with a
       guarded pending -> processing flip and runs the Decision Orchestrator
       with trigger ``task:<id>``
    4. Finish the task as completed or failed. A failed unit leaves the
       member a retry check unless one is already pending

A lost claim means another worker took the task; the unit skips silently.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from warmline.ai.oracle import DecisionOracle
from warmline.autonomous.decision import DecisionOrchestrator, DecisionResult
from warmline.core.clock import Clock
from warmline.core.config import get_config
from warmline.core.exceptions import DatabaseError
from warmline.core.logging import get_logger
from warmline.core.tasks import TaskManager, TaskResult
from warmline.db.database import Database
from warmline.db.models import EngagementTask, TaskStatus, TaskType
from warmline.engine.follow_ups import days_from, schedule_check

logger = get_logger(__name__)


def trigger_for(task: EngagementTask) -> str:
    """Idempotency key for a scheduled task."""
    return f"task:{task.id}"


def unit_name(user_id: str) -> str:
    """TaskManager name of a member's decision unit."""
    return f"user:{user_id}"


@dataclass
class SweepResult:
    """Result of one sweep."""

    started_at: datetime
    due: int = 0
    claimed: int = 0
    skipped: int = 0
    failed: int = 0
    outcomes: dict[int, DecisionResult] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


class EngagementWorker:
    """Claims and runs due engagement tasks in parallel."""

    def __init__(
        self,
        oracle: DecisionOracle,
        db_path: Optional[str] = None,
        clock: Optional[Clock] = None,
        max_workers: Optional[int] = None,
        orchestrator_factory: Optional[Callable[[Database], DecisionOrchestrator]] = None,
    ):
        config = get_config()
        self.config = config
        self.oracle = oracle
        self.db_path = str(db_path or config.db_path)
        self.clock = clock
        self.task_manager = TaskManager(max_workers=max_workers or config.worker_threads)
        self._orchestrator_factory = orchestrator_factory or (
            lambda db: DecisionOrchestrator(db, self.oracle)
        )

    def _open(self) -> Database:
        return Database(self.db_path, clock=self.clock)

    def sweep(self, limit: int = 100) -> SweepResult:
        """Run every due task once."""
        db = self._open()
        try:
            now = db.clock.now()
            due = db.get_due_tasks(now, limit=limit)
        finally:
            db.close()

        result = SweepResult(started_at=now, due=len(due))

        # Earliest due task per member; get_due_tasks is ordered by due time
        per_user: dict[str, EngagementTask] = {}
        for task in due:
            per_user.setdefault(task.user_id, task)

        futures = []
        for user_id, task in per_user.items():
            # A unit from an overlapping sweep is still working on this member
            if self.task_manager.is_running(unit_name(user_id)):
                result.skipped += 1
                continue
            futures.append(self.task_manager.submit(unit_name(user_id), self.run_task, task.id))

        for future in futures:
            unit: TaskResult = future.result()
            if not unit.success:
                result.failed += 1
                result.errors.append(f"{unit.task_name}: {unit.error}")
            elif unit.result is None:
                result.skipped += 1
            else:
                task_id, outcome = unit.result
                result.claimed += 1
                result.outcomes[task_id] = outcome

        logger.info(
            "Sweep complete",
            extra={
                "context": {
                    "due": result.due,
                    "claimed": result.claimed,
                    "skipped": result.skipped,
                    "failed": result.failed,
                }
            },
        )
        return result

    def run_task(self, task_id: int) -> Optional[tuple[int, DecisionResult]]:
        """Claim and run one task on its own connection.

        Returns:
            (task_id, DecisionResult), or None if the claim was lost

        Raises:
            Exception: Whatever the orchestrator raised, after the task is
                marked failed
        """
        db = self._open()
        try:
            if not db.transition_task(task_id, TaskStatus.PENDING, TaskStatus.PROCESSING):
                logger.debug("Task already claimed", extra={"context": {"task_id": task_id}})
                return None

            task = db.get_task(task_id)
            assert task is not None
            try:
                outcome = self._orchestrator_factory(db).run(task.user_id, trigger_for(task))
            except Exception as e:
                db.transition_task(
                    task_id,
                    TaskStatus.PROCESSING,
                    TaskStatus.FAILED,
                    result={"error": str(e)},
                )
                self._schedule_retry(db, task.user_id, task_id)
                raise

            db.transition_task(
                task_id,
                TaskStatus.PROCESSING,
                TaskStatus.COMPLETED,
                result={"outcome": outcome.outcome.value, "reason": outcome.reason},
            )
            return task_id, outcome
        finally:
            db.close()

    def shutdown(self) -> None:
        self.task_manager.shutdown(wait=True)

    def _schedule_retry(self, db: Database, user_id: str, task_id: int) -> None:
        """Keep a failed member on the schedule: retry after retry_delay_days."""
        next_at = days_from(db.clock.now(), self.config.retry_delay_days)
        try:
            pending = [
                t
                for t in db.get_tasks(user_id=user_id, status=TaskStatus.PENDING)
                if t.task_type == TaskType.REENGAGEMENT_CHECK
            ]
            if pending:
                return
            schedule_check(
                db,
                user_id,
                next_at,
                reason="retry",
                context={"cause": "unit_failed", "task_id": task_id},
            )
        except DatabaseError as e:
            logger.error(
                "Could not schedule retry after failed unit",
                extra={"context": {"user_id": user_id, "task_id": task_id, "error": str(e)}},
            )
