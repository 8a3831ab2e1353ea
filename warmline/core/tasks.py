"""Thread and task management for Warmline.

Runs independent decision units in parallel. Units share no in-memory
state; each one opens its own database connection.

Usage:
    from warmline.core.tasks import TaskManager

    manager = TaskManager(max_workers=4)
    future = manager.submit("user:u-1", run_for_user, "u-1")
    result = future.result()  # TaskResult
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from warmline.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TaskResult:
    """Result of a background task.

    Attributes:
        task_name: Name of the task
        success: Whether task completed successfully
        result: Return value if successful
        error: Exception if failed
        started_at: When task started
        completed_at: When task finished
    """

    task_name: str
    success: bool
    result: Any = None
    error: Optional[Exception] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate task duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class TaskManager:
    """Manages background task execution.

    Provides a thread pool for running tasks with tracking and callbacks.

    Attributes:
        max_workers: Maximum concurrent tasks
    """

    def __init__(self, max_workers: int = 4):
        """Initialize task manager.

        Args:
            max_workers: Maximum concurrent tasks
        """
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        self._tasks: dict[str, Future] = {}
        self._lock = threading.Lock()

    def _get_executor(self) -> ThreadPoolExecutor:
        """Get or create thread pool executor."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="warmline-unit"
                )
            return self._executor

    def submit(
        self,
        task_name: str,
        func: Callable[..., Any],
        *args,
        callback: Optional[Callable[[TaskResult], None]] = None,
        **kwargs,
    ) -> Future:
        """Submit a task for execution.

        Exceptions raised by func are captured in the TaskResult, never
        re-raised from the future.

        Args:
            task_name: Name for tracking
            func: Function to execute
            *args: Positional arguments
            callback: Function to call with TaskResult when complete
            **kwargs: Keyword arguments

        Returns:
            Future resolving to a TaskResult
        """

        def wrapper() -> TaskResult:
            started_at = datetime.now()
            try:
                result = func(*args, **kwargs)
                return TaskResult(
                    task_name=task_name,
                    success=True,
                    result=result,
                    started_at=started_at,
                    completed_at=datetime.now(),
                )
            except Exception as e:
                logger.error(f"Task {task_name} failed: {e}", exc_info=True)
                return TaskResult(
                    task_name=task_name,
                    success=False,
                    error=e,
                    started_at=started_at,
                    completed_at=datetime.now(),
                )

        future = self._get_executor().submit(wrapper)

        with self._lock:
            # Only unfinished units are tracked
            for name in [n for n, f in self._tasks.items() if f.done()]:
                del self._tasks[name]
            self._tasks[task_name] = future

        if callback:
            future.add_done_callback(lambda f: callback(f.result()))

        return future

    def is_running(self, task_name: str) -> bool:
        """Check if a task is currently running."""
        with self._lock:
            future = self._tasks.get(task_name)
            return future is not None and not future.done()

    def in_flight(self) -> list[str]:
        """Names of submitted tasks that have not finished."""
        with self._lock:
            return [name for name, future in self._tasks.items() if not future.done()]

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the task manager.

        Args:
            wait: Wait for pending tasks to complete
        """
        with self._lock:
            executor = self._executor
            self._executor = None
            self._tasks.clear()
        if executor:
            executor.shutdown(wait=wait)
