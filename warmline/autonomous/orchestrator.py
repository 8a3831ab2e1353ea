"""Orchestrator - background loop that keeps sweeps running.

Recurring jobs are registered with an interval. The default wiring from
the CLI registers one job, the engagement sweep, every
``sweep_interval_seconds``.

Runs either in a daemon thread (start/stop) or blocking the main thread
(run_headless) for service managers and cron-style launches.
"""

import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from warmline.core.logging import get_logger

logger = get_logger(__name__)

# How often the loop wakes up to look for due jobs (seconds)
_CHECK_INTERVAL_SECONDS = 5.0


@dataclass
class _Job:
    func: Callable[[], Any]
    interval: timedelta
    last_run: Optional[float] = None
    runs: int = 0
    failures: int = 0


class Orchestrator:
    """Recurring job coordinator."""

    def __init__(self, check_interval_seconds: float = _CHECK_INTERVAL_SECONDS) -> None:
        self._running: bool = False
        self._jobs: dict[str, _Job] = {}
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._check_interval = check_interval_seconds

    def start(self) -> None:
        """Start the loop in a background daemon thread."""
        if self._running:
            logger.warning("Orchestrator already running")
            return

        self._running = True
        self._stop_event.clear()

        self._thread = threading.Thread(
            target=self._run_loop,
            name="warmline-orchestrator",
            daemon=True,
        )
        self._thread.start()

        logger.info(
            "Orchestrator started (background)",
            extra={"context": {"jobs": list(self._jobs.keys())}},
        )

    def stop(self) -> None:
        """Signal the loop to stop and wait up to 10 seconds for it."""
        if not self._running:
            return

        logger.info("Orchestrator stopping...")
        self._running = False
        self._stop_event.set()

        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=10)
            if self._thread.is_alive():
                logger.warning("Orchestrator thread did not stop within timeout")

        self._thread = None
        logger.info("Orchestrator stopped")

    def register_task(self, name: str, func: Callable[[], Any], interval: timedelta) -> None:
        """Register a recurring job.

        Args:
            name: Unique job name (e.g. 'engagement_sweep')
            func: Callable taking no arguments
            interval: How often to run it
        """
        self._jobs[name] = _Job(func=func, interval=interval)
        logger.info(
            "Task registered",
            extra={"context": {"name": name, "interval_seconds": interval.total_seconds()}},
        )

    def job_stats(self, name: str) -> dict[str, int]:
        job = self._jobs[name]
        return {"runs": job.runs, "failures": job.failures}

    def run_headless(self) -> None:
        """Same as start() but blocks the calling thread until stopped."""
        if self._running:
            logger.warning("Orchestrator already running")
            return

        self._running = True
        self._stop_event.clear()

        logger.info(
            "Orchestrator started (headless)",
            extra={"context": {"jobs": list(self._jobs.keys())}},
        )

        try:
            self._run_loop()
        except KeyboardInterrupt:
            logger.info("Orchestrator interrupted by keyboard")
        finally:
            self._running = False
            logger.info("Orchestrator headless mode stopped")

    def is_running(self) -> bool:
        return self._running

    def run_due(self) -> list[str]:
        """Run every job whose interval has elapsed. One loop iteration.

        A failing job is logged and never stops the others.

        Returns:
            Names of the jobs that ran
        """
        ran = []
        for name, job in list(self._jobs.items()):
            now = time.monotonic()
            if job.last_run is not None and (now - job.last_run) < job.interval.total_seconds():
                continue

            logger.info(f"Running task: {name}", extra={"context": {"task": name}})
            try:
                job.func()
                logger.info(f"Task completed: {name}", extra={"context": {"task": name}})
            except Exception as exc:
                job.failures += 1
                logger.error(
                    f"Task failed: {name}",
                    extra={"context": {"task": name, "error": str(exc)}},
                    exc_info=True,
                )
            finally:
                job.runs += 1
                job.last_run = time.monotonic()
            ran.append(name)
        return ran

    def _run_loop(self) -> None:
        logger.debug("Orchestrator loop started")

        while self._running:
            self.run_due()

            # Wake early when stop() is called
            if self._stop_event.wait(timeout=self._check_interval):
                break

        logger.debug("Orchestrator loop ended")
