#!/usr/bin/env python3
"""Warmline - opportunity ranking and engagement pacing engine.

Single entry point for operators.

Usage:
    python engage.py --init-db          # Create the schema
    python engage.py --sweep            # Run every due engagement task once
    python engage.py --run-user u-1     # Run one decision for a member now
    python engage.py --orchestrator     # Sweep on an interval (headless)
    python engage.py --status           # Show configuration and store summary
    python engage.py --version          # Show version
"""

import argparse
import logging
import sys
import uuid
from datetime import timedelta

from warmline import __version__
from warmline.core.config import get_config, validate_config
from warmline.core.logging import get_logger, setup_logging


def main(argv=None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    parser = argparse.ArgumentParser(
        description="Warmline - opportunity ranking and engagement pacing engine"
    )
    parser.add_argument("--init-db", action="store_true", help="Create the database schema")
    parser.add_argument("--sweep", action="store_true", help="Run due engagement tasks once")
    parser.add_argument(
        "--run-user",
        metavar="USER_ID",
        help="Run one decision for a member immediately",
    )
    parser.add_argument(
        "--orchestrator",
        action="store_true",
        help="Run the sweep loop in the foreground (headless mode)",
    )
    parser.add_argument("--status", action="store_true", help="Show status report and exit")
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    if args.version:
        print(f"Warmline v{__version__}")
        return 0

    config = get_config()
    debug = args.debug or config.debug
    setup_logging(
        log_dir=config.log_path,
        console_level=logging.DEBUG if debug else logging.INFO,
    )
    logger = get_logger("main")
    logger.info(f"Warmline v{__version__} starting...")

    issues = validate_config(config)
    critical = False
    for issue in issues:
        if issue.startswith("CRITICAL:"):
            critical = True
            logger.error(f"Configuration: {issue}")
        else:
            logger.warning(f"Configuration issue: {issue}")

    from warmline.db.database import Database

    try:
        db = Database()
        db.initialize()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1

    try:
        if args.status:
            _print_status(db, config, issues)
            return 0

        if args.init_db:
            print(f"Database ready at {config.db_path}")
            return 0

        if critical:
            logger.error("Refusing to run decisions with critical configuration issues")
            return 2

        from warmline.ai import build_oracle

        oracle = build_oracle(config)

        if args.run_user:
            from warmline.autonomous.decision import DecisionOrchestrator
            from warmline.core.exceptions import NotFoundError

            trigger_id = f"manual:{uuid.uuid4().hex}"
            try:
                result = DecisionOrchestrator(db, oracle).run(args.run_user, trigger_id)
            except NotFoundError as e:
                logger.error(str(e))
                return 1
            print(f"{result.outcome.value}" + (f" ({result.reason})" if result.reason else ""))
            for thread in result.threads:
                print(f"  {thread.priority}. {thread.item_type}:{thread.item_id} {thread.guidance}")
            return 0

        from warmline.autonomous.worker import EngagementWorker

        worker = EngagementWorker(oracle)

        if args.sweep:
            sweep = worker.sweep()
            print(
                f"due={sweep.due} claimed={sweep.claimed} "
                f"skipped={sweep.skipped} failed={sweep.failed}"
            )
            worker.shutdown()
            return 1 if sweep.failed else 0

        if args.orchestrator:
            from warmline.autonomous.orchestrator import Orchestrator

            orchestrator = Orchestrator()
            orchestrator.register_task(
                "engagement_sweep",
                worker.sweep,
                timedelta(seconds=config.sweep_interval_seconds),
            )
            orchestrator.run_headless()
            worker.shutdown()
            return 0

        parser.print_help()
        return 0
    finally:
        db.close()


def _print_status(db, config, issues) -> None:  # type: ignore[no-untyped-def]
    """Print configuration and store summary."""
    print(f"\nWarmline v{__version__} - Status\n")
    print(f"  Database:  {config.db_path}")
    print(f"  Oracle:    {config.oracle} ({config.claude_model})")
    print(
        f"  Pacing:    {config.min_interval_days}d interval, "
        f"{config.max_unanswered} unanswered in {config.strike_window_days}d"
    )
    counts = db.get_status_counts()
    if counts:
        print("\n  Store:")
        for name, count in sorted(counts.items()):
            print(f"    {name}: {count}")
    if issues:
        print(f"\nConfiguration issues ({len(issues)}):")
        for issue in issues:
            print(f"  ! {issue}")
    print()


if __name__ == "__main__":
    sys.exit(main())
