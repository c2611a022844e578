"""
Chorewheel — Entry Point.

`python main.py` runs one allocation cycle for the default household.
Meant to be called by cron or any other scheduler; runs are serialized per
household inside the process.
"""

import argparse
import logging
import sys

from chorewheel.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from chorewheel.adapters.store_factory import StoreRegistry
from chorewheel.core.household_service import RunSummaryResponse, trigger_assignment

logger = logging.getLogger("chorewheel")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Assign household chores for this cycle.")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--tenant", default=settings.DEFAULT_TENANT, help="household to assign")
    target.add_argument(
        "--all-tenants", action="store_true",
        help="run for every household database found in DATABASE_DIR",
    )
    parser.add_argument("--dry-run", action="store_true", help="compute picks without saving")
    parser.add_argument(
        "--reassign", action="store_true",
        help="wipe current assignments and reassign without maintenance",
    )
    parser.add_argument(
        "--group-by-recurrence", action=argparse.BooleanOptionalAction, default=None,
        help="allocate weekly, then monthly, then one-shot tasks (default from settings)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    registry = StoreRegistry()
    tenants = registry.discover_tenants() if args.all_tenants else [args.tenant]
    if not tenants:
        logger.warning("No household databases found in %s", settings.DATABASE_DIR)
        return 0

    exit_code = 0
    try:
        for tenant in tenants:
            response = trigger_assignment(
                registry,
                tenant,
                reassign=args.reassign,
                dry_run=args.dry_run,
                group_by_recurrence=args.group_by_recurrence,
            )
            logger.info("[%s] %s", tenant, response.message)
            if isinstance(response, RunSummaryResponse):
                for task_id, user_id in response.picks:
                    print(f"{tenant}\ttask {task_id}\tuser {user_id}")
            if not response.success:
                exit_code = 1
    finally:
        registry.close()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
