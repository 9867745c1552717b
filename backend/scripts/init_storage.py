from __future__ import annotations

import argparse
import sys

from budget_tracker.config import settings
from budget_tracker.entities import COLUMNS
from budget_tracker.handlers import FinanceService
from budget_tracker.logging_setup import configure_logging, get_logger
from budget_tracker.persistence import get_repository

logger = get_logger("budget_tracker.scripts.init_storage")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create header rows (or tables) for every entity sheet.")
    parser.add_argument("--reset-headers", action="store_true", help="rewrite header rows even if present")
    parser.add_argument("--no-seed", action="store_true", help="skip seeding the global default categories")
    args = parser.parse_args(argv)

    configure_logging(settings.log_level)
    repository = get_repository(settings)
    service = FinanceService(repository, settings)

    if args.reset_headers:
        for kind in COLUMNS:
            repository.reset_headers(kind)
            logger.info("header reset: %s", kind.value)

    initialized, failed = service.initialize_storage()
    for name in initialized:
        print(f"Initialized: {name}")
    for name in failed:
        print(f"Failed: {name}")

    if not args.no_seed and not failed:
        seeded = service.seed_default_categories()
        print(f"Seeded {seeded} default categories.")

    print(f"Storage initialization finished ({settings.storage_backend}).")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
