#!/usr/bin/env python3
"""
Merge every group of duplicate open appointments.

Usage:
    python scripts/reconcile_duplicates.py
    python scripts/reconcile_duplicates.py --dry-run

Prints the reconciliation report as JSON on stdout and logs to stderr. With
--dry-run only the duplicate groups are listed and nothing is changed.

Environment Variables:
    DATABASE_URL: Appointment store connection string
"""

import argparse
import asyncio
import json
import sys

import dotenv

dotenv.load_dotenv()

from app.core.exceptions import AppException  # noqa: E402
from app.database import AsyncSessionLocal, engine  # noqa: E402
from app.middleware.logging import configure_logging  # noqa: E402
from app.services.deduplication_service import DeduplicationService  # noqa: E402


async def reconcile(dry_run: bool) -> dict:
    """Run one reconciliation pass, or only list the groups when dry_run is set."""
    try:
        async with AsyncSessionLocal() as session:
            service = DeduplicationService(session)
            if dry_run:
                groups = await service.find_duplicate_groups()
                return {
                    "dry_run": True,
                    "groups": [group.model_dump(mode="json") for group in groups],
                }
            report = await service.reconcile_all_duplicates()
            return report.model_dump(mode="json")
    finally:
        await engine.dispose()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Merge duplicate open appointments")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List duplicate groups without merging them",
    )
    args = parser.parse_args()

    configure_logging(sys.stderr)

    try:
        result = asyncio.run(reconcile(args.dry_run))
    except AppException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    if not args.dry_run and any(outcome["error"] for outcome in result["results"]):
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
