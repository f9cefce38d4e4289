#!/usr/bin/env python
"""Mark sources and chunks stuck in processing as failed.

Usage:
    python scripts/fail_stuck_ingestion.py

Options:
    --dry-run              List stuck records without changing them
    --timeout-minutes N    Override INGESTION_TIMEOUT_SECONDS
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta

from knowledge_core.config import get_settings
from knowledge_core.database import get_async_engine, get_async_session_factory
from knowledge_core.logging import configure_logging
from knowledge_core.services.watchdog import fail_stuck_records

logger = logging.getLogger(__name__)


async def run(dry_run: bool = False, timeout_minutes: int | None = None) -> int:
    settings = get_settings()
    if not settings.db_url:
        logger.error("DB_URL not configured")
        return 1

    timeout = None if timeout_minutes is None else timedelta(minutes=timeout_minutes)

    async_session = get_async_session_factory()
    try:
        async with async_session() as db:
            report = await fail_stuck_records(db, timeout=timeout, dry_run=dry_run)
    finally:
        await get_async_engine().dispose()

    if dry_run:
        for record_id in report.candidate_ids:
            logger.info(f"[DRY RUN] Would fail: {record_id}")
        logger.info(f"[DRY RUN] {len(report.candidate_ids)} stuck records")
        return 0

    logger.info(
        f"Watchdog complete: {report.sources_failed} sources, "
        f"{report.chunks_failed} chunks failed, {report.failures} errors"
    )
    return 1 if report.failures else 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Fail stuck ingestion records")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List stuck records without marking them",
    )
    parser.add_argument(
        "--timeout-minutes",
        type=int,
        help="Minutes in processing after which a record counts as stuck",
    )

    args = parser.parse_args()

    configure_logging(get_settings().log_level)
    sys.exit(
        asyncio.run(run(dry_run=args.dry_run, timeout_minutes=args.timeout_minutes))
    )


if __name__ == "__main__":
    main()
