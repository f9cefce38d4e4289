#!/usr/bin/env python
"""Evict expired embedding and response cache entries.

Meant for an hourly scheduler (cron, Kubernetes CronJob).

Usage:
    python scripts/cleanup_caches.py
"""

import argparse
import asyncio
import logging
import sys

from knowledge_core.config import get_settings
from knowledge_core.database import get_async_engine, get_async_session_factory
from knowledge_core.errors import TransientError
from knowledge_core.logging import configure_logging
from knowledge_core.services.cache_janitor import cleanup_expired_caches

logger = logging.getLogger(__name__)


async def run() -> int:
    settings = get_settings()
    if not settings.db_url:
        logger.error("DB_URL not configured")
        return 1

    async_session = get_async_session_factory()
    try:
        async with async_session() as db:
            await cleanup_expired_caches(db)
    except TransientError as e:
        logger.error(f"Cache cleanup incomplete: {e.message}")
        return 75  # EX_TEMPFAIL: scheduler may retry
    finally:
        await get_async_engine().dispose()

    logger.info("Cache cleanup complete")
    return 0


def main() -> None:
    """Main entry point."""
    argparse.ArgumentParser(description="Evict expired cache entries").parse_args()
    configure_logging(get_settings().log_level)
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
