"""Ingestion watchdog: fail sources and chunks stuck in processing."""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import utcnow
from ..models.knowledge import KnowledgeStatus
from ..observability.metrics import WATCHDOG_TRANSITIONS
from ..schemas.maintenance import WatchdogReport
from .knowledge_store import RecordKind, mark_error, model_for

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("knowledge-core.watchdog")


def timeout_message(timeout: timedelta) -> str:
    minutes = int(timeout.total_seconds() // 60)
    return f"Processing timed out after {minutes} minutes"


async def find_stuck_records(
    db: AsyncSession,
    kind: RecordKind,
    cutoff: datetime,
) -> list[UUID]:
    """Ids of records still processing with no update since ``cutoff``."""
    model = model_for(kind)
    result = await db.execute(
        select(model.id)
        .where(
            model.status == KnowledgeStatus.PROCESSING.value,
            model.updated_at < cutoff,
        )
        .order_by(model.updated_at, model.id)
    )
    return list(result.scalars().all())


async def fail_stuck_records(
    db: AsyncSession,
    timeout: timedelta | None = None,
    now: datetime | None = None,
    dry_run: bool = False,
) -> WatchdogReport:
    """Mark every source and chunk processing longer than ``timeout`` as error.

    Each record goes through the guarded ``mark_error`` transition, so a
    concurrent ingestion result that lands first wins and re-running the sweep
    is a no-op. A record that cannot be marked is logged and counted in
    ``failures``; the sweep carries on with the rest.

    Args:
        db: Database session.
        timeout: Age after which processing counts as stuck. Defaults to
            INGESTION_TIMEOUT_SECONDS.
        now: Clock override.
        dry_run: Only report candidates.

    Returns:
        Counts of records moved to error per kind.
    """
    settings = get_settings()
    if timeout is None:
        timeout = timedelta(seconds=settings.ingestion_timeout_seconds)
    now = now or utcnow()
    cutoff = now - timeout
    message = timeout_message(timeout)
    report = WatchdogReport(dry_run=dry_run)

    with tracer.start_as_current_span("watchdog.sweep") as span:
        span.set_attribute("timeout_seconds", timeout.total_seconds())
        span.set_attribute("dry_run", dry_run)

        for kind in RecordKind:
            stuck = await find_stuck_records(db, kind, cutoff)
            if dry_run:
                report.candidate_ids.extend(str(record_id) for record_id in stuck)
                continue

            for record_id in stuck:
                try:
                    won = await mark_error(db, kind, record_id, message, now=now)
                except SQLAlchemyError:
                    await db.rollback()
                    report.failures += 1
                    logger.exception(
                        "watchdog.mark_error_failed",
                        extra={"kind": kind.value, "record_id": str(record_id)},
                    )
                    continue

                if not won:
                    # Ingestion finished between the scan and the update
                    continue

                WATCHDOG_TRANSITIONS.labels(kind.value).inc()
                if kind is RecordKind.SOURCE:
                    report.sources_failed += 1
                else:
                    report.chunks_failed += 1

        span.set_attribute("sources_failed", report.sources_failed)
        span.set_attribute("chunks_failed", report.chunks_failed)
        span.set_attribute("failures", report.failures)

        logger.info(
            "watchdog.completed",
            extra={
                "sources_failed": report.sources_failed,
                "chunks_failed": report.chunks_failed,
                "failures": report.failures,
                "candidates": len(report.candidate_ids),
                "dry_run": dry_run,
            },
        )

        return report
