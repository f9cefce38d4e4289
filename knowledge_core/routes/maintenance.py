"""Scheduler-invoked maintenance: cache eviction and the ingestion watchdog."""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.access import require_maintenance_token
from ..database import get_db
from ..schemas.maintenance import WatchdogReport
from ..services.cache_janitor import cleanup_expired_caches
from ..services.watchdog import fail_stuck_records

router = APIRouter(
    prefix="/internal",
    tags=["maintenance"],
    dependencies=[Depends(require_maintenance_token)],
)


@router.post("/caches/cleanup", status_code=204)
async def cleanup_caches(db: AsyncSession = Depends(get_db)) -> Response:
    await cleanup_expired_caches(db)
    return Response(status_code=204)


@router.post("/ingestion/watchdog", response_model=WatchdogReport)
async def run_watchdog(
    dry_run: bool = False,
    db: AsyncSession = Depends(get_db),
) -> WatchdogReport:
    return await fail_stuck_records(db, dry_run=dry_run)
