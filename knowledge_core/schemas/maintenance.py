"""Schemas for scheduler-invoked maintenance operations."""

from pydantic import BaseModel, Field


class WatchdogReport(BaseModel):
    """Records the ingestion watchdog moved to error, per kind."""

    sources_failed: int = 0
    chunks_failed: int = 0
    # Records that could not be marked (logged, not retried here)
    failures: int = 0
    dry_run: bool = False
    candidate_ids: list[str] = Field(default_factory=list)
