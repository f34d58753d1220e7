"""URL refresh and scheduler status schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from portfolio.schemas.upload import CleanupReport


class RefreshItemResult(BaseModel):
    upload_id: str
    resource_name: str
    ok: bool
    error: str | None = None
    expires_at: datetime | None = None


class RefreshReport(BaseModel):
    """Outcome of one refresh pass; items succeed or fail independently."""

    scanned: int = 0
    refreshed: int = 0
    failed: int = 0
    items: list[RefreshItemResult] = Field(default_factory=list)

    def record(self, item: RefreshItemResult) -> None:
        self.items.append(item)
        if item.ok:
            self.refreshed += 1
        else:
            self.failed += 1


class RunResult(BaseModel):
    started_at: datetime
    finished_at: datetime
    expiring: RefreshReport
    expired: RefreshReport | None = None
    cleanup: CleanupReport | None = None
    error: str | None = None


class SchedulerStatus(BaseModel):
    enabled: bool
    running: bool
    run_in_progress: bool
    interval_seconds: int
    next_run_at: datetime | None
    last_run_at: datetime | None
    last_result: RunResult | None
