"""Admin control of the URL refresh scheduler."""

from __future__ import annotations

from fastapi import APIRouter

from portfolio.api.deps import AdminUser, Scheduler
from portfolio.schemas.scheduler import RunResult, SchedulerStatus

router = APIRouter(prefix="/admin/scheduler", tags=["admin"], dependencies=[AdminUser])


@router.get("", response_model=SchedulerStatus, summary="Scheduler state and last run")
async def scheduler_status(scheduler: Scheduler) -> SchedulerStatus:
    return scheduler.status()


@router.post("/run", response_model=RunResult, summary="Run a refresh pass now")
async def run_scheduler(scheduler: Scheduler) -> RunResult:
    """Waits for any pass already in progress, then runs a full one."""
    return await scheduler.run_now()
