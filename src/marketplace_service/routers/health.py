"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from marketplace_service.core.state import get_app_state
from marketplace_service.schemas import HealthResponse
from marketplace_service.services.task_lifecycle import TASK_STATUSES

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return task statistics."""
    state = get_app_state()
    total_tasks = 0
    tasks_by_status = dict.fromkeys(sorted(TASK_STATUSES), 0)
    if state.store is not None:
        total_tasks = await run_in_threadpool(state.store.count_tasks)
        tasks_by_status.update(await run_in_threadpool(state.store.count_tasks_by_status))

    last_run_day = None
    if state.scheduler is not None and state.scheduler.last_run_day is not None:
        last_run_day = state.scheduler.last_run_day.isoformat()

    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_tasks=total_tasks,
        tasks_by_status=tasks_by_status,
        scheduler_last_run_day=last_run_day,
    )
