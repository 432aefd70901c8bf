"""Tasker rating endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from marketplace_service.core.state import get_app_state
from marketplace_service.schemas import TaskerRatingResponse

router = APIRouter()


@router.get("/taskers/{tasker_id}/rating", response_model=TaskerRatingResponse)
async def get_tasker_rating(tasker_id: str) -> dict[str, Any]:
    """Return a tasker's rating aggregate and completion stats."""
    lifecycle = get_app_state().require_lifecycle()
    return await run_in_threadpool(lifecycle.get_tasker_profile, tasker_id)
