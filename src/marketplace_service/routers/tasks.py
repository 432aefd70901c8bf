"""Task creation, editing, lifecycle, and query endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Query, Request
from starlette.concurrency import run_in_threadpool

from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    extract_field,
    extract_string,
    parse_int_param,
    parse_json_body,
    require_actor,
)
from marketplace_service.schemas import TaskResponse

router = APIRouter()

MAX_PAGE_SIZE = 200


# ---------------------------------------------------------------------------
# POST /tasks - create task
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201, response_model=TaskResponse)
async def create_task(
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Post a new task."""
    actor_id = require_actor(x_actor_id)
    data = parse_json_body(await request.body())

    lifecycle = get_app_state().require_lifecycle()
    return await run_in_threadpool(lifecycle.create_task, actor_id, data)


# ---------------------------------------------------------------------------
# GET /tasks - list tasks
# ---------------------------------------------------------------------------


@router.get("/tasks", response_model=list[TaskResponse])
async def list_tasks(
    status: str | None = Query(None),
    client_id: str | None = Query(None),
    tasker_id: str | None = Query(None),
    limit: str | None = Query(None),
    offset: str | None = Query(None),
) -> list[dict[str, Any]]:
    """List tasks with optional status, client, and tasker filters."""
    limit_int = parse_int_param(limit, "limit", default=50, minimum=1, maximum=MAX_PAGE_SIZE)
    offset_int = parse_int_param(offset, "offset", default=0, minimum=0)

    lifecycle = get_app_state().require_lifecycle()
    return await run_in_threadpool(
        lifecycle.list_tasks, status, client_id, tasker_id, limit_int, offset_int
    )


# ---------------------------------------------------------------------------
# GET /tasks/{task_id} - task detail
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str) -> dict[str, Any]:
    """Get a single task."""
    lifecycle = get_app_state().require_lifecycle()
    return await run_in_threadpool(lifecycle.get_task, task_id)


# ---------------------------------------------------------------------------
# PATCH /tasks/{task_id} - edit a posted task
# ---------------------------------------------------------------------------


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
async def edit_task(
    task_id: str,
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Edit a task that is still open for offers."""
    actor_id = require_actor(x_actor_id)
    data = parse_json_body(await request.body())

    lifecycle = get_app_state().require_lifecycle()
    return await run_in_threadpool(lifecycle.edit_task, task_id, actor_id, data)


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/start - assigned tasker begins work
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/start", response_model=TaskResponse)
async def start_task(
    task_id: str,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Mark an assigned task as in progress."""
    actor_id = require_actor(x_actor_id)

    lifecycle = get_app_state().require_lifecycle()
    return await run_in_threadpool(lifecycle.mark_in_progress, task_id, actor_id)


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/complete - client completes with a review
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/complete", response_model=TaskResponse)
async def complete_task(
    task_id: str,
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Complete a task, settle its payment, and rate the tasker."""
    actor_id = require_actor(x_actor_id)
    data = parse_json_body(await request.body())
    rating = extract_field(data, "rating")
    comment = extract_string(data, "comment", required=False)

    lifecycle = get_app_state().require_lifecycle()
    return await run_in_threadpool(
        lifecycle.complete_with_review, task_id, rating, comment, actor_id
    )


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/cancel - client cancels
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/cancel", response_model=TaskResponse)
async def cancel_task(
    task_id: str,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Cancel a task and every live offer on it."""
    actor_id = require_actor(x_actor_id)

    lifecycle = get_app_state().require_lifecycle()
    return await run_in_threadpool(lifecycle.cancel_task, task_id, actor_id)
