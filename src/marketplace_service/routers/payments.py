"""Payment lookup and dispute-status endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Request
from starlette.concurrency import run_in_threadpool

from marketplace_service.config import get_settings
from marketplace_service.core.exceptions import ServiceError
from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    extract_string,
    parse_json_body,
    require_actor,
    require_admin,
)
from marketplace_service.schemas import PaymentResponse

router = APIRouter()


@router.get("/payments/{task_id}", response_model=PaymentResponse)
async def get_payment(
    task_id: str,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Get a task's payment. Visible to its client, its tasker, and the admin."""
    actor_id = require_actor(x_actor_id)

    lifecycle = get_app_state().require_lifecycle()
    payment = await run_in_threadpool(lifecycle.get_payment, task_id)

    allowed = {payment["client_id"], payment["tasker_id"], get_settings().platform.admin_id}
    if actor_id not in allowed:
        raise ServiceError(
            "NOT_AUTHORIZED",
            "Only the task's parties can view its payment",
            403,
            {"task_id": task_id, "actor_id": actor_id},
        )
    return payment


@router.post("/payments/{task_id}/status", response_model=PaymentResponse)
async def transition_payment(
    task_id: str,
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Move a payment to disputed, released, or refunded (admin only)."""
    require_admin(x_actor_id, get_settings().platform.admin_id)
    data = parse_json_body(await request.body())
    new_status = extract_string(data, "status")

    lifecycle = get_app_state().require_lifecycle()
    return await run_in_threadpool(lifecycle.transition_payment, task_id, new_status)
