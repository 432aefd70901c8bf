"""Offer submission, resolution, and listing endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Query, Request
from starlette.concurrency import run_in_threadpool

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    extract_field,
    extract_string,
    parse_json_body,
    require_actor,
)
from marketplace_service.schemas import AcceptOfferResponse, CancelOffersResponse, OfferResponse

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/offers - submit offer
# MUST be before GET /tasks/{task_id}/offers
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/offers", status_code=201, response_model=OfferResponse)
async def submit_offer(
    task_id: str,
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Submit an offer on a posted task."""
    actor_id = require_actor(x_actor_id)
    data = parse_json_body(await request.body())
    amount = extract_field(data, "amount")
    message = extract_string(data, "message", required=False)

    engine = get_app_state().require_offers()
    return await run_in_threadpool(engine.add_offer, task_id, actor_id, amount, message)


# ---------------------------------------------------------------------------
# GET /tasks/{task_id}/offers - list offers for task
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}/offers", response_model=list[OfferResponse])
async def list_offers_for_task(task_id: str) -> list[dict[str, Any]]:
    """List every offer on a task."""
    engine = get_app_state().require_offers()
    return await run_in_threadpool(engine.list_offers_for_task, task_id)


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/offers/cancel - cancel all live offers
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/offers/cancel", response_model=CancelOffersResponse)
async def cancel_offers(
    task_id: str,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Cancel every pending or accepted offer on a task."""
    actor_id = require_actor(x_actor_id)

    engine = get_app_state().require_offers()
    cancelled = await run_in_threadpool(engine.cancel_offers_for_task, task_id, actor_id)
    return {"task_id": task_id, "cancelled": cancelled}


# ---------------------------------------------------------------------------
# POST /tasks/{task_id}/offers/{offer_id}/accept - accept offer
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/offers/{offer_id}/accept", response_model=AcceptOfferResponse)
async def accept_offer(
    task_id: str,
    offer_id: str,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Accept an offer and assign its tasker."""
    actor_id = require_actor(x_actor_id)

    engine = get_app_state().require_offers()
    return await run_in_threadpool(engine.accept_offer, offer_id, task_id, actor_id)


# ---------------------------------------------------------------------------
# GET /offers?tasker_id= - offers made by a tasker
# ---------------------------------------------------------------------------


@router.get("/offers", response_model=list[OfferResponse])
async def list_offers_by_tasker(tasker_id: str | None = Query(None)) -> list[dict[str, Any]]:
    """List the offers a tasker has made."""
    if tasker_id is None or not tasker_id:
        raise ServiceError(
            "VALIDATION_ERROR",
            "tasker_id query parameter is required",
            400,
            {"field": "tasker_id"},
        )

    engine = get_app_state().require_offers()
    return await run_in_threadpool(engine.list_offers_by_tasker, tasker_id)


# ---------------------------------------------------------------------------
# GET /offers/{offer_id} - offer detail
# ---------------------------------------------------------------------------


@router.get("/offers/{offer_id}", response_model=OfferResponse)
async def get_offer(offer_id: str) -> dict[str, Any]:
    """Get a single offer."""
    engine = get_app_state().require_offers()
    return await run_in_threadpool(engine.get_offer, offer_id)


# ---------------------------------------------------------------------------
# POST /offers/{offer_id}/reject and /withdraw
# ---------------------------------------------------------------------------


@router.post("/offers/{offer_id}/reject", response_model=OfferResponse)
async def reject_offer(
    offer_id: str,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Reject a pending offer (task client only)."""
    actor_id = require_actor(x_actor_id)

    engine = get_app_state().require_offers()
    return await run_in_threadpool(engine.reject_offer, offer_id, actor_id)


@router.post("/offers/{offer_id}/withdraw", response_model=OfferResponse)
async def withdraw_offer(
    offer_id: str,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Withdraw a pending offer (offering tasker only)."""
    actor_id = require_actor(x_actor_id)

    engine = get_app_state().require_offers()
    return await run_in_threadpool(engine.withdraw_offer, offer_id, actor_id)
