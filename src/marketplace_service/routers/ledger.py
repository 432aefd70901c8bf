"""Ledger listing and manual income endpoints (admin only)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Query, Request
from starlette.concurrency import run_in_threadpool

from marketplace_service.config import get_settings
from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    extract_field,
    extract_string,
    parse_json_body,
    require_admin,
)
from marketplace_service.schemas import LedgerEntryResponse
from marketplace_service.services.responses import entry_to_response

router = APIRouter()


@router.get("/ledger", response_model=list[LedgerEntryResponse])
async def list_entries(
    source_task_id: str | None = Query(None),
    since: str | None = Query(None),
    until: str | None = Query(None),
    x_actor_id: str | None = Header(default=None),
) -> list[dict[str, Any]]:
    """List ledger entries in creation order."""
    require_admin(x_actor_id, get_settings().platform.admin_id)

    ledger = get_app_state().require_ledger()
    entries = await run_in_threadpool(
        lambda: ledger.list_entries(source_task_id=source_task_id, since=since, until=until)
    )
    return [entry_to_response(entry) for entry in entries]


@router.post("/ledger/income", status_code=201, response_model=LedgerEntryResponse)
async def record_income(
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Record subscription or featured-listing income."""
    require_admin(x_actor_id, get_settings().platform.admin_id)
    data = parse_json_body(await request.body())
    entry_type = extract_string(data, "type")
    amount = extract_field(data, "amount")
    source_id = extract_string(data, "source_id")

    ledger = get_app_state().require_ledger()
    entry = await run_in_threadpool(ledger.record_income, entry_type, amount, source_id)
    return entry_to_response(entry)
