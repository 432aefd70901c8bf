"""Earnings summary and manual rollup endpoints (admin only)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Query, Request
from starlette.concurrency import run_in_threadpool

from marketplace_service.config import get_settings
from marketplace_service.core.exceptions import ServiceError
from marketplace_service.core.state import get_app_state
from marketplace_service.routers.validation import (
    extract_field,
    extract_string,
    parse_int_param,
    parse_json_body,
    require_admin,
)
from marketplace_service.schemas import EarningsSummaryResponse
from marketplace_service.services.earnings_rollup import parse_day, summary_to_response

router = APIRouter()


def _extract_int(data: dict[str, Any], field_name: str) -> int:
    value = extract_field(data, field_name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ServiceError(
            "VALIDATION_ERROR",
            f"Field '{field_name}' must be an integer",
            400,
            {"field": field_name},
        )
    return value


@router.get("/earnings", response_model=list[EarningsSummaryResponse])
async def list_summaries(
    type: str | None = Query(None),  # noqa: A002
    limit: str | None = Query(None),
    x_actor_id: str | None = Header(default=None),
) -> list[dict[str, Any]]:
    """List earnings summaries, most recent period first."""
    require_admin(x_actor_id, get_settings().platform.admin_id)
    limit_int = parse_int_param(limit, "limit", default=None, minimum=1, maximum=366)

    earnings = get_app_state().require_earnings()
    summaries = await run_in_threadpool(earnings.list_summaries, type, limit_int)
    return [summary_to_response(summary) for summary in summaries]


@router.get("/earnings/{summary_id}", response_model=EarningsSummaryResponse)
async def get_summary(
    summary_id: str,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Get one earnings summary, e.g. ``daily_2026-01-31`` or ``monthly_2026-01``."""
    require_admin(x_actor_id, get_settings().platform.admin_id)

    earnings = get_app_state().require_earnings()
    summary = await run_in_threadpool(earnings.get_summary, summary_id)
    return summary_to_response(summary)


@router.post("/earnings/rollup/daily", response_model=EarningsSummaryResponse)
async def rollup_daily(
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Run the daily rollup for a given local date."""
    require_admin(x_actor_id, get_settings().platform.admin_id)
    data = parse_json_body(await request.body())
    day = parse_day(extract_string(data, "date"))

    earnings = get_app_state().require_earnings()
    summary = await run_in_threadpool(earnings.rollup_daily, day)
    return summary_to_response(summary)


@router.post("/earnings/rollup/monthly", response_model=EarningsSummaryResponse)
async def rollup_monthly(
    request: Request,
    x_actor_id: str | None = Header(default=None),
) -> dict[str, Any]:
    """Run the monthly rollup for a given year and month."""
    require_admin(x_actor_id, get_settings().platform.admin_id)
    data = parse_json_body(await request.body())
    year = _extract_int(data, "year")
    month = _extract_int(data, "month")

    earnings = get_app_state().require_earnings()
    summary = await run_in_threadpool(earnings.rollup_monthly, year, month)
    return summary_to_response(summary)
