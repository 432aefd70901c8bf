"""Row-to-response conversion shared by the command services."""

from __future__ import annotations

from decimal import Decimal
from typing import Any


def money(value: Decimal | None) -> float | None:
    """Render a stored money amount for JSON."""
    if value is None:
        return None
    return float(value)


def task_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert a task row to its API representation."""
    return {
        "task_id": row["task_id"],
        "title": row["title"],
        "description": row["description"],
        "category": row["category"],
        "price": money(row["price"]),
        "location": row["location"],
        "schedule_date": row["schedule_date"],
        "client_id": row["client_id"],
        "tasker_id": row["tasker_id"],
        "accepted_offer_id": row["accepted_offer_id"],
        "status": row["status"],
        "service_fee": money(row["service_fee"]),
        "payment_method": row["payment_method"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "completed_at": row["completed_at"],
        "cancelled_at": row["cancelled_at"],
    }


def offer_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert an offer row to its API representation."""
    return {
        "offer_id": row["offer_id"],
        "task_id": row["task_id"],
        "tasker_id": row["tasker_id"],
        "client_id": row["client_id"],
        "amount": money(row["amount"]),
        "message": row["message"],
        "status": row["status"],
        "date_created": row["date_created"],
        "date_updated": row["date_updated"],
    }


def payment_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert a payment row to its API representation."""
    return {
        "payment_id": row["payment_id"],
        "task_id": row["task_id"],
        "client_id": row["client_id"],
        "tasker_id": row["tasker_id"],
        "amount": money(row["amount"]),
        "escrow_held": bool(row["escrow_held"]),
        "status": row["status"],
        "method": row["method"],
        "created_at": row["created_at"],
        "released_at": row["released_at"],
    }


def entry_to_response(entry: dict[str, Any]) -> dict[str, Any]:
    """Convert a ledger entry to its API representation."""
    return {
        "entry_id": entry["entry_id"],
        "type": entry["type"],
        "amount": money(entry["amount"]),
        "source_task_id": entry["source_task_id"],
        "created_at": entry["created_at"],
    }
