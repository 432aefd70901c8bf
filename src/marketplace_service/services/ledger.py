"""Ledger business logic - append-only platform money movements."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.payout import to_money

if TYPE_CHECKING:
    import sqlite3

    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.payout import PayoutBreakdown

ENTRY_TYPES = frozenset({"commission", "service_fee", "payout", "subscription", "featured"})

# Entry types that count as platform income in earnings rollups
INCOME_TYPES: tuple[str, ...] = ("commission", "service_fee", "subscription", "featured")

# Entry types an operator may record directly, outside of task completion
MANUAL_INCOME_TYPES = frozenset({"subscription", "featured"})

_SCHEMA = """
CREATE TABLE IF NOT EXISTS ledger_entries (
    entry_id TEXT PRIMARY KEY,
    type TEXT NOT NULL CHECK (type IN
        ('commission', 'service_fee', 'payout', 'subscription', 'featured')),
    amount TEXT NOT NULL,
    source_task_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_ledger_created_at
    ON ledger_entries (created_at, entry_id);

CREATE INDEX IF NOT EXISTS ix_ledger_source
    ON ledger_entries (source_task_id);

CREATE UNIQUE INDEX IF NOT EXISTS ux_ledger_task_settlement
    ON ledger_entries (source_task_id, type)
    WHERE type IN ('commission', 'service_fee', 'payout');

CREATE TRIGGER IF NOT EXISTS tr_ledger_no_update
    BEFORE UPDATE ON ledger_entries
BEGIN
    SELECT RAISE(ABORT, 'ledger entries are append-only');
END;

CREATE TRIGGER IF NOT EXISTS tr_ledger_no_delete
    BEFORE DELETE ON ledger_entries
BEGIN
    SELECT RAISE(ABORT, 'ledger entries are append-only');
END;
"""


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _row_to_entry(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "entry_id": row["entry_id"],
        "type": row["type"],
        "amount": Decimal(row["amount"]),
        "source_task_id": row["source_task_id"],
        "created_at": row["created_at"],
    }


class Ledger:
    """
    Append-only record of platform money movements.

    Entries are never updated or deleted; triggers in the schema reject
    both. Payout entries carry a negative amount (money leaving the
    platform). Writes join the caller's unit of work when there is one.
    """

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)
        store.executescript(_SCHEMA)

    def _new_entry_id(self) -> str:
        return f"le-{uuid.uuid4()}"

    def append(self, entry_type: str, amount: Decimal, source_task_id: str) -> dict[str, Any]:
        """
        Append a single entry.

        Raises:
            ServiceError: VALIDATION_ERROR for an unknown entry type.
        """
        if entry_type not in ENTRY_TYPES:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Unknown ledger entry type: {entry_type}",
                400,
                {"field": "type", "allowed": sorted(ENTRY_TYPES)},
            )

        entry = {
            "entry_id": self._new_entry_id(),
            "type": entry_type,
            "amount": amount,
            "source_task_id": source_task_id,
            "created_at": _now_iso(),
        }
        with self._store.unit_of_work() as db:
            db.execute(
                "INSERT INTO ledger_entries "
                "(entry_id, type, amount, source_task_id, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    entry["entry_id"],
                    entry["type"],
                    str(entry["amount"]),
                    entry["source_task_id"],
                    entry["created_at"],
                ),
            )
        return entry

    def record_settlement(self, task_id: str, breakdown: PayoutBreakdown) -> list[dict[str, Any]]:
        """
        Append the commission, service fee, and payout entries of a completed task.

        All three land in one unit of work. A second settlement for the
        same task violates the settlement index and rolls back.
        """
        with self._store.unit_of_work():
            entries = [
                self.append("commission", breakdown.commission, task_id),
                self.append("service_fee", breakdown.service_fee, task_id),
                self.append("payout", -breakdown.payout, task_id),
            ]
        self._logger.info(
            "Settlement recorded",
            extra={
                "task_id": task_id,
                "commission": str(breakdown.commission),
                "service_fee": str(breakdown.service_fee),
                "payout": str(breakdown.payout),
            },
        )
        return entries

    def record_income(self, entry_type: str, amount: object, source_id: str) -> dict[str, Any]:
        """
        Record subscription or featured-listing income.

        Raises:
            ServiceError: VALIDATION_ERROR for other types, non-positive
                amounts, or an empty source id.
        """
        if entry_type not in MANUAL_INCOME_TYPES:
            raise ServiceError(
                "VALIDATION_ERROR",
                "Only subscription and featured income can be recorded directly",
                400,
                {"field": "type", "allowed": sorted(MANUAL_INCOME_TYPES)},
            )
        value = to_money(amount, "amount")
        if value <= 0:
            raise ServiceError(
                "VALIDATION_ERROR",
                "amount must be positive",
                400,
                {"field": "amount", "value": str(value)},
            )
        if not source_id.strip():
            raise ServiceError(
                "VALIDATION_ERROR",
                "source_id must not be empty",
                400,
                {"field": "source_id"},
            )

        entry = self.append(entry_type, value, source_id)
        self._logger.info(
            "Income recorded",
            extra={"entry_id": entry["entry_id"], "type": entry_type, "amount": str(value)},
        )
        return entry

    def list_entries(
        self,
        *,
        source_task_id: str | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        List entries in creation order.

        ``since`` is inclusive and ``until`` exclusive, both UTC ISO strings
        in the ledger's own timestamp format.
        """
        query = "SELECT entry_id, type, amount, source_task_id, created_at FROM ledger_entries"
        clauses: list[str] = []
        params: list[object] = []

        if source_task_id is not None:
            clauses.append("source_task_id = ?")
            params.append(source_task_id)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since)
        if until is not None:
            clauses.append("created_at < ?")
            params.append(until)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at, entry_id"

        return [_row_to_entry(row) for row in self._store.query(query, params)]

    def totals_for_task(self, task_id: str) -> dict[str, Decimal]:
        """Sum entries of a task per entry type."""
        totals: dict[str, Decimal] = {}
        for entry in self.list_entries(source_task_id=task_id):
            totals[entry["type"]] = totals.get(entry["type"], Decimal("0")) + entry["amount"]
        return totals
