"""Daily and monthly platform earnings summaries, and the timer that produces them."""

from __future__ import annotations

import asyncio
import calendar
import contextlib
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from starlette.concurrency import run_in_threadpool

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.responses import money

if TYPE_CHECKING:
    import sqlite3
    from collections.abc import Callable

    from marketplace_service.services.ledger import Ledger
    from marketplace_service.services.marketplace_store import MarketplaceStore

SUMMARY_TYPES = frozenset({"daily", "monthly"})

# Ledger entry type -> summary bucket; payouts are not income
_BUCKETS: dict[str, str] = {
    "commission": "commission_income",
    "service_fee": "service_fee_income",
    "subscription": "subscription_income",
    "featured": "featured_income",
}
_BUCKET_COLUMNS: tuple[str, ...] = (
    "commission_income",
    "service_fee_income",
    "subscription_income",
    "featured_income",
    "total_income",
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS earnings_summary (
    summary_id TEXT PRIMARY KEY,
    period TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('daily', 'monthly')),
    commission_income TEXT NOT NULL,
    service_fee_income TEXT NOT NULL,
    subscription_income TEXT NOT NULL,
    featured_income TEXT NOT NULL,
    total_income TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_earnings_type_period
    ON earnings_summary (type, period);
"""


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _utc_iso(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _zero_buckets() -> dict[str, Decimal]:
    return {column: Decimal("0.00") for column in _BUCKET_COLUMNS}


def _row_to_summary(row: sqlite3.Row) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "summary_id": row["summary_id"],
        "period": row["period"],
        "type": row["type"],
        "updated_at": row["updated_at"],
    }
    for column in _BUCKET_COLUMNS:
        summary[column] = Decimal(row[column])
    return summary


def summary_to_response(summary: dict[str, Any]) -> dict[str, Any]:
    """Convert a summary to its API representation."""
    response = dict(summary)
    for column in _BUCKET_COLUMNS:
        response[column] = money(summary[column])
    return response


def parse_day(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string or raise VALIDATION_ERROR."""
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ServiceError(
            "VALIDATION_ERROR",
            "date must be formatted as YYYY-MM-DD",
            400,
            {"field": "date", "value": value},
        ) from exc


class EarningsRollup:
    """
    Summarizes platform income from the ledger.

    Daily summaries cover one local calendar day of the configured time
    zone; monthly summaries add up the daily summaries of the month. Both
    upserts merge into any existing row and leave it untouched when no
    bucket changed, so re-running a rollup is a no-op.
    """

    def __init__(self, store: MarketplaceStore, ledger: Ledger, timezone: str) -> None:
        self._store = store
        self._ledger = ledger
        self._tz = ZoneInfo(timezone)
        self._logger = get_logger(__name__)
        store.executescript(_SCHEMA)

    @property
    def timezone(self) -> ZoneInfo:
        """Time zone that defines period boundaries."""
        return self._tz

    def day_bounds(self, day: date) -> tuple[str, str]:
        """Return the UTC ``[start, end)`` of a local calendar day."""
        try:
            start = datetime.combine(day, time.min, tzinfo=self._tz)
            end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self._tz)
            return _utc_iso(start), _utc_iso(end)
        except OverflowError as exc:
            raise ServiceError(
                "VALIDATION_ERROR",
                "date is outside the supported range",
                400,
                {"field": "date", "value": day.isoformat()},
            ) from exc

    def _upsert(
        self,
        summary_id: str,
        period: str,
        summary_type: str,
        buckets: dict[str, Decimal],
    ) -> dict[str, Any]:
        with self._store.unit_of_work() as db:
            row = db.execute(
                "SELECT * FROM earnings_summary WHERE summary_id = ?",
                (summary_id,),
            ).fetchone()

            if row is not None:
                existing = _row_to_summary(row)
                if all(existing[column] == buckets[column] for column in _BUCKET_COLUMNS):
                    return existing

            updated_at = _now_iso()
            db.execute(
                "INSERT INTO earnings_summary (summary_id, period, type, commission_income, "
                "service_fee_income, subscription_income, featured_income, total_income, "
                "updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (summary_id) DO UPDATE SET "
                "commission_income = excluded.commission_income, "
                "service_fee_income = excluded.service_fee_income, "
                "subscription_income = excluded.subscription_income, "
                "featured_income = excluded.featured_income, "
                "total_income = excluded.total_income, "
                "updated_at = excluded.updated_at",
                (
                    summary_id,
                    period,
                    summary_type,
                    *(str(buckets[column]) for column in _BUCKET_COLUMNS),
                    updated_at,
                ),
            )

        self._logger.info(
            "Earnings summary written",
            extra={"summary_id": summary_id, "total_income": str(buckets["total_income"])},
        )
        return {
            "summary_id": summary_id,
            "period": period,
            "type": summary_type,
            **buckets,
            "updated_at": updated_at,
        }

    def rollup_daily(self, day: date) -> dict[str, Any]:
        """Summarize the income ledger entries of one local day."""
        since, until = self.day_bounds(day)
        buckets = _zero_buckets()
        for entry in self._ledger.list_entries(since=since, until=until):
            bucket = _BUCKETS.get(entry["type"])
            if bucket is not None:
                buckets[bucket] += entry["amount"]
        buckets["total_income"] = sum(
            (buckets[column] for column in _BUCKETS.values()), Decimal("0.00")
        )

        period = day.isoformat()
        return self._upsert(f"daily_{period}", period, "daily", buckets)

    def rollup_monthly(self, year: int, month: int) -> dict[str, Any]:
        """Summarize the daily summaries of one month."""
        if not 1 <= month <= 12:
            raise ServiceError(
                "VALIDATION_ERROR",
                "month must be between 1 and 12",
                400,
                {"field": "month", "value": month},
            )
        if not 1 <= year <= 9999:
            raise ServiceError(
                "VALIDATION_ERROR",
                "year must be between 1 and 9999",
                400,
                {"field": "year", "value": year},
            )

        last_day = calendar.monthrange(year, month)[1]
        first = date(year, month, 1).isoformat()
        last = date(year, month, last_day).isoformat()

        buckets = _zero_buckets()
        rows = self._store.query(
            "SELECT * FROM earnings_summary WHERE type = 'daily' AND period BETWEEN ? AND ?",
            (first, last),
        )
        for row in rows:
            daily = _row_to_summary(row)
            for column in _BUCKET_COLUMNS:
                buckets[column] += daily[column]

        period = f"{year:04d}-{month:02d}"
        return self._upsert(f"monthly_{period}", period, "monthly", buckets)

    def get_summary(self, summary_id: str) -> dict[str, Any]:
        """Get one summary by id."""
        row = self._store.query_one(
            "SELECT * FROM earnings_summary WHERE summary_id = ?",
            (summary_id,),
        )
        if row is None:
            raise ServiceError(
                "SUMMARY_NOT_FOUND",
                "Earnings summary not found",
                404,
                {"summary_id": summary_id},
            )
        return _row_to_summary(row)

    def list_summaries(
        self,
        summary_type: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List summaries, most recent period first."""
        query = "SELECT * FROM earnings_summary"
        params: list[object] = []
        if summary_type is not None:
            if summary_type not in SUMMARY_TYPES:
                raise ServiceError(
                    "VALIDATION_ERROR",
                    f"Unknown summary type: {summary_type}",
                    400,
                    {"field": "type", "allowed": sorted(SUMMARY_TYPES)},
                )
            query += " WHERE type = ?"
            params.append(summary_type)
        query += " ORDER BY period DESC, summary_id"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        return [_row_to_summary(row) for row in self._store.query(query, params)]


class EarningsRollupScheduler:
    """
    Background loop that keeps earnings summaries current.

    Once per local day it rolls up the previous day; on the first of a
    month it then rolls up the previous month. Each job has its own lock
    and a job that is still running causes the overlapping run to be
    skipped rather than queued.
    """

    def __init__(
        self,
        rollup: EarningsRollup,
        tick_seconds: float,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._rollup = rollup
        self._tick_seconds = tick_seconds
        self._clock = clock if clock is not None else (lambda: datetime.now(UTC))
        self._daily_lock = asyncio.Lock()
        self._monthly_lock = asyncio.Lock()
        self._last_run_day: date | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._logger = get_logger(__name__)

    @property
    def last_run_day(self) -> date | None:
        """Local day on which the scheduled jobs last completed."""
        return self._last_run_day

    def start(self) -> None:
        """Start the loop on the running event loop."""
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self.run(), name="earnings-rollup-scheduler")
        self._logger.info("Earnings scheduler started", extra={"tick_seconds": self._tick_seconds})

    async def stop(self) -> None:
        """Stop the loop and wait for it to exit."""
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        self._logger.info("Earnings scheduler stopped")

    async def run(self) -> None:
        """Tick until stopped."""
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.exception("Earnings scheduler tick failed")
            await asyncio.sleep(self._tick_seconds)

    async def tick(self) -> None:
        """Run the jobs due at the current local time."""
        today = self._clock().astimezone(self._rollup.timezone).date()
        if self._last_run_day == today:
            return

        yesterday = today - timedelta(days=1)
        if not await self.run_daily(yesterday):
            return
        if today.day == 1 and not await self.run_monthly(yesterday.year, yesterday.month):
            return
        self._last_run_day = today

    async def run_daily(self, day: date) -> bool:
        """Run the daily rollup unless one is already running."""
        if self._daily_lock.locked():
            self._logger.warning(
                "Daily rollup still running, skipping",
                extra={"day": day.isoformat()},
            )
            return False
        async with self._daily_lock:
            await run_in_threadpool(self._rollup.rollup_daily, day)
        self._logger.info("Daily rollup finished", extra={"day": day.isoformat()})
        return True

    async def run_monthly(self, year: int, month: int) -> bool:
        """Run the monthly rollup unless one is already running."""
        if self._monthly_lock.locked():
            self._logger.warning(
                "Monthly rollup still running, skipping",
                extra={"year": year, "month": month},
            )
            return False
        async with self._monthly_lock:
            await run_in_threadpool(self._rollup.rollup_monthly, year, month)
        self._logger.info("Monthly rollup finished", extra={"year": year, "month": month})
        return True
