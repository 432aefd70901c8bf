"""SQLite-backed storage for tasks, offers, payments, reviews, and tasker stats."""

from __future__ import annotations

import contextlib
import sqlite3
from decimal import Decimal
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class DuplicateOfferError(Exception):
    """Raised when a tasker already holds a live offer on the task."""


class DuplicatePaymentError(Exception):
    """Raised when a payment already exists for the task."""


class DuplicateReviewError(Exception):
    """Raised when a review already exists for the task."""


_MONEY_COLUMNS = frozenset({"price", "service_fee", "amount", "total_earnings"})


def _decode(row: sqlite3.Row, columns: Iterable[str]) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for column in columns:
        value = row[column]
        if column in _MONEY_COLUMNS and value is not None:
            value = Decimal(value)
        record[column] = value
    return record


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


class MarketplaceStore:
    """
    SQLite-backed store shared by every marketplace component.

    A single connection is guarded by an RLock. ``unit_of_work()`` wraps a
    group of writes in one ``BEGIN IMMEDIATE`` transaction; writes issued
    outside a unit of work get their own. Separate store instances on the
    same file serialize through SQLite's write lock.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "title",
        "description",
        "category",
        "price",
        "location",
        "schedule_date",
        "client_id",
        "tasker_id",
        "accepted_offer_id",
        "status",
        "service_fee",
        "payment_method",
        "created_at",
        "updated_at",
        "completed_at",
        "cancelled_at",
    )
    _OFFER_COLUMNS: tuple[str, ...] = (
        "offer_id",
        "task_id",
        "tasker_id",
        "client_id",
        "amount",
        "message",
        "status",
        "date_created",
        "date_updated",
    )
    _PAYMENT_COLUMNS: tuple[str, ...] = (
        "payment_id",
        "task_id",
        "client_id",
        "tasker_id",
        "amount",
        "escrow_held",
        "status",
        "method",
        "created_at",
        "released_at",
    )
    _REVIEW_COLUMNS: tuple[str, ...] = (
        "review_id",
        "task_id",
        "reviewer_id",
        "reviewed_id",
        "rating",
        "comment",
        "created_at",
    )

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False, timeout=5.0)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        self.executescript(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                task_id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                category TEXT NOT NULL,
                price TEXT NOT NULL,
                location TEXT NOT NULL,
                schedule_date TEXT,
                client_id TEXT NOT NULL,
                tasker_id TEXT,
                accepted_offer_id TEXT,
                status TEXT NOT NULL DEFAULT 'posted',
                service_fee TEXT NOT NULL,
                payment_method TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT,
                cancelled_at TEXT,
                CHECK ((tasker_id IS NOT NULL) =
                       (status IN ('assigned', 'in_progress', 'completed')))
            );

            CREATE INDEX IF NOT EXISTS ix_tasks_client ON tasks (client_id);
            CREATE INDEX IF NOT EXISTS ix_tasks_tasker ON tasks (tasker_id);

            CREATE TABLE IF NOT EXISTS offers (
                offer_id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL REFERENCES tasks(task_id),
                tasker_id TEXT NOT NULL,
                client_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                message TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                date_created TEXT NOT NULL,
                date_updated TEXT
            );

            CREATE UNIQUE INDEX IF NOT EXISTS ux_offers_live_per_tasker
                ON offers (task_id, tasker_id)
                WHERE status IN ('pending', 'accepted');

            CREATE UNIQUE INDEX IF NOT EXISTS ux_offers_single_accepted
                ON offers (task_id)
                WHERE status = 'accepted';

            CREATE INDEX IF NOT EXISTS ix_offers_tasker ON offers (tasker_id);

            CREATE TABLE IF NOT EXISTS payments (
                payment_id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL UNIQUE REFERENCES tasks(task_id),
                client_id TEXT NOT NULL,
                tasker_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                escrow_held INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                method TEXT NOT NULL,
                created_at TEXT NOT NULL,
                released_at TEXT
            );

            CREATE TABLE IF NOT EXISTS reviews (
                review_id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL UNIQUE REFERENCES tasks(task_id),
                reviewer_id TEXT NOT NULL,
                reviewed_id TEXT NOT NULL,
                rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                comment TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tasker_stats (
                tasker_id TEXT PRIMARY KEY,
                completed_tasks INTEGER NOT NULL DEFAULT 0,
                total_earnings TEXT NOT NULL DEFAULT '0.00'
            );
            """
        )

    # ------------------------------------------------------------------
    # Transaction primitives
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def unit_of_work(self) -> Iterator[sqlite3.Connection]:
        """
        Run the enclosed writes as one atomic transaction.

        Commits when the block exits normally and rolls back on any
        exception. A unit of work opened inside another joins it.
        """
        with self._lock:
            if self._db.in_transaction:
                yield self._db
                return

            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield self._db
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.commit()

    def executescript(self, script: str) -> None:
        """Run a DDL script (schema creation) and commit."""
        with self._lock:
            self._db.executescript(script)
            self._db.commit()

    def query(self, sql: str, params: Iterable[object] = ()) -> list[sqlite3.Row]:
        """Run a read query and return all rows."""
        with self._lock:
            return self._db.execute(sql, tuple(params)).fetchall()

    def query_one(self, sql: str, params: Iterable[object] = ()) -> sqlite3.Row | None:
        """Run a read query and return the first row, if any."""
        with self._lock:
            return self._db.execute(sql, tuple(params)).fetchone()

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(_encode(task_data[column]) for column in self._TASK_COLUMNS)
        placeholders = ", ".join("?" for _ in self._TASK_COLUMNS)
        columns = ", ".join(self._TASK_COLUMNS)
        sql = f"INSERT INTO tasks ({columns}) VALUES ({placeholders})"  # nosec B608

        try:
            with self.unit_of_work() as db:
                db.execute(sql, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateTaskError(
                    f"A task with task_id={task_data['task_id']} already exists"
                ) from exc
            raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        row = self.query_one(
            f"SELECT {', '.join(self._TASK_COLUMNS)} FROM tasks WHERE task_id = ?",  # nosec B608
            (task_id,),
        )
        if row is None:
            return None
        return _decode(row, self._TASK_COLUMNS)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update task columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [_encode(value) for value in updates.values()]

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self.unit_of_work() as db:
            cursor = db.execute(query, params)
        return int(cursor.rowcount)

    def list_tasks(
        self,
        status: str | None,
        client_id: str | None,
        tasker_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional filters, newest first."""
        query = f"SELECT {', '.join(self._TASK_COLUMNS)} FROM tasks"  # nosec B608
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if client_id is not None:
            clauses.append("client_id = ?")
            params.append(client_id)
        if tasker_id is not None:
            clauses.append("tasker_id = ?")
            params.append(tasker_id)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC, task_id"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                params.append(offset)

        return [_decode(row, self._TASK_COLUMNS) for row in self.query(query, params)]

    def count_tasks(self) -> int:
        """Count total tasks."""
        row = self.query_one("SELECT COUNT(*) FROM tasks")
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        rows = self.query("SELECT status, COUNT(*) FROM tasks GROUP BY status")
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    def insert_offer(self, offer_data: dict[str, Any]) -> None:
        """Insert an offer row."""
        values = tuple(_encode(offer_data[column]) for column in self._OFFER_COLUMNS)
        placeholders = ", ".join("?" for _ in self._OFFER_COLUMNS)
        columns = ", ".join(self._OFFER_COLUMNS)
        sql = f"INSERT INTO offers ({columns}) VALUES ({placeholders})"  # nosec B608

        try:
            with self.unit_of_work() as db:
                db.execute(sql, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateOfferError(
                    "This tasker already has a live offer on this task"
                ) from exc
            raise

    def get_offer(self, offer_id: str) -> dict[str, Any] | None:
        """Fetch an offer by ID."""
        row = self.query_one(
            f"SELECT {', '.join(self._OFFER_COLUMNS)} FROM offers WHERE offer_id = ?",  # nosec B608
            (offer_id,),
        )
        if row is None:
            return None
        return _decode(row, self._OFFER_COLUMNS)

    def list_offers(
        self,
        *,
        task_id: str | None = None,
        tasker_id: str | None = None,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """List offers filtered by task, tasker, or status, oldest first."""
        query = f"SELECT {', '.join(self._OFFER_COLUMNS)} FROM offers"  # nosec B608
        clauses: list[str] = []
        params: list[object] = []

        if task_id is not None:
            clauses.append("task_id = ?")
            params.append(task_id)
        if tasker_id is not None:
            clauses.append("tasker_id = ?")
            params.append(tasker_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY date_created, offer_id"

        return [_decode(row, self._OFFER_COLUMNS) for row in self.query(query, params)]

    def update_offer_status(
        self,
        offer_id: str,
        new_status: str,
        *,
        expected_status: str,
        updated_at: str,
    ) -> int:
        """Move one offer to a new status if it is still in expected_status."""
        with self.unit_of_work() as db:
            cursor = db.execute(
                "UPDATE offers SET status = ?, date_updated = ? WHERE offer_id = ? AND status = ?",
                (new_status, updated_at, offer_id, expected_status),
            )
        return int(cursor.rowcount)

    def update_offers_for_task(
        self,
        task_id: str,
        from_statuses: tuple[str, ...],
        new_status: str,
        *,
        updated_at: str,
        exclude_offer_id: str | None = None,
    ) -> int:
        """Move every offer of a task in one of from_statuses to new_status."""
        placeholders = ", ".join("?" for _ in from_statuses)
        query = (
            "UPDATE offers SET status = ?, date_updated = ? "  # nosec B608
            f"WHERE task_id = ? AND status IN ({placeholders})"
        )
        params: list[object] = [new_status, updated_at, task_id, *from_statuses]
        if exclude_offer_id is not None:
            query += " AND offer_id != ?"
            params.append(exclude_offer_id)

        with self.unit_of_work() as db:
            cursor = db.execute(query, params)
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def insert_payment(self, payment_data: dict[str, Any]) -> None:
        """Insert the payment record of a completed task."""
        values = tuple(_encode(payment_data[column]) for column in self._PAYMENT_COLUMNS)
        placeholders = ", ".join("?" for _ in self._PAYMENT_COLUMNS)
        columns = ", ".join(self._PAYMENT_COLUMNS)
        sql = f"INSERT INTO payments ({columns}) VALUES ({placeholders})"  # nosec B608

        try:
            with self.unit_of_work() as db:
                db.execute(sql, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicatePaymentError(
                    f"A payment for task_id={payment_data['task_id']} already exists"
                ) from exc
            raise

    def get_payment_for_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the payment of a task."""
        columns = ", ".join(self._PAYMENT_COLUMNS)
        row = self.query_one(
            f"SELECT {columns} FROM payments WHERE task_id = ?",  # nosec B608
            (task_id,),
        )
        if row is None:
            return None
        record = _decode(row, self._PAYMENT_COLUMNS)
        record["escrow_held"] = bool(record["escrow_held"])
        return record

    def update_payment_status(
        self,
        task_id: str,
        new_status: str,
        *,
        expected_status: str,
        released_at: str | None,
    ) -> int:
        """Transition a payment's status if it is still in expected_status."""
        with self.unit_of_work() as db:
            cursor = db.execute(
                "UPDATE payments SET status = ?, released_at = COALESCE(?, released_at) "
                "WHERE task_id = ? AND status = ?",
                (new_status, released_at, task_id, expected_status),
            )
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def insert_review(self, review_data: dict[str, Any]) -> None:
        """Insert the single review of a task."""
        values = tuple(review_data[column] for column in self._REVIEW_COLUMNS)
        placeholders = ", ".join("?" for _ in self._REVIEW_COLUMNS)
        columns = ", ".join(self._REVIEW_COLUMNS)
        sql = f"INSERT INTO reviews ({columns}) VALUES ({placeholders})"  # nosec B608

        try:
            with self.unit_of_work() as db:
                db.execute(sql, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateReviewError(
                    f"A review for task_id={review_data['task_id']} already exists"
                ) from exc
            raise

    def get_review_for_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the review of a task."""
        columns = ", ".join(self._REVIEW_COLUMNS)
        row = self.query_one(
            f"SELECT {columns} FROM reviews WHERE task_id = ?",  # nosec B608
            (task_id,),
        )
        if row is None:
            return None
        return _decode(row, self._REVIEW_COLUMNS)

    # ------------------------------------------------------------------
    # Tasker stats
    # ------------------------------------------------------------------

    def increment_tasker_stats(self, tasker_id: str, earnings: Decimal) -> dict[str, Any]:
        """Add one completed task and its net earnings to a tasker's stats."""
        with self.unit_of_work() as db:
            row = db.execute(
                "SELECT completed_tasks, total_earnings FROM tasker_stats WHERE tasker_id = ?",
                (tasker_id,),
            ).fetchone()
            if row is None:
                completed = 1
                total = earnings
                db.execute(
                    "INSERT INTO tasker_stats (tasker_id, completed_tasks, total_earnings) "
                    "VALUES (?, ?, ?)",
                    (tasker_id, completed, str(total)),
                )
            else:
                completed = int(row["completed_tasks"]) + 1
                total = Decimal(row["total_earnings"]) + earnings
                db.execute(
                    "UPDATE tasker_stats SET completed_tasks = ?, total_earnings = ? "
                    "WHERE tasker_id = ?",
                    (completed, str(total), tasker_id),
                )
        return {"tasker_id": tasker_id, "completed_tasks": completed, "total_earnings": total}

    def get_tasker_stats(self, tasker_id: str) -> dict[str, Any]:
        """Fetch a tasker's stats; zeroes when the tasker has none yet."""
        row = self.query_one(
            "SELECT tasker_id, completed_tasks, total_earnings FROM tasker_stats "
            "WHERE tasker_id = ?",
            (tasker_id,),
        )
        if row is None:
            return {"tasker_id": tasker_id, "completed_tasks": 0, "total_earnings": Decimal("0.00")}
        return _decode(row, ("tasker_id", "completed_tasks", "total_earnings"))

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
