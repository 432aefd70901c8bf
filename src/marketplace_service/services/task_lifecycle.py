"""Task lifecycle state machine."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.event_bus import TASK_CANCELLED, TASK_COMPLETED, TASK_CREATED
from marketplace_service.services.marketplace_store import DuplicateReviewError
from marketplace_service.services.payout import compute_payout, to_money
from marketplace_service.services.rating_aggregator import validate_rating
from marketplace_service.services.responses import money, payment_to_response, task_to_response

if TYPE_CHECKING:
    from decimal import Decimal

    from marketplace_service.services.event_bus import EventBus
    from marketplace_service.services.ledger import Ledger
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.offer_resolution import OfferResolutionEngine
    from marketplace_service.services.rating_aggregator import RatingAggregator

TASK_STATUSES = frozenset({"posted", "assigned", "in_progress", "completed", "cancelled"})

# Allowed task status edges
TRANSITIONS: dict[str, frozenset[str]] = {
    "posted": frozenset({"assigned", "cancelled"}),
    "assigned": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

# Allowed payment status edges after creation
PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset(),
    "released": frozenset({"disputed"}),
    "disputed": frozenset({"released", "refunded"}),
    "refunded": frozenset(),
}

MAX_TITLE_LENGTH = 200
MAX_TEXT_LENGTH = 10000
MAX_COMMENT_LENGTH = 2000

_REQUIRED_TEXT_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "category",
    "location",
    "payment_method",
)
_EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "price",
        "location",
        "schedule_date",
        "payment_method",
    }
)


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _validate_text(field: str, value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field} must be a non-empty string",
            400,
            {"field": field},
        )
    limit = MAX_TITLE_LENGTH if field == "title" else MAX_TEXT_LENGTH
    if len(value) > limit:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"{field} must not exceed {limit} characters",
            400,
            {"field": field},
        )
    return value.strip()


def _validate_price(value: object) -> Decimal:
    price = to_money(value, "price")
    if price <= 0:
        raise ServiceError(
            "VALIDATION_ERROR",
            "price must be positive",
            400,
            {"field": "price", "value": str(price)},
        )
    return price


def _validate_schedule_date(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError(
            "VALIDATION_ERROR",
            "schedule_date must be an ISO 8601 string",
            400,
            {"field": "schedule_date"},
        )
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ServiceError(
            "VALIDATION_ERROR",
            "schedule_date must be an ISO 8601 string",
            400,
            {"field": "schedule_date", "value": value},
        ) from exc
    return value


class TaskLifecycle:
    """
    Owns task status changes other than the posted to assigned edge.

    Completion settles the task in a single unit of work: review, ledger
    entries, payment, rating, tasker stats, and the status change commit
    or roll back together. The review row is written first; its unique
    index on ``task_id`` collapses concurrent completions into one.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        ledger: Ledger,
        rating_aggregator: RatingAggregator,
        event_bus: EventBus,
        offer_engine: OfferResolutionEngine,
        commission_rate: Decimal,
        default_service_fee: Decimal,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._ratings = rating_aggregator
        self._event_bus = event_bus
        self._offers = offer_engine
        self._commission_rate = commission_rate
        self._default_service_fee = default_service_fee
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {"task_id": task_id})
        return task

    @staticmethod
    def _require_client(task: dict[str, Any], actor_id: str, action: str) -> None:
        if actor_id != task["client_id"]:
            raise ServiceError(
                "NOT_AUTHORIZED",
                f"Only the task's client can {action} this task",
                403,
                {"task_id": task["task_id"], "actor_id": actor_id},
            )

    @staticmethod
    def _require_transition(task: dict[str, Any], requested: str) -> None:
        current = task["status"]
        if requested not in TRANSITIONS[current]:
            raise ServiceError(
                "INVALID_TRANSITION",
                f"Cannot move task from '{current}' to '{requested}'",
                409,
                {
                    "task_id": task["task_id"],
                    "current_status": current,
                    "requested_status": requested,
                },
            )

    def _conditional_update(
        self,
        task: dict[str, Any],
        updates: dict[str, Any],
        requested: str,
    ) -> None:
        changed = self._store.update_task(task["task_id"], updates, expected_status=task["status"])
        if changed == 0:
            current = self._load_task(task["task_id"])
            self._require_transition(current, requested)
            raise ServiceError(
                "CONCURRENCY_CONFLICT",
                "Task was modified by a concurrent request",
                409,
                {"task_id": task["task_id"], "expected_status": task["status"]},
            )

    def _reload(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return task_to_response(task)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_task(self, actor_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Post a new task on behalf of a client."""
        values = {name: _validate_text(name, fields.get(name)) for name in _REQUIRED_TEXT_FIELDS}
        price = _validate_price(fields.get("price"))

        raw_fee = fields.get("service_fee")
        if raw_fee is None:
            service_fee = self._default_service_fee
        else:
            service_fee = to_money(raw_fee, "service_fee")
        if service_fee < 0:
            raise ServiceError(
                "VALIDATION_ERROR",
                "service_fee must not be negative",
                400,
                {"field": "service_fee", "value": str(service_fee)},
            )

        now = _now_iso()
        task = {
            "task_id": f"t-{uuid.uuid4()}",
            **values,
            "price": price,
            "schedule_date": _validate_schedule_date(fields.get("schedule_date")),
            "client_id": actor_id,
            "tasker_id": None,
            "accepted_offer_id": None,
            "status": "posted",
            "service_fee": service_fee,
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
            "cancelled_at": None,
        }
        self._store.insert_task(task)

        self._logger.info(
            "Task created",
            extra={"task_id": task["task_id"], "client_id": actor_id, "price": str(price)},
        )
        self._event_bus.publish(
            TASK_CREATED,
            {"task_id": task["task_id"], "client_id": actor_id, "price": money(price)},
        )
        return task_to_response(task)

    def edit_task(self, task_id: str, actor_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Edit a posted task. Only the client may edit."""
        task = self._load_task(task_id)
        self._require_client(task, actor_id, "edit")
        if task["status"] != "posted":
            raise ServiceError(
                "INVALID_STATE",
                f"Cannot edit task in '{task['status']}' status, must be 'posted'",
                409,
                {"task_id": task_id, "current_status": task["status"], "expected_status": "posted"},
            )

        unknown = sorted(set(changes) - _EDITABLE_FIELDS)
        if len(unknown) > 0:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Fields cannot be edited: {', '.join(unknown)}",
                400,
                {"fields": unknown},
            )
        if len(changes) == 0:
            return task_to_response(task)

        updates: dict[str, Any] = {}
        for name, value in changes.items():
            if name == "price":
                updates[name] = _validate_price(value)
            elif name == "schedule_date":
                updates[name] = _validate_schedule_date(value)
            else:
                updates[name] = _validate_text(name, value)
        updates["updated_at"] = _now_iso()

        changed = self._store.update_task(task_id, updates, expected_status="posted")
        if changed == 0:
            raise ServiceError(
                "CONCURRENCY_CONFLICT",
                "Task was modified by a concurrent request",
                409,
                {"task_id": task_id, "expected_status": "posted"},
            )

        self._logger.info("Task edited", extra={"task_id": task_id, "fields": sorted(changes)})
        return self._reload(task_id)

    def mark_in_progress(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """
        Start work on an assigned task.

        The transition is checked before the actor, since an unassigned
        task has no tasker to compare against.
        """
        task = self._load_task(task_id)
        self._require_transition(task, "in_progress")
        if actor_id != task["tasker_id"]:
            raise ServiceError(
                "NOT_AUTHORIZED",
                "Only the assigned tasker can start this task",
                403,
                {"task_id": task_id, "actor_id": actor_id},
            )

        self._conditional_update(
            task, {"status": "in_progress", "updated_at": _now_iso()}, "in_progress"
        )
        self._logger.info(
            "Task started", extra={"task_id": task_id, "tasker_id": task["tasker_id"]}
        )
        return self._reload(task_id)

    def complete_with_review(
        self,
        task_id: str,
        rating: object,
        comment: str,
        actor_id: str,
    ) -> dict[str, Any]:
        """
        Complete an in-progress task with the client's review.

        Error precedence:
        1. TASK_NOT_FOUND
        2. NOT_AUTHORIZED - actor is not the client
        3. VALIDATION_ERROR - rating or comment out of range
        4. INVALID_TRANSITION - task is not in_progress

        A task that already carries a review is returned unchanged.
        """
        task = self._load_task(task_id)
        self._require_client(task, actor_id, "complete")
        validated_rating = validate_rating(rating)
        if len(comment) > MAX_COMMENT_LENGTH:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"comment must not exceed {MAX_COMMENT_LENGTH} characters",
                400,
                {"field": "comment"},
            )

        if self._store.get_review_for_task(task_id) is not None:
            self._logger.info("Task already completed", extra={"task_id": task_id})
            return self._reload(task_id)

        self._require_transition(task, "completed")
        tasker_id = task["tasker_id"]
        if tasker_id is None:
            raise ServiceError(
                "INVALID_STATE",
                "Task has no assigned tasker",
                409,
                {"task_id": task_id, "current_status": task["status"]},
            )

        breakdown = compute_payout(task["price"], task["service_fee"], self._commission_rate)
        now = _now_iso()

        try:
            with self._store.unit_of_work():
                self._store.insert_review(
                    {
                        "review_id": f"rv-{uuid.uuid4()}",
                        "task_id": task_id,
                        "reviewer_id": actor_id,
                        "reviewed_id": tasker_id,
                        "rating": validated_rating,
                        "comment": comment,
                        "created_at": now,
                    }
                )
                self._ledger.record_settlement(task_id, breakdown)
                self._store.insert_payment(
                    {
                        "payment_id": f"pay-{uuid.uuid4()}",
                        "task_id": task_id,
                        "client_id": task["client_id"],
                        "tasker_id": tasker_id,
                        "amount": breakdown.total_paid,
                        "escrow_held": False,
                        "status": "released",
                        "method": task["payment_method"],
                        "created_at": now,
                        "released_at": now,
                    }
                )
                self._ratings.apply_rating(tasker_id, validated_rating)
                self._store.increment_tasker_stats(tasker_id, breakdown.payout)
                changed = self._store.update_task(
                    task_id,
                    {"status": "completed", "completed_at": now, "updated_at": now},
                    expected_status="in_progress",
                )
                if changed == 0:
                    raise ServiceError(
                        "CONCURRENCY_CONFLICT",
                        "Task was modified by a concurrent request",
                        409,
                        {"task_id": task_id, "expected_status": "in_progress"},
                    )
        except DuplicateReviewError:
            self._logger.info("Concurrent completion already applied", extra={"task_id": task_id})
            return self._reload(task_id)

        self._logger.info(
            "Task completed",
            extra={
                "task_id": task_id,
                "tasker_id": tasker_id,
                "rating": validated_rating,
                "payout": str(breakdown.payout),
            },
        )
        self._event_bus.publish(
            TASK_COMPLETED,
            {
                "task_id": task_id,
                "tasker_id": tasker_id,
                "client_id": task["client_id"],
                "payout": money(breakdown.payout),
            },
        )
        return self._reload(task_id)

    def cancel_task(self, task_id: str, actor_id: str) -> dict[str, Any]:
        """Cancel a non-terminal task and every live offer on it."""
        task = self._load_task(task_id)
        self._require_client(task, actor_id, "cancel")
        self._require_transition(task, "cancelled")

        now = _now_iso()
        with self._store.unit_of_work():
            cancelled_offers = self._offers.cascade_cancel(task_id)
            self._conditional_update(
                task,
                {
                    "status": "cancelled",
                    "tasker_id": None,
                    "cancelled_at": now,
                    "updated_at": now,
                },
                "cancelled",
            )

        self._logger.info(
            "Task cancelled",
            extra={
                "task_id": task_id,
                "previous_status": task["status"],
                "cancelled_offers": cancelled_offers,
            },
        )
        self._event_bus.publish(
            TASK_CANCELLED,
            {
                "task_id": task_id,
                "client_id": task["client_id"],
                "tasker_id": task["tasker_id"],
                "previous_status": task["status"],
            },
        )
        return self._reload(task_id)

    def transition_payment(self, task_id: str, new_status: str) -> dict[str, Any]:
        """Move a task's payment to a new status (dispute handling)."""
        payment = self._store.get_payment_for_task(task_id)
        if payment is None:
            raise ServiceError(
                "PAYMENT_NOT_FOUND", "Payment not found", 404, {"task_id": task_id}
            )

        current = payment["status"]
        if new_status not in PAYMENT_TRANSITIONS.get(current, frozenset()):
            raise ServiceError(
                "INVALID_TRANSITION",
                f"Cannot move payment from '{current}' to '{new_status}'",
                409,
                {
                    "task_id": task_id,
                    "payment_id": payment["payment_id"],
                    "current_status": current,
                    "requested_status": new_status,
                },
            )

        released_at = _now_iso() if new_status == "released" else None
        changed = self._store.update_payment_status(
            task_id, new_status, expected_status=current, released_at=released_at
        )
        if changed == 0:
            raise ServiceError(
                "CONCURRENCY_CONFLICT",
                "Payment was modified by a concurrent request",
                409,
                {"task_id": task_id, "expected_status": current},
            )

        self._logger.info(
            "Payment status changed",
            extra={"task_id": task_id, "from_status": current, "to_status": new_status},
        )
        return self.get_payment(task_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> dict[str, Any]:
        """Get one task."""
        return task_to_response(self._load_task(task_id))

    def list_tasks(
        self,
        status: str | None = None,
        client_id: str | None = None,
        tasker_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional filters."""
        if status is not None and status not in TASK_STATUSES:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Unknown task status: {status}",
                400,
                {"field": "status", "allowed": sorted(TASK_STATUSES)},
            )
        rows = self._store.list_tasks(status, client_id, tasker_id, limit, offset)
        return [task_to_response(row) for row in rows]

    def get_payment(self, task_id: str) -> dict[str, Any]:
        """Get the payment of a completed task."""
        payment = self._store.get_payment_for_task(task_id)
        if payment is None:
            raise ServiceError(
                "PAYMENT_NOT_FOUND", "Payment not found", 404, {"task_id": task_id}
            )
        return payment_to_response(payment)

    def get_tasker_profile(self, tasker_id: str) -> dict[str, Any]:
        """Combine a tasker's rating aggregate with their completion stats."""
        rating = self._ratings.get_rating(tasker_id)
        stats = self._store.get_tasker_stats(tasker_id)
        return {
            "tasker_id": tasker_id,
            "rating": rating["rating"],
            "review_count": rating["review_count"],
            "completed_tasks": stats["completed_tasks"],
            "total_earnings": money(stats["total_earnings"]),
        }
