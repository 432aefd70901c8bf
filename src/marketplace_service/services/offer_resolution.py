"""Offer submission and resolution - single assignment per task."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.event_bus import TASK_ASSIGNED
from marketplace_service.services.marketplace_store import DuplicateOfferError
from marketplace_service.services.payout import to_money
from marketplace_service.services.responses import offer_to_response, task_to_response

if TYPE_CHECKING:
    from decimal import Decimal

    from marketplace_service.services.event_bus import EventBus
    from marketplace_service.services.marketplace_store import MarketplaceStore

MAX_MESSAGE_LENGTH = 2000

# Offer statuses that still hold a claim on the task
_LIVE_STATUSES: tuple[str, ...] = ("pending", "accepted")


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class OfferResolutionEngine:
    """
    Resolves competing offers on a task into a single assignment.

    Acceptance, the cascading rejection of sibling offers, and the task's
    move to ``assigned`` commit together in one unit of work. The task
    update is conditional on the task still being ``posted``; losing that
    race raises CONCURRENCY_CONFLICT, which is retried once against fresh
    state before it reaches the caller.
    """

    def __init__(
        self,
        store: MarketplaceStore,
        event_bus: EventBus,
        max_amount_multiplier: Decimal,
    ) -> None:
        self._store = store
        self._event_bus = event_bus
        self._max_amount_multiplier = max_amount_multiplier
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise ServiceError("TASK_NOT_FOUND", "Task not found", 404, {"task_id": task_id})
        return task

    def _load_offer(self, offer_id: str) -> dict[str, Any]:
        offer = self._store.get_offer(offer_id)
        if offer is None:
            raise ServiceError("OFFER_NOT_FOUND", "Offer not found", 404, {"offer_id": offer_id})
        return offer

    @staticmethod
    def _require_pending(offer: dict[str, Any], action: str) -> None:
        if offer["status"] != "pending":
            raise ServiceError(
                "INVALID_STATE",
                f"Cannot {action} offer in '{offer['status']}' status, must be 'pending'",
                409,
                {
                    "offer_id": offer["offer_id"],
                    "current_status": offer["status"],
                    "expected_status": "pending",
                },
            )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_offer(
        self,
        task_id: str,
        actor_id: str,
        amount: object,
        message: str,
    ) -> dict[str, Any]:
        """
        Submit a pending offer on a posted task.

        Error precedence:
        1. TASK_NOT_FOUND
        2. NOT_AUTHORIZED - the client cannot bid on their own task
        3. INVALID_STATE - task is not posted
        4. VALIDATION_ERROR - amount or message out of range
        5. DUPLICATE_OFFER - the tasker already has a live offer
        """
        task = self._load_task(task_id)

        if actor_id == task["client_id"]:
            raise ServiceError(
                "NOT_AUTHORIZED",
                "Clients cannot make offers on their own tasks",
                403,
                {"task_id": task_id, "actor_id": actor_id},
            )

        if task["status"] != "posted":
            raise ServiceError(
                "INVALID_STATE",
                f"Cannot make an offer on task in '{task['status']}' status, must be 'posted'",
                409,
                {"task_id": task_id, "current_status": task["status"], "expected_status": "posted"},
            )

        offer_amount = to_money(amount, "amount")
        if offer_amount <= 0:
            raise ServiceError(
                "VALIDATION_ERROR",
                "Offer amount must be positive",
                400,
                {"field": "amount", "value": str(offer_amount)},
            )
        max_amount = task["price"] * self._max_amount_multiplier
        if offer_amount > max_amount:
            raise ServiceError(
                "VALIDATION_ERROR",
                "Offer amount exceeds the allowed maximum for this task",
                400,
                {"field": "amount", "value": str(offer_amount), "max_amount": str(max_amount)},
            )
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ServiceError(
                "VALIDATION_ERROR",
                f"Message must not exceed {MAX_MESSAGE_LENGTH} characters",
                400,
                {"field": "message"},
            )

        offer = {
            "offer_id": f"o-{uuid.uuid4()}",
            "task_id": task_id,
            "tasker_id": actor_id,
            "client_id": task["client_id"],
            "amount": offer_amount,
            "message": message,
            "status": "pending",
            "date_created": _now_iso(),
            "date_updated": None,
        }
        try:
            self._store.insert_offer(offer)
        except DuplicateOfferError as exc:
            raise ServiceError(
                "DUPLICATE_OFFER",
                "You already have an active offer on this task",
                409,
                {"task_id": task_id, "tasker_id": actor_id},
            ) from exc

        self._logger.info(
            "Offer submitted",
            extra={"offer_id": offer["offer_id"], "task_id": task_id, "tasker_id": actor_id},
        )
        return offer_to_response(offer)

    def accept_offer(self, offer_id: str, task_id: str, actor_id: str) -> dict[str, Any]:
        """
        Accept a pending offer and assign its tasker to the task.

        Returns ``{"tasker_id", "task", "offer"}``.

        Error precedence:
        1. TASK_NOT_FOUND / OFFER_NOT_FOUND (also when the offer is for another task)
        2. NOT_AUTHORIZED - actor is not the task's client
        3. INVALID_STATE - offer not pending, task not posted, or amount above the cap
        4. CONCURRENCY_CONFLICT - lost the race twice in a row
        """
        try:
            result = self._accept_once(offer_id, task_id, actor_id)
        except ServiceError as exc:
            if exc.error != "CONCURRENCY_CONFLICT":
                raise
            self._logger.info(
                "Offer acceptance conflicted, re-checking task state",
                extra={"offer_id": offer_id, "task_id": task_id},
            )
            result = self._accept_once(offer_id, task_id, actor_id)

        task = result["task"]
        self._event_bus.publish(
            TASK_ASSIGNED,
            {
                "task_id": task["task_id"],
                "client_id": task["client_id"],
                "tasker_id": task["tasker_id"],
                "offer_id": offer_id,
            },
        )
        return result

    def _accept_once(self, offer_id: str, task_id: str, actor_id: str) -> dict[str, Any]:
        offer = self._load_offer(offer_id)
        if offer["task_id"] != task_id:
            raise ServiceError(
                "OFFER_NOT_FOUND",
                "Offer does not belong to this task",
                404,
                {"offer_id": offer_id, "task_id": task_id},
            )
        task = self._load_task(task_id)

        if actor_id != task["client_id"]:
            raise ServiceError(
                "NOT_AUTHORIZED",
                "Only the task's client can accept offers",
                403,
                {"task_id": task_id, "actor_id": actor_id},
            )
        if task["status"] != "posted":
            raise ServiceError(
                "INVALID_STATE",
                f"Cannot accept offer on task in '{task['status']}' status, must be 'posted'",
                409,
                {"task_id": task_id, "current_status": task["status"], "expected_status": "posted"},
            )
        self._require_pending(offer, "accept")
        # The price may have been edited since the offer was submitted.
        max_amount = task["price"] * self._max_amount_multiplier
        if offer["amount"] > max_amount:
            raise ServiceError(
                "INVALID_STATE",
                "Offer amount exceeds the allowed maximum for this task",
                409,
                {
                    "offer_id": offer_id,
                    "task_id": task_id,
                    "amount": str(offer["amount"]),
                    "max_amount": str(max_amount),
                },
            )

        now = _now_iso()
        with self._store.unit_of_work():
            changed = self._store.update_task(
                task_id,
                {
                    "status": "assigned",
                    "tasker_id": offer["tasker_id"],
                    "accepted_offer_id": offer_id,
                    "updated_at": now,
                },
                expected_status="posted",
            )
            if changed == 0:
                raise ServiceError(
                    "CONCURRENCY_CONFLICT",
                    "Task was modified by a concurrent request",
                    409,
                    {"task_id": task_id, "expected_status": "posted"},
                )

            changed = self._store.update_offer_status(
                offer_id, "accepted", expected_status="pending", updated_at=now
            )
            if changed == 0:
                raise ServiceError(
                    "CONCURRENCY_CONFLICT",
                    "Offer was modified by a concurrent request",
                    409,
                    {"offer_id": offer_id, "expected_status": "pending"},
                )

            rejected = self._store.update_offers_for_task(
                task_id,
                ("pending",),
                "rejected",
                updated_at=now,
                exclude_offer_id=offer_id,
            )

        self._logger.info(
            "Offer accepted",
            extra={
                "offer_id": offer_id,
                "task_id": task_id,
                "tasker_id": offer["tasker_id"],
                "rejected_siblings": rejected,
            },
        )

        updated_task = self._store.get_task(task_id)
        updated_offer = self._store.get_offer(offer_id)
        if updated_task is None or updated_offer is None:
            msg = f"Task {task_id} or offer {offer_id} not found after acceptance"
            raise RuntimeError(msg)
        return {
            "tasker_id": offer["tasker_id"],
            "task": task_to_response(updated_task),
            "offer": offer_to_response(updated_offer),
        }

    def reject_offer(self, offer_id: str, actor_id: str) -> dict[str, Any]:
        """Reject a pending offer. Only the offer's client may reject."""
        offer = self._load_offer(offer_id)
        if actor_id != offer["client_id"]:
            raise ServiceError(
                "NOT_AUTHORIZED",
                "Only the task's client can reject offers",
                403,
                {"offer_id": offer_id, "actor_id": actor_id},
            )
        return self._move_pending(offer, "rejected", "reject")

    def withdraw_offer(self, offer_id: str, actor_id: str) -> dict[str, Any]:
        """Withdraw a pending offer. Only the tasker who made it may withdraw."""
        offer = self._load_offer(offer_id)
        if actor_id != offer["tasker_id"]:
            raise ServiceError(
                "NOT_AUTHORIZED",
                "Only the tasker who made the offer can withdraw it",
                403,
                {"offer_id": offer_id, "actor_id": actor_id},
            )
        return self._move_pending(offer, "withdrawn", "withdraw")

    def _move_pending(self, offer: dict[str, Any], new_status: str, action: str) -> dict[str, Any]:
        self._require_pending(offer, action)
        changed = self._store.update_offer_status(
            offer["offer_id"], new_status, expected_status="pending", updated_at=_now_iso()
        )
        if changed == 0:
            current = self._load_offer(offer["offer_id"])
            self._require_pending(current, action)
            raise ServiceError(
                "CONCURRENCY_CONFLICT",
                "Offer was modified by a concurrent request",
                409,
                {"offer_id": offer["offer_id"], "expected_status": "pending"},
            )

        self._logger.info(
            "Offer status changed",
            extra={"offer_id": offer["offer_id"], "status": new_status},
        )
        updated = self._load_offer(offer["offer_id"])
        return offer_to_response(updated)

    def cancel_offers_for_task(self, task_id: str, actor_id: str) -> int:
        """
        Cancel every pending or accepted offer on a task.

        Idempotent: a repeated call cancels nothing and returns 0.
        """
        task = self._load_task(task_id)
        if actor_id != task["client_id"]:
            raise ServiceError(
                "NOT_AUTHORIZED",
                "Only the task's client can cancel its offers",
                403,
                {"task_id": task_id, "actor_id": actor_id},
            )
        return self.cascade_cancel(task_id)

    def cascade_cancel(self, task_id: str) -> int:
        """Cancel live offers of a task; joins the caller's unit of work."""
        cancelled = self._store.update_offers_for_task(
            task_id,
            _LIVE_STATUSES,
            "cancelled",
            updated_at=_now_iso(),
        )
        if cancelled > 0:
            self._logger.info(
                "Offers cancelled", extra={"task_id": task_id, "cancelled": cancelled}
            )
        return cancelled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_offer(self, offer_id: str) -> dict[str, Any]:
        """Get one offer."""
        return offer_to_response(self._load_offer(offer_id))

    def list_offers_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """List every offer made on a task."""
        self._load_task(task_id)
        return [offer_to_response(row) for row in self._store.list_offers(task_id=task_id)]

    def list_offers_by_tasker(self, tasker_id: str) -> list[dict[str, Any]]:
        """List every offer a tasker has made."""
        return [offer_to_response(row) for row in self._store.list_offers(tasker_id=tasker_id)]
