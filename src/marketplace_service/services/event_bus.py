"""In-process publish/subscribe for marketplace events."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import RLock
from typing import TYPE_CHECKING, Any

from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

TASK_CREATED = "task.created"
TASK_ASSIGNED = "task.assigned"
TASK_COMPLETED = "task.completed"
TASK_CANCELLED = "task.cancelled"

EVENT_TYPES = frozenset({TASK_CREATED, TASK_ASSIGNED, TASK_COMPLETED, TASK_CANCELLED})

WILDCARD = "*"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Event:
    """A published marketplace event."""

    event_type: str
    payload: dict[str, Any]
    timestamp: str = field(default_factory=_now_iso)


class EventBus:
    """
    Synchronous in-process event bus.

    Commands publish after their unit of work commits. Handlers run in
    subscription order; a handler that raises is logged and skipped so
    the remaining handlers and the publishing command are unaffected.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: dict[str, list[Callable[[Event], None]]] = defaultdict(list)
        self._logger = get_logger(__name__)

    def subscribe(self, event_type: str, handler: Callable[[Event], None]) -> None:
        """Register a handler for one event type, or ``"*"`` for all."""
        if event_type != WILDCARD and event_type not in EVENT_TYPES:
            msg = f"Unknown event type: {event_type}"
            raise ValueError(msg)
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: Callable[[Event], None]) -> None:
        """Remove a previously registered handler."""
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event_type: str, payload: dict[str, Any]) -> Event:
        """Deliver an event to its subscribers and return it."""
        event = Event(event_type=event_type, payload=payload)
        with self._lock:
            handlers = [*self._handlers.get(event_type, []), *self._handlers.get(WILDCARD, [])]

        self._logger.info("Event published", extra={"event_type": event_type, **payload})
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                self._logger.exception(
                    "Event handler failed",
                    extra={"event_type": event_type, "handler": getattr(handler, "__name__", "?")},
                )
        return event
