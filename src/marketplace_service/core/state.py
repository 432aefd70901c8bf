"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from marketplace_service.services.earnings_rollup import (
        EarningsRollup,
        EarningsRollupScheduler,
    )
    from marketplace_service.services.event_bus import EventBus
    from marketplace_service.services.ledger import Ledger
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.offer_resolution import OfferResolutionEngine
    from marketplace_service.services.rating_aggregator import RatingAggregator
    from marketplace_service.services.task_lifecycle import TaskLifecycle


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: MarketplaceStore | None = None
    event_bus: EventBus | None = None
    ledger: Ledger | None = None
    ratings: RatingAggregator | None = None
    offers: OfferResolutionEngine | None = None
    lifecycle: TaskLifecycle | None = None
    earnings: EarningsRollup | None = None
    scheduler: EarningsRollupScheduler | None = None

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")

    def require_offers(self) -> OfferResolutionEngine:
        """Return the offer engine or fail if startup has not run."""
        if self.offers is None:
            msg = "OfferResolutionEngine not initialized"
            raise RuntimeError(msg)
        return self.offers

    def require_lifecycle(self) -> TaskLifecycle:
        """Return the task lifecycle or fail if startup has not run."""
        if self.lifecycle is None:
            msg = "TaskLifecycle not initialized"
            raise RuntimeError(msg)
        return self.lifecycle

    def require_ledger(self) -> Ledger:
        """Return the ledger or fail if startup has not run."""
        if self.ledger is None:
            msg = "Ledger not initialized"
            raise RuntimeError(msg)
        return self.ledger

    def require_earnings(self) -> EarningsRollup:
        """Return the earnings rollup or fail if startup has not run."""
        if self.earnings is None:
            msg = "EarningsRollup not initialized"
            raise RuntimeError(msg)
        return self.earnings


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
