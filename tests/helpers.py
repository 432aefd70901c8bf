"""Shared builders for marketplace tests."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from marketplace_service.services.earnings_rollup import EarningsRollup
from marketplace_service.services.event_bus import EventBus
from marketplace_service.services.ledger import Ledger
from marketplace_service.services.marketplace_store import MarketplaceStore
from marketplace_service.services.offer_resolution import OfferResolutionEngine
from marketplace_service.services.rating_aggregator import RatingAggregator
from marketplace_service.services.task_lifecycle import TaskLifecycle

CLIENT_ID = "u-client"
TASKER_ID = "u-tasker"
OTHER_TASKER_ID = "u-tasker-2"
ADMIN_ID = "u-admin"
TIMEZONE = "Asia/Manila"


@dataclass
class Marketplace:
    """Every marketplace component wired onto one store."""

    store: MarketplaceStore
    event_bus: EventBus
    ledger: Ledger
    ratings: RatingAggregator
    offers: OfferResolutionEngine
    lifecycle: TaskLifecycle
    earnings: EarningsRollup

    def close(self) -> None:
        self.store.close()


def build_marketplace(db_path: str) -> Marketplace:
    """Wire the components the same way the application lifespan does."""
    store = MarketplaceStore(db_path=db_path)
    event_bus = EventBus()
    ledger = Ledger(store)
    ratings = RatingAggregator(store)
    offers = OfferResolutionEngine(store, event_bus, max_amount_multiplier=Decimal("2"))
    lifecycle = TaskLifecycle(
        store=store,
        ledger=ledger,
        rating_aggregator=ratings,
        event_bus=event_bus,
        offer_engine=offers,
        commission_rate=Decimal("0.15"),
        default_service_fee=Decimal("50"),
    )
    earnings = EarningsRollup(store, ledger, TIMEZONE)
    return Marketplace(store, event_bus, ledger, ratings, offers, lifecycle, earnings)


def task_fields(**overrides: Any) -> dict[str, Any]:
    """Return a valid create_task payload."""
    fields: dict[str, Any] = {
        "title": "Help me move boxes",
        "description": "Ten boxes from the garage to the second floor",
        "category": "moving",
        "price": 1000,
        "location": "Quezon City",
        "schedule_date": "2026-03-01T09:00:00Z",
        "payment_method": "cash",
    }
    fields.update(overrides)
    return fields


def post_task(market: Marketplace, **overrides: Any) -> dict[str, Any]:
    """Create a posted task owned by CLIENT_ID."""
    return market.lifecycle.create_task(CLIENT_ID, task_fields(**overrides))


def assign_task(
    market: Marketplace,
    tasker_id: str = TASKER_ID,
    **overrides: Any,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Create a task and accept an offer from tasker_id. Returns (task, offer)."""
    task = post_task(market, **overrides)
    offer = market.offers.add_offer(task["task_id"], tasker_id, task["price"], "I can do it")
    result = market.offers.accept_offer(offer["offer_id"], task["task_id"], CLIENT_ID)
    return result["task"], result["offer"]


def start_task(market: Marketplace, tasker_id: str = TASKER_ID, **overrides: Any) -> dict[str, Any]:
    """Create a task, assign it, and move it to in_progress."""
    task, _offer = assign_task(market, tasker_id, **overrides)
    return market.lifecycle.mark_in_progress(task["task_id"], tasker_id)


def config_yaml(
    db_path: str,
    *,
    admin_id: str = ADMIN_ID,
    max_body_size: int = 1048576,
    extra: str = "",
) -> str:
    """Render a complete service config for tests; the scheduler stays off."""
    return f"""\
service:
  name: "marketplace"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: null
database:
  path: "{db_path}"
request:
  max_body_size: {max_body_size}
platform:
  admin_id: "{admin_id}"
payout:
  commission_rate: "0.15"
  default_service_fee: "50"
offers:
  max_amount_multiplier: "2"
earnings:
  timezone: "{TIMEZONE}"
  scheduler_enabled: false
  tick_seconds: 60
{extra}"""
