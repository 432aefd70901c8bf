"""Service layer components."""

from marketplace_service.services.earnings_rollup import EarningsRollup, EarningsRollupScheduler
from marketplace_service.services.event_bus import EventBus
from marketplace_service.services.ledger import Ledger
from marketplace_service.services.marketplace_store import MarketplaceStore
from marketplace_service.services.offer_resolution import OfferResolutionEngine
from marketplace_service.services.rating_aggregator import RatingAggregator
from marketplace_service.services.task_lifecycle import TaskLifecycle

__all__ = [
    "EarningsRollup",
    "EarningsRollupScheduler",
    "EventBus",
    "Ledger",
    "MarketplaceStore",
    "OfferResolutionEngine",
    "RatingAggregator",
    "TaskLifecycle",
]
