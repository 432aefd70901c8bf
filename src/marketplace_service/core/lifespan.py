"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from marketplace_service.config import get_settings
from marketplace_service.core.state import init_app_state
from marketplace_service.logging import get_logger, setup_logging
from marketplace_service.services.earnings_rollup import EarningsRollup, EarningsRollupScheduler
from marketplace_service.services.event_bus import EventBus
from marketplace_service.services.ledger import Ledger
from marketplace_service.services.marketplace_store import MarketplaceStore
from marketplace_service.services.offer_resolution import OfferResolutionEngine
from marketplace_service.services.rating_aggregator import RatingAggregator
from marketplace_service.services.task_lifecycle import TaskLifecycle

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    store = MarketplaceStore(db_path=settings.database.path)
    state.store = store
    state.event_bus = EventBus()
    state.ledger = Ledger(store)
    state.ratings = RatingAggregator(store)
    state.offers = OfferResolutionEngine(
        store=store,
        event_bus=state.event_bus,
        max_amount_multiplier=settings.offers.max_amount_multiplier,
    )
    state.lifecycle = TaskLifecycle(
        store=store,
        ledger=state.ledger,
        rating_aggregator=state.ratings,
        event_bus=state.event_bus,
        offer_engine=state.offers,
        commission_rate=settings.payout.commission_rate,
        default_service_fee=settings.payout.default_service_fee,
    )
    state.earnings = EarningsRollup(store, state.ledger, settings.earnings.timezone)
    state.scheduler = EarningsRollupScheduler(
        state.earnings,
        tick_seconds=settings.earnings.tick_seconds,
    )
    if settings.earnings.scheduler_enabled:
        state.scheduler.start()

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "timezone": settings.earnings.timezone,
            "scheduler_enabled": settings.earnings.scheduler_enabled,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    await state.scheduler.stop()
    store.close()
