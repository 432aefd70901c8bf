"""Unit test fixtures - auto-clear caches between tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from marketplace_service.config import clear_settings_cache
from marketplace_service.core.state import reset_app_state
from tests.helpers import Marketplace, build_marketplace

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches() -> Iterator[None]:
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Path of a fresh marketplace database."""
    return str(tmp_path / "marketplace.db")


@pytest.fixture
def market(db_path: str) -> Iterator[Marketplace]:
    """Fully wired marketplace on a temp database."""
    marketplace = build_marketplace(db_path)
    yield marketplace
    marketplace.close()
