"""Router test fixtures: a fully wired app on a temp database."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from marketplace_service.app import create_app
from marketplace_service.config import clear_settings_cache
from marketplace_service.core.lifespan import lifespan
from marketplace_service.core.state import reset_app_state
from tests.helpers import ADMIN_ID, CLIENT_ID, TASKER_ID, config_yaml, task_fields

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

MAX_BODY_SIZE = 4096


def actor(actor_id: str) -> dict[str, str]:
    """Headers identifying the caller."""
    return {"X-Actor-Id": actor_id}


ADMIN = actor(ADMIN_ID)


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with a temp database and the scheduler disabled."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        config_yaml(str(tmp_path / "test.db"), max_body_size=MAX_BODY_SIZE)
    )

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Flow helpers
# ---------------------------------------------------------------------------
async def create_task(
    client: AsyncClient,
    client_id: str = CLIENT_ID,
    **overrides: Any,
) -> dict[str, Any]:
    """POST a task and return its JSON."""
    response = await client.post("/tasks", json=task_fields(**overrides), headers=actor(client_id))
    assert response.status_code == 201, response.text
    return response.json()


async def submit_offer(
    client: AsyncClient,
    task_id: str,
    tasker_id: str = TASKER_ID,
    amount: float = 900,
) -> dict[str, Any]:
    """POST an offer and return its JSON."""
    response = await client.post(
        f"/tasks/{task_id}/offers",
        json={"amount": amount, "message": "I can do it"},
        headers=actor(tasker_id),
    )
    assert response.status_code == 201, response.text
    return response.json()


async def assigned_task(
    client: AsyncClient,
    tasker_id: str = TASKER_ID,
    **overrides: Any,
) -> dict[str, Any]:
    """Create a task and accept an offer on it; return the accepted task."""
    task = await create_task(client, **overrides)
    offer = await submit_offer(client, task["task_id"], tasker_id)
    response = await client.post(
        f"/tasks/{task['task_id']}/offers/{offer['offer_id']}/accept",
        headers=actor(task["client_id"]),
    )
    assert response.status_code == 200, response.text
    return response.json()["task"]


async def completed_task(
    client: AsyncClient,
    tasker_id: str = TASKER_ID,
    rating: int = 5,
    **overrides: Any,
) -> dict[str, Any]:
    """Drive a task all the way to completed."""
    task = await assigned_task(client, tasker_id, **overrides)
    response = await client.post(f"/tasks/{task['task_id']}/start", headers=actor(tasker_id))
    assert response.status_code == 200, response.text
    response = await client.post(
        f"/tasks/{task['task_id']}/complete",
        json={"rating": rating, "comment": "Great work"},
        headers=actor(task["client_id"]),
    )
    assert response.status_code == 200, response.text
    return response.json()
