"""Health endpoint tests."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import assigned_task, create_task

pytestmark = pytest.mark.unit

EXPECTED_STATUSES = {"posted", "assigned", "in_progress", "completed", "cancelled"}


async def test_health_returns_ok_with_correct_schema(client):
    response = await client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "ok"
    assert isinstance(data["uptime_seconds"], (int, float))
    assert data["started_at"].endswith("Z")
    assert data["total_tasks"] == 0
    assert set(data["tasks_by_status"]) == EXPECTED_STATUSES
    assert all(count == 0 for count in data["tasks_by_status"].values())
    assert data["scheduler_last_run_day"] is None


async def test_health_task_counts_reflect_actual_data(client):
    await create_task(client)
    await assigned_task(client)

    data = (await client.get("/health")).json()

    assert data["total_tasks"] == 2
    assert data["tasks_by_status"]["posted"] == 1
    assert data["tasks_by_status"]["assigned"] == 1


async def test_unknown_route_uses_error_envelope(client):
    response = await client.get("/nowhere")
    assert response.status_code == 404
    assert set(response.json()) == {"error", "message", "details"}


async def test_wrong_method_is_405(client):
    response = await client.delete("/health")
    assert response.status_code == 405
    assert response.json()["error"] == "METHOD_NOT_ALLOWED"
