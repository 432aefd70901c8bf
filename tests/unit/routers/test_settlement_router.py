"""Payment, ledger, earnings, and tasker rating endpoint tests."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from tests.helpers import ADMIN_ID, CLIENT_ID, OTHER_TASKER_ID, TASKER_ID, TIMEZONE
from tests.unit.routers.conftest import ADMIN, actor, completed_task, create_task

pytestmark = pytest.mark.unit


def _local_day(timestamp: str) -> str:
    moment = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    return moment.astimezone(ZoneInfo(TIMEZONE)).date().isoformat()


class TestPayments:
    """GET /payments/{task_id} and POST /payments/{task_id}/status."""

    async def test_completion_creates_released_payment(self, client):
        task = await completed_task(client)

        response = await client.get(f"/payments/{task['task_id']}", headers=actor(CLIENT_ID))

        assert response.status_code == 200
        payment = response.json()
        assert payment["amount"] == 1050.0
        assert payment["status"] == "released"
        assert payment["escrow_held"] is False
        assert payment["method"] == "cash"
        assert payment["client_id"] == CLIENT_ID
        assert payment["tasker_id"] == TASKER_ID
        assert payment["released_at"] is not None

    @pytest.mark.parametrize("viewer", [TASKER_ID, ADMIN_ID])
    async def test_parties_can_view_payment(self, client, viewer):
        task = await completed_task(client)
        response = await client.get(f"/payments/{task['task_id']}", headers=actor(viewer))
        assert response.status_code == 200

    async def test_outsider_cannot_view_payment(self, client):
        task = await completed_task(client)
        response = await client.get(
            f"/payments/{task['task_id']}", headers=actor(OTHER_TASKER_ID)
        )
        assert response.status_code == 403

    async def test_no_payment_before_completion(self, client):
        task = await create_task(client)
        response = await client.get(f"/payments/{task['task_id']}", headers=actor(CLIENT_ID))
        assert response.status_code == 404
        assert response.json()["error"] == "PAYMENT_NOT_FOUND"

    async def test_dispute_then_refund(self, client):
        task = await completed_task(client)
        url = f"/payments/{task['task_id']}/status"

        disputed = await client.post(url, json={"status": "disputed"}, headers=ADMIN)
        assert disputed.status_code == 200
        assert disputed.json()["status"] == "disputed"

        refunded = await client.post(url, json={"status": "refunded"}, headers=ADMIN)
        assert refunded.status_code == 200
        assert refunded.json()["status"] == "refunded"

        final = await client.post(url, json={"status": "released"}, headers=ADMIN)
        assert final.status_code == 409
        assert final.json()["error"] == "INVALID_TRANSITION"

    async def test_released_cannot_jump_to_refunded(self, client):
        task = await completed_task(client)
        response = await client.post(
            f"/payments/{task['task_id']}/status", json={"status": "refunded"}, headers=ADMIN
        )
        assert response.status_code == 409

    async def test_status_change_is_admin_only(self, client):
        task = await completed_task(client)
        response = await client.post(
            f"/payments/{task['task_id']}/status",
            json={"status": "disputed"},
            headers=actor(CLIENT_ID),
        )
        assert response.status_code == 403
        assert response.json()["error"] == "NOT_AUTHORIZED"


class TestLedger:
    """GET /ledger and POST /ledger/income."""

    async def test_completion_writes_settlement_entries(self, client):
        task = await completed_task(client)

        response = await client.get(
            "/ledger", params={"source_task_id": task["task_id"]}, headers=ADMIN
        )

        assert response.status_code == 200
        amounts = {entry["type"]: entry["amount"] for entry in response.json()}
        assert amounts == {"commission": 150.0, "service_fee": 50.0, "payout": -850.0}

    async def test_ledger_is_admin_only(self, client):
        response = await client.get("/ledger", headers=actor(CLIENT_ID))
        assert response.status_code == 403

        response = await client.get("/ledger")
        assert response.status_code == 401

    async def test_record_income(self, client):
        response = await client.post(
            "/ledger/income",
            json={"type": "subscription", "amount": 299, "source_id": "sub-1"},
            headers=ADMIN,
        )
        assert response.status_code == 201
        entry = response.json()
        assert entry["type"] == "subscription"
        assert entry["amount"] == 299.0
        assert entry["source_task_id"] == "sub-1"

    @pytest.mark.parametrize(
        "body",
        [
            {"type": "commission", "amount": 10, "source_id": "x"},
            {"type": "featured", "amount": -1, "source_id": "x"},
            {"type": "featured", "amount": 10, "source_id": " "},
            {"type": "featured", "amount": 10},
            {"type": "featured", "amount": 1e30, "source_id": "x"},
        ],
    )
    async def test_record_income_validation(self, client, body):
        response = await client.post("/ledger/income", json=body, headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


class TestEarnings:
    """Earnings summaries over HTTP."""

    async def test_daily_and_monthly_rollup(self, client):
        task = await completed_task(client)
        entries = (
            await client.get("/ledger", params={"source_task_id": task["task_id"]}, headers=ADMIN)
        ).json()
        day = _local_day(entries[0]["created_at"])

        daily = await client.post("/earnings/rollup/daily", json={"date": day}, headers=ADMIN)
        assert daily.status_code == 200
        summary = daily.json()
        assert summary["summary_id"] == f"daily_{day}"
        assert summary["commission_income"] == 150.0
        assert summary["service_fee_income"] == 50.0
        assert summary["total_income"] == 200.0

        year, month = int(day[:4]), int(day[5:7])
        monthly = await client.post(
            "/earnings/rollup/monthly", json={"year": year, "month": month}, headers=ADMIN
        )
        assert monthly.status_code == 200
        assert monthly.json()["total_income"] == 200.0

        fetched = await client.get(f"/earnings/daily_{day}", headers=ADMIN)
        assert fetched.json() == summary

        listed = (await client.get("/earnings", params={"type": "daily"}, headers=ADMIN)).json()
        assert [item["summary_id"] for item in listed] == [f"daily_{day}"]

    async def test_rollup_rerun_is_stable(self, client):
        first = await client.post(
            "/earnings/rollup/daily", json={"date": "2026-01-15"}, headers=ADMIN
        )
        second = await client.post(
            "/earnings/rollup/daily", json={"date": "2026-01-15"}, headers=ADMIN
        )
        assert first.json() == second.json()

    async def test_unknown_summary(self, client):
        response = await client.get("/earnings/daily_1999-01-01", headers=ADMIN)
        assert response.status_code == 404
        assert response.json()["error"] == "SUMMARY_NOT_FOUND"

    @pytest.mark.parametrize(
        ("path", "body"),
        [
            ("/earnings/rollup/daily", {"date": "15-01-2026"}),
            ("/earnings/rollup/daily", {}),
            ("/earnings/rollup/daily", {"date": "9999-12-31"}),
            ("/earnings/rollup/monthly", {"year": 2026, "month": 13}),
            ("/earnings/rollup/monthly", {"year": 2026, "month": "1"}),
            ("/earnings/rollup/monthly", {"year": True, "month": 1}),
        ],
    )
    async def test_rollup_validation(self, client, path, body):
        response = await client.post(path, json=body, headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    async def test_earnings_admin_only(self, client):
        response = await client.post(
            "/earnings/rollup/daily", json={"date": "2026-01-15"}, headers=actor(CLIENT_ID)
        )
        assert response.status_code == 403

    async def test_list_rejects_bad_limit(self, client):
        response = await client.get("/earnings", params={"limit": "x"}, headers=ADMIN)
        assert response.status_code == 400


class TestTaskerRating:
    """GET /taskers/{tasker_id}/rating."""

    async def test_rating_after_completions(self, client):
        await completed_task(client, rating=5)
        await completed_task(client, rating=4)

        response = await client.get(f"/taskers/{TASKER_ID}/rating")

        assert response.status_code == 200
        assert response.json() == {
            "tasker_id": TASKER_ID,
            "rating": 4.5,
            "review_count": 2,
            "completed_tasks": 2,
            "total_earnings": 1700.0,
        }

    async def test_unknown_tasker_has_no_reviews(self, client):
        response = await client.get("/taskers/u-nobody/rating")
        assert response.status_code == 200
        assert response.json()["review_count"] == 0
        assert response.json()["completed_tasks"] == 0
