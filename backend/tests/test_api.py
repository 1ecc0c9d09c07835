"""
Tests for the chat, cron and audit endpoints with the database and gateway
dependencies overridden.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from httpx import AsyncClient, ASGITransport

from budgetbot.config import Settings
from budgetbot.database import get_db
from budgetbot.main import app
from budgetbot.schemas import CallSummary, MetricTotals
from budgetbot.services.gateway import get_gateway


@pytest.fixture
def client_factory(session_factory, gateway):
    async def _db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_gateway] = lambda: gateway

    def make():
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    yield make
    app.dependency_overrides.clear()


@pytest.fixture
def keyed_settings():
    settings = Settings(api_key="chat-key", cron_secret="cron-secret")
    with patch("budgetbot.auth.get_settings", return_value=settings):
        yield settings


AUTH = {"Authorization": "Bearer chat-key"}
PHONE = {"phone": "0400 111 222"}


@pytest.mark.anyio
async def test_chat_requires_api_key(client_factory, keyed_settings):
    async with client_factory() as client:
        response = await client.post("/api/chat/campaigns", json=PHONE)
        assert response.status_code == 401
        response = await client.post("/api/chat/campaigns", json=PHONE, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401


@pytest.mark.anyio
async def test_campaigns_lists_budget_groups(client_factory, keyed_settings):
    async with client_factory() as client:
        response = await client.post("/api/chat/campaigns", json=PHONE, headers=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"] == {
        "name": "Acme Plumbing",
        "current_budget": "$100.00",
        "campaigns": ["Brand $50", "(Search A)(Search B) $30", "Remarketing $20"],
    }


@pytest.mark.anyio
async def test_unknown_phone_is_404(client_factory, keyed_settings):
    async with client_factory() as client:
        response = await client.post("/api/chat/campaigns", json={"phone": "0499 000 000"}, headers=AUTH)
    assert response.status_code == 404


@pytest.mark.anyio
async def test_feature_disabled_is_403(client_factory, keyed_settings, account):
    account.feature_flags = set()
    async with client_factory() as client:
        response = await client.post("/api/chat/campaigns", json=PHONE, headers=AUTH)
    assert response.status_code == 403


@pytest.mark.anyio
async def test_pause_then_audit_and_cron(client_factory, keyed_settings, gateway):
    async with client_factory() as client:
        response = await client.post(
            "/api/chat/pause", json={**PHONE, "campaign": 1, "duration": 3}, headers=AUTH,
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["campaigns"] == ["Brand"]
        assert data["duration"] == "Next 3 Days"
        assert data["reverted"].endswith("09:00am")
        assert gateway.budgets[("1112223333", "b1")] == Decimal(1)

        audit = await client.get("/api/mutations", params={"freshsales_id": "4001"}, headers=AUTH)
        mutations = audit.json()["mutations"]
        assert len(mutations) == 1
        assert mutations[0]["budget_old"] == "50.00"
        assert {s["role"] for s in mutations[0]["scheduled"]} == {"apply", "revert"}

        # Not due yet: the cron pass is a no-op
        cron = await client.post("/api/cron/mutations", headers={"X-Cron-Secret": "cron-secret"})
        assert cron.status_code == 200
        assert cron.json() == {"status": "ok", "result": {"done": [], "retried": [], "dead": []}}


@pytest.mark.anyio
async def test_pause_apply_failure_is_502(client_factory, keyed_settings, gateway):
    from budgetbot.errors import UpstreamUnavailable
    gateway.budget_errors.append(UpstreamUnavailable("down"))
    async with client_factory() as client:
        response = await client.post("/api/chat/pause", json={**PHONE, "campaign": 1}, headers=AUTH)
    assert response.status_code == 502


@pytest.mark.anyio
async def test_partial_bulk_pause_returns_what_was_paused(client_factory, keyed_settings, gateway):
    from budgetbot.errors import UpstreamUnavailable
    gateway.budget_errors.extend([None, UpstreamUnavailable("down")])
    async with client_factory() as client:
        response = await client.post("/api/chat/pause", json={**PHONE, "campaign": 9}, headers=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert body["message"].startswith("Some budgets could not be paused")
    assert body["data"]["campaigns"] == ["Brand", "Remarketing"]
    assert body["data"]["failures"] == ["Could not pause (Search A)(Search B): down"]
    assert body["data"]["reverted"].endswith("09:00am")


@pytest.mark.anyio
async def test_cron_requires_secret(client_factory, keyed_settings):
    async with client_factory() as client:
        assert (await client.post("/api/cron/mutations")).status_code == 401
        response = await client.post("/api/cron/mutations", headers={"Authorization": "Bearer cron-secret"})
        assert response.status_code == 200


@pytest.mark.anyio
async def test_statistics_endpoint(client_factory, keyed_settings, gateway):
    gateway.metrics = {"1112223333": MetricTotals(cost_micros=120_000_000, clicks=40)}
    gateway.call_summary = CallSummary(answered=10, missed=3, abandoned=2)
    async with client_factory() as client:
        response = await client.post("/api/chat/statistics", json={**PHONE, "date": 2}, headers=AUTH)
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Retrieved statistics"
        data = body["data"]
        assert data["date_range"] == "Yesterday"
        assert data["calls"] == 15
        assert data["missed"] == 5
        assert data["cost_per_call"] == "8.00"
        assert data["click_to_call"] == "37.50"

        stats = await client.get("/api/statistics", headers=AUTH)
        assert len(stats.json()["statistics"]) == 1


@pytest.mark.anyio
async def test_spending_endpoint(client_factory, keyed_settings, gateway):
    gateway.metrics = {
        "1112223333": MetricTotals(cost_micros=1_000_000_000),
        "4445556666": MetricTotals(cost_micros=234_500_000),
    }
    async with client_factory() as client:
        response = await client.post("/api/chat/spending", json=PHONE, headers=AUTH)
    assert response.json()["data"]["spending"] == "$1,234.50"


@pytest.mark.anyio
async def test_enable_endpoint(client_factory, keyed_settings, gateway):
    async with client_factory() as client:
        response = await client.post("/api/chat/enable", json=PHONE, headers=AUTH)
    assert response.status_code == 200
    assert response.json()["data"]["enabled"] == 5
