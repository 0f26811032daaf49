"""Tests for the REST API."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio

from settlement.config import Settings
from settlement.main import create_app
from settlement.services import PositionMonitor, SettlementEngine, WebhookDispatcher
from settlement.storage.memory import MemorySignalStore, MemorySubscriptionStore
from settlement_core.models import PriceQuote

from tests.conftest import PROVIDER, tx

SECRET = "s3cret"


def signal_payload(n=1, **overrides):
    data = {
        "provider": PROVIDER,
        "action": "LONG",
        "token": "ETH",
        "collateral_usd": 100,
        "entry_price": 2000,
        "tx_id": tx(n),
    }
    data.update(overrides)
    return data


async def fake_quote(symbol):
    prices = {"ETH": 2100.0, "XAU": 2400.0}
    key = symbol.upper()
    if key not in prices:
        return None
    return PriceQuote(key=key, price=prices[key], change_24h=1.0, source="test")


class TestApi:
    """Tests for the HTTP surface."""

    @pytest.fixture
    def oracle(self):
        oracle = MagicMock()
        oracle.get_quote = AsyncMock(side_effect=fake_quote)
        oracle.get_price = AsyncMock(return_value=None)
        oracle.get_prices = AsyncMock(return_value={"ETH": 2100.0})
        return oracle

    @pytest.fixture
    def app(self, oracle, clock):
        app = create_app(Settings(cron_secret=SECRET))
        engine = SettlementEngine(MemorySignalStore(), oracle=oracle, clock=clock)
        subscriptions = MemorySubscriptionStore()
        app.state.engine = engine
        app.state.oracle = oracle
        app.state.subscriptions = subscriptions
        app.state.dispatcher = WebhookDispatcher(subscriptions)
        app.state.monitor = PositionMonitor(engine, interval=0)
        return app

    @pytest_asyncio.fixture
    async def client(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client

    async def create_signal(self, client, **overrides):
        response = await client.post("/api/signals", json=signal_payload(**overrides))
        assert response.status_code == 201, response.text
        return response.json()

    # =========================================================================
    # Signals
    # =========================================================================

    @pytest.mark.asyncio
    async def test_create_signal(self, client):
        body = await self.create_signal(client)

        assert body["success"] is True
        assert body["signal"]["status"] == "open"
        assert body["signal"]["entry_price"] == 2000
        assert "exit_price" not in body["signal"]
        assert body["auto_closed"] is None
        assert body["price_source"] == "submitted"

    @pytest.mark.asyncio
    async def test_create_signal_validation_error(self, client):
        response = await client.post("/api/signals", json=signal_payload(leverage=500))

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["field"] == "leverage"

    @pytest.mark.asyncio
    async def test_opposite_signal_auto_closes(self, client, clock):
        long = (await self.create_signal(client))["signal"]
        clock.advance(hours=1)

        body = await self.create_signal(client, n=2, action="SELL", entry_price=2200)

        assert body["auto_closed"]["id"] == long["id"]
        assert body["auto_closed"]["close_reason"] == "auto_opposite_signal"
        assert body["auto_closed"]["pnl_pct"] == pytest.approx(10.0)
        assert body["signal"]["parent_signal_id"] == long["id"]

    @pytest.mark.asyncio
    async def test_close_signal(self, client):
        signal = (await self.create_signal(client, leverage=5))["signal"]

        response = await client.post(
            "/api/signals/close", json={"signal_id": signal["id"], "exit_price": 2200}
        )
        assert response.status_code == 200
        closed = response.json()["signal"]
        assert closed["status"] == "closed"
        assert closed["close_reason"] == "manual"
        assert closed["pnl_pct"] == pytest.approx(50.0)
        assert closed["pnl_usd"] == pytest.approx(50.0)

        again = await client.post(
            "/api/signals/close", json={"signal_id": signal["id"], "exit_price": 2300}
        )
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "STATE_CONFLICT"

    @pytest.mark.asyncio
    async def test_close_unknown_signal(self, client):
        response = await client.post(
            "/api/signals/close", json={"signal_id": "sig_missing", "exit_price": 10}
        )
        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_list_and_get_signals(self, client, clock):
        first = (await self.create_signal(client))["signal"]
        clock.advance(minutes=1)
        second = (await self.create_signal(client, n=2, token="BTC", entry_price=60000))["signal"]

        response = await client.get("/api/signals")
        assert [s["id"] for s in response.json()["signals"]] == [second["id"], first["id"]]

        response = await client.get("/api/signals", params={"token": "eth", "status": "open"})
        assert [s["id"] for s in response.json()["signals"]] == [first["id"]]

        response = await client.get(f"/api/signals/{first['id']}")
        assert response.json()["signal"]["token"] == "ETH"

        response = await client.get("/api/signals/sig_missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_list_signals_bad_query(self, client):
        response = await client.get("/api/signals", params={"limit": 0})
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "limit"

    # =========================================================================
    # Webhooks
    # =========================================================================

    @pytest.mark.asyncio
    async def test_webhook_lifecycle(self, client):
        response = await client.post(
            "/api/webhooks",
            json={"url": "https://example.com/hook", "token_filter": "eth", "min_confidence": 0.5},
        )
        assert response.status_code == 201
        webhook = response.json()["webhook"]
        assert webhook["token_filter"] == "ETH"
        assert webhook["active"] is True

        listed = (await client.get("/api/webhooks")).json()["webhooks"]
        assert [w["id"] for w in listed] == [webhook["id"]]

        filtered = await client.get("/api/webhooks", params={"url": "https://other.example.com"})
        assert filtered.json()["webhooks"] == []

        response = await client.delete(f"/api/webhooks/{webhook['id']}")
        assert response.status_code == 200
        response = await client.delete(f"/api/webhooks/{webhook['id']}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_webhook_rejects_bad_url(self, client):
        response = await client.post("/api/webhooks", json={"url": "ftp://example.com"})
        assert response.status_code == 400
        assert response.json()["error"]["field"] == "url"

    # =========================================================================
    # Prices and maintenance
    # =========================================================================

    @pytest.mark.asyncio
    async def test_prices(self, client):
        response = await client.get("/api/prices", params={"symbols": "eth, xau,NOPE"})

        prices = response.json()["prices"]
        assert set(prices) == {"ETH", "XAU"}
        assert prices["ETH"]["price"] == 2100.0
        assert prices["ETH"]["source"] == "test"

    @pytest.mark.asyncio
    async def test_evaluate_requires_secret(self, client):
        response = await client.post("/api/positions/evaluate")
        assert response.status_code == 401

        response = await client.post(
            "/api/positions/evaluate", headers={"Authorization": "Bearer wrong"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_evaluate_positions(self, client):
        await self.create_signal(client, take_profit_pct=5)
        await self.create_signal(client, n=2, token="BTC", entry_price=60000)

        response = await client.post(
            "/api/positions/evaluate", headers={"Authorization": f"Bearer {SECRET}"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["evaluated"] == 2
        assert [c["reason"] for c in body["closed"]] == ["take_profit"]
        assert body["skipped"] == 1
        assert body["errors"] == 0

    @pytest.mark.asyncio
    async def test_health(self, client):
        await self.create_signal(client)

        body = (await client.get("/api/health")).json()
        assert body["open_positions"] == 1
        assert body["signals_created"] == 1
        assert body["webhooks"]["running"] is False
        assert body["redis"] is False

        assert (await client.get("/health")).json() == {"status": "healthy"}
        assert (await client.get("/")).json()["name"] == "Signal Settlement"
