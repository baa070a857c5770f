"""
Tests for the HTTP control surface.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from sniper_engine.api.server import create_app
from sniper_engine.clients.simulated import SimulatedTradeExecutor, SimulatedWalletTransport
from sniper_engine.config import Config, WalletConfig
from sniper_engine.main import SniperEngine
from sniper_engine.models import WalletAccount


@pytest.fixture
def engine(tmp_path):
    funding = WalletAccount(public_addr="funder", secret="", label="funding")
    market_data = AsyncMock()
    market_data.fetch_recent.return_value = []
    engine = SniperEngine(
        config=Config(wallets=WalletConfig(
            batch_dir=str(tmp_path),
            transfer_pacing_seconds=0.0,
            jitter_min_seconds=0.0,
            jitter_max_seconds=0.0
        )),
        market_data=market_data,
        executor=SimulatedTradeExecutor(),
        transport=SimulatedWalletTransport({"funder": 5.0}, fee=0.0),
        funding_account=funding
    )
    return engine


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as client:
        yield client


class TestReadEndpoints:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_status(self, client):
        body = client.get("/api/status").json()
        assert body["simulation_mode"] is True
        assert body["loops"]["scanner"]["running"] is False

    def test_empty_targets_and_positions(self, client):
        assert client.get("/api/targets").json() == {"targets": [], "count": 0}
        assert client.get("/api/positions").json() == {"positions": [], "count": 0}

    def test_fees(self, client):
        body = client.get("/api/fees").json()
        assert len(body["tiers"]) == 4

    def test_performance(self, client):
        assert client.get("/api/performance").json()["total_trades"] == 0
        assert client.get("/api/volume/performance").json()["total_trades"] == 0


class TestSettingsEndpoints:
    """Tests for runtime settings updates."""

    def test_update_settings(self, client):
        response = client.put("/api/settings", json={"max_positions": 3})

        assert response.status_code == 200
        assert response.json()["max_positions"] == 3
        assert response.json()["version"] == 2

    def test_invalid_settings_rejected(self, client):
        response = client.put("/api/settings", json={"stop_loss_pct": 500})

        assert response.status_code == 422
        assert client.get("/api/settings").json()["version"] == 1

    def test_update_strategy(self, client):
        response = client.put("/api/strategies/momentum", json={"enabled": True})

        assert response.status_code == 200
        assert response.json()["enabled"] is True

    def test_unknown_strategy(self, client):
        assert client.put("/api/strategies/nope", json={"enabled": True}).status_code == 422


class TestPositionEndpoints:
    def test_close_unknown_position(self, client):
        assert client.post("/api/positions/missing/close").status_code == 404

    def test_unknown_loop(self, client):
        assert client.post("/api/loops/arbitrage/start").status_code == 404


class TestWalletEndpoints:
    """Tests for wallet batch endpoints."""

    def test_create_batch_hides_secrets(self, client):
        response = client.post("/api/wallets/batches", json={"batch_name": "api", "count": 2})

        assert response.status_code == 200
        body = response.json()
        assert body["total_accounts"] == 2
        assert all("secret" not in account for account in body["accounts"])

        listed = client.get("/api/wallets/batches").json()["batches"]
        assert [b["batch_name"] for b in listed] == ["api"]

    def test_duplicate_batch(self, client):
        client.post("/api/wallets/batches", json={"batch_name": "dup", "count": 1})
        response = client.post("/api/wallets/batches", json={"batch_name": "dup", "count": 1})
        assert response.status_code == 422

    def test_unknown_batch(self, client):
        response = client.post("/api/wallets/batches/ghost/fund", json={"amount_per_account": 0.1})
        assert response.status_code == 404

    def test_fund_buy_sweep(self, client):
        client.post("/api/wallets/batches", json={"batch_name": "flow", "count": 2})

        funded = client.post("/api/wallets/batches/flow/fund", json={"amount_per_account": 0.5})
        bought = client.post(
            "/api/wallets/batches/flow/buy", json={"subject_id": "mint-1", "amounts": 0.1}
        )
        swept = client.post("/api/wallets/batches/flow/sweep", json={})

        assert len(funded.json()["signatures"]) == 2
        assert len(bought.json()["signatures"]) == 2
        assert len(swept.json()["signatures"]) == 2

    def test_all_failed_batch_is_bad_gateway(self, client):
        client.post("/api/wallets/batches", json={"batch_name": "poor", "count": 1})

        response = client.post("/api/wallets/batches/poor/fund", json={"amount_per_account": 100.0})

        assert response.status_code == 502
        assert len(response.json()["errors"]) == 1
