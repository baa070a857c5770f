"""
Tests for the volume strategies.
"""

from unittest.mock import AsyncMock

import pytest

from sniper_engine.config import SettingsStore
from sniper_engine.errors import ExecutionFailed
from sniper_engine.execution.volume_trader import VolumeTrader, merge_volume_rows
from sniper_engine.models import MarketVolume
from sniper_engine.state import EngineState


def pair(address: str = "mint-v", volume_1h: float = 50_000, volume_24h: float = 240_000) -> dict:
    return {
        "baseToken": {"address": address, "symbol": "VOL"},
        "liquidity": {"usd": 100_000},
        "fdv": 1_000_000,
        "volume": {"h1": volume_1h, "h24": volume_24h},
        "priceChange": {"h1": 0.0, "h24": 0.0},
        "txns": {"h24": {"buys": 30, "sells": 20}},
    }


@pytest.fixture
def executor():
    executor = AsyncMock()
    executor.buy.return_value = "sig-buy"
    executor.sell.return_value = "sig-sell"
    return executor


@pytest.fixture
def market_data():
    source = AsyncMock()
    source.fetch_volume.return_value = [pair()]
    return source


@pytest.fixture
def store():
    return SettingsStore()


@pytest.fixture
def trader(executor, market_data, store):
    return VolumeTrader(
        state=EngineState(),
        executor=executor,
        market_data=market_data,
        settings_store=store,
        clock=lambda: 1_000.0
    )


class TestConditions:
    """Tests for trade conditions."""

    def test_spike_triggers(self, trader, store):
        row = MarketVolume("m", "M", volume_1h=50_000, volume_24h=240_000)
        assert trader.should_trade(row, store.current.strategy("volume_spike"), None, 1_000.0)

    def test_below_threshold(self, trader, store):
        row = MarketVolume("m", "M", volume_1h=5_000, volume_24h=24_000)
        assert not trader.should_trade(row, store.current.strategy("volume_spike"), None, 1_000.0)

    def test_cooldown(self, trader, store):
        row = MarketVolume("m", "M", volume_1h=50_000, volume_24h=240_000)
        strategy = store.current.strategy("volume_spike")

        assert not trader.should_trade(row, strategy, 990.0, 1_000.0)
        assert trader.should_trade(row, strategy, 960.0, 1_000.0)

    def test_busy_market(self, trader, store):
        row = MarketVolume("m", "M", volume_1h=4_000, volume_24h=120_000, trades=150)
        assert trader.should_trade(row, store.current.strategy("volume_spike"), None, 1_000.0)

    @pytest.mark.parametrize("change,buy,sell,side", [
        (5.0, 1_000, 400, "buy"),
        (-5.0, 1_000, 400, "sell"),
        (0.0, 400, 1_000, "sell"),
        (0.0, 600, 400, "buy"),
    ])
    def test_decide_side(self, change, buy, sell, side):
        row = MarketVolume("m", "M", price_change_1h=change, buy_volume=buy, sell_volume=sell)
        assert VolumeTrader.decide_side(row) == side

    def test_trade_amount_capped_by_impact(self, trader, store):
        row = MarketVolume("m", "M", volume_24h=200_000, liquidity=2)
        # min(0.1 * 2, 5% of 2)
        assert trader.trade_amount(row, store.current.strategy("volume_spike")) == pytest.approx(0.1)

    def test_merge_rows(self):
        rows = [
            MarketVolume("m", "M", volume_1h=100, volume_24h=1_000, liquidity=5, trades=3),
            MarketVolume("m", "M", volume_1h=300, volume_24h=3_000, liquidity=9, trades=4),
        ]

        merged = merge_volume_rows(rows)["m"]

        assert merged.volume_1h == 200
        assert merged.volume_24h == 2_000
        assert merged.liquidity == 9
        assert merged.trades == 7


class TestTick:
    """Tests for a full strategy pass."""

    @pytest.mark.asyncio
    async def test_single_account_trade(self, trader, executor):
        trades = await trader.tick()

        # volume_spike fires; accumulation hits the per-subject cooldown; whale threshold not met
        assert len(trades) == 1
        trade = trades[0]
        assert trade.strategy == "volume_spike"
        assert trade.side == "buy"
        assert trade.status == "confirmed"
        assert trade.signatures == ["sig-buy"]
        assert trade.amount == pytest.approx(0.24)
        executor.buy.assert_awaited_once_with(None, "mint-v", pytest.approx(0.24), 2.0)

    @pytest.mark.asyncio
    async def test_volume_map_replaced(self, trader, market_data):
        await trader.tick()
        market_data.fetch_volume.return_value = [pair(volume_1h=1_000, volume_24h=24_000)]
        await trader.tick()

        rows = await trader.state.snapshot_volume()
        assert len(rows) == 1
        assert rows[0].volume_24h == 24_000

    @pytest.mark.asyncio
    async def test_delisted_pair_not_traded(self, executor, market_data, store):
        """A pair missing from the latest fetch drops out of the map and is not traded again."""
        now = [1_000.0]
        trader = VolumeTrader(
            state=EngineState(),
            executor=executor,
            market_data=market_data,
            settings_store=store,
            clock=lambda: now[0]
        )
        assert len(await trader.tick()) == 1

        market_data.fetch_volume.return_value = []
        for _ in range(3):
            now[0] += 120
            assert await trader.tick() == []

        assert await trader.state.snapshot_volume() == []
        assert executor.buy.await_count == 1
        assert executor.sell.await_count == 0

    @pytest.mark.asyncio
    async def test_failed_trade_recorded(self, trader, executor):
        executor.buy.side_effect = ExecutionFailed("rejected")

        trades = await trader.tick()

        assert trades[0].status == "failed"
        assert trades[0].error == "rejected"
        metrics = await trader.get_performance_metrics()
        assert metrics["total_trades"] == 1
        assert metrics["successful_trades"] == 0
        assert metrics["success_rate"] == 0.0

    @pytest.mark.asyncio
    async def test_multi_account_fan_out(self, executor, market_data, store):
        coordinator = AsyncMock()
        coordinator.coordinated_buy.return_value = ["sig-a", "sig-b"]
        trader = VolumeTrader(
            state=EngineState(),
            executor=executor,
            market_data=market_data,
            settings_store=store,
            batch_coordinator=coordinator,
            batch_name="volume",
            clock=lambda: 1_000.0
        )

        trades = await trader.tick()

        assert trader.multi_account
        assert trades[0].signatures == ["sig-a", "sig-b"]
        coordinator.coordinated_buy.assert_awaited_once_with("volume", "mint-v", pytest.approx(0.24), 2.0)
        executor.buy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_metrics(self, trader):
        await trader.tick()

        metrics = await trader.get_performance_metrics()

        assert metrics["successful_trades"] == 1
        assert metrics["success_rate"] == 100.0
        assert metrics["buy_count"] == 1
        assert metrics["last_trade"] == 1_000.0
