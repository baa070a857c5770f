"""
Volume strategy trader.

Keeps the shared volume map fresh and places trades for every enabled volume
strategy whose conditions hold, either from the primary account or fanned out
across a wallet batch.
"""

import asyncio
import time
import uuid
from typing import Any, Callable, Optional

import numpy as np

from ..clients.base import MarketDataSource, TradeExecutor
from ..config import SettingsStore, Strategy, TradingSettings
from ..models import MarketVolume, VolumeTrade
from ..signals.normalizer import to_market_volume
from ..state import EngineState
from ..utils.logger import get_logger

logger = get_logger("volume")


def merge_volume_rows(rows: list[MarketVolume]) -> dict[str, MarketVolume]:
    """Collapse rows for the same subject: volumes averaged, liquidity max, trades summed."""
    merged: dict[str, MarketVolume] = {}
    for row in rows:
        existing = merged.get(row.subject_id)
        if existing is None:
            merged[row.subject_id] = row
            continue
        existing.volume_1h = (existing.volume_1h + row.volume_1h) / 2
        existing.volume_24h = (existing.volume_24h + row.volume_24h) / 2
        existing.liquidity = max(existing.liquidity, row.liquidity)
        existing.trades += row.trades
    return merged


class VolumeTrader:
    """
    Runs the volume strategies.

    Strategies:
    - volume_spike: sudden volume increases
    - accumulation: consistent volume
    - momentum: strong volume momentum
    - whale_watching: large volume movements
    """

    def __init__(
        self,
        state: EngineState,
        executor: TradeExecutor,
        market_data: MarketDataSource,
        settings_store: SettingsStore,
        batch_coordinator=None,
        batch_name: Optional[str] = None,
        base_amount: float = 0.1,
        spike_ratio: float = 3.0,
        momentum_pct: float = 5.0,
        call_timeout: float = 10.0,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize volume trader.

        Args:
            state: Shared engine state
            executor: Primary-account trade executor
            market_data: Source of pair volume records
            settings_store: Holder of the strategy configuration
            batch_coordinator: Optional WalletBatchCoordinator for multi-account trading
            batch_name: Batch used when multi-account trading is active
            base_amount: Base trade size in SOL
            spike_ratio: 1h volume over average hourly volume that counts as a spike
            momentum_pct: Absolute 1h price change that counts as momentum
            call_timeout: Timeout for data and execution calls
            clock: Time source
        """
        self.state = state
        self.executor = executor
        self.market_data = market_data
        self.settings_store = settings_store
        self.batch_coordinator = batch_coordinator
        self.batch_name = batch_name
        self.base_amount = base_amount
        self.spike_ratio = spike_ratio
        self.momentum_pct = momentum_pct
        self.call_timeout = call_timeout
        self.clock = clock

    @property
    def multi_account(self) -> bool:
        return self.batch_coordinator is not None and bool(self.batch_name)

    async def refresh_volume(self) -> int:
        """Fetch pair records and replace the volume map with them."""
        records = await asyncio.wait_for(self.market_data.fetch_volume(), timeout=self.call_timeout)
        rows = [row for row in (to_market_volume(r) for r in records) if row is not None]
        merged = merge_volume_rows(rows)

        async with self.state.lock:
            self.state.volume = merged
        return len(merged)

    def should_trade(
        self,
        row: MarketVolume,
        strategy: Strategy,
        last_trade_at: Optional[float],
        now: float
    ) -> bool:
        if row.volume_24h < strategy.min_volume_threshold:
            return False

        if last_trade_at is not None and (now - last_trade_at) * 1000 < strategy.cooldown_ms:
            return False

        avg_hourly = row.avg_hourly_volume
        if avg_hourly > 0 and row.volume_1h / avg_hourly > self.spike_ratio:
            return True

        if abs(row.price_change_1h) > self.momentum_pct and row.volume_1h > strategy.min_volume_threshold:
            return True

        if row.volume_24h > strategy.min_volume_threshold * 2 and row.trades > 100:
            return True

        return False

    @staticmethod
    def decide_side(row: MarketVolume) -> str:
        # Buy on positive momentum with buy pressure
        if row.price_change_1h > 2 and row.buy_volume > row.sell_volume * 1.5:
            return "buy"
        # Sell on negative momentum or distribution
        if row.price_change_1h < -2 or row.sell_volume > row.buy_volume * 1.5:
            return "sell"
        return "buy"

    def trade_amount(self, row: MarketVolume, strategy: Strategy) -> float:
        volume_multiplier = min(row.volume_24h / 100_000, 5)
        impact_amount = strategy.target_impact / 100 * row.liquidity
        return min(self.base_amount * volume_multiplier, impact_amount)

    async def tick(self, settings: Optional[TradingSettings] = None) -> list[VolumeTrade]:
        """One loop iteration: refresh the map, then run each enabled strategy."""
        settings = settings or self.settings_store.current
        await self.refresh_volume()

        async with self.state.lock:
            rows = list(self.state.volume.values())

        placed: list[VolumeTrade] = []
        for strategy in settings.enabled_strategies():
            for row in rows:
                try:
                    trade = await self._maybe_trade(row, strategy)
                except Exception as e:
                    logger.error(
                        f"Volume strategy error: {e}",
                        extra={"strategy": strategy.name, "subject_id": row.subject_id}
                    )
                    continue
                if trade is not None:
                    placed.append(trade)
        return placed

    async def _maybe_trade(self, row: MarketVolume, strategy: Strategy) -> Optional[VolumeTrade]:
        now = self.clock()

        async with self.state.lock:
            last = [t.timestamp for t in self.state.volume_trades if t.subject_id == row.subject_id]
            if not self.should_trade(row, strategy, max(last) if last else None, now):
                return None

            amount = self.trade_amount(row, strategy)
            if amount <= 0:
                return None

            trade = VolumeTrade(
                id=str(uuid.uuid4())[:8],
                subject_id=row.subject_id,
                symbol=row.symbol,
                side=self.decide_side(row),
                amount=amount,
                strategy=strategy.name,
                timestamp=now,
                volume=row.volume_24h,
                impact=amount / row.liquidity * 100 if row.liquidity else 0.0,
            )
            self.state.record_volume_trade(trade)

        try:
            signatures = await self._execute(trade, strategy)
        except Exception as e:
            async with self.state.lock:
                trade.status = "failed"
                trade.error = str(e) or type(e).__name__
            logger.warning(
                f"Volume trade failed for {trade.symbol}: {trade.error}",
                extra={"trade_id": trade.id, "strategy": strategy.name}
            )
            return trade

        async with self.state.lock:
            trade.status = "confirmed"
            trade.signatures = signatures

        logger.info(
            f"Volume trade executed: {trade.side} {trade.amount:.4f} of {trade.symbol}",
            extra={
                "trade_id": trade.id,
                "strategy": strategy.name,
                "impact": trade.impact,
                "signatures": len(signatures)
            }
        )
        return trade

    async def _execute(self, trade: VolumeTrade, strategy: Strategy) -> list[str]:
        if self.multi_account:
            if trade.side == "buy":
                return await self.batch_coordinator.coordinated_buy(
                    self.batch_name, trade.subject_id, trade.amount, strategy.max_slippage
                )
            return await self.batch_coordinator.coordinated_sell(
                self.batch_name, trade.subject_id, trade.amount, strategy.max_slippage
            )

        call = self.executor.buy if trade.side == "buy" else self.executor.sell
        signature = await asyncio.wait_for(
            call(None, trade.subject_id, trade.amount, strategy.max_slippage),
            timeout=self.call_timeout
        )
        return [signature]

    async def get_performance_metrics(self) -> dict[str, Any]:
        trades = await self.state.snapshot_volume_trades()
        successful = [t for t in trades if t.status == "confirmed"]

        return {
            "total_trades": len(trades),
            "successful_trades": len(successful),
            "success_rate": len(successful) / len(trades) * 100 if trades else 0.0,
            "total_volume": float(np.sum([t.volume for t in successful])) if successful else 0.0,
            "average_impact": float(np.mean([t.impact for t in successful])) if successful else 0.0,
            "buy_count": sum(1 for t in successful if t.side == "buy"),
            "sell_count": sum(1 for t in successful if t.side == "sell"),
            "last_trade": max((t.timestamp for t in trades), default=None),
        }
