"""
Position lifecycle management.

Positions move through pending -> open -> closing -> closed, with failed
reachable from pending or closing. Buys and sells run outside the state lock
with bounded timeouts; every state change happens under the lock.
"""

import asyncio
import time
import uuid
from typing import Callable, Iterable, Optional

import numpy as np

from ..clients.base import MarketDataSource, TradeExecutor
from ..config import SettingsStore, TradingSettings
from ..errors import DataUnavailable, InvalidTransition
from ..models import ExitReason, PerformanceMetrics, Position, PositionState, Target
from ..risk.admission import AdmissionController, AdmissionDecision
from ..state import EngineState
from ..utils.logger import get_logger, TradeLogger
from ..utils.notifier import LogNotifier, Notifier

logger = get_logger("lifecycle")
trade_logger = TradeLogger()

TRANSITIONS = {
    PositionState.PENDING: {PositionState.OPEN, PositionState.FAILED},
    PositionState.OPEN: {PositionState.CLOSING},
    PositionState.CLOSING: {PositionState.CLOSED, PositionState.OPEN, PositionState.FAILED},
    PositionState.CLOSED: set(),
    PositionState.FAILED: set(),
}


def transition(position: Position, new_state: PositionState) -> None:
    if new_state not in TRANSITIONS[position.state]:
        raise InvalidTransition(
            f"Position {position.id}: {position.state.value} -> {new_state.value}"
        )
    position.state = new_state


def performance_metrics(positions: Iterable[Position]) -> PerformanceMetrics:
    """Aggregate closed positions. Percent figures are per-trade pnl_percent."""
    closed = [
        p for p in positions
        if p.state == PositionState.CLOSED and p.pnl_percent is not None
    ]
    if not closed:
        return PerformanceMetrics()

    pnl_abs = np.array([p.pnl_absolute or 0.0 for p in closed])
    pnl_pct = np.array([p.pnl_percent for p in closed])
    wins = pnl_pct[pnl_abs > 0]
    losses = pnl_pct[pnl_abs < 0]

    return PerformanceMetrics(
        total_trades=len(closed),
        profitable_trades=int(wins.size),
        losing_trades=int(losses.size),
        win_rate=float(wins.size / len(closed) * 100),
        total_pnl=float(np.sum(pnl_abs)),
        average_win=float(np.mean(wins)) if wins.size else 0.0,
        average_loss=float(np.mean(losses)) if losses.size else 0.0,
        best_trade=float(np.max(pnl_pct)),
        worst_trade=float(np.min(pnl_pct)),
    )


class PositionLifecycleManager:
    """
    Opens, monitors and closes positions.

    Key responsibilities:
    - Reserve a pending position atomically with the admission decision
    - Execute buys/sells through the TradeExecutor with timeouts
    - Re-price open positions and trigger take-profit / stop-loss exits
    - Revert failed sells to open so the next tick can retry
    """

    def __init__(
        self,
        state: EngineState,
        executor: TradeExecutor,
        market_data: MarketDataSource,
        admission: AdmissionController,
        settings_store: SettingsStore,
        notifier: Optional[Notifier] = None,
        call_timeout: float = 10.0,
        clock: Callable[[], float] = time.time
    ):
        self.state = state
        self.executor = executor
        self.market_data = market_data
        self.admission = admission
        self.settings_store = settings_store
        self.notifier = notifier or LogNotifier()
        self.call_timeout = call_timeout
        self.clock = clock

    async def try_open(
        self,
        target: Target,
        settings: Optional[TradingSettings] = None
    ) -> tuple[AdmissionDecision, Optional[Position]]:
        """
        Admit a target and execute its buy.

        Returns:
            (decision, position); position is None when denied
        """
        settings = settings or self.settings_store.current
        now = self.clock()

        async with self.state.lock:
            decision = self.admission.evaluate(target, self.state.positions.values(), settings, now)
            position = None
            if decision.allowed:
                amount = min(target.max_size, settings.buy_amount)
                position = Position(
                    id=str(uuid.uuid4())[:8],
                    subject_id=target.subject_id,
                    symbol=target.symbol,
                    size=amount,
                    entry_price=target.price,
                    current_price=target.price,
                    opened_at=now,
                )
                self.state.add_position(position)
                # Executed once, at first ranking; a fresh scan re-ranks it
                self.state.ranker.remove(target.subject_id)

        await self.admission.announce(target, decision)
        if position is None:
            return decision, None

        error: Optional[str] = None
        signature = ""
        try:
            signature = await asyncio.wait_for(
                self.executor.buy(None, target.subject_id, position.size, target.max_slippage),
                timeout=self.call_timeout
            )
        except asyncio.TimeoutError:
            error = f"Buy timed out after {self.call_timeout}s"
        except asyncio.CancelledError:
            async with self.state.lock:
                self._fail(position, "Buy cancelled")
            raise
        except Exception as e:
            error = str(e) or type(e).__name__

        entry_price = await self._entry_quote(target) if error is None else None

        async with self.state.lock:
            if error is None:
                transition(position, PositionState.OPEN)
                position.entry_signature = signature
                position.entry_price = entry_price
                position.current_price = entry_price
            else:
                self._fail(position, error)

        if error is None:
            trade_logger.position_opened(
                position.id, position.subject_id, position.size, position.entry_price, signature
            )
            await self.notifier.notify(
                "position_opened",
                f"Bought {position.symbol}",
                position_id=position.id,
                size=position.size,
                entry_price=position.entry_price,
                signature=signature
            )
        else:
            trade_logger.position_failed(position.id, position.subject_id, "Buy failed", error)
            await self.notifier.notify(
                "position_failed",
                f"Buy failed for {position.symbol}",
                position_id=position.id,
                error=error
            )

        return decision, position

    async def evaluate_position(
        self,
        position_id: str,
        settings: Optional[TradingSettings] = None
    ) -> Optional[ExitReason]:
        """
        Re-price an open position and move it to closing on a trigger.

        Returns:
            The exit reason if an exit was triggered, else None
        """
        settings = settings or self.settings_store.current

        async with self.state.lock:
            position = self.state.positions.get(position_id)
            if position is None or position.state != PositionState.OPEN:
                return None
            subject_id = position.subject_id

        try:
            price = await asyncio.wait_for(
                self.market_data.fetch_price(subject_id),
                timeout=self.call_timeout
            )
        except (DataUnavailable, asyncio.TimeoutError) as e:
            logger.debug(
                "Price unavailable, skipping tick",
                extra={"position_id": position_id, "error": str(e)}
            )
            return None

        if not price or price <= 0:
            return None

        async with self.state.lock:
            if position.state != PositionState.OPEN:
                return None

            position.current_price = price
            if position.entry_price <= 0:
                # Buy landed without a reference price; use the first quote
                position.entry_price = price
                return None

            position.pnl_absolute = (price - position.entry_price) * position.size
            position.pnl_percent = (price - position.entry_price) / position.entry_price * 100

            reason = None
            if position.pnl_percent >= settings.take_profit_pct:
                reason = ExitReason.PROFIT
            elif position.pnl_percent <= -settings.stop_loss_pct:
                reason = ExitReason.STOP_LOSS

            if reason is not None:
                transition(position, PositionState.CLOSING)
                position.exit_reason = reason
            pnl_percent = position.pnl_percent

        if reason is not None:
            trade_logger.exit_triggered(position_id, subject_id, reason.value, pnl_percent)
        return reason

    async def execute_exit(
        self,
        position_id: str,
        settings: Optional[TradingSettings] = None
    ) -> Position:
        """
        Sell a closing position.

        Success closes it; failure puts it back to open for the next tick.
        """
        settings = settings or self.settings_store.current

        async with self.state.lock:
            position = self.state.positions[position_id]
            if position.state != PositionState.CLOSING:
                return position

        try:
            signature = await asyncio.wait_for(
                self.executor.sell(
                    None, position.subject_id, position.size, settings.sniper.max_slippage
                ),
                timeout=self.call_timeout
            )
        except asyncio.CancelledError:
            async with self.state.lock:
                transition(position, PositionState.OPEN)
                position.exit_reason = None
            raise
        except Exception as e:
            error = str(e) or type(e).__name__
            if isinstance(e, asyncio.TimeoutError):
                error = f"Sell timed out after {self.call_timeout}s"
            async with self.state.lock:
                transition(position, PositionState.OPEN)
                position.exit_reason = None
                position.error = error
            trade_logger.sell_failed(position.id, position.subject_id, error)
            return position

        async with self.state.lock:
            transition(position, PositionState.CLOSED)
            position.exit_signature = signature
            position.closed_at = self.clock()
            position.error = None
            self.state.release_subject(position)

        trade_logger.position_closed(
            position.id,
            position.subject_id,
            signature,
            position.pnl_absolute,
            position.pnl_percent,
            holding_seconds=position.closed_at - position.opened_at
        )
        await self.notifier.notify(
            "position_closed",
            f"Sold {position.symbol}",
            position_id=position.id,
            reason=position.exit_reason.value if position.exit_reason else None,
            pnl_percent=round(position.pnl_percent or 0.0, 2),
            signature=signature
        )
        return position

    async def close_position(
        self,
        position_id: str,
        reason: ExitReason = ExitReason.MANUAL
    ) -> Position:
        """
        Operator close.

        Closed, failed and already-closing positions are returned unchanged.

        Raises:
            KeyError: unknown position id
            InvalidTransition: the position is still pending
        """
        async with self.state.lock:
            position = self.state.positions[position_id]
            if position.state != PositionState.OPEN:
                if position.state == PositionState.PENDING:
                    raise InvalidTransition(f"Position {position_id} is still pending")
                return position
            transition(position, PositionState.CLOSING)
            position.exit_reason = reason
            if position.pnl_percent is None and position.entry_price > 0:
                # Never re-priced; book against the last known price
                position.pnl_absolute = (position.current_price - position.entry_price) * position.size
                position.pnl_percent = (
                    (position.current_price - position.entry_price) / position.entry_price * 100
                )

        trade_logger.exit_triggered(
            position_id, position.subject_id, reason.value, position.pnl_percent or 0.0
        )
        return await self.execute_exit(position_id)

    async def monitor_tick(self, settings: Optional[TradingSettings] = None) -> int:
        """
        Evaluate every open position concurrently and exit the triggered ones.

        Returns:
            Number of positions closed during this tick
        """
        settings = settings or self.settings_store.current

        async with self.state.lock:
            open_ids = [
                p.id for p in self.state.positions.values()
                if p.state == PositionState.OPEN
            ]

        if not open_ids:
            return 0

        results = await asyncio.gather(
            *(self._monitor_one(position_id, settings) for position_id in open_ids),
            return_exceptions=True
        )

        closed = 0
        for position_id, result in zip(open_ids, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Error monitoring position: {result}",
                    extra={"position_id": position_id}
                )
            elif result:
                closed += 1
        return closed

    async def _monitor_one(self, position_id: str, settings: TradingSettings) -> bool:
        reason = await self.evaluate_position(position_id, settings)
        if reason is None:
            return False
        position = await self.execute_exit(position_id, settings)
        return position.state == PositionState.CLOSED

    async def get_performance_metrics(self) -> PerformanceMetrics:
        return performance_metrics(await self.state.snapshot_positions())

    async def _entry_quote(self, target: Target) -> float:
        """Price at the moment the buy landed; 0.0 defers to the first monitor quote."""
        try:
            price = await asyncio.wait_for(
                self.market_data.fetch_price(target.subject_id),
                timeout=self.call_timeout
            )
        except (DataUnavailable, asyncio.TimeoutError) as e:
            logger.warning(
                f"No entry quote for {target.symbol}, re-baselining on next tick",
                extra={"subject_id": target.subject_id, "error": str(e)}
            )
            return 0.0
        return price if price and price > 0 else 0.0

    def _fail(self, position: Position, error: str) -> None:
        transition(position, PositionState.FAILED)
        position.error = error
        self.state.release_subject(position)
