"""
Shared engine state.

Targets, positions and the volume map are read and written by several
periodic loops. Every mutation happens inside `async with state.lock`;
reporting reads go through the snapshot methods.
"""

import asyncio
import copy
from typing import Optional

from .models import MarketVolume, Position, Target, VolumeTrade
from .signals.ranker import TargetRanker


class EngineState:
    """Lock-guarded store of targets, positions and volume data."""

    def __init__(self, ranker_capacity: int = 20, max_volume_trades: int = 1_000):
        self.lock = asyncio.Lock()
        self.ranker = TargetRanker(ranker_capacity)
        self.positions: dict[str, Position] = {}
        self.subject_index: dict[str, str] = {}  # subject_id -> active position id
        self.volume: dict[str, MarketVolume] = {}
        self.volume_trades: list[VolumeTrade] = []
        self.max_volume_trades = max_volume_trades

    # Helpers below assume the caller holds the lock

    def active_positions(self) -> list[Position]:
        return [p for p in self.positions.values() if p.is_active]

    def active_position_for(self, subject_id: str) -> Optional[Position]:
        position_id = self.subject_index.get(subject_id)
        if position_id is None:
            return None
        position = self.positions.get(position_id)
        if position is None or not position.is_active:
            return None
        return position

    def last_opened_at(self) -> Optional[float]:
        if not self.positions:
            return None
        return max(p.opened_at for p in self.positions.values())

    def add_position(self, position: Position) -> None:
        self.positions[position.id] = position
        self.subject_index[position.subject_id] = position.id

    def release_subject(self, position: Position) -> None:
        if self.subject_index.get(position.subject_id) == position.id:
            del self.subject_index[position.subject_id]

    def record_volume_trade(self, trade: VolumeTrade) -> None:
        self.volume_trades.append(trade)
        if len(self.volume_trades) > self.max_volume_trades:
            del self.volume_trades[: len(self.volume_trades) - self.max_volume_trades]

    # Snapshots

    async def snapshot_targets(self) -> list[Target]:
        async with self.lock:
            return [copy.copy(t) for t in self.ranker.list()]

    async def snapshot_positions(self) -> list[Position]:
        async with self.lock:
            return sorted(
                (copy.copy(p) for p in self.positions.values()),
                key=lambda p: p.opened_at,
                reverse=True
            )

    async def snapshot_volume(self) -> list[MarketVolume]:
        async with self.lock:
            return [copy.copy(v) for v in self.volume.values()]

    async def snapshot_volume_trades(self) -> list[VolumeTrade]:
        async with self.lock:
            return [copy.deepcopy(t) for t in self.volume_trades]
