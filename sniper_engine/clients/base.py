"""
Capabilities the engine consumes from its collaborators.

Concrete adapters live next to this module; the core only depends on these
protocols so tests can pass doubles.
"""

from typing import Any, Optional, Protocol, Sequence

from ..models import SubjectMetrics, WalletAccount


class MarketDataSource(Protocol):
    async def fetch_recent(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Recent signal-like records. Raises DataUnavailable."""
        ...

    async def fetch_subject(self, subject_id: str) -> SubjectMetrics:
        """Descriptive metrics for one subject. Raises DataUnavailable."""
        ...

    async def fetch_price(self, subject_id: str) -> float:
        """Current price of one subject. Raises DataUnavailable."""
        ...

    async def fetch_volume(self) -> list[dict[str, Any]]:
        """Pair records with volume breakdowns. Raises DataUnavailable."""
        ...


class TradeExecutor(Protocol):
    async def buy(
        self,
        account: Optional[WalletAccount],
        subject_id: str,
        amount: float,
        max_slippage: float
    ) -> str:
        """Buy `amount` worth of the subject. Raises ExecutionFailed."""
        ...

    async def sell(
        self,
        account: Optional[WalletAccount],
        subject_id: str,
        amount: float,
        max_slippage: float
    ) -> str:
        """Sell `amount` of the subject. Raises ExecutionFailed."""
        ...


class FeeSampleSource(Protocol):
    async def recent_samples(self) -> Sequence[float]:
        ...
