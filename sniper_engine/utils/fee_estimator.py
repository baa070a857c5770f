"""
Priority fee estimator.
Turns recent network prioritization-fee samples into an execution cost.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from .logger import get_logger

logger = get_logger("fees")

LAMPORTS_PER_SOL = 1_000_000_000
MICRO_LAMPORTS_PER_LAMPORT = 1_000_000

DATA_UNAVAILABLE_NOTE = "Using default fee settings - network data unavailable"

PRIORITY_TIERS = (
    ("Slow", 1, "~30 seconds"),
    ("Average", 2, "~15 seconds"),
    ("Fast", 5, "~5 seconds"),
    ("Instant", 10, "~2 seconds"),
)


@dataclass
class FeeEstimate:
    """Recommended execution-priority cost."""
    compute_units: int
    unit_price: float  # micro-lamports per compute unit
    total_fee: float  # SOL, base signature fee included
    recommendation_notes: list[str] = field(default_factory=list)


@dataclass
class FeeTier:
    """One speed/cost option for operators."""
    level: str
    multiplier: int
    speed: str
    cost: float  # SOL


class FeeEstimator:
    """
    Estimator for priority fees.

    Solana fee structure:
    - Base fee: 5000 lamports per signature
    - Priority fee: compute units x unit price (micro-lamports)
    """

    def __init__(
        self,
        sample_source=None,
        compute_units: int = 200_000,
        floor_unit_price: float = 1_000,
        low_band: float = 1_000,
        high_band: float = 10_000,
        spike_factor: float = 5.0,
        base_fee_lamports: int = 5_000,
        timeout: float = 5.0
    ):
        """
        Initialize fee estimator.

        Args:
            sample_source: Optional FeeSampleSource used by refresh()
            compute_units: Compute unit limit assumed per transaction
            floor_unit_price: Minimum unit price in micro-lamports
            low_band: Mean fee under which the network is considered quiet
            high_band: Mean fee over which the network is congested
            spike_factor: Max/mean ratio that counts as a fee spike
            base_fee_lamports: Signature fee added to every estimate
            timeout: Timeout for fetching samples
        """
        self.sample_source = sample_source
        self.compute_units = compute_units
        self.floor_unit_price = floor_unit_price
        self.low_band = low_band
        self.high_band = high_band
        self.spike_factor = spike_factor
        self.base_fee_lamports = base_fee_lamports
        self.timeout = timeout

        self._latest: Optional[FeeEstimate] = None
        self._samples: list[float] = []

    @property
    def latest(self) -> FeeEstimate:
        """Last refreshed estimate, or the defaults if never refreshed."""
        return self._latest or self.estimate([])

    def total_fee_for(self, unit_price: float, multiplier: float = 1.0) -> float:
        priority_lamports = self.compute_units * unit_price * multiplier / MICRO_LAMPORTS_PER_LAMPORT
        return (self.base_fee_lamports + priority_lamports) / LAMPORTS_PER_SOL

    def estimate(self, samples: Sequence[float]) -> FeeEstimate:
        """
        Calculate the recommended fee for a sample window.

        Args:
            samples: Recent prioritization fees (micro-lamports per CU)

        Returns:
            FeeEstimate; the defaults when the window is empty
        """
        fees = self._clean(samples)
        if fees.size == 0:
            return FeeEstimate(
                compute_units=self.compute_units,
                unit_price=self.floor_unit_price,
                total_fee=self.total_fee_for(self.floor_unit_price),
                recommendation_notes=[DATA_UNAVAILABLE_NOTE]
            )

        unit_price = max(float(np.median(fees)), self.floor_unit_price)

        return FeeEstimate(
            compute_units=self.compute_units,
            unit_price=unit_price,
            total_fee=self.total_fee_for(unit_price),
            recommendation_notes=self._recommendations(fees)
        )

    def tiers(self, samples: Optional[Sequence[float]] = None) -> list[FeeTier]:
        """Project costs for each priority tier from the same base fee."""
        base = self.estimate(self._samples if samples is None else samples).unit_price
        return [
            FeeTier(
                level=level,
                multiplier=multiplier,
                speed=speed,
                cost=self.total_fee_for(base, multiplier)
            )
            for level, multiplier, speed in PRIORITY_TIERS
        ]

    async def refresh(self) -> FeeEstimate:
        """Fetch fresh samples and cache the estimate. Never raises."""
        samples: Sequence[float] = []
        if self.sample_source is not None:
            try:
                samples = await asyncio.wait_for(
                    self.sample_source.recent_samples(),
                    timeout=self.timeout
                )
            except Exception as e:
                logger.warning(f"Fee samples unavailable: {e}")
                samples = []

        self._samples = list(samples)
        self._latest = self.estimate(samples)
        return self._latest

    def _recommendations(self, fees: np.ndarray) -> list[str]:
        notes: list[str] = []
        mean_fee = float(np.mean(fees))

        if mean_fee > self.high_band:
            notes.append("High network congestion detected - consider increasing priority fee")
        elif mean_fee < self.low_band:
            notes.append("Low network congestion - minimum priority fee should be sufficient")
        else:
            notes.append("Moderate network activity - current priority fee is optimal")

        if float(np.max(fees)) > mean_fee * self.spike_factor:
            notes.append("Fee spike detected - consider waiting for lower fees")

        return notes

    @staticmethod
    def _clean(samples: Sequence[float]) -> np.ndarray:
        if not samples:
            return np.array([], dtype=float)
        fees = np.asarray([float(s or 0) for s in samples], dtype=float)
        return fees[np.isfinite(fees) & (fees >= 0)]
