"""
Opportunity scorer.

Combines a signal with the subject's descriptive metrics into a prioritized
Target. Scoring is a pure function: same inputs, same priority and rationale.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from ..config import TradingSettings
from ..models import Signal, SubjectMetrics, Target, clamp


@dataclass(frozen=True)
class ScoringWeights:
    """Contribution of each qualifying condition to a target's priority."""
    strength_weight: float = 0.3
    new_listing_bonus: float = 25.0
    max_listing_age_seconds: float = 300.0
    liquidity_floor_bonus: float = 20.0
    low_liquidity_ceiling: float = 100_000.0
    low_liquidity_bonus: float = 10.0
    low_market_cap_ceiling: float = 1_000_000.0
    low_market_cap_bonus: float = 15.0
    volume_ratio: float = 0.5  # volume_24h / market_cap
    volume_ratio_bonus: float = 15.0
    bonding_window: tuple[float, float] = (80.0, 95.0)
    bonding_bonus: float = 15.0
    bonding_fee_multiplier: float = 1.6
    social_bonus: float = 10.0
    creator_bonus: float = 10.0
    min_size_factor: float = 0.5
    max_size_factor: float = 2.0


class CreatorReputation:
    """Allow/deny lists of creator identities."""

    def __init__(self, trusted: Iterable[str] = (), blocked: Iterable[str] = ()):
        self.trusted = frozenset(trusted)
        self.blocked = frozenset(blocked)

    def is_reputable(self, creator: str) -> bool:
        return bool(creator) and creator in self.trusted and creator not in self.blocked


class OpportunityScorer:
    """
    Scores signals into targets.

    Conditions are checked in a fixed order and each triggered one appends
    its description to the rationale.
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        reputation: Optional[CreatorReputation] = None
    ):
        self.weights = weights or ScoringWeights()
        self.reputation = reputation or CreatorReputation()

    def evaluate(
        self,
        signal: Signal,
        metrics: SubjectMetrics,
        settings: TradingSettings
    ) -> tuple[float, str]:
        """
        Compute priority and rationale.

        Returns:
            (priority clamped to [0, 100], "; "-joined rationale)
        """
        w = self.weights
        priority = 0.0
        reasons: list[str] = []

        if signal.strength > 0:
            priority += signal.strength * w.strength_weight
            reasons.append(f"Signal strength: {signal.strength:.2f}")

        if metrics.listed_at is not None:
            age = signal.observed_at - metrics.listed_at
            if 0 <= age < w.max_listing_age_seconds:
                priority += w.new_listing_bonus
                reasons.append("Recent listing")

        if metrics.liquidity >= settings.min_liquidity and metrics.liquidity > 0:
            priority += w.liquidity_floor_bonus
            reasons.append("Sufficient liquidity")

        if 0 < metrics.liquidity < w.low_liquidity_ceiling:
            priority += w.low_liquidity_bonus
            reasons.append("Low liquidity potential")

        if 0 < metrics.market_cap < w.low_market_cap_ceiling:
            priority += w.low_market_cap_bonus
            reasons.append("Low market cap potential")

        if metrics.volume_24h > metrics.market_cap * w.volume_ratio and metrics.volume_24h > 0:
            priority += w.volume_ratio_bonus
            reasons.append("Good volume")

        if self._in_bonding_window(metrics):
            priority += w.bonding_bonus
            reasons.append("Near migration")

        if metrics.has_social_presence:
            priority += w.social_bonus
            reasons.append("Strong social presence")

        if self.reputation.is_reputable(metrics.creator):
            priority += w.creator_bonus
            reasons.append("Reputable creator")

        return clamp(priority, 0.0, 100.0), "; ".join(reasons)

    def score(
        self,
        signal: Signal,
        metrics: SubjectMetrics,
        settings: TradingSettings,
        estimated_fee: float,
        floor: Optional[float] = None
    ) -> Optional[Target]:
        """
        Build a Target, or None when the priority is below `floor`.

        Args:
            signal: Normalized observation
            metrics: Freshly fetched (or cached) subject metrics
            settings: Trading settings of the current cycle
            estimated_fee: Current execution cost in SOL
            floor: Minimum priority; defaults to the discovery floor
        """
        if floor is None:
            floor = settings.discovery_floor

        priority, rationale = self.evaluate(signal, metrics, settings)
        if priority < floor:
            return None

        fee = estimated_fee
        if self._in_bonding_window(metrics):
            fee *= self.weights.bonding_fee_multiplier

        return Target(
            subject_id=signal.subject_id,
            symbol=signal.symbol,
            creator_id=metrics.creator,
            price=metrics.price,
            liquidity=metrics.liquidity,
            market_cap=metrics.market_cap,
            priority=priority,
            rationale=rationale,
            estimated_fee=fee,
            min_size=settings.buy_amount * self.weights.min_size_factor,
            max_size=settings.buy_amount * self.weights.max_size_factor,
            max_slippage=settings.sniper.max_slippage,
            created_at=signal.observed_at,
        )

    def _in_bonding_window(self, metrics: SubjectMetrics) -> bool:
        if metrics.bonding_progress is None:
            return False
        low, high = self.weights.bonding_window
        return low < metrics.bonding_progress < high
