"""
Tests for opportunity scoring.
"""

import pytest

from sniper_engine.config import TradingSettings
from sniper_engine.models import Signal, SignalKind, SubjectMetrics
from sniper_engine.signals.scorer import CreatorReputation, OpportunityScorer, ScoringWeights


@pytest.fixture
def settings():
    return TradingSettings()


@pytest.fixture
def scorer():
    return OpportunityScorer()


def make_signal(strength: float = 0.0, observed_at: float = 1_000.0, kind=SignalKind.NEW_LISTING) -> Signal:
    return Signal(
        kind=kind,
        subject_id="mint-1",
        symbol="TEST",
        strength=strength,
        confidence=0.5,
        observed_at=observed_at,
    )


def rich_metrics() -> SubjectMetrics:
    """Metrics that trigger every bonus condition."""
    return SubjectMetrics(
        price=0.001,
        liquidity=50_000,
        market_cap=200_000,
        volume_24h=500_000,
        social_links={"twitter": "https://x.com/test", "telegram": "https://t.me/test"},
        creator="trusted-dev",
        listed_at=950.0,
        bonding_progress=90.0,
    )


class TestOpportunityScorer:
    """Tests for priority calculation."""

    def test_zero_strength_without_bonuses_scores_zero(self, scorer, settings):
        """Strength 0 and no qualifying conditions gives priority 0 and no target."""
        priority, rationale = scorer.evaluate(make_signal(0.0), SubjectMetrics(), settings)

        assert priority == 0
        assert rationale == ""
        assert scorer.score(make_signal(0.0), SubjectMetrics(), settings, estimated_fee=0.00001) is None

    def test_priority_clamped_to_100(self, settings):
        """Bonuses summing past 100 are clamped."""
        weights = ScoringWeights(new_listing_bonus=80, liquidity_floor_bonus=80)
        scorer = OpportunityScorer(weights, CreatorReputation(trusted=["trusted-dev"]))

        target = scorer.score(make_signal(100.0), rich_metrics(), settings, estimated_fee=0.00001)

        assert target is not None
        assert target.priority == 100

    def test_rationale_in_evaluation_order(self, settings):
        scorer = OpportunityScorer(reputation=CreatorReputation(trusted=["trusted-dev"]))

        _, rationale = scorer.evaluate(make_signal(50.0), rich_metrics(), settings)

        assert rationale.split("; ") == [
            "Signal strength: 50.00",
            "Recent listing",
            "Sufficient liquidity",
            "Low liquidity potential",
            "Low market cap potential",
            "Good volume",
            "Near migration",
            "Strong social presence",
            "Reputable creator",
        ]

    def test_scoring_is_deterministic(self, scorer, settings):
        first = scorer.score(make_signal(60.0), rich_metrics(), settings, estimated_fee=0.00001)
        second = scorer.score(make_signal(60.0), rich_metrics(), settings, estimated_fee=0.00001)

        assert first == second

    def test_below_floor_returns_none(self, scorer, settings):
        """Strength 50 alone gives 15, below the discovery floor of 30."""
        assert scorer.score(make_signal(50.0), SubjectMetrics(), settings, estimated_fee=0.00001) is None

    def test_explicit_execution_floor(self, scorer, settings):
        metrics = SubjectMetrics(liquidity=20_000, market_cap=500_000)
        # 0.3 * 50 + 20 + 10 + 15 = 60
        target = scorer.score(make_signal(50.0), metrics, settings, estimated_fee=0.00001)
        assert target is not None
        assert target.priority == pytest.approx(60.0)

        assert scorer.score(
            make_signal(50.0), metrics, settings, estimated_fee=0.00001,
            floor=settings.execution_floor
        ) is None

    def test_old_listing_gets_no_recency_bonus(self, scorer, settings):
        metrics = SubjectMetrics(listed_at=0.0)
        _, rationale = scorer.evaluate(make_signal(10.0, observed_at=1_000.0), metrics, settings)
        assert "Recent listing" not in rationale

    def test_unknown_creator_not_reputable_by_default(self, scorer, settings):
        metrics = SubjectMetrics(creator="someone")
        _, rationale = scorer.evaluate(make_signal(10.0), metrics, settings)
        assert "Reputable creator" not in rationale

    def test_blocked_creator_never_reputable(self):
        reputation = CreatorReputation(trusted=["dev"], blocked=["dev"])
        assert not reputation.is_reputable("dev")


class TestTargetConstruction:
    """Tests for target sizing and costs."""

    def test_sizes_and_slippage_from_settings(self, scorer, settings):
        target = scorer.score(make_signal(60.0), rich_metrics(), settings, estimated_fee=0.00001)

        assert target.min_size == pytest.approx(settings.buy_amount * 0.5)
        assert target.max_size == pytest.approx(settings.buy_amount * 2)
        assert target.max_slippage == settings.sniper.max_slippage
        assert target.created_at == 1_000.0

    def test_bonding_window_raises_fee(self, scorer, settings):
        near = scorer.score(make_signal(60.0), rich_metrics(), settings, estimated_fee=0.00001)

        metrics = rich_metrics()
        metrics.bonding_progress = 50.0
        far = scorer.score(make_signal(60.0), metrics, settings, estimated_fee=0.00001)

        assert near.estimated_fee == pytest.approx(0.000016)
        assert far.estimated_fee == pytest.approx(0.00001)

    def test_signal_clamps_strength_and_confidence(self):
        signal = Signal(
            kind=SignalKind.VOLUME_SPIKE,
            subject_id="x",
            symbol="X",
            strength=250.0,
            confidence=1.7,
            observed_at=0.0,
        )
        assert signal.strength == 100.0
        assert signal.confidence == 1.0
