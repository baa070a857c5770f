"""
Tests for priority fee estimation.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sniper_engine.utils.fee_estimator import DATA_UNAVAILABLE_NOTE, FeeEstimator


@pytest.fixture
def estimator():
    return FeeEstimator()


class TestFeeEstimate:
    """Tests for the sample-window estimate."""

    def test_empty_sample_returns_defaults(self, estimator):
        estimate = estimator.estimate([])

        assert estimate.compute_units == 200_000
        assert estimate.unit_price == 1_000
        # 5000 lamports base + 200k CU * 1000 micro-lamports = 205000 lamports
        assert estimate.total_fee == pytest.approx(0.000205)
        assert estimate.recommendation_notes == [DATA_UNAVAILABLE_NOTE]

    def test_median_floored(self, estimator):
        assert estimator.estimate([10, 20, 30]).unit_price == 1_000
        assert estimator.estimate([2_000, 3_000, 4_000]).unit_price == 3_000

    def test_high_congestion_note(self, estimator):
        notes = estimator.estimate([20_000, 25_000, 30_000]).recommendation_notes
        assert any("High network congestion" in n for n in notes)

    def test_low_congestion_note(self, estimator):
        notes = estimator.estimate([100, 200, 300]).recommendation_notes
        assert any("Low network congestion" in n for n in notes)

    def test_moderate_note(self, estimator):
        notes = estimator.estimate([4_000, 5_000, 6_000]).recommendation_notes
        assert notes == ["Moderate network activity - current priority fee is optimal"]

    def test_spike_warning(self, estimator):
        samples = [1_000] * 19 + [200_000]
        notes = estimator.estimate(samples).recommendation_notes
        assert any("Fee spike" in n for n in notes)

    def test_invalid_samples_ignored(self, estimator):
        estimate = estimator.estimate([float("nan"), -5, 3_000])
        assert estimate.unit_price == 3_000

    def test_total_fee_always_positive(self, estimator):
        assert estimator.estimate([0, 0, 0]).total_fee > 0


class TestFeeTiers:
    """Tests for the tier projection."""

    def test_four_tiers_with_increasing_cost(self, estimator):
        tiers = estimator.tiers([2_000])

        assert [t.level for t in tiers] == ["Slow", "Average", "Fast", "Instant"]
        assert [t.multiplier for t in tiers] == [1, 2, 5, 10]
        costs = [t.cost for t in tiers]
        assert costs == sorted(costs)
        assert costs[0] == pytest.approx(estimator.estimate([2_000]).total_fee)


class TestFeeRefresh:
    """Tests for fetching samples."""

    @pytest.mark.asyncio
    async def test_refresh_caches_latest(self):
        source = AsyncMock()
        source.recent_samples.return_value = [5_000, 5_000, 5_000]
        estimator = FeeEstimator(sample_source=source)

        estimate = await estimator.refresh()

        assert estimate.unit_price == 5_000
        assert estimator.latest is estimate
        assert estimator.tiers()[0].cost == pytest.approx(estimate.total_fee)

    @pytest.mark.asyncio
    async def test_refresh_never_raises(self):
        source = AsyncMock()
        source.recent_samples.side_effect = RuntimeError("rpc down")
        estimator = FeeEstimator(sample_source=source)

        estimate = await estimator.refresh()

        assert estimate.recommendation_notes == [DATA_UNAVAILABLE_NOTE]

    @pytest.mark.asyncio
    async def test_refresh_timeout_degrades(self):
        async def slow():
            await asyncio.sleep(5)
            return [1]

        source = AsyncMock()
        source.recent_samples.side_effect = slow
        estimator = FeeEstimator(sample_source=source, timeout=0.05)

        estimate = await estimator.refresh()

        assert estimate.unit_price == 1_000
        assert DATA_UNAVAILABLE_NOTE in estimate.recommendation_notes

    def test_latest_defaults_before_refresh(self, estimator):
        assert estimator.latest.recommendation_notes == [DATA_UNAVAILABLE_NOTE]
