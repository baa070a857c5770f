"""
Tests for the market data fallback chain.
"""

from unittest.mock import AsyncMock

import pytest

from sniper_engine.clients.market_data import FallbackMarketData
from sniper_engine.errors import DataUnavailable, RateLimited
from sniper_engine.models import SubjectMetrics


def source(name: str) -> AsyncMock:
    mock = AsyncMock()
    mock.name = name
    return mock


@pytest.fixture
def primary():
    return source("primary")


@pytest.fixture
def backup():
    return source("backup")


@pytest.fixture
def market(primary, backup):
    return FallbackMarketData([primary, backup])


class TestRecentRecords:
    @pytest.mark.asyncio
    async def test_merged_and_deduplicated(self, market, primary, backup):
        primary.fetch_recent.return_value = [{"mint": "a"}, {"mint": "b"}]
        backup.fetch_recent.return_value = [{"mint": "b"}, {"mint": "c"}]

        records = await market.fetch_recent()

        assert [r["mint"] for r in records] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_one_source_down(self, market, primary, backup):
        primary.fetch_recent.side_effect = DataUnavailable("down")
        backup.fetch_recent.return_value = [{"mint": "c"}]

        assert await market.fetch_recent() == [{"mint": "c"}]

    @pytest.mark.asyncio
    async def test_all_rate_limited(self, market, primary, backup):
        primary.fetch_recent.side_effect = RateLimited("slow", retry_after=2.0)
        backup.fetch_recent.side_effect = RateLimited("slow", retry_after=5.0)

        with pytest.raises(RateLimited) as exc_info:
            await market.fetch_recent()

        assert exc_info.value.retry_after == 5.0

    @pytest.mark.asyncio
    async def test_all_down(self, market, primary, backup):
        primary.fetch_recent.side_effect = DataUnavailable("down")
        backup.fetch_recent.side_effect = RateLimited("slow")

        with pytest.raises(DataUnavailable) as exc_info:
            await market.fetch_recent()

        assert not isinstance(exc_info.value, RateLimited)


class TestSubjectLookups:
    """Tests for ordered lookups and the last-good cache."""

    @pytest.mark.asyncio
    async def test_first_source_wins(self, market, primary, backup):
        primary.fetch_subject.return_value = SubjectMetrics(price=1.0)

        metrics = await market.fetch_subject("a")

        assert metrics.price == 1.0
        backup.fetch_subject.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_through_to_backup(self, market, primary, backup):
        primary.fetch_subject.side_effect = DataUnavailable("down")
        backup.fetch_subject.return_value = SubjectMetrics(price=2.0)

        assert (await market.fetch_subject("a")).price == 2.0

    @pytest.mark.asyncio
    async def test_cached_metrics_used_when_all_fail(self, market, primary, backup):
        primary.fetch_subject.return_value = SubjectMetrics(price=3.0)
        await market.fetch_subject("a")

        primary.fetch_subject.side_effect = DataUnavailable("down")
        backup.fetch_subject.side_effect = DataUnavailable("down")

        assert (await market.fetch_subject("a")).price == 3.0
        with pytest.raises(DataUnavailable):
            await market.fetch_subject("never-seen")

    @pytest.mark.asyncio
    async def test_price_not_cached(self, market, primary, backup):
        primary.fetch_price.side_effect = DataUnavailable("down")
        backup.fetch_price.side_effect = DataUnavailable("down")
        market.remember("a", SubjectMetrics(price=3.0))

        with pytest.raises(DataUnavailable):
            await market.fetch_price("a")

    def test_cache_evicts_least_recently_used(self, primary):
        market = FallbackMarketData([primary], max_cached=2)
        market.remember("a", SubjectMetrics(price=1.0))
        market.remember("b", SubjectMetrics(price=2.0))
        market.remember("c", SubjectMetrics(price=3.0))

        assert market.cached("a") is None
        assert market.cached("b").price == 2.0
        assert market.cached("c").price == 3.0

    def test_cache_hit_refreshes_entry(self, primary):
        market = FallbackMarketData([primary], max_cached=2)
        market.remember("a", SubjectMetrics(price=1.0))
        market.remember("b", SubjectMetrics(price=2.0))
        market.cached("a")
        market.remember("c", SubjectMetrics(price=3.0))

        assert market.cached("a").price == 1.0
        assert market.cached("b") is None

    def test_requires_a_source(self):
        with pytest.raises(ValueError):
            FallbackMarketData([])
