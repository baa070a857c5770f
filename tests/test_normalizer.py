"""
Tests for provider record normalization.
"""

import pytest

from sniper_engine.models import SignalKind, SubjectMetrics
from sniper_engine.signals.normalizer import (
    SignalNormalizer,
    metrics_from_record,
    parse_timestamp,
    to_market_volume,
)


@pytest.fixture
def normalizer():
    return SignalNormalizer(clock=lambda: 5_000.0)


def pair_record(volume_1h: float = 1_000.0, volume_24h: float = 24_000.0, change_1h: float = 0.0) -> dict:
    return {
        "baseToken": {"address": "mint-pair", "symbol": "PAIR"},
        "priceUsd": "0.0042",
        "liquidity": {"usd": 30_000},
        "fdv": 250_000,
        "volume": {"h1": volume_1h, "h24": volume_24h},
        "priceChange": {"h1": change_1h, "h24": 5.0},
        "txns": {"h24": {"buys": 120, "sells": 80}},
        "pairCreatedAt": 1_700_000_000_000,
        "info": {"socials": [{"type": "twitter", "url": "https://x.com/pair"}]},
    }


class TestListingRecords:
    """Tests for pump.fun style listings."""

    def test_bare_listing(self, normalizer):
        signal = normalizer.normalize({"mint": "mint-1", "symbol": "NEW"})

        assert signal.kind == SignalKind.NEW_LISTING
        assert signal.subject_id == "mint-1"
        assert signal.symbol == "NEW"
        assert signal.strength == 50.0
        assert signal.confidence == 0.5
        assert signal.observed_at == 5_000.0

    def test_rich_listing(self, normalizer):
        record = {
            "address": "mint-2",
            "symbol": "RICH",
            "liquidity": 60_000,
            "volume24h": 90_000,
            "marketCap": 500_000,
            "twitter": "https://x.com/rich",
            "telegram": "https://t.me/rich",
        }

        signal = normalizer.normalize(record)

        # 50 + 20 + 10 + 15 + 10
        assert signal.strength == 100.0
        assert signal.confidence == pytest.approx(0.9)

    def test_missing_symbol_defaults(self, normalizer):
        assert normalizer.normalize({"mint": "mint-3"}).symbol == "UNK"

    def test_record_without_id_dropped(self, normalizer):
        assert normalizer.normalize({"symbol": "ORPHAN"}) is None


class TestPairRecords:
    """Tests for DexScreener pairs."""

    def test_volume_spike(self, normalizer):
        # avg hourly 1000, last hour 5000
        signal = normalizer.normalize(pair_record(volume_1h=5_000.0))

        assert signal.kind == SignalKind.VOLUME_SPIKE
        assert signal.subject_id == "mint-pair"
        assert signal.strength == pytest.approx(50.0)
        assert signal.confidence == 0.8

    def test_price_breakout(self, normalizer):
        signal = normalizer.normalize(pair_record(change_1h=15.0))

        assert signal.kind == SignalKind.PRICE_BREAKOUT
        assert signal.strength == pytest.approx(30.0)
        assert signal.confidence == 0.6

    def test_spike_takes_precedence(self, normalizer):
        signal = normalizer.normalize(pair_record(volume_1h=5_000.0, change_1h=15.0))
        assert signal.kind == SignalKind.VOLUME_SPIKE

    def test_quiet_pair_yields_nothing(self, normalizer):
        assert normalizer.normalize(pair_record()) is None

    def test_custom_thresholds(self):
        normalizer = SignalNormalizer(volume_spike_ratio=1.5, breakout_pct=50.0)
        signal = normalizer.normalize(pair_record(volume_1h=2_000.0, change_1h=15.0))
        assert signal.kind == SignalKind.VOLUME_SPIKE


class TestExplicitRecords:
    def test_explicit_kind(self, normalizer):
        record = {
            "kind": "liquidity_add",
            "subject_id": "mint-9",
            "symbol": "LIQ",
            "strength": 140,
            "confidence": 0.7,
            "observed_at": 1_234.0,
        }

        signal = normalizer.normalize(record)

        assert signal.kind == SignalKind.LIQUIDITY_ADD
        assert signal.strength == 100.0
        assert signal.observed_at == 1_234.0

    def test_unknown_kind_skipped_in_batch(self, normalizer):
        records = [
            {"kind": "rug_pull", "subject_id": "bad"},
            {"mint": "good"},
            {"symbol": "no-id"},
        ]

        signals = normalizer.normalize_many(records)

        assert [s.subject_id for s in signals] == ["good"]


class TestMetrics:
    """Tests for metric extraction."""

    def test_pair_metrics(self):
        metrics = metrics_from_record(pair_record())

        assert metrics.price == pytest.approx(0.0042)
        assert metrics.liquidity == 30_000
        assert metrics.market_cap == 250_000
        assert metrics.volume_24h == 24_000
        assert metrics.listed_at == pytest.approx(1_700_000_000.0)
        assert metrics.social_links == {"twitter": "https://x.com/pair"}

    def test_listing_metrics(self):
        record = {
            "mint": "m",
            "price": "0.5",
            "liquidity": "bad",
            "market_cap": 1_000,
            "bondingCurve": 87.5,
            "createdAt": "2024-01-01T00:00:00Z",
            "creator": "dev",
        }

        metrics = metrics_from_record(record)

        assert metrics.price == 0.5
        assert metrics.liquidity == 0.0
        assert metrics.market_cap == 1_000
        assert metrics.bonding_progress == 87.5
        assert metrics.creator == "dev"
        assert metrics.listed_at == pytest.approx(1_704_067_200.0)

    def test_social_presence_needs_both(self):
        assert not SubjectMetrics(social_links={"twitter": "x"}).has_social_presence
        assert SubjectMetrics(social_links={"twitter": "x", "telegram": "t"}).has_social_presence

    def test_market_volume_row(self):
        row = to_market_volume(pair_record(volume_1h=2_000.0))

        assert row.subject_id == "mint-pair"
        assert row.trades == 200
        assert row.avg_hourly_volume == pytest.approx(1_000.0)
        assert row.buy_volume == pytest.approx(14_400.0)
        assert row.sell_volume == pytest.approx(9_600.0)

    def test_market_volume_ignores_listings(self):
        assert to_market_volume({"mint": "m"}) is None

    @pytest.mark.parametrize("value,expected", [
        (1_700_000_000, 1_700_000_000.0),
        (1_700_000_000_000, 1_700_000_000.0),
        ("1970-01-01T00:01:00+00:00", 60.0),
        (None, None),
        ("not a date", None),
    ])
    def test_parse_timestamp(self, value, expected):
        assert parse_timestamp(value) == expected
