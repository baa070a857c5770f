"""
Signal normalizer.

Turns raw provider records (pump.fun token listings, DexScreener pairs,
explicit on-chain events) into Signal values and descriptive metrics.
"""

import time
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from ..models import MarketVolume, Signal, SignalKind, SubjectMetrics
from ..utils.logger import get_logger

logger = get_logger("normalizer")

SOCIAL_KEYS = ("twitter", "telegram", "website", "discord")


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _nested(record: dict[str, Any], *keys: str) -> Any:
    value: Any = record
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def parse_timestamp(value: Any) -> Optional[float]:
    """Epoch seconds from epoch seconds, epoch milliseconds or an ISO string."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return float(value) / 1000 if value > 1e12 else float(value)
    if isinstance(value, datetime):
        return value.timestamp()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


def is_pair_record(record: dict[str, Any]) -> bool:
    return isinstance(record.get("baseToken"), dict)


def subject_id_of(record: dict[str, Any]) -> str:
    if is_pair_record(record):
        return record["baseToken"].get("address") or ""
    return record.get("subject_id") or record.get("address") or record.get("mint") or ""


def symbol_of(record: dict[str, Any]) -> str:
    if is_pair_record(record):
        return record["baseToken"].get("symbol") or "UNK"
    return record.get("symbol") or "UNK"


def _social_links(record: dict[str, Any]) -> dict[str, str]:
    links: dict[str, str] = {}

    socials = _nested(record, "info", "socials")
    if isinstance(socials, dict):
        links.update({k: v for k, v in socials.items() if v})
    elif isinstance(socials, list):
        # DexScreener lists socials as [{"type": "twitter", "url": ...}]
        for item in socials:
            if isinstance(item, dict) and item.get("type") and item.get("url"):
                links[item["type"]] = item["url"]

    for key in SOCIAL_KEYS:
        if record.get(key):
            links[key] = record[key]

    if isinstance(record.get("social_links"), dict):
        links.update({k: v for k, v in record["social_links"].items() if v})

    return links


def metrics_from_record(record: dict[str, Any]) -> SubjectMetrics:
    """Descriptive metrics carried by a record itself (cached defaults)."""
    if is_pair_record(record):
        return SubjectMetrics(
            price=_float(record.get("priceUsd")),
            liquidity=_float(_nested(record, "liquidity", "usd")),
            market_cap=_float(record.get("fdv") or record.get("marketCap")),
            volume_24h=_float(_nested(record, "volume", "h24")),
            social_links=_social_links(record),
            creator=record.get("creator") or "",
            listed_at=parse_timestamp(record.get("pairCreatedAt")),
        )

    bonding = record.get("bondingCurve", record.get("bonding_progress"))
    return SubjectMetrics(
        price=_float(record.get("price")),
        liquidity=_float(record.get("liquidity")),
        market_cap=_float(record.get("marketCap", record.get("market_cap"))),
        volume_24h=_float(record.get("volume24h", record.get("volume_24h"))),
        social_links=_social_links(record),
        creator=record.get("creator") or "",
        listed_at=parse_timestamp(
            record.get("created") or record.get("createdAt") or record.get("listed_at")
        ),
        bonding_progress=_float(bonding) if bonding is not None else None,
    )


def to_market_volume(record: dict[str, Any]) -> Optional[MarketVolume]:
    """Volume map row for a DexScreener pair record."""
    if not is_pair_record(record):
        return None
    subject_id = subject_id_of(record)
    if not subject_id:
        return None

    volume_24h = _float(_nested(record, "volume", "h24"))
    txns = _nested(record, "txns", "h24")
    if isinstance(txns, dict):
        trades = int(_float(txns.get("buys")) + _float(txns.get("sells")))
    else:
        trades = int(_float(txns))

    return MarketVolume(
        subject_id=subject_id,
        symbol=symbol_of(record),
        volume_1h=_float(_nested(record, "volume", "h1")),
        volume_24h=volume_24h,
        price_change_1h=_float(_nested(record, "priceChange", "h1")),
        price_change_24h=_float(_nested(record, "priceChange", "h24")),
        liquidity=_float(_nested(record, "liquidity", "usd")),
        market_cap=_float(record.get("fdv")),
        trades=trades,
        # Estimated split; providers do not break volume down by side
        buy_volume=volume_24h * 0.6,
        sell_volume=volume_24h * 0.4,
    )


class SignalNormalizer:
    """Maps provider records onto the four signal kinds."""

    def __init__(
        self,
        volume_spike_ratio: float = 3.0,
        breakout_pct: float = 10.0,
        clock: Callable[[], float] = time.time
    ):
        self.volume_spike_ratio = volume_spike_ratio
        self.breakout_pct = breakout_pct
        self.clock = clock

    def normalize(self, record: dict[str, Any]) -> Optional[Signal]:
        subject_id = subject_id_of(record)
        if not subject_id:
            logger.debug("Dropping record without subject id", extra={"record_keys": sorted(record)})
            return None

        if "kind" in record:
            return self._from_explicit(record, subject_id)
        if is_pair_record(record):
            return self._from_pair(record, subject_id)
        return self._from_listing(record, subject_id)

    def normalize_many(self, records: Iterable[dict[str, Any]]) -> list[Signal]:
        signals = []
        for record in records:
            try:
                signal = self.normalize(record)
            except (TypeError, ValueError, KeyError) as e:
                logger.warning(f"Malformed record skipped: {e}")
                continue
            if signal is not None:
                signals.append(signal)
        return signals

    def _from_explicit(self, record: dict[str, Any], subject_id: str) -> Signal:
        return Signal(
            kind=SignalKind(record["kind"]),
            subject_id=subject_id,
            symbol=symbol_of(record),
            strength=_float(record.get("strength")),
            confidence=_float(record.get("confidence"), 0.5),
            observed_at=parse_timestamp(record.get("observed_at")) or self.clock(),
            raw_metrics=dict(record),
        )

    def _from_listing(self, record: dict[str, Any], subject_id: str) -> Signal:
        metrics = metrics_from_record(record)
        return Signal(
            kind=SignalKind.NEW_LISTING,
            subject_id=subject_id,
            symbol=symbol_of(record),
            strength=self.listing_strength(metrics),
            confidence=self.listing_confidence(metrics),
            observed_at=self.clock(),
            raw_metrics=dict(record),
        )

    def _from_pair(self, record: dict[str, Any], subject_id: str) -> Optional[Signal]:
        volume = to_market_volume(record)
        if volume is None:
            return None

        avg_hourly = volume.avg_hourly_volume
        if avg_hourly > 0 and volume.volume_1h > avg_hourly * self.volume_spike_ratio:
            return Signal(
                kind=SignalKind.VOLUME_SPIKE,
                subject_id=subject_id,
                symbol=volume.symbol,
                strength=volume.volume_1h / avg_hourly * 10,
                confidence=0.8,
                observed_at=self.clock(),
                raw_metrics=dict(record),
            )

        if volume.price_change_1h >= self.breakout_pct:
            return Signal(
                kind=SignalKind.PRICE_BREAKOUT,
                subject_id=subject_id,
                symbol=volume.symbol,
                strength=volume.price_change_1h * 2,
                confidence=0.6,
                observed_at=self.clock(),
                raw_metrics=dict(record),
            )

        return None

    @staticmethod
    def listing_strength(metrics: SubjectMetrics) -> float:
        strength = 50.0
        if metrics.liquidity > 10_000:
            strength += 20
        if metrics.liquidity > 50_000:
            strength += 10
        if metrics.volume_24h > metrics.liquidity:
            strength += 15
        if metrics.has_social_presence:
            strength += 10
        return min(strength, 100.0)

    @staticmethod
    def listing_confidence(metrics: SubjectMetrics) -> float:
        confidence = 0.5
        if metrics.liquidity and metrics.volume_24h and metrics.market_cap:
            confidence += 0.2
        if metrics.social_links.get("twitter") or metrics.social_links.get("telegram"):
            confidence += 0.1
        if 1_000 < metrics.market_cap < 10_000_000:
            confidence += 0.1
        return min(confidence, 1.0)
