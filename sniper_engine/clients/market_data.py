"""
Market data clients for pump.fun and DexScreener.

Provider failures surface as DataUnavailable (RateLimited for HTTP 429);
FallbackMarketData chains providers and keeps the last good metrics per
subject.
"""

import asyncio
from collections import OrderedDict
from typing import Any, Optional, Sequence

import aiohttp

from ..errors import DataUnavailable, RateLimited
from ..models import SubjectMetrics
from ..signals.normalizer import metrics_from_record, subject_id_of
from ..utils.logger import get_logger

logger = get_logger("market_data")

USER_AGENT = "Mozilla/5.0 (compatible; SniperEngine/1.0)"


class HttpJsonClient:
    """aiohttp session wrapper mapping transport failures onto DataUnavailable."""

    name = "http"

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        if not self._session or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT}
            )

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        if not self._session or self._session.closed:
            await self.initialize()

        try:
            async with self._session.get(url, params=params) as response:
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimited(
                        f"{self.name} rate limited",
                        source=self.name,
                        retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None
                    )
                if response.status >= 400:
                    raise DataUnavailable(f"{self.name} returned HTTP {response.status}", source=self.name)
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise DataUnavailable(f"{self.name} request failed: {e}", source=self.name) from e


class PumpFunClient(HttpJsonClient):
    """Client for the pump.fun token listing API."""

    name = "pumpfun"

    def __init__(
        self,
        base_url: str = "https://frontend-api.pump.fun",
        backup_url: Optional[str] = "https://pump.fun/api",
        timeout_seconds: float = 10.0
    ):
        super().__init__(timeout_seconds)
        self.base_url = base_url.rstrip("/")
        self.backup_url = backup_url.rstrip("/") if backup_url else None

    async def fetch_recent(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        try:
            data = await self._get_json(f"{self.base_url}/tokens/new")
        except DataUnavailable as e:
            if not self.backup_url:
                raise
            logger.warning(f"pump.fun primary API failed, using backup: {e}")
            data = await self._get_json(f"{self.backup_url}/tokens")
            data = data[:10] if isinstance(data, list) else data

        records = _as_records(data)
        return records[:limit] if limit else records

    async def fetch_subject(self, subject_id: str) -> SubjectMetrics:
        data = await self._get_json(f"{self.base_url}/coins/{subject_id}")
        if not isinstance(data, dict):
            raise DataUnavailable(f"pump.fun has no record for {subject_id}", source=self.name)
        return metrics_from_record(data)

    async def fetch_price(self, subject_id: str) -> float:
        return (await self.fetch_subject(subject_id)).price

    async def fetch_volume(self) -> list[dict[str, Any]]:
        raise DataUnavailable("pump.fun does not provide pair volume", source=self.name)


class DexScreenerClient(HttpJsonClient):
    """Client for the DexScreener pair search API."""

    name = "dexscreener"

    def __init__(
        self,
        base_url: str = "https://api.dexscreener.com/latest/dex",
        query: str = "SOL",
        timeout_seconds: float = 10.0
    ):
        super().__init__(timeout_seconds)
        self.base_url = base_url.rstrip("/")
        self.query = query

    async def _search(self, query: str) -> list[dict[str, Any]]:
        data = await self._get_json(f"{self.base_url}/search", params={"q": query})
        pairs = data.get("pairs") if isinstance(data, dict) else None
        return [p for p in pairs or [] if isinstance(p, dict)]

    async def fetch_recent(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        pairs = await self._search(self.query)
        return pairs[:limit] if limit else pairs

    async def fetch_subject(self, subject_id: str) -> SubjectMetrics:
        pairs = await self._search(subject_id)
        if not pairs:
            raise DataUnavailable(f"No DexScreener pairs for {subject_id}", source=self.name)
        return metrics_from_record(pairs[0])

    async def fetch_price(self, subject_id: str) -> float:
        metrics = await self.fetch_subject(subject_id)
        if metrics.price <= 0:
            raise DataUnavailable(f"No price for {subject_id}", source=self.name)
        return metrics.price

    async def fetch_volume(self) -> list[dict[str, Any]]:
        return await self._search(self.query)


class FallbackMarketData:
    """
    Chains market data sources.

    Subject lookups try each source in order and fall back to the last good
    metrics for the subject; recent and volume records are merged across every
    source that answered.
    """

    def __init__(self, sources: Sequence[Any], max_cached: int = 1_000):
        if not sources:
            raise ValueError("At least one market data source is required")
        self.sources = list(sources)
        self.max_cached = max_cached
        self._cache: OrderedDict[str, SubjectMetrics] = OrderedDict()

    async def close(self) -> None:
        for source in self.sources:
            close = getattr(source, "close", None)
            if close is not None:
                await close()

    def remember(self, subject_id: str, metrics: SubjectMetrics) -> None:
        """Store last good metrics, evicting the least recently used beyond `max_cached`."""
        self._cache[subject_id] = metrics
        self._cache.move_to_end(subject_id)
        while len(self._cache) > self.max_cached:
            self._cache.popitem(last=False)

    def cached(self, subject_id: str) -> Optional[SubjectMetrics]:
        metrics = self._cache.get(subject_id)
        if metrics is not None:
            self._cache.move_to_end(subject_id)
        return metrics

    async def fetch_recent(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        results = await asyncio.gather(
            *(source.fetch_recent(limit) for source in self.sources),
            return_exceptions=True
        )
        return self._merge(results, "recent")

    async def fetch_volume(self) -> list[dict[str, Any]]:
        results = await asyncio.gather(
            *(source.fetch_volume() for source in self.sources),
            return_exceptions=True
        )
        records: list[dict[str, Any]] = []
        errors: list[DataUnavailable] = []
        for result in results:
            if isinstance(result, DataUnavailable):
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                records.extend(result)
        if not records and errors and len(errors) == len(results):
            raise self._combined(errors, "volume")
        return records

    async def fetch_subject(self, subject_id: str) -> SubjectMetrics:
        errors: list[DataUnavailable] = []
        for source in self.sources:
            try:
                metrics = await source.fetch_subject(subject_id)
            except DataUnavailable as e:
                errors.append(e)
                continue
            self.remember(subject_id, metrics)
            return metrics

        cached = self.cached(subject_id)
        if cached is not None:
            logger.debug("Using cached metrics", extra={"subject_id": subject_id})
            return cached
        raise self._combined(errors, f"subject {subject_id}")

    async def fetch_price(self, subject_id: str) -> float:
        errors: list[DataUnavailable] = []
        for source in self.sources:
            try:
                return await source.fetch_price(subject_id)
            except DataUnavailable as e:
                errors.append(e)
        raise self._combined(errors, f"price {subject_id}")

    def _merge(self, results: list, what: str) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        seen: set[str] = set()
        errors: list[DataUnavailable] = []

        for result in results:
            if isinstance(result, DataUnavailable):
                errors.append(result)
                continue
            if isinstance(result, BaseException):
                raise result
            for record in result:
                subject_id = subject_id_of(record)
                if subject_id and subject_id in seen:
                    continue
                seen.add(subject_id)
                records.append(record)

        if len(errors) == len(results):
            raise self._combined(errors, what)
        for error in errors:
            logger.warning(f"Source failed for {what}: {error}")
        return records

    @staticmethod
    def _combined(errors: list[DataUnavailable], what: str) -> DataUnavailable:
        if errors and all(isinstance(e, RateLimited) for e in errors):
            retry = max((e.retry_after or 0 for e in errors), default=0) or None
            return RateLimited(f"All sources rate limited for {what}", retry_after=retry)
        detail = "; ".join(str(e) for e in errors) or "no sources"
        return DataUnavailable(f"All sources failed for {what}: {detail}")


def _as_records(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("tokens") or data.get("coins") or []
    return [r for r in data if isinstance(r, dict)] if isinstance(data, list) else []
