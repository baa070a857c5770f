"""
Solana JSON-RPC access used for fee sampling.
"""

import asyncio
from typing import Any, Optional

import aiohttp

from ..errors import DataUnavailable, RateLimited
from ..utils.logger import get_logger

logger = get_logger("rpc")


class RpcFeeSampleSource:
    """Reads recent prioritization fees via getRecentPrioritizationFees."""

    def __init__(
        self,
        rpc_url: str = "https://api.mainnet-beta.solana.com",
        timeout_seconds: float = 10.0,
        accounts: Optional[list[str]] = None
    ):
        self.rpc_url = rpc_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.accounts = accounts or []
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def _call(self, method: str, params: list) -> Any:
        if not self._session or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            async with self._session.post(self.rpc_url, json=payload) as resp:
                if resp.status == 429:
                    raise RateLimited("RPC rate limited", source="rpc")
                if resp.status != 200:
                    raise DataUnavailable(f"RPC returned HTTP {resp.status}", source="rpc")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise DataUnavailable(f"RPC {method} failed: {e}", source="rpc") from e

        if "error" in data:
            raise DataUnavailable(f"RPC {method} error: {data['error']}", source="rpc")
        return data.get("result")

    async def recent_samples(self) -> list[float]:
        params = [self.accounts] if self.accounts else []
        result = await self._call("getRecentPrioritizationFees", params)
        samples = [float(item.get("prioritizationFee", 0)) for item in result or []]
        logger.debug(f"Fetched {len(samples)} fee samples")
        return samples
