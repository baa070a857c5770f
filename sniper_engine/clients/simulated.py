"""
Simulation collaborators.

Used when simulation mode is on (the default): trades and transfers are
booked in memory and answered with real-looking base58 signatures.
"""

import asyncio
import random
from collections import defaultdict
from typing import Optional

from solders.keypair import Keypair

from ..errors import ExecutionFailed
from ..models import WalletAccount
from ..utils.logger import get_logger

logger = get_logger("simulated")

PRIMARY_ACCOUNT = "primary"


class _Signer:
    def __init__(self):
        self._keypair = Keypair()
        self._counter = 0

    def sign(self, *parts: object) -> str:
        self._counter += 1
        message = ":".join(str(p) for p in (*parts, self._counter)).encode()
        return str(self._keypair.sign_message(message))


class SimulatedTradeExecutor:
    """In-memory TradeExecutor with optional failure injection."""

    def __init__(
        self,
        fail_rate: float = 0.0,
        latency_seconds: float = 0.0,
        rng: Optional[random.Random] = None
    ):
        self.fail_rate = fail_rate
        self.latency_seconds = latency_seconds
        self.rng = rng or random.Random()
        self.holdings: dict[tuple[str, str], float] = defaultdict(float)
        self._signer = _Signer()

    async def _simulate(self, subject_id: str, account: str) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if self.fail_rate and self.rng.random() < self.fail_rate:
            raise ExecutionFailed("Simulated execution failure", subject_id=subject_id, account=account)

    async def buy(
        self,
        account: Optional[WalletAccount],
        subject_id: str,
        amount: float,
        max_slippage: float
    ) -> str:
        owner = account.public_addr if account else PRIMARY_ACCOUNT
        await self._simulate(subject_id, owner)
        self.holdings[(owner, subject_id)] += amount
        signature = self._signer.sign("buy", owner, subject_id, amount)
        logger.info(
            f"[SIMULATION] Buy {amount:.4f} SOL of {subject_id}",
            extra={"account": owner, "max_slippage": max_slippage, "signature": signature}
        )
        return signature

    async def sell(
        self,
        account: Optional[WalletAccount],
        subject_id: str,
        amount: float,
        max_slippage: float
    ) -> str:
        owner = account.public_addr if account else PRIMARY_ACCOUNT
        await self._simulate(subject_id, owner)
        held = self.holdings.get((owner, subject_id), 0.0)
        self.holdings[(owner, subject_id)] = max(held - amount, 0.0)
        signature = self._signer.sign("sell", owner, subject_id, amount)
        logger.info(
            f"[SIMULATION] Sell {amount:.4f} of {subject_id}",
            extra={"account": owner, "max_slippage": max_slippage, "signature": signature}
        )
        return signature


class SimulatedWalletTransport:
    """In-memory WalletTransport tracking SOL balances per address."""

    def __init__(
        self,
        balances: Optional[dict[str, float]] = None,
        fee: float = 0.000005
    ):
        self.balances: dict[str, float] = defaultdict(float, balances or {})
        self.fee = fee
        self._signer = _Signer()

    async def transfer(self, source: WalletAccount, destination: str, amount: float) -> str:
        available = self.balances[source.public_addr]
        if amount <= 0:
            raise ExecutionFailed("Transfer amount must be positive", account=source.public_addr)
        if available < amount + self.fee:
            raise ExecutionFailed(
                f"Insufficient balance: {available:.6f} < {amount + self.fee:.6f}",
                account=source.public_addr
            )
        self.balances[source.public_addr] = available - amount - self.fee
        self.balances[destination] += amount
        return self._signer.sign("transfer", source.public_addr, destination, amount)

    async def get_balance(self, address: str) -> float:
        return self.balances[address]
