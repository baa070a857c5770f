"""
Wallet batch coordination.

Creates named groups of fresh accounts, persists them as JSON, and fans single
decisions (fund, buy, sell, sweep) out across every account of a batch. Partial
completion is the expected failure mode: individual failures are logged and
skipped, and only a fan-out where nothing succeeded raises.
"""

import asyncio
import json
import random
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Sequence, Union

from solders.keypair import Keypair

from ..errors import BatchExecutionFailed, ConfigInvalid, UnknownBatch
from ..models import WalletAccount, WalletBatch
from ..utils.logger import get_logger, TradeLogger

logger = get_logger("wallets")
trade_logger = TradeLogger()

BATCH_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
TRANSFER_FEE_SOL = 0.000005


class WalletTransport(Protocol):
    async def transfer(self, source: WalletAccount, destination: str, amount: float) -> str:
        """Move `amount` SOL. Raises ExecutionFailed."""
        ...

    async def get_balance(self, address: str) -> float:
        ...


@dataclass
class DistributionPlan:
    """Preview of a funding run."""
    source: str
    transfers: dict[str, float] = field(default_factory=dict)
    total_amount: float = 0.0
    fee: float = 0.0

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "transfers": dict(self.transfers),
            "total_amount": self.total_amount,
            "fee": self.fee,
        }


def generate_account(label: str) -> WalletAccount:
    keypair = Keypair()
    return WalletAccount(public_addr=str(keypair.pubkey()), secret=str(keypair), label=label)


def load_keypair(account: WalletAccount) -> Keypair:
    return Keypair.from_base58_string(account.secret)


class WalletBatchCoordinator:
    """
    Manages wallet batches.

    Features:
    1. Batch creation with freshly generated keypairs
    2. JSON persistence and reload
    3. Paced funding from one source account
    4. Coordinated buys/sells with randomized inter-send delays
    5. Sweeps back to one destination, leaving a minimum balance
    """

    def __init__(
        self,
        transport: WalletTransport,
        executor,
        batch_dir: Union[str, Path] = "wallet-batches",
        transfer_pacing: float = 1.0,
        jitter_range: tuple[float, float] = (1.0, 3.0),
        leave_balance: float = 0.001,
        call_timeout: float = 10.0,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        low, high = jitter_range
        if low < 0 or high < low:
            raise ConfigInvalid(f"Invalid jitter range: {jitter_range}")

        self.transport = transport
        self.executor = executor
        self.batch_dir = Path(batch_dir)
        self.transfer_pacing = transfer_pacing
        self.jitter_range = (low, high)
        self.leave_balance = leave_balance
        self.call_timeout = call_timeout
        self.rng = rng or random.Random()
        self.sleep = sleep

        self._batches: dict[str, WalletBatch] = {}

    # Batch registry

    def create_batch(self, count: int, batch_name: str, prefix: Optional[str] = None) -> WalletBatch:
        """
        Generate `count` accounts and persist them as a new batch.

        Raises:
            ConfigInvalid: bad count or name, or the name is taken
        """
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ConfigInvalid(f"Account count must be a positive integer, got {count!r}")
        if not BATCH_NAME_PATTERN.match(batch_name or ""):
            raise ConfigInvalid(f"Invalid batch name: {batch_name!r}")
        if batch_name in self._batches:
            raise ConfigInvalid(f"Batch {batch_name!r} already exists")

        label_prefix = prefix or "wallet"
        batch = WalletBatch(
            batch_name=batch_name,
            accounts=[generate_account(f"{label_prefix}_{i}") for i in range(count)],
            created_at=time.time(),
        )
        path = self._save(batch)
        self._batches[batch_name] = batch

        logger.info(
            f"Batch created with {count} accounts",
            extra={"batch_name": batch_name, "path": str(path)}
        )
        return batch

    def _save(self, batch: WalletBatch) -> Path:
        self.batch_dir.mkdir(parents=True, exist_ok=True)
        path = self.batch_dir / f"{batch.batch_name}_{int(batch.created_at * 1000)}.json"
        path.write_text(json.dumps(batch.to_dict(), indent=2))
        return path

    def load_batch(self, filename: str) -> WalletBatch:
        """Load one persisted batch file (relative to the batch directory)."""
        path = self.batch_dir / filename
        batch = WalletBatch.from_dict(json.loads(path.read_text()))
        self._batches[batch.batch_name] = batch
        return batch

    def load_all(self) -> list[WalletBatch]:
        """Load every persisted batch; the newest file wins for a repeated name."""
        if not self.batch_dir.is_dir():
            return []
        loaded: list[WalletBatch] = []
        for path in sorted(self.batch_dir.glob("*.json")):
            try:
                loaded.append(self.load_batch(path.name))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable batch file {path.name}: {e}")
        return loaded

    def list_batches(self) -> list[WalletBatch]:
        return sorted(self._batches.values(), key=lambda b: b.created_at)

    def get_batch(self, batch_name: str) -> WalletBatch:
        try:
            return self._batches[batch_name]
        except KeyError:
            raise UnknownBatch(batch_name)

    def delete_batch(self, batch_name: str) -> bool:
        """Forget a batch. Account funds and the persisted file are left alone."""
        return self._batches.pop(batch_name, None) is not None

    def create_distribution_plan(self, source: str, amounts: dict[str, float]) -> DistributionPlan:
        total = sum(amounts.values())
        return DistributionPlan(
            source=source,
            transfers=dict(amounts),
            total_amount=total,
            fee=TRANSFER_FEE_SOL * len(amounts),
        )

    # Fan-out operations

    async def fund_batch(
        self,
        batch_name: str,
        source: WalletAccount,
        amount_per_account: float
    ) -> list[str]:
        """Send `amount_per_account` SOL from `source` to every account, one at a time."""
        if amount_per_account <= 0:
            raise ConfigInvalid("Funding amount must be positive")
        batch = self.get_batch(batch_name)

        async def fund(account: WalletAccount) -> str:
            return await self.transport.transfer(source, account.public_addr, amount_per_account)

        return await self._fan_out(
            batch, "fund", [(a, fund) for a in batch.accounts], self._pacing_delay
        )

    async def coordinated_buy(
        self,
        batch_name: str,
        subject_id: str,
        amounts: Union[float, Sequence[float]],
        max_slippage: float = 1.0
    ) -> list[str]:
        """One buy per account with a randomized delay between sends."""
        return await self._coordinated_trade("buy", batch_name, subject_id, amounts, max_slippage)

    async def coordinated_sell(
        self,
        batch_name: str,
        subject_id: str,
        amounts: Union[float, Sequence[float]],
        max_slippage: float = 1.0
    ) -> list[str]:
        return await self._coordinated_trade("sell", batch_name, subject_id, amounts, max_slippage)

    async def _coordinated_trade(
        self,
        side: str,
        batch_name: str,
        subject_id: str,
        amounts: Union[float, Sequence[float]],
        max_slippage: float
    ) -> list[str]:
        batch = self.get_batch(batch_name)
        per_account = self._per_account_amounts(batch, amounts)
        call = self.executor.buy if side == "buy" else self.executor.sell

        def trade(amount: float):
            async def run(account: WalletAccount) -> str:
                return await call(account, subject_id, amount, max_slippage)
            return run

        return await self._fan_out(
            batch,
            side,
            [(a, trade(amount)) for a, amount in zip(batch.accounts, per_account)],
            self._jitter_delay
        )

    async def sweep_batch(
        self,
        batch_name: str,
        destination: str,
        leave_balance: Optional[float] = None
    ) -> list[str]:
        """Return funds to `destination`, leaving `leave_balance` SOL behind per account."""
        batch = self.get_batch(batch_name)
        minimum = self.leave_balance if leave_balance is None else leave_balance

        async def sweep(account: WalletAccount) -> Optional[str]:
            balance = await self.transport.get_balance(account.public_addr)
            account.balance = balance
            if balance <= minimum:
                logger.debug(
                    "Skipping account at or below minimum balance",
                    extra={"batch_name": batch_name, "account": account.public_addr, "balance": balance}
                )
                return None
            signature = await self.transport.transfer(account, destination, balance - minimum)
            account.balance = minimum
            return signature

        return await self._fan_out(
            batch, "sweep", [(a, sweep) for a in batch.accounts], self._pacing_delay
        )

    async def refresh_balances(self, batch_name: str) -> list[WalletAccount]:
        batch = self.get_batch(batch_name)
        for account in batch.accounts:
            try:
                account.balance = await asyncio.wait_for(
                    self.transport.get_balance(account.public_addr),
                    timeout=self.call_timeout
                )
            except Exception as e:
                logger.warning(
                    f"Failed to get balance: {e}",
                    extra={"batch_name": batch_name, "account": account.public_addr}
                )
                account.balance = 0.0
        return batch.accounts

    async def _fan_out(
        self,
        batch: WalletBatch,
        operation: str,
        calls: list,
        delay: Callable[[], float]
    ) -> list[str]:
        signatures: list[str] = []
        errors: dict[str, str] = {}
        attempted = 0

        for index, (account, call) in enumerate(calls):
            if index > 0:
                await self.sleep(delay())
            try:
                signature = await asyncio.wait_for(call(account), timeout=self.call_timeout)
            except Exception as e:
                attempted += 1
                error = str(e) or type(e).__name__
                errors[account.public_addr] = error
                trade_logger.batch_operation_failed(
                    batch.batch_name, operation, account.public_addr, error
                )
                continue
            if signature is None:
                continue
            attempted += 1
            signatures.append(signature)

        logger.info(
            f"Batch {operation} complete: {len(signatures)}/{attempted} succeeded",
            extra={"batch_name": batch.batch_name, "operation": operation}
        )

        if attempted and not signatures:
            raise BatchExecutionFailed(
                f"Every {operation} in batch {batch.batch_name!r} failed",
                errors=errors
            )
        return signatures

    def _per_account_amounts(
        self,
        batch: WalletBatch,
        amounts: Union[float, Sequence[float]]
    ) -> list[float]:
        if isinstance(amounts, (int, float)):
            per_account = [float(amounts)] * batch.total_accounts
        else:
            per_account = [float(a) for a in amounts]
            if len(per_account) != batch.total_accounts:
                raise ConfigInvalid(
                    f"Got {len(per_account)} amounts for {batch.total_accounts} accounts"
                )
        if any(a <= 0 for a in per_account):
            raise ConfigInvalid("Trade amounts must be positive")
        return per_account

    def _pacing_delay(self) -> float:
        return self.transfer_pacing

    def _jitter_delay(self) -> float:
        low, high = self.jitter_range
        return self.rng.uniform(low, high)
