"""
Main entry point for the token sniper engine.
Wires the components together and runs the periodic loops.
"""

import asyncio
import signal
import sys
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Optional

# Use uvloop for better performance on Linux
try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass  # uvloop not available (Windows)

import uvicorn
from solders.keypair import Keypair

from .clients.base import FeeSampleSource, MarketDataSource, TradeExecutor
from .clients.market_data import DexScreenerClient, FallbackMarketData, PumpFunClient
from .clients.rpc import RpcFeeSampleSource
from .clients.simulated import SimulatedTradeExecutor, SimulatedWalletTransport
from .config import Config, SettingsStore, load_config
from .errors import ConfigInvalid, DataUnavailable, RateLimited
from .execution.lifecycle import PositionLifecycleManager
from .execution.volume_trader import VolumeTrader
from .models import ExitReason, PerformanceMetrics, Position, Signal, SubjectMetrics, Target, WalletAccount, WalletBatch
from .risk.admission import AdmissionController
from .signals.normalizer import SignalNormalizer, metrics_from_record, subject_id_of
from .signals.scorer import OpportunityScorer
from .state import EngineState
from .utils.fee_estimator import FeeEstimator
from .utils.logger import setup_logging, get_logger, TradeLogger
from .utils.notifier import LogNotifier, Notifier, TelegramNotifier
from .wallets.batch import WalletBatchCoordinator, WalletTransport

logger = get_logger("main")
trade_logger = TradeLogger()

LOOP_NAMES = ("scanner", "monitor", "volume")


@dataclass
class LoopStats:
    """Counters for one periodic loop."""
    ticks: int = 0
    errors: int = 0
    rate_limited: int = 0
    last_tick_at: Optional[float] = None
    last_duration_ms: float = 0.0
    last_error: Optional[str] = None


class SniperEngine:
    """
    Orchestrates discovery, admission, position monitoring and volume trading.

    Each loop runs as its own task on its own interval; stopping a loop lets
    its in-flight tick finish before returning.
    """

    def __init__(
        self,
        config: Config,
        market_data: MarketDataSource,
        executor: TradeExecutor,
        transport: WalletTransport,
        fee_source: Optional[FeeSampleSource] = None,
        notifier: Optional[Notifier] = None,
        settings_store: Optional[SettingsStore] = None,
        funding_account: Optional[WalletAccount] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config
        self.market_data = market_data
        self.executor = executor
        self.notifier = notifier or LogNotifier()
        self.settings_store = settings_store or SettingsStore(config.trading)
        self.funding_account = funding_account
        self.clock = clock

        settings = self.settings_store.current
        loops = config.loops

        self.state = EngineState(ranker_capacity=settings.ranker_capacity)
        self.normalizer = SignalNormalizer(clock=clock)
        self.scorer = OpportunityScorer()
        self.fee_estimator = FeeEstimator(fee_source, timeout=loops.call_timeout)
        self.admission = AdmissionController(self.notifier, clock=clock)
        self.lifecycle = PositionLifecycleManager(
            state=self.state,
            executor=executor,
            market_data=market_data,
            admission=self.admission,
            settings_store=self.settings_store,
            notifier=self.notifier,
            call_timeout=loops.call_timeout,
            clock=clock
        )
        self.wallets = WalletBatchCoordinator(
            transport=transport,
            executor=executor,
            batch_dir=config.wallets.batch_dir,
            transfer_pacing=config.wallets.transfer_pacing_seconds,
            jitter_range=(config.wallets.jitter_min_seconds, config.wallets.jitter_max_seconds),
            leave_balance=config.wallets.leave_balance,
            call_timeout=loops.call_timeout
        )
        self.volume_trader = VolumeTrader(
            state=self.state,
            executor=executor,
            market_data=market_data,
            settings_store=self.settings_store,
            batch_coordinator=self.wallets,
            batch_name=config.wallets.volume_batch,
            call_timeout=loops.call_timeout,
            clock=clock
        )

        self._intervals = {
            "scanner": loops.scan_interval,
            "monitor": loops.monitor_interval,
            "volume": loops.volume_interval,
        }
        self._ticks: dict[str, Callable[[], Awaitable[Any]]] = {
            "scanner": self.scan_tick,
            "monitor": self.monitor_tick,
            "volume": self.volume_tick,
        }
        self._tasks: dict[str, asyncio.Task] = {}
        self._stop_events: dict[str, asyncio.Event] = {}
        self._fetch_limit = asyncio.Semaphore(loops.max_concurrent_fetches)
        self.loop_stats = {name: LoopStats() for name in LOOP_NAMES}
        self.started_at: Optional[float] = None

    # Loop control

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def start_loop(self, name: str) -> bool:
        """Start one loop. Returns False if it is already running."""
        if name not in LOOP_NAMES:
            raise KeyError(name)
        if self.is_running(name):
            return False

        self._stop_events[name] = asyncio.Event()
        self._tasks[name] = asyncio.create_task(self._run_loop(name), name=f"loop-{name}")
        logger.info(f"Started {name} loop", extra={"loop": name, "interval": self._intervals[name]})
        return True

    async def stop_loop(self, name: str) -> bool:
        """Stop one loop and wait for its in-flight tick. Returns False if it was not running."""
        if name not in LOOP_NAMES:
            raise KeyError(name)
        task = self._tasks.pop(name, None)
        if task is None:
            return False

        self._stop_events[name].set()
        await task
        logger.info(f"Stopped {name} loop", extra={"loop": name})
        return True

    async def start(self) -> None:
        self.wallets.load_all()
        self.started_at = self.clock()
        self.start_loop("scanner")
        self.start_loop("monitor")
        if self.volume_trader.multi_account:
            self.start_loop("volume")

    async def stop(self) -> None:
        """Halt every loop; returns once all of them have finished."""
        for name in list(self._tasks):
            self._stop_events[name].set()
        await asyncio.gather(*(self.stop_loop(name) for name in list(self._tasks)))

    async def close(self) -> None:
        await self.stop()
        for resource in (self.market_data, self.fee_estimator.sample_source, self.notifier):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()

    async def _run_loop(self, name: str) -> None:
        stop = self._stop_events[name]
        tick = self._ticks[name]
        stats = self.loop_stats[name]

        while not stop.is_set():
            started = time.monotonic()
            try:
                await tick()
            except RateLimited as e:
                stats.rate_limited += 1
                logger.warning(
                    f"{name} rate limited, waiting for next tick",
                    extra={"loop": name, "retry_after": e.retry_after}
                )
            except DataUnavailable as e:
                stats.errors += 1
                stats.last_error = str(e)
                logger.warning(f"{name} data unavailable: {e}", extra={"loop": name})
            except Exception as e:
                stats.errors += 1
                stats.last_error = str(e)
                logger.exception(f"{name} loop error: {e}", extra={"loop": name})

            stats.ticks += 1
            stats.last_tick_at = self.clock()
            stats.last_duration_ms = (time.monotonic() - started) * 1000

            try:
                await asyncio.wait_for(stop.wait(), timeout=self._intervals[name])
            except asyncio.TimeoutError:
                pass

    # Loop bodies

    async def scan_tick(self) -> list[Target]:
        """Discover, score and rank targets, then try to admit the eligible ones."""
        settings = self.settings_store.current
        await self.fee_estimator.refresh()

        records = await asyncio.wait_for(
            self.market_data.fetch_recent(),
            timeout=self.config.loops.call_timeout
        )
        records_by_subject = {subject_id_of(r): r for r in records}
        signals = self.normalizer.normalize_many(records)

        metrics = await asyncio.gather(
            *(self._subject_metrics(s, records_by_subject.get(s.subject_id, {})) for s in signals)
        )

        fee = self.fee_estimator.latest.total_fee
        scored = []
        for sig, subject_metrics in zip(signals, metrics):
            target = self.scorer.score(sig, subject_metrics, settings, fee)
            if target is not None:
                scored.append(target)

        async with self.state.lock:
            ranker = self.state.ranker
            if ranker.capacity != settings.ranker_capacity:
                ranker.resize(settings.ranker_capacity)
            for target in scored:
                is_new = ranker.get(target.subject_id) is None
                if ranker.upsert(target) and is_new:
                    trade_logger.target_ranked(
                        target.subject_id, target.symbol, target.priority, target.rationale
                    )
            evicted = ranker.evict(settings.target_max_age_seconds, self.clock())
            eligible = [
                t for t in ranker.list()
                if t.priority >= settings.execution_floor
                and self.state.active_position_for(t.subject_id) is None
            ]

        if evicted:
            logger.debug(f"Evicted {evicted} stale targets")

        if self.config.risk.kill_switch:
            logger.warning("Kill switch active, skipping admission")
            return scored

        for target in eligible:
            await self.lifecycle.try_open(target, settings)
        return scored

    async def _subject_metrics(self, sig: Signal, record: dict) -> SubjectMetrics:
        async with self._fetch_limit:
            try:
                return await asyncio.wait_for(
                    self.market_data.fetch_subject(sig.subject_id),
                    timeout=self.config.loops.call_timeout
                )
            except (DataUnavailable, asyncio.TimeoutError) as e:
                logger.debug(
                    "Subject fetch failed, using record metrics",
                    extra={"subject_id": sig.subject_id, "error": str(e)}
                )
                return metrics_from_record(record)

    async def monitor_tick(self) -> int:
        return await self.lifecycle.monitor_tick(self.settings_store.current)

    async def volume_tick(self) -> int:
        trades = await self.volume_trader.tick(self.settings_store.current)
        return len(trades)

    # Exposed operations

    async def list_targets(self) -> list[dict]:
        return [t.to_dict() for t in await self.state.snapshot_targets()]

    async def list_positions(self) -> list[dict]:
        return [p.to_dict() for p in await self.state.snapshot_positions()]

    async def close_position(self, position_id: str) -> Position:
        return await self.lifecycle.close_position(position_id, ExitReason.MANUAL)

    def get_settings(self) -> dict:
        return self.settings_store.current.to_dict()

    def update_settings(self, **changes: Any) -> dict:
        settings = self.settings_store.update(**changes)
        logger.info("Settings updated", extra={"version": settings.version, "fields": sorted(changes)})
        return settings.to_dict()

    def list_strategies(self) -> list[dict]:
        return [s.to_dict() for s in self.settings_store.current.strategies]

    def update_strategy(self, name: str, **changes: Any) -> dict:
        settings = self.settings_store.update_strategy(name, **changes)
        logger.info(
            f"Strategy {name} updated",
            extra={"version": settings.version, "fields": sorted(changes)}
        )
        return settings.strategy(name).to_dict()

    async def get_performance_metrics(self) -> PerformanceMetrics:
        return await self.lifecycle.get_performance_metrics()

    async def get_volume_metrics(self) -> dict:
        return await self.volume_trader.get_performance_metrics()

    def get_fee_estimate(self) -> dict:
        estimate = self.fee_estimator.latest
        return {
            "estimate": asdict(estimate),
            "tiers": [asdict(t) for t in self.fee_estimator.tiers()],
        }

    def list_batches(self) -> list[dict]:
        return [b.to_dict(include_secrets=False) for b in self.wallets.list_batches()]

    def create_batch(self, count: int, batch_name: str, prefix: Optional[str] = None) -> WalletBatch:
        return self.wallets.create_batch(count, batch_name, prefix)

    async def fund_batch(self, batch_name: str, amount_per_account: float) -> list[str]:
        if self.funding_account is None:
            raise ConfigInvalid("No funding account configured")
        return await self.wallets.fund_batch(batch_name, self.funding_account, amount_per_account)

    async def batch_buy(
        self,
        batch_name: str,
        subject_id: str,
        amounts: Any,
        max_slippage: Optional[float] = None
    ) -> list[str]:
        slippage = max_slippage if max_slippage is not None else self.settings_store.current.sniper.max_slippage
        return await self.wallets.coordinated_buy(batch_name, subject_id, amounts, slippage)

    async def sweep_batch(
        self,
        batch_name: str,
        destination: Optional[str] = None,
        leave_balance: Optional[float] = None
    ) -> list[str]:
        if destination is None:
            if self.funding_account is None:
                raise ConfigInvalid("No sweep destination given and no funding account configured")
            destination = self.funding_account.public_addr
        return await self.wallets.sweep_batch(batch_name, destination, leave_balance)

    async def status(self) -> dict:
        async with self.state.lock:
            active = len(self.state.active_positions())
            targets = len(self.state.ranker)
        return {
            "simulation_mode": self.config.risk.simulation_mode,
            "kill_switch": self.config.risk.kill_switch,
            "settings_version": self.settings_store.current.version,
            "started_at": self.started_at,
            "loops": {
                name: {"running": self.is_running(name), **asdict(self.loop_stats[name])}
                for name in LOOP_NAMES
            },
            "targets": targets,
            "active_positions": active,
            "batches": len(self.wallets.list_batches()),
        }


def funding_account_from(config: Config) -> WalletAccount:
    """Funding account from FUNDING_PRIVATE_KEY, or a throwaway one in simulation."""
    if config.wallets.funding_secret:
        keypair = Keypair.from_base58_string(config.wallets.funding_secret)
    else:
        keypair = Keypair()
    account = WalletAccount(public_addr=str(keypair.pubkey()), secret=str(keypair), label="funding")
    return account


def build_engine(config: Config) -> SniperEngine:
    """
    Wire the engine with the default collaborators.

    Raises:
        ConfigInvalid: live mode requested; only simulated execution ships here
    """
    if not config.risk.simulation_mode:
        raise ConfigInvalid(
            "Live execution needs a signing TradeExecutor/WalletTransport; "
            "set SIMULATION_MODE=true or construct SniperEngine with a live backend"
        )

    market_data = FallbackMarketData([
        DexScreenerClient(
            base_url=config.market_data.dexscreener_url,
            timeout_seconds=config.market_data.timeout_seconds
        ),
        PumpFunClient(
            base_url=config.market_data.pumpfun_url,
            backup_url=config.market_data.pumpfun_backup_url,
            timeout_seconds=config.market_data.timeout_seconds
        ),
    ])
    fee_source = RpcFeeSampleSource(config.rpc.rpc_url, config.rpc.request_timeout)

    notifications = config.notifications
    if notifications.telegram_bot_token and notifications.telegram_chat_id:
        notifier: Notifier = TelegramNotifier(notifications.telegram_bot_token, notifications.telegram_chat_id)
    else:
        notifier = LogNotifier()

    funding = funding_account_from(config)
    transport = SimulatedWalletTransport({funding.public_addr: config.risk.simulation_balance})

    logger.info(
        "[SIMULATION] Using simulated execution",
        extra={"funding_account": funding.public_addr, "balance": config.risk.simulation_balance}
    )

    return SniperEngine(
        config=config,
        market_data=market_data,
        executor=SimulatedTradeExecutor(),
        transport=transport,
        fee_source=fee_source,
        notifier=notifier,
        funding_account=funding
    )


def setup_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = load_config()
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    # Set up logging
    setup_logging(
        level=config.logging.log_level,
        json_format=config.logging.json_logging
    )

    try:
        engine = build_engine(config)
    except ConfigInvalid as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    from .api.server import create_app

    server = uvicorn.Server(uvicorn.Config(
        create_app(engine),
        host=config.api.host,
        port=config.api.port,
        log_level=config.logging.log_level.lower()
    ))
    shutdown_event = asyncio.Event()
    setup_signal_handlers(shutdown_event)

    logger.info("Starting token sniper engine")
    await engine.start()
    server_task = asyncio.create_task(server.serve())

    shutdown_task = asyncio.create_task(shutdown_event.wait())

    try:
        # uvicorn may take over SIGINT/SIGTERM while serving; whichever finishes first wins
        await asyncio.wait({server_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        shutdown_task.cancel()
        logger.info("Shutting down")
        server.should_exit = True
        await server_task
        await engine.close()
        logger.info("Shutdown complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
