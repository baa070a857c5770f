"""
Configuration module for the token sniper engine.

Process settings are loaded from environment variables. Trading parameters
live in an immutable, versioned TradingSettings value held by a SettingsStore;
updates are validated and swapped in whole, never mutated in place.
"""

import os
from dataclasses import dataclass, field, fields, replace, asdict
from typing import Any, Optional

from dotenv import load_dotenv

from .errors import ConfigInvalid

# Load .env file if present
load_dotenv()

SNIPER_STRATEGY = "sniper"


@dataclass(frozen=True)
class Strategy:
    """Named trading strategy parameters."""
    name: str
    min_volume_threshold: float
    max_slippage: float  # percent
    target_impact: float  # percent of liquidity
    cooldown_ms: int
    enabled: bool = True
    description: str = ""

    def validate(self) -> None:
        if not self.name:
            raise ConfigInvalid("Strategy name must not be empty")
        _require_number(self, "min_volume_threshold", low=0)
        _require_number(self, "max_slippage", low=0, high=100, low_inclusive=False)
        _require_number(self, "target_impact", low=0, high=100)
        _require_number(self, "cooldown_ms", low=0)
        if not isinstance(self.enabled, bool):
            raise ConfigInvalid(f"Strategy {self.name}: enabled must be a boolean")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


DEFAULT_STRATEGIES = (
    Strategy(
        name=SNIPER_STRATEGY,
        min_volume_threshold=0,
        max_slippage=3.0,
        target_impact=5.0,
        cooldown_ms=5_000,
        description="Snipe freshly listed, high-priority targets"
    ),
    Strategy(
        name="volume_spike",
        min_volume_threshold=50_000,
        max_slippage=2.0,
        target_impact=5.0,
        cooldown_ms=30_000,
        description="Trade tokens with sudden volume increases"
    ),
    Strategy(
        name="accumulation",
        min_volume_threshold=25_000,
        max_slippage=1.5,
        target_impact=2.0,
        cooldown_ms=60_000,
        description="Gradually accumulate tokens with consistent volume"
    ),
    Strategy(
        name="momentum",
        min_volume_threshold=100_000,
        max_slippage=3.0,
        target_impact=8.0,
        cooldown_ms=15_000,
        enabled=False,
        description="Follow strong volume momentum"
    ),
    Strategy(
        name="whale_watching",
        min_volume_threshold=500_000,
        max_slippage=5.0,
        target_impact=15.0,
        cooldown_ms=10_000,
        description="Track large volume movements"
    ),
)


@dataclass(frozen=True)
class TradingSettings:
    """Trading parameters for one evaluation cycle."""
    buy_amount: float = 0.1  # SOL per snipe
    take_profit_pct: float = 50.0
    stop_loss_pct: float = 20.0
    max_positions: int = 5
    discovery_floor: float = 30.0  # minimum priority to be ranked
    execution_floor: float = 70.0  # minimum priority to be admitted
    min_liquidity: float = 10_000.0
    ranker_capacity: int = 20
    target_max_age_seconds: float = 1_800.0
    strategies: tuple[Strategy, ...] = DEFAULT_STRATEGIES
    version: int = 1

    def strategy(self, name: str) -> Strategy:
        for strategy in self.strategies:
            if strategy.name == name:
                return strategy
        raise KeyError(name)

    @property
    def sniper(self) -> Strategy:
        return self.strategy(SNIPER_STRATEGY)

    def enabled_strategies(self, exclude: tuple[str, ...] = (SNIPER_STRATEGY,)) -> list[Strategy]:
        return [s for s in self.strategies if s.enabled and s.name not in exclude]

    def validate(self) -> None:
        _require_number(self, "buy_amount", low=0, low_inclusive=False)
        _require_number(self, "take_profit_pct", low=0, low_inclusive=False)
        _require_number(self, "stop_loss_pct", low=0, high=100, low_inclusive=False)
        _require_number(self, "discovery_floor", low=0, high=100)
        _require_number(self, "execution_floor", low=0, high=100)
        _require_number(self, "min_liquidity", low=0)
        _require_number(self, "target_max_age_seconds", low=0, low_inclusive=False)
        _require_int(self, "max_positions", low=1)
        _require_int(self, "ranker_capacity", low=1)

        if self.discovery_floor > self.execution_floor:
            raise ConfigInvalid(
                f"discovery_floor ({self.discovery_floor}) must not exceed "
                f"execution_floor ({self.execution_floor})"
            )

        names = [s.name for s in self.strategies]
        if len(names) != len(set(names)):
            raise ConfigInvalid("Strategy names must be unique")
        if SNIPER_STRATEGY not in names:
            raise ConfigInvalid(f"A '{SNIPER_STRATEGY}' strategy is required")
        for strategy in self.strategies:
            strategy.validate()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["strategies"] = [s.to_dict() for s in self.strategies]
        return data


class SettingsStore:
    """
    Holder of the current TradingSettings.

    Readers take `current` once per cycle; writers build a new validated value
    and swap the reference, so in-flight decisions keep the value they started with.
    """

    def __init__(self, settings: Optional[TradingSettings] = None):
        initial = settings or TradingSettings()
        initial.validate()
        self._current = initial

    @property
    def current(self) -> TradingSettings:
        return self._current

    def update(self, **changes: Any) -> TradingSettings:
        """
        Replace top-level trading parameters.

        Raises:
            ConfigInvalid: unknown field or invalid value; prior settings kept
        """
        allowed = {f.name for f in fields(TradingSettings)} - {"version", "strategies"}
        unknown = set(changes) - allowed
        if unknown:
            raise ConfigInvalid(f"Unknown settings: {', '.join(sorted(unknown))}")

        return self._swap(replace(self._current, **changes))

    def update_strategy(self, name: str, **changes: Any) -> TradingSettings:
        """
        Replace fields of one strategy.

        Raises:
            ConfigInvalid: unknown strategy, unknown field or invalid value
        """
        current = self._current
        try:
            existing = current.strategy(name)
        except KeyError:
            raise ConfigInvalid(f"Unknown strategy: {name}")

        allowed = {f.name for f in fields(Strategy)} - {"name"}
        unknown = set(changes) - allowed
        if unknown:
            raise ConfigInvalid(f"Unknown strategy fields: {', '.join(sorted(unknown))}")

        updated = replace(existing, **changes)
        strategies = tuple(updated if s.name == name else s for s in current.strategies)
        return self._swap(replace(current, strategies=strategies))

    def _swap(self, candidate: TradingSettings) -> TradingSettings:
        candidate.validate()
        candidate = replace(candidate, version=self._current.version + 1)
        self._current = candidate
        return candidate


def _require_number(
    obj: Any,
    name: str,
    low: Optional[float] = None,
    high: Optional[float] = None,
    low_inclusive: bool = True
) -> None:
    value = getattr(obj, name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigInvalid(f"{name} must be a number, got {value!r}")
    if value != value:  # NaN
        raise ConfigInvalid(f"{name} must not be NaN")
    if low is not None and (value < low or (not low_inclusive and value == low)):
        bound = ">=" if low_inclusive else ">"
        raise ConfigInvalid(f"{name} must be {bound} {low}, got {value}")
    if high is not None and value > high:
        raise ConfigInvalid(f"{name} must be <= {high}, got {value}")


def _require_int(obj: Any, name: str, low: int) -> None:
    value = getattr(obj, name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigInvalid(f"{name} must be an integer, got {value!r}")
    if value < low:
        raise ConfigInvalid(f"{name} must be >= {low}, got {value}")


@dataclass
class RpcConfig:
    """Solana RPC configuration."""
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    request_timeout: float = 10.0


@dataclass
class MarketDataConfig:
    """Market data provider endpoints."""
    pumpfun_url: str = "https://frontend-api.pump.fun"
    pumpfun_backup_url: str = "https://pump.fun/api"
    dexscreener_url: str = "https://api.dexscreener.com/latest/dex"
    timeout_seconds: float = 10.0


@dataclass
class LoopConfig:
    """Intervals and timeouts of the periodic loops."""
    scan_interval: float = 2.0
    monitor_interval: float = 3.0
    volume_interval: float = 5.0
    call_timeout: float = 10.0
    max_concurrent_fetches: int = 5


@dataclass
class WalletConfig:
    """Wallet batch settings."""
    batch_dir: str = "wallet-batches"
    transfer_pacing_seconds: float = 1.0
    jitter_min_seconds: float = 1.0
    jitter_max_seconds: float = 3.0
    leave_balance: float = 0.001
    volume_batch: Optional[str] = None  # multi-account volume trading when set
    funding_secret: str = ""  # base58 keypair of the funding account


@dataclass
class RiskConfig:
    """Risk control settings."""
    simulation_mode: bool = True  # Dry run - no real transactions
    kill_switch: bool = False
    simulation_balance: float = 10.0  # SOL credited to the funding account in simulation


@dataclass
class LogConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    json_logging: bool = True


@dataclass
class NotificationConfig:
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""


@dataclass
class ApiConfig:
    host: str = "0.0.0.0"
    port: int = 3001


@dataclass
class Config:
    """Main configuration container."""
    rpc: RpcConfig = field(default_factory=RpcConfig)
    market_data: MarketDataConfig = field(default_factory=MarketDataConfig)
    loops: LoopConfig = field(default_factory=LoopConfig)
    wallets: WalletConfig = field(default_factory=WalletConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    logging: LogConfig = field(default_factory=LogConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    trading: TradingSettings = field(default_factory=TradingSettings)


def get_env(key: str, default: Optional[str] = None, required: bool = True) -> str:
    """Get environment variable with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigInvalid(f"Required environment variable {key} is not set")
    return value or ""


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes")


def get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    value = os.getenv(key, str(default))
    try:
        return int(value)
    except ValueError:
        raise ConfigInvalid(f"{key} must be an integer, got {value!r}")


def get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    value = os.getenv(key, str(default))
    try:
        return float(value)
    except ValueError:
        raise ConfigInvalid(f"{key} must be a number, got {value!r}")


def load_config() -> Config:
    """Load and validate configuration from environment."""
    trading = TradingSettings(
        buy_amount=get_env_float("BUY_AMOUNT", 0.1),
        take_profit_pct=get_env_float("TAKE_PROFIT_PCT", 50.0),
        stop_loss_pct=get_env_float("STOP_LOSS_PCT", 20.0),
        max_positions=get_env_int("MAX_POSITIONS", 5),
        discovery_floor=get_env_float("DISCOVERY_FLOOR", 30.0),
        execution_floor=get_env_float("EXECUTION_FLOOR", 70.0),
        min_liquidity=get_env_float("MIN_LIQUIDITY", 10_000.0),
        ranker_capacity=get_env_int("RANKER_CAPACITY", 20),
    )
    trading.validate()

    return Config(
        rpc=RpcConfig(
            rpc_url=get_env("RPC_URL", "https://api.mainnet-beta.solana.com", required=False),
            request_timeout=get_env_float("RPC_TIMEOUT", 10.0),
        ),
        market_data=MarketDataConfig(
            pumpfun_url=get_env("PUMPFUN_API_URL", "https://frontend-api.pump.fun", required=False),
            pumpfun_backup_url=get_env("PUMPFUN_BACKUP_URL", "https://pump.fun/api", required=False),
            dexscreener_url=get_env(
                "DEXSCREENER_API_URL", "https://api.dexscreener.com/latest/dex", required=False
            ),
            timeout_seconds=get_env_float("MARKET_DATA_TIMEOUT", 10.0),
        ),
        loops=LoopConfig(
            scan_interval=get_env_float("SCAN_INTERVAL", 2.0),
            monitor_interval=get_env_float("MONITOR_INTERVAL", 3.0),
            volume_interval=get_env_float("VOLUME_INTERVAL", 5.0),
            call_timeout=get_env_float("CALL_TIMEOUT", 10.0),
            max_concurrent_fetches=get_env_int("MAX_CONCURRENT_FETCHES", 5),
        ),
        wallets=WalletConfig(
            batch_dir=get_env("WALLET_BATCH_DIR", "wallet-batches", required=False),
            transfer_pacing_seconds=get_env_float("TRANSFER_PACING_SECONDS", 1.0),
            jitter_min_seconds=get_env_float("JITTER_MIN_SECONDS", 1.0),
            jitter_max_seconds=get_env_float("JITTER_MAX_SECONDS", 3.0),
            leave_balance=get_env_float("LEAVE_BALANCE", 0.001),
            volume_batch=get_env("VOLUME_BATCH", required=False) or None,
            funding_secret=get_env("FUNDING_PRIVATE_KEY", required=False),
        ),
        risk=RiskConfig(
            simulation_mode=get_env_bool("SIMULATION_MODE", True),  # Default to simulation
            kill_switch=get_env_bool("KILL_SWITCH", False),
            simulation_balance=get_env_float("SIMULATION_BALANCE", 10.0),
        ),
        logging=LogConfig(
            log_level=get_env("LOG_LEVEL", "INFO", required=False),
            json_logging=get_env_bool("JSON_LOGGING", True),
        ),
        notifications=NotificationConfig(
            telegram_bot_token=get_env("TELEGRAM_BOT_TOKEN", required=False),
            telegram_chat_id=get_env("TELEGRAM_CHAT_ID", required=False),
        ),
        api=ApiConfig(
            host=get_env("API_HOST", "0.0.0.0", required=False),
            port=get_env_int("API_PORT", 3001),
        ),
        trading=trading,
    )
