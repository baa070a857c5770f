"""
Core data model: signals, targets, positions, wallet batches and volume rows.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SignalKind(Enum):
    """Kind of market observation."""
    NEW_LISTING = "new_listing"
    LIQUIDITY_ADD = "liquidity_add"
    VOLUME_SPIKE = "volume_spike"
    PRICE_BREAKOUT = "price_breakout"


@dataclass(frozen=True)
class Signal:
    """Timestamped observation about a tradable subject."""
    kind: SignalKind
    subject_id: str
    symbol: str
    strength: float  # 0-100
    confidence: float  # 0-1
    observed_at: float
    raw_metrics: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "strength", clamp(float(self.strength), 0.0, 100.0))
        object.__setattr__(self, "confidence", clamp(float(self.confidence), 0.0, 1.0))


@dataclass
class SubjectMetrics:
    """Descriptive metrics fetched for a subject."""
    price: float = 0.0
    liquidity: float = 0.0
    market_cap: float = 0.0
    volume_24h: float = 0.0
    social_links: Dict[str, str] = field(default_factory=dict)
    creator: str = ""
    listed_at: Optional[float] = None
    bonding_progress: Optional[float] = None  # percent of the curve filled

    @property
    def has_social_presence(self) -> bool:
        return bool(self.social_links.get("twitter")) and bool(self.social_links.get("telegram"))


@dataclass
class Target:
    """Scored candidate awaiting an admission decision."""
    subject_id: str
    symbol: str
    creator_id: str
    price: float
    liquidity: float
    market_cap: float
    priority: float
    rationale: str
    estimated_fee: float
    min_size: float
    max_size: float
    max_slippage: float
    created_at: float

    def __post_init__(self):
        self.priority = clamp(float(self.priority), 0.0, 100.0)
        for name in ("estimated_fee", "min_size", "max_size"):
            if getattr(self, name) <= 0:
                raise ValueError(f"Target.{name} must be positive, got {getattr(self, name)}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PositionState(Enum):
    """Lifecycle state of a position."""
    PENDING = "pending"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


class ExitReason(Enum):
    PROFIT = "profit"
    STOP_LOSS = "stop_loss"
    MANUAL = "manual"


ACTIVE_STATES = (PositionState.PENDING, PositionState.OPEN, PositionState.CLOSING)


@dataclass
class Position:
    """Live record of an entered trade."""
    id: str
    subject_id: str
    symbol: str
    size: float
    entry_price: float
    current_price: float
    opened_at: float
    state: PositionState = PositionState.PENDING
    entry_signature: str = ""
    exit_signature: Optional[str] = None
    pnl_absolute: Optional[float] = None
    pnl_percent: Optional[float] = None
    closed_at: Optional[float] = None
    exit_reason: Optional[ExitReason] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """Open-or-pending in the admission sense (closing still holds a slot)."""
        return self.state in ACTIVE_STATES

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["exit_reason"] = self.exit_reason.value if self.exit_reason else None
        return data


@dataclass
class WalletAccount:
    """Independently funded account owned by one batch."""
    public_addr: str
    secret: str
    label: str
    balance: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletAccount":
        return cls(
            public_addr=data["public_addr"],
            secret=data["secret"],
            label=data.get("label", ""),
            balance=float(data.get("balance", 0.0)),
        )


@dataclass
class WalletBatch:
    """Named group of accounts created together."""
    batch_name: str
    accounts: List[WalletAccount]
    created_at: float

    @property
    def total_accounts(self) -> int:
        return len(self.accounts)

    def to_dict(self, include_secrets: bool = True) -> Dict[str, Any]:
        accounts = []
        for account in self.accounts:
            row = account.to_dict()
            if not include_secrets:
                row.pop("secret")
            accounts.append(row)
        return {
            "batch_name": self.batch_name,
            "created_at": self.created_at,
            "total_accounts": self.total_accounts,
            "accounts": accounts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletBatch":
        return cls(
            batch_name=data["batch_name"],
            accounts=[WalletAccount.from_dict(a) for a in data.get("accounts", [])],
            created_at=float(data["created_at"]),
        )


@dataclass
class MarketVolume:
    """Row of the shared volume map."""
    subject_id: str
    symbol: str
    volume_1h: float = 0.0
    volume_24h: float = 0.0
    price_change_1h: float = 0.0
    price_change_24h: float = 0.0
    liquidity: float = 0.0
    market_cap: float = 0.0
    trades: int = 0
    buy_volume: float = 0.0
    sell_volume: float = 0.0

    @property
    def avg_hourly_volume(self) -> float:
        return self.volume_24h / 24

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VolumeTrade:
    """Trade placed by a volume strategy."""
    id: str
    subject_id: str
    symbol: str
    side: str  # buy or sell
    amount: float
    strategy: str
    timestamp: float
    volume: float
    impact: float
    status: str = "pending"  # pending, confirmed, failed
    signatures: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PerformanceMetrics:
    """Aggregate results over closed positions."""
    total_trades: int = 0
    profitable_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0  # percent
    total_pnl: float = 0.0
    average_win: float = 0.0  # percent
    average_loss: float = 0.0  # percent
    best_trade: float = 0.0
    worst_trade: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
