"""Dataclass models representing domain objects persisted as JSON records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from optiondesk.config.constants import (
    PendingStatus,
    RiskAction,
    RiskType,
    Severity,
    TradeResult,
    TradeSide,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Parse ISO string back to datetime. Naive values are taken as UTC."""
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _encode(items: list[tuple[str, Any]]) -> dict[str, Any]:
    """``asdict`` factory that turns enums and datetimes into JSON scalars."""
    encoded: dict[str, Any] = {}
    for key, value in items:
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        encoded[key] = value
    return encoded


# -- Market data ---------------------------------------------------------------


@dataclass
class PriceTick:
    """Single simulated price update."""

    symbol: str
    price: float
    change: float
    change_percent: float
    timestamp: datetime
    volume: int = 0
    bid: float = 0.0
    ask: float = 0.0
    high_24h: float = 0.0
    low_24h: float = 0.0
    volatility: float = 0.0
    trend: str = "sideways"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)


@dataclass
class MarketSignal:
    """Indicator-driven trade suggestion for a symbol."""

    symbol: str
    direction: str  # "BUY", "SELL" or "HOLD"
    strength: int
    confidence: int
    timestamp: datetime
    entry_price: float = 0.0
    indicators: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)


@dataclass
class MarketAnalysis:
    """Periodic market overview for a symbol."""

    symbol: str
    timestamp: datetime
    market_condition: str
    volatility: str
    trend: str
    support: float
    resistance: float
    recommended_expiry: str
    risk_level: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)


@dataclass
class MarketConditions:
    """Condition tags attached to a trade."""

    volatility: str = "Medium"
    sentiment: str = "Neutral"

    @property
    def key(self) -> str:
        return f"{self.volatility}_{self.sentiment}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "MarketConditions":
        if not data:
            return cls()
        return cls(
            volatility=data.get("volatility", "Medium"),
            sentiment=data.get("sentiment", "Neutral"),
        )


# -- Orders and trades ---------------------------------------------------------


@dataclass
class PendingOrder:
    """A trade waiting for its target price before auto-execution."""

    id: str
    symbol: str
    side: TradeSide
    amount: float
    target_price: float
    timeframe: str = "1m"
    stop_loss: float | None = None
    take_profit: float | None = None
    expiry_time: datetime | None = None
    status: PendingStatus = PendingStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    executed_at: datetime | None = None
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingOrder":
        """Build an order from its stored form.

        Raises ``KeyError``, ``ValueError`` or ``TypeError`` on malformed data.
        """
        return cls(
            id=str(data["id"]),
            symbol=str(data["symbol"]),
            side=TradeSide(data["side"]),
            amount=float(data["amount"]),
            target_price=float(data["target_price"]),
            timeframe=data.get("timeframe", "1m"),
            stop_loss=_optional_float(data.get("stop_loss")),
            take_profit=_optional_float(data.get("take_profit")),
            expiry_time=_str_to_dt(data.get("expiry_time")),
            status=PendingStatus(data.get("status", PendingStatus.PENDING.value)),
            created_at=_str_to_dt(data.get("created_at")) or utcnow(),
            executed_at=_str_to_dt(data.get("executed_at")),
            note=data.get("note", ""),
        )


def _optional_float(value: Any) -> float | None:
    return float(value) if value is not None else None


@dataclass
class TradeRequest:
    """Parameters of a trade about to be validated and executed."""

    symbol: str
    side: TradeSide
    amount: float
    timeframe: str = "1m"
    strategy: str = "Manual"
    confidence: float = 60.0
    market_conditions: MarketConditions = field(default_factory=MarketConditions)
    market_volatility: str = "medium"
    # Set by the engine once the trade passed risk validation
    risk_score: float | None = None
    order_id: str | None = None


@dataclass
class ExecutedTrade:
    """A trade accepted by the broker."""

    trade_id: str
    symbol: str
    side: TradeSide
    amount: float
    timeframe: str
    strategy: str
    timestamp: datetime
    entry_price: float
    expected_return: float
    expiry_time: datetime
    status: str = "executed"
    order_type: str = "binary_option"
    platform: str = "PocketOption"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)


@dataclass
class ExecutionResult:
    """Structured success/failure returned across the broker boundary."""

    success: bool
    message: str
    trade: ExecutedTrade | None = None
    account_balance: float | None = None
    # Broker was offline; the request waits in the client queue
    queued: bool = False


@dataclass
class OpenPosition:
    """An executed binary option waiting for settlement at expiry."""

    trade: ExecutedTrade
    confidence: float
    market_conditions: MarketConditions
    risk_score: float


@dataclass
class TradeOutcome:
    """Settled (or pending) result of one executed trade."""

    symbol: str
    side: TradeSide
    amount: float
    strategy: str
    timeframe: str
    confidence: float
    market_conditions: MarketConditions
    result: TradeResult
    profit: float = 0.0
    risk_score: float = 0.0
    entry_price: float = 0.0
    exit_price: float = 0.0
    duration: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)
    id: str = ""

    @property
    def is_win(self) -> bool:
        return self.result == TradeResult.WIN

    @property
    def is_loss(self) -> bool:
        return self.result == TradeResult.LOSS

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradeOutcome":
        return cls(
            id=str(data.get("id", "")),
            symbol=data["symbol"],
            side=TradeSide(data["side"]),
            amount=float(data["amount"]),
            strategy=data.get("strategy", "Unknown"),
            timeframe=data.get("timeframe", "1m"),
            confidence=float(data.get("confidence", 0.0)),
            market_conditions=MarketConditions.from_dict(data.get("market_conditions")),
            result=TradeResult(data["result"]),
            profit=float(data.get("profit", 0.0)),
            risk_score=float(data.get("risk_score", 0.0)),
            entry_price=float(data.get("entry_price", 0.0)),
            exit_price=float(data.get("exit_price", 0.0)),
            duration=float(data.get("duration", 0.0)),
            timestamp=_str_to_dt(data.get("timestamp")) or utcnow(),
        )


# -- Learning aggregates -------------------------------------------------------


@dataclass
class ConditionPerformance:
    """Win/total counter for one bucket (condition tag, pattern, signal)."""

    total: int = 0
    wins: int = 0

    @property
    def win_rate(self) -> float:
        return self.wins / self.total * 100 if self.total else 0.0

    def record(self, won: bool) -> None:
        self.total += 1
        if won:
            self.wins += 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConditionPerformance":
        return cls(total=int(data.get("total", 0)), wins=int(data.get("wins", 0)))


def _buckets_from_dict(data: dict[str, Any] | None) -> dict[str, ConditionPerformance]:
    return {k: ConditionPerformance.from_dict(v) for k, v in (data or {}).items()}


@dataclass
class StrategyPerformance:
    """Running aggregate for one strategy, updated per outcome."""

    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    avg_confidence: float = 0.0
    avg_risk_score: float = 0.0
    recent_performance: list[dict[str, Any]] = field(default_factory=list)
    market_conditions: dict[str, ConditionPerformance] = field(default_factory=dict)

    @property
    def win_rate(self) -> float:
        return self.wins / self.total_trades * 100 if self.total_trades else 0.0

    @property
    def recent_win_rate(self) -> float:
        if not self.recent_performance:
            return 0.0
        recent_wins = sum(
            1 for p in self.recent_performance if p["result"] == TradeResult.WIN.value
        )
        return recent_wins / len(self.recent_performance) * 100

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StrategyPerformance":
        return cls(
            total_trades=int(data.get("total_trades", 0)),
            wins=int(data.get("wins", 0)),
            losses=int(data.get("losses", 0)),
            total_profit=float(data.get("total_profit", 0.0)),
            total_loss=float(data.get("total_loss", 0.0)),
            avg_confidence=float(data.get("avg_confidence", 0.0)),
            avg_risk_score=float(data.get("avg_risk_score", 0.0)),
            recent_performance=list(data.get("recent_performance", [])),
            market_conditions=_buckets_from_dict(data.get("market_conditions")),
        )


@dataclass
class AdaptiveSettings:
    """Thresholds the learning engine nudges as results come in."""

    confidence_threshold: float = 70.0
    max_risk_per_trade: float = 5.0
    adaptive_timeframes: bool = True
    market_condition_filtering: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AdaptiveSettings":
        return cls(**(data or {}))


@dataclass
class LearningData:
    """Everything the learning engine persists."""

    total_trades: int = 0
    successful_trades: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    win_streaks: list[int] = field(default_factory=list)
    loss_streaks: list[int] = field(default_factory=list)
    strategy_performance: dict[str, StrategyPerformance] = field(default_factory=dict)
    market_condition_performance: dict[str, ConditionPerformance] = field(
        default_factory=dict
    )
    condition_strategies: dict[str, dict[str, ConditionPerformance]] = field(
        default_factory=dict
    )
    timeframe_analysis: dict[str, dict[str, ConditionPerformance]] = field(
        default_factory=dict
    )
    signal_accuracy: dict[str, ConditionPerformance] = field(default_factory=dict)
    learning_history: list[TradeOutcome] = field(default_factory=list)
    adaptive_settings: AdaptiveSettings = field(default_factory=AdaptiveSettings)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LearningData":
        return cls(
            total_trades=int(data.get("total_trades", 0)),
            successful_trades=int(data.get("successful_trades", 0)),
            total_profit=float(data.get("total_profit", 0.0)),
            total_loss=float(data.get("total_loss", 0.0)),
            win_streaks=list(data.get("win_streaks", [])),
            loss_streaks=list(data.get("loss_streaks", [])),
            strategy_performance={
                name: StrategyPerformance.from_dict(perf)
                for name, perf in data.get("strategy_performance", {}).items()
            },
            market_condition_performance=_buckets_from_dict(
                data.get("market_condition_performance")
            ),
            condition_strategies={
                key: _buckets_from_dict(value)
                for key, value in data.get("condition_strategies", {}).items()
            },
            timeframe_analysis={
                key: _buckets_from_dict(value)
                for key, value in data.get("timeframe_analysis", {}).items()
            },
            signal_accuracy=_buckets_from_dict(data.get("signal_accuracy")),
            learning_history=[
                TradeOutcome.from_dict(o) for o in data.get("learning_history", [])
            ],
            adaptive_settings=AdaptiveSettings.from_dict(data.get("adaptive_settings")),
        )


# -- Risk ----------------------------------------------------------------------


@dataclass
class RiskSettings:
    """User-adjustable risk profile (persisted singleton)."""

    max_position_size: float = 5.0
    daily_loss_limit: float = 100.0
    max_consecutive_losses: int = 3
    min_confidence: float = 65.0
    max_drawdown: float = 20.0
    risk_reward_ratio: float = 2.0
    stop_loss_enabled: bool = True
    take_profit_enabled: bool = True
    initial_balance: float = 1000.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RiskSettings":
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class DailyStats:
    """Per-day risk counters, reset when the UTC date rolls over."""

    date: str
    trades_count: int = 0
    total_risk: float = 0.0
    total_profit: float = 0.0
    total_loss: float = 0.0
    consecutive_losses: int = 0
    max_consecutive_losses: int = 0
    largest_loss: float = 0.0
    risk_events: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def fresh(cls, day: date) -> "DailyStats":
        return cls(date=day.isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DailyStats":
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class RiskFinding:
    """One rule violation reported by the risk validator."""

    type: RiskType
    severity: Severity
    message: str
    action: RiskAction

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)


@dataclass
class RiskAssessment:
    """Result of validating a trade against the risk profile."""

    allowed: bool
    risks: list[RiskFinding]
    recommended_amount: float
    risk_score: float

    @property
    def blocking(self) -> list[RiskFinding]:
        return [r for r in self.risks if r.action == RiskAction.BLOCK]

    @property
    def warnings(self) -> list[RiskFinding]:
        return [r for r in self.risks if r.action != RiskAction.BLOCK]


# -- Broker session ------------------------------------------------------------


@dataclass
class Credentials:
    api_key: str
    secret_key: str
    account_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credentials":
        return cls(
            api_key=data.get("api_key", ""),
            secret_key=data.get("secret_key", ""),
            account_id=data.get("account_id", ""),
        )


@dataclass
class AccountInfo:
    """Simulated broker account."""

    account_id: str
    balance: float
    currency: str = "USD"
    account_type: str = "Live"
    leverage: str = "1:100"
    equity: float = 0.0
    margin: float = 0.0
    free_margin: float = 0.0
    margin_level: float = 0.0
    last_update: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccountInfo":
        known = cls.__dataclass_fields__
        values = {k: v for k, v in data.items() if k in known}
        values["last_update"] = _str_to_dt(data.get("last_update")) or utcnow()
        return cls(**values)


@dataclass
class ConnectionState:
    """Snapshot of the broker session, valid for 24 hours."""

    is_connected: bool
    account_info: AccountInfo | None
    credentials: Credentials | None
    session_id: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConnectionState":
        account = data.get("account_info")
        creds = data.get("credentials")
        return cls(
            is_connected=bool(data.get("is_connected", False)),
            account_info=AccountInfo.from_dict(account) if account else None,
            credentials=Credentials.from_dict(creds) if creds else None,
            session_id=data.get("session_id", ""),
            timestamp=_str_to_dt(data.get("timestamp")) or utcnow(),
        )


@dataclass
class TradingState:
    """Snapshot of the user's working context, valid for one hour."""

    selected_market: str = "forex"
    selected_symbol: str = "EURUSD"
    selected_timeframe: str = "1m"
    analysis: dict[str, Any] | None = None
    strategy: str | None = None
    auto_refresh: bool = True
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self, dict_factory=_encode)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TradingState":
        known = cls.__dataclass_fields__
        values = {k: v for k, v in data.items() if k in known}
        values["timestamp"] = _str_to_dt(data.get("timestamp")) or utcnow()
        return cls(**values)
