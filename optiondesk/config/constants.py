"""Enums and constants used throughout the trading engine."""

from enum import Enum


class TradeSide(str, Enum):
    """Trade direction. CALL/PUT are the broker's aliases for BUY/SELL."""

    BUY = "BUY"
    SELL = "SELL"
    CALL = "CALL"
    PUT = "PUT"

    @property
    def is_bullish(self) -> bool:
        return self in (TradeSide.BUY, TradeSide.CALL)


class PendingStatus(str, Enum):
    """Lifecycle state of a pending order."""

    PENDING = "pending"
    TRIGGERED = "triggered"
    EXECUTED = "executed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (
            PendingStatus.EXECUTED,
            PendingStatus.CANCELLED,
            PendingStatus.EXPIRED,
        )


class TradeResult(str, Enum):
    """Settlement result of a trade."""

    WIN = "win"
    LOSS = "loss"
    PENDING = "pending"


class Severity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RiskAction(str, Enum):
    """What a risk finding asks the caller to do."""

    BLOCK = "BLOCK"
    WARN = "WARN"
    REDUCE = "REDUCE"


class RiskType(str, Enum):
    DAILY_LOSS_LIMIT = "DAILY_LOSS_LIMIT"
    DAILY_LOSS_WARNING = "DAILY_LOSS_WARNING"
    POSITION_SIZE = "POSITION_SIZE"
    CONSECUTIVE_LOSSES = "CONSECUTIVE_LOSSES"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


class RiskLevel(str, Enum):
    """Overall account risk level."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class MarketEvent(str, Enum):
    """Event types a market feed subscriber can listen to."""

    PRICE_UPDATE = "price_update"
    SIGNAL_UPDATE = "signal_update"
    ANALYSIS_UPDATE = "analysis_update"


# Storage keys for the persisted JSON records
TRADING_STATE_KEY = "trading_state"
CONNECTION_STATE_KEY = "connection_state"
PENDING_ORDERS_KEY = "pending_orders"
LEARNING_DATA_KEY = "learning_data"
RISK_SETTINGS_KEY = "risk_settings"
DAILY_STATS_KEY = "daily_stats"

# Binary option expiry → seconds
TIMEFRAME_SECONDS: dict[str, int] = {
    "30s": 30,
    "1m": 60,
    "2m": 120,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
}

DEFAULT_SYMBOL = "EURUSD"
DEFAULT_BASE_PRICE = 100.0
DEFAULT_VOLATILITY = 0.4

BASE_PRICES: dict[str, float] = {
    "EURUSD": 1.08500,
    "GBPUSD": 1.26420,
    "USDJPY": 149.850,
    "BTCUSD": 43850.00,
    "ETHUSD": 2680.50,
    "AAPL": 195.89,
    "GOOGL": 142.56,
    "XAUUSD": 2045.50,
}

SYMBOL_VOLATILITY: dict[str, float] = {
    "EURUSD": 0.3,
    "GBPUSD": 0.4,
    "USDJPY": 0.35,
    "BTCUSD": 0.8,
    "ETHUSD": 0.7,
    "AAPL": 0.5,
    "GOOGL": 0.45,
    "XAUUSD": 0.6,
}

SYMBOL_TREND: dict[str, float] = {
    "EURUSD": 0.1,
    "GBPUSD": -0.05,
    "USDJPY": 0.15,
    "BTCUSD": 0.2,
    "ETHUSD": 0.1,
    "AAPL": 0.05,
    "GOOGL": 0.08,
    "XAUUSD": -0.1,
}

# Strategy names offered when the caller does not supply its own list
DEFAULT_STRATEGIES: list[str] = [
    "Trend Following",
    "Scalping Momentum",
    "Range Reversal",
]
