"""Typed access to every persisted record."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from optiondesk.config.constants import (
    CONNECTION_STATE_KEY,
    DAILY_STATS_KEY,
    LEARNING_DATA_KEY,
    PENDING_ORDERS_KEY,
    RISK_SETTINGS_KEY,
    TRADING_STATE_KEY,
)
from optiondesk.data.models import (
    ConnectionState,
    DailyStats,
    LearningData,
    PendingOrder,
    RiskSettings,
    TradingState,
)

if TYPE_CHECKING:
    from optiondesk.config.settings import StorageSettings
    from optiondesk.data.store import KeyValueStore

logger = logging.getLogger(__name__)

# Errors raised by the ``from_dict`` constructors on malformed records
_DECODE_ERRORS = (KeyError, ValueError, TypeError, AttributeError)


class Repository:
    """Data-access layer mapping domain records onto the key-value store."""

    def __init__(self, store: "KeyValueStore", settings: "StorageSettings") -> None:
        self._store = store
        self._settings = settings

    # -- Pending orders -------------------------------------------------------

    async def save_pending_orders(self, orders: list[PendingOrder]) -> bool:
        """Rewrite the whole pending order list."""
        return await self._store.save(
            PENDING_ORDERS_KEY, [order.to_dict() for order in orders]
        )

    async def get_pending_orders(self) -> list[PendingOrder]:
        """Load pending orders, silently dropping malformed records."""
        raw = await self._store.load(PENDING_ORDERS_KEY)
        if not isinstance(raw, list):
            return []

        orders: list[PendingOrder] = []
        for item in raw:
            try:
                orders.append(PendingOrder.from_dict(item))
            except _DECODE_ERRORS:
                logger.debug("Dropping malformed pending order: %r", item)
        return orders

    # -- Learning data --------------------------------------------------------

    async def save_learning_data(self, data: LearningData) -> bool:
        return await self._store.save(LEARNING_DATA_KEY, data.to_dict())

    async def get_learning_data(self) -> LearningData | None:
        raw = await self._store.load(LEARNING_DATA_KEY)
        if raw is None:
            return None
        try:
            return LearningData.from_dict(raw)
        except _DECODE_ERRORS:
            logger.warning("Stored learning data is malformed, starting fresh")
            return None

    async def clear_learning_data(self) -> None:
        await self._store.delete(LEARNING_DATA_KEY)

    # -- Risk -----------------------------------------------------------------

    async def save_risk_settings(self, settings: RiskSettings) -> bool:
        return await self._store.save(RISK_SETTINGS_KEY, settings.to_dict())

    async def get_risk_settings(self) -> RiskSettings | None:
        raw = await self._store.load(RISK_SETTINGS_KEY)
        if raw is None:
            return None
        try:
            return RiskSettings.from_dict(raw)
        except _DECODE_ERRORS:
            logger.warning("Stored risk settings are malformed, using defaults")
            return None

    async def save_daily_stats(self, stats: DailyStats) -> bool:
        return await self._store.save(DAILY_STATS_KEY, stats.to_dict())

    async def get_daily_stats(self) -> DailyStats | None:
        raw = await self._store.load(DAILY_STATS_KEY)
        if raw is None:
            return None
        try:
            return DailyStats.from_dict(raw)
        except _DECODE_ERRORS:
            logger.warning("Stored daily stats are malformed, starting fresh")
            return None

    # -- Snapshots ------------------------------------------------------------

    async def save_trading_state(self, state: TradingState) -> bool:
        return await self._store.save(TRADING_STATE_KEY, state.to_dict())

    async def get_trading_state(self) -> TradingState | None:
        """Return the working-context snapshot if it is still fresh."""
        raw = await self._store.load(
            TRADING_STATE_KEY, ttl=self._settings.trading_state_ttl
        )
        if raw is None:
            return None
        try:
            return TradingState.from_dict(raw)
        except _DECODE_ERRORS:
            logger.warning("Stored trading state is malformed, ignoring")
            return None

    async def save_connection_state(self, state: ConnectionState) -> bool:
        return await self._store.save(CONNECTION_STATE_KEY, state.to_dict())

    async def get_connection_state(self) -> ConnectionState | None:
        """Return the broker session snapshot if it is still fresh."""
        raw = await self._store.load(
            CONNECTION_STATE_KEY, ttl=self._settings.connection_state_ttl
        )
        if raw is None:
            return None
        try:
            return ConnectionState.from_dict(raw)
        except _DECODE_ERRORS:
            logger.warning("Stored connection state is malformed, ignoring")
            return None

    async def clear_connection_state(self) -> None:
        await self._store.delete(CONNECTION_STATE_KEY)
