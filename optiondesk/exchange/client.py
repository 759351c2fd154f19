"""Stub Pocket Option client: simulated authentication, account and execution."""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable

from optiondesk.config.constants import (
    TIMEFRAME_SECONDS,
    ConnectionStatus,
    TradeSide,
)
from optiondesk.data.models import (
    AccountInfo,
    ConnectionState,
    Credentials,
    ExecutedTrade,
    ExecutionResult,
    TradeRequest,
    utcnow,
)

if TYPE_CHECKING:
    from optiondesk.config.settings import BrokerSettings
    from optiondesk.data.repository import Repository
    from optiondesk.exchange.market_feed import MarketSimulator

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any], Any]

_ACCOUNT_ID_RE = re.compile(r"^\d+$")


class TradeValidationError(ValueError):
    """Raised when trade parameters are missing or out of range."""


class BrokerConnectionError(RuntimeError):
    """Raised when authentication or the session handshake fails."""


def validate_credentials(credentials: Credentials) -> tuple[bool, str]:
    """Check the credential format. Returns ``(valid, message)``."""
    if not credentials.api_key or len(credentials.api_key) < 10:
        return False, "Invalid API Key format"
    if not credentials.secret_key or len(credentials.secret_key) < 8:
        return False, "Invalid Secret Key format"
    if not credentials.account_id or not _ACCOUNT_ID_RE.match(credentials.account_id):
        return False, "Invalid Account ID format"
    return True, "Credentials format is valid"


def expiry_for(timeframe: str) -> timedelta:
    """Binary option lifetime for a timeframe label (1m when unknown)."""
    return timedelta(seconds=TIMEFRAME_SECONDS.get(timeframe, 60))


class PocketOptionClient:
    """Deterministic stand-in for the broker API.

    Every network round-trip is modelled as a fixed ``asyncio.sleep``.
    Failures are returned as ``ExecutionResult(success=False)`` rather
    than raised.

    Parameters
    ----------
    settings:
        Broker configuration (delays, payout, reconnect policy).
    market:
        Simulator used for entry prices and the account balance draw.
    repository:
        Optional persistence for the connection snapshot.
    """

    def __init__(
        self,
        settings: "BrokerSettings",
        market: "MarketSimulator",
        repository: "Repository | None" = None,
    ) -> None:
        self._settings = settings
        self._market = market
        self._repo = repository

        self._status = ConnectionStatus.DISCONNECTED
        self._credentials: Credentials | None = None
        self._account: AccountInfo | None = None
        self._session_id = ""
        self._trade_queue: list[TradeRequest] = []
        self._listeners: list[Listener] = []
        self._heartbeat_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._reconnect_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self.reconnect_attempts = 0

    @property
    def is_connected(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def account(self) -> AccountInfo | None:
        return self._account

    @property
    def queued_trades(self) -> list[TradeRequest]:
        return list(self._trade_queue)

    # -- Session --------------------------------------------------------------

    async def connect(self, credentials: Credentials) -> ExecutionResult:
        """Authenticate, open the session and fetch account details."""
        self._status = ConnectionStatus.CONNECTING
        self._credentials = credentials

        try:
            valid, message = validate_credentials(credentials)
            if not valid:
                raise BrokerConnectionError(message)

            await self._authenticate(credentials)
            await asyncio.sleep(self._settings.connect_delay)
            if self._account is None or self._account.account_id != credentials.account_id:
                self._account = await self._fetch_account_info(credentials)
        except BrokerConnectionError as e:
            self._status = ConnectionStatus.ERROR
            logger.warning("Connection to %s failed: %s", self._settings.name, e)
            return ExecutionResult(success=False, message=str(e))

        self._status = ConnectionStatus.CONNECTED
        self._session_id = _session_id()
        self.reconnect_attempts = 0
        self._start_heartbeat()
        logger.info(
            "Connected to %s account %s (balance=%.2f)",
            self._settings.name,
            self._account.account_id,
            self._account.balance,
        )

        await self._process_trade_queue()
        await self._save_state()
        await self._notify("connected", self._account)

        return ExecutionResult(
            success=True,
            message="Successfully connected to Pocket Option",
            account_balance=self._account.balance,
        )

    async def restore(self) -> bool:
        """Resume a session from a fresh connection snapshot, if any."""
        if self._repo is None:
            return False
        state = await self._repo.get_connection_state()
        if state is None or not state.is_connected or state.account_info is None:
            return False

        self._credentials = state.credentials
        self._account = state.account_info
        self._session_id = state.session_id
        self._status = ConnectionStatus.CONNECTED
        self._start_heartbeat()
        logger.info("Restored session %s", self._session_id)
        return True

    async def disconnect(self) -> None:
        """Close the session and forget the stored snapshot."""
        self._status = ConnectionStatus.DISCONNECTED
        await self._cancel_task(self._heartbeat_task)
        self._heartbeat_task = None
        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None

        if self._repo is not None:
            await self._repo.clear_connection_state()

        self._account = None
        self._credentials = None
        logger.info("Disconnected from %s", self._settings.name)
        await self._notify("disconnected", None)

    async def close(self) -> None:
        """Stop background tasks but keep the session snapshot for restore."""
        await self._cancel_task(self._heartbeat_task)
        self._heartbeat_task = None
        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None

    async def handle_connection_loss(self) -> None:
        """Mark the session lost and start the reconnect loop in the background."""
        self._status = ConnectionStatus.DISCONNECTED
        await self._cancel_task(self._heartbeat_task)
        self._heartbeat_task = None
        logger.warning("Connection to %s lost", self._settings.name)

        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self.reconnect())
        await self._notify("disconnected", None)

    async def reconnect(self) -> bool:
        """Retry ``connect`` a fixed number of times with a fixed delay."""
        if self._credentials is None:
            logger.warning("Cannot reconnect: no credentials on record")
            return False

        max_attempts = self._settings.reconnect_attempts
        for attempt in range(1, max_attempts + 1):
            await asyncio.sleep(self._settings.reconnect_delay)
            self.reconnect_attempts = attempt
            logger.info("Reconnection attempt %d/%d", attempt, max_attempts)

            result = await self.connect(self._credentials)
            if result.success:
                logger.info("Reconnected successfully")
                return True
            logger.warning("Reconnection failed: %s", result.message)

        logger.error("Max reconnection attempts reached")
        return False

    # -- Trading --------------------------------------------------------------

    def validate_trade(self, request: TradeRequest) -> None:
        """Raise ``TradeValidationError`` if the request cannot be sent."""
        if not request.symbol:
            raise TradeValidationError("Symbol is required")
        if not isinstance(request.side, TradeSide):
            raise TradeValidationError("Invalid action. Must be BUY, SELL, CALL, or PUT")
        if not request.amount or request.amount < self._settings.min_trade_amount:
            raise TradeValidationError(
                f"Amount must be at least ${self._settings.min_trade_amount:g}"
            )
        if request.amount > self._settings.max_trade_amount:
            raise TradeValidationError(
                f"Maximum trade amount is ${self._settings.max_trade_amount:g}"
            )
        if not request.timeframe:
            raise TradeValidationError("Timeframe is required")

    async def execute_trade(self, request: TradeRequest) -> ExecutionResult:
        """Place a binary option. Queued if the session is down."""
        if not self.is_connected or self._account is None:
            self._trade_queue.append(request)
            logger.warning("Not connected, queued %s %s", request.side.value, request.symbol)
            return ExecutionResult(
                success=False,
                message="Not connected to Pocket Option. Trade queued for execution.",
                queued=True,
            )

        try:
            self.validate_trade(request)
        except TradeValidationError as e:
            return ExecutionResult(success=False, message=f"Trade execution failed: {e}")

        if request.amount > self._account.balance:
            return ExecutionResult(
                success=False,
                message="Trade execution failed: Insufficient balance for this trade",
            )

        await asyncio.sleep(self._settings.execution_delay)

        now = utcnow()
        trade = ExecutedTrade(
            trade_id=_trade_id(),
            symbol=request.symbol,
            side=request.side,
            amount=request.amount,
            timeframe=request.timeframe,
            strategy=request.strategy,
            timestamp=now,
            entry_price=self._market.current_price(request.symbol),
            expected_return=request.amount * self._settings.payout,
            expiry_time=now + expiry_for(request.timeframe),
        )

        self._account.balance -= request.amount
        self._account.last_update = now
        await self._save_state()

        logger.info(
            "Executed %s %s %.2f @ %.5f (id=%s, expires %s)",
            trade.side.value,
            trade.symbol,
            trade.amount,
            trade.entry_price,
            trade.trade_id,
            trade.expiry_time.isoformat(),
        )
        return ExecutionResult(
            success=True,
            message="Trade executed successfully on Pocket Option",
            trade=trade,
            account_balance=self._account.balance,
        )

    async def credit(self, amount: float) -> None:
        """Add a settlement payout to the account balance."""
        if self._account is None or amount <= 0:
            return
        self._account.balance += amount
        self._account.last_update = utcnow()
        await self._save_state()

    async def _process_trade_queue(self) -> None:
        if not self._trade_queue:
            return

        queued, self._trade_queue = self._trade_queue, []
        logger.info("Processing %d queued trades", len(queued))
        for request in queued:
            result = await self.execute_trade(request)
            if result.success:
                logger.info("Queued trade executed: %s", request.symbol)
                await self._notify("trade_executed", (request, result))
            else:
                logger.warning(
                    "Queued trade for %s failed: %s", request.symbol, result.message
                )
                await self._notify("trade_failed", (request, result))

    # -- Listeners ------------------------------------------------------------

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        """Register a listener for connection and queued-trade events; returns the remover."""
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _remove

    async def _notify(self, event: str, data: Any) -> None:
        for callback in list(self._listeners):
            try:
                result = callback(event, data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Connection listener failed on %s", event)

    def status(self) -> dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "status": self._status.value,
            "account_info": self._account.to_dict() if self._account else None,
            "queued_trades": len(self._trade_queue),
            "reconnect_attempts": self.reconnect_attempts,
            "last_update": utcnow().isoformat(),
        }

    # -- Internals ------------------------------------------------------------

    async def _authenticate(self, credentials: Credentials) -> str:
        await asyncio.sleep(self._settings.auth_delay)
        if len(credentials.api_key) >= 20 and len(credentials.account_id) >= 6:
            return f"auth_token_{int(time.time() * 1000)}"
        raise BrokerConnectionError("Invalid credentials provided")

    async def _fetch_account_info(self, credentials: Credentials) -> AccountInfo:
        await asyncio.sleep(self._settings.account_delay)
        rng = self._market.rng
        return AccountInfo(
            account_id=credentials.account_id,
            balance=round(1000.0 + rng.random() * 5000, 2),
            equity=round(1000.0 + rng.random() * 5000, 2),
            margin=round(rng.random() * 100, 2),
            free_margin=round(900 + rng.random() * 4900, 2),
            margin_level=round(1000 + rng.random() * 2000, 2),
        )

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _heartbeat_loop(self) -> None:
        while self.is_connected:
            await asyncio.sleep(self._settings.heartbeat_interval)
            logger.debug("Heartbeat (session %s)", self._session_id)

    async def _save_state(self) -> None:
        if self._repo is None:
            return
        await self._repo.save_connection_state(
            ConnectionState(
                is_connected=self.is_connected,
                account_info=self._account,
                credentials=self._credentials,
                session_id=self._session_id,
            )
        )

    @staticmethod
    async def _cancel_task(task: "asyncio.Task | None") -> None:  # type: ignore[type-arg]
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def _session_id() -> str:
    return f"{int(time.time() * 1000):x}{secrets.token_hex(4)}"


def _trade_id() -> str:
    return f"PO_{int(time.time() * 1000)}_{secrets.token_hex(5)}"
