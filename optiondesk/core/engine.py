"""Trading session orchestrator."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from optiondesk.config.constants import DEFAULT_SYMBOL, MarketEvent
from optiondesk.core.order_manager import PendingOrderManager
from optiondesk.core.position_manager import PositionManager
from optiondesk.core.risk_manager import RiskManager
from optiondesk.data.database import Database
from optiondesk.data.migrations import run_migrations
from optiondesk.data.models import (
    Credentials,
    ExecutionResult,
    MarketConditions,
    TradeRequest,
    TradingState,
    utcnow,
)
from optiondesk.data.repository import Repository
from optiondesk.data.store import KeyValueStore
from optiondesk.exchange.client import PocketOptionClient
from optiondesk.exchange.market_feed import MarketSimulator
from optiondesk.ml.learning_engine import LearningEngine

if TYPE_CHECKING:
    from optiondesk.config.settings import Settings
    from optiondesk.data.models import (
        MarketAnalysis,
        PendingOrder,
        PriceTick,
        TradeOutcome,
    )

logger = logging.getLogger(__name__)

PENDING_ORDER_STRATEGY = "Pending Order"


class TradingEngine:
    """Wires every service together on one event loop.

    Data flow per tick::

        market simulator → position manager (settle expired options)
        → pending order manager → risk manager → broker client
        → position manager (open) ... settle → learning engine + risk manager

    Every service is built once in ``start`` and shared by reference.

    Parameters
    ----------
    settings:
        Full application settings.
    clock:
        Returns the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        settings: "Settings",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._running = False
        self._unsubscribers: list[Callable[[], None]] = []
        self._analysis: dict[str, "MarketAnalysis"] = {}
        self._outcomes: list["TradeOutcome"] = []

        # Initialized in start()
        self.db: Database | None = None
        self.repo: Repository | None = None
        self.market: MarketSimulator | None = None
        self.client: PocketOptionClient | None = None
        self.orders: PendingOrderManager | None = None
        self.risk: RiskManager | None = None
        self.positions: PositionManager | None = None
        self.learning: LearningEngine | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def outcomes(self) -> list["TradeOutcome"]:
        """Outcomes settled during this session."""
        return list(self._outcomes)

    async def start(self, credentials: Credentials | None = None) -> None:
        """Initialize components, connect the broker and start the feed."""
        logger.info("Starting trading engine...")
        await self.initialize()

        if not await self.client.restore():
            creds = credentials or Credentials(
                api_key=self._settings.broker.api_key,
                secret_key=self._settings.broker.secret_key,
                account_id=self._settings.broker.account_id,
            )
            result = await self.client.connect(creds)
            if not result.success:
                logger.warning("Broker unavailable, trades will be queued: %s", result.message)

        for symbol in self._settings.simulator.symbols:
            self._unsubscribers.extend([
                self.market.subscribe(symbol, MarketEvent.PRICE_UPDATE, self._on_price_update),
                self.market.subscribe(
                    symbol, MarketEvent.ANALYSIS_UPDATE, self._on_analysis_update
                ),
            ])
        await self.market.start()
        self._running = True
        logger.info("Trading engine started")

    async def initialize(self) -> None:
        """Open storage and build every service without starting the feed."""
        if self.db is not None:
            return

        db_path = self._settings.storage.path
        await run_migrations(db_path)
        self.db = Database(db_path)
        await self.db.connect()
        self.repo = Repository(KeyValueStore(self.db), self._settings.storage)

        self.market = MarketSimulator(self._settings.simulator)
        self.client = PocketOptionClient(self._settings.broker, self.market, self.repo)
        self._unsubscribers.append(self.client.add_listener(self._on_broker_event))
        self.risk = RiskManager(self._settings.risk, self.repo, clock=self._clock)
        self.learning = LearningEngine(self._settings.learning, self.repo)
        self.positions = PositionManager(
            self.client, self._settings.broker.payout, clock=self._clock
        )
        self.orders = PendingOrderManager(
            self.repo,
            self._execute_pending,
            execution_delay=self._settings.simulator.execution_delay,
            clock=self._clock,
        )

        await self.risk.load()
        await self.learning.load()
        await self.orders.load()

        state = await self.repo.get_trading_state()
        if state is not None:
            logger.info(
                "Resuming context: %s %s",
                state.selected_symbol,
                state.selected_timeframe,
            )
        logger.info("All components initialized")

    async def stop(self) -> None:
        """Stop the feed, settle what is open and release resources."""
        logger.info("Stopping trading engine...")
        self._running = False

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

        if self.market is not None:
            await self.market.stop()
        if self.orders is not None:
            await self.orders.wait_for_executions()

        if self.positions is not None and self.positions.open_positions:
            prices = {
                p.trade.symbol: self.market.current_price(p.trade.symbol)
                for p in self.positions.open_positions
            }
            for outcome in await self.positions.settle_all(prices):
                await self._record(outcome)

        if self.repo is not None:
            await self.save_trading_state()
        await self.close()
        logger.info("Trading engine stopped")

    async def close(self) -> None:
        """Release the broker tasks and the database connection."""
        if self.client is not None:
            await self.client.close()
        if self.db is not None:
            await self.db.disconnect()
            self.db = None

    # -- Trading --------------------------------------------------------------

    async def submit_trade(
        self,
        request: TradeRequest,
        balance: float | None = None,
    ) -> ExecutionResult:
        """Risk-check, execute and open a position for *request*."""
        if balance is None:
            account = self.client.account
            balance = account.balance if account else 0.0

        assessment = self.risk.validate(request, balance)
        if not assessment.allowed:
            await self.risk.record_blocked(request, assessment)
            reasons = "; ".join(r.message for r in assessment.blocking)
            return ExecutionResult(success=False, message=f"Trade blocked by risk management: {reasons}")

        if (
            assessment.risks
            and self._settings.risk.apply_recommended
            and assessment.recommended_amount < request.amount
        ):
            logger.info(
                "Reducing stake from %.2f to %.2f (%s)",
                request.amount,
                assessment.recommended_amount,
                ", ".join(r.type.value for r in assessment.risks),
            )
            request = replace(request, amount=assessment.recommended_amount)

        request = replace(request, risk_score=assessment.risk_score)
        result = await self.client.execute_trade(request)
        if result.success and result.trade is not None:
            self.positions.open_position(
                result.trade, request, assessment.risk_score, request.market_conditions
            )
        return result

    async def _execute_pending(self, order: "PendingOrder") -> ExecutionResult:
        conditions = self.market_conditions(order.symbol)
        request = TradeRequest(
            symbol=order.symbol,
            side=order.side,
            amount=order.amount,
            timeframe=order.timeframe,
            strategy=PENDING_ORDER_STRATEGY,
            order_id=order.id,
            confidence=self.learning.get_confidence(PENDING_ORDER_STRATEGY, conditions),
            market_conditions=conditions,
            market_volatility=conditions.volatility.lower(),
        )
        return await self.submit_trade(request)

    def market_conditions(self, symbol: str) -> MarketConditions:
        """Condition tags from the latest analysis of *symbol*."""
        analysis = self._analysis.get(symbol)
        if analysis is None:
            return MarketConditions()
        return MarketConditions(volatility=analysis.volatility, sentiment=analysis.trend)

    # -- Feed callbacks -------------------------------------------------------

    async def _on_price_update(self, tick: "PriceTick") -> None:
        for outcome in await self.positions.settle(tick):
            await self._record(outcome)
        await self.orders.evaluate(tick)

    def _on_analysis_update(self, analysis: "MarketAnalysis") -> None:
        self._analysis[analysis.symbol] = analysis

    async def _on_broker_event(self, event: str, data: Any) -> None:
        """Pick up trades that waited in the client queue while offline."""
        if event not in ("trade_executed", "trade_failed"):
            return
        request, result = data
        if result.success and result.trade is not None:
            self.positions.open_position(
                result.trade,
                request,
                request.risk_score if request.risk_score is not None else 0.0,
                request.market_conditions,
            )
        if request.order_id is not None:
            await self.orders.resolve(request.order_id, result)

    async def _record(self, outcome: "TradeOutcome") -> None:
        self._outcomes.append(outcome)
        await self.learning.record_outcome(outcome)
        await self.risk.record_outcome(outcome)

    # -- State ----------------------------------------------------------------

    async def save_trading_state(self) -> bool:
        symbols = self._settings.simulator.symbols
        symbol = symbols[0] if symbols else DEFAULT_SYMBOL
        analysis = self._analysis.get(symbol)
        state = TradingState(
            selected_symbol=symbol,
            analysis=analysis.to_dict() if analysis else None,
            strategy=self.learning.get_optimal_strategy(self.market_conditions(symbol)),
            timestamp=self._clock(),
        )
        return await self.repo.save_trading_state(state)

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "broker": self.client.status() if self.client else None,
            "market": self.market.status() if self.market else None,
            "pending_orders": self.orders.summary() if self.orders else {},
            "open_positions": len(self.positions.open_positions) if self.positions else 0,
            "settled": len(self._outcomes),
            "risk": self.risk.get_risk_status() if self.risk else None,
        }


async def run_session(engine: TradingEngine, duration: float) -> None:
    """Run *engine* for *duration* seconds, always stopping it."""
    try:
        await engine.start()
        await asyncio.sleep(duration)
    finally:
        await engine.stop()
