"""Open binary option tracking and settlement at expiry."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from optiondesk.config.constants import TradeResult
from optiondesk.data.models import OpenPosition, TradeOutcome, utcnow

if TYPE_CHECKING:
    from optiondesk.data.models import (
        ExecutedTrade,
        MarketConditions,
        PriceTick,
        TradeRequest,
    )
    from optiondesk.exchange.client import PocketOptionClient

logger = logging.getLogger(__name__)


class PositionManager:
    """Hold executed trades until expiry and resolve them to win or loss.

    A bullish option (BUY/CALL) wins when the settlement price is above
    the entry price, a bearish one (SELL/PUT) when it is below. A win
    credits stake plus payout back to the client; a loss keeps the stake.

    Parameters
    ----------
    client:
        Broker client that receives settlement credits.
    payout:
        Fraction of the stake paid out on a win.
    clock:
        Returns the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        client: "PocketOptionClient",
        payout: float,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._payout = payout
        self._clock = clock
        self._positions: list[OpenPosition] = []

    @property
    def open_positions(self) -> list[OpenPosition]:
        return list(self._positions)

    def open_position(
        self,
        trade: "ExecutedTrade",
        request: "TradeRequest",
        risk_score: float,
        conditions: "MarketConditions | None" = None,
    ) -> OpenPosition:
        position = OpenPosition(
            trade=trade,
            confidence=request.confidence,
            market_conditions=conditions or request.market_conditions,
            risk_score=risk_score,
        )
        self._positions.append(position)
        logger.info(
            "Opened %s %s %.2f @ %.5f until %s",
            trade.side.value,
            trade.symbol,
            trade.amount,
            trade.entry_price,
            trade.expiry_time.isoformat(),
        )
        return position

    async def settle(self, tick: "PriceTick") -> list[TradeOutcome]:
        """Settle every expired position on the tick's symbol."""
        now = self._clock()
        due = [
            p for p in self._positions
            if p.trade.symbol == tick.symbol and now >= p.trade.expiry_time
        ]
        return [await self._close(p, tick.price, now) for p in due]

    async def settle_all(self, prices: dict[str, float]) -> list[TradeOutcome]:
        """Settle every open position immediately, regardless of expiry.

        Positions whose symbol has no price in *prices* settle at entry,
        which counts as a loss.
        """
        now = self._clock()
        outcomes: list[TradeOutcome] = []
        for position in list(self._positions):
            price = prices.get(position.trade.symbol, position.trade.entry_price)
            outcomes.append(await self._close(position, price, now))
        return outcomes

    async def _close(
        self,
        position: OpenPosition,
        price: float,
        now: datetime,
    ) -> TradeOutcome:
        trade = position.trade
        self._positions.remove(position)

        if trade.side.is_bullish:
            won = price > trade.entry_price
        else:
            won = price < trade.entry_price

        if won:
            profit = trade.amount * self._payout
            await self._client.credit(trade.amount + profit)
        else:
            profit = -trade.amount

        outcome = TradeOutcome(
            id=trade.trade_id,
            symbol=trade.symbol,
            side=trade.side,
            amount=trade.amount,
            strategy=trade.strategy,
            timeframe=trade.timeframe,
            confidence=position.confidence,
            market_conditions=position.market_conditions,
            result=TradeResult.WIN if won else TradeResult.LOSS,
            profit=round(profit, 2),
            risk_score=position.risk_score,
            entry_price=trade.entry_price,
            exit_price=price,
            duration=(now - trade.timestamp).total_seconds(),
            timestamp=now,
        )
        logger.info(
            "Settled %s %s %s: %s %.2f (entry %.5f, exit %.5f)",
            trade.trade_id,
            trade.side.value,
            trade.symbol,
            outcome.result.value,
            outcome.profit,
            trade.entry_price,
            price,
        )
        return outcome
