"""Simulated price, signal and analysis feed with per-symbol subscriptions."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable

import numpy as np

from optiondesk.config.constants import (
    BASE_PRICES,
    DEFAULT_BASE_PRICE,
    DEFAULT_VOLATILITY,
    SYMBOL_TREND,
    SYMBOL_VOLATILITY,
    MarketEvent,
)
from optiondesk.data.models import MarketAnalysis, MarketSignal, PriceTick, utcnow

if TYPE_CHECKING:
    from optiondesk.config.settings import SimulatorSettings

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Any]


class MarketSimulator:
    """Generates pseudo-random market data on a fixed cadence.

    Nothing here is market data: prices follow a per-symbol trend plus
    noise, and indicators are drawn at random. Consumers treat the output
    as opaque ``PriceTick`` / ``MarketSignal`` / ``MarketAnalysis`` values.

    Parameters
    ----------
    settings:
        Update cadence and rng seed.
    rng:
        Optional numpy generator, overrides ``settings.seed``.
    """

    def __init__(
        self,
        settings: "SimulatorSettings",
        rng: np.random.Generator | None = None,
    ) -> None:
        self._settings = settings
        self._rng = rng if rng is not None else np.random.default_rng(settings.seed)
        self._prices: dict[str, PriceTick] = {}
        self._listeners: dict[str, dict[MarketEvent, list[Callback]]] = {}
        self._tasks: dict[MarketEvent, asyncio.Task] = {}  # type: ignore[type-arg]
        self._running = False

    @property
    def rng(self) -> np.random.Generator:
        return self._rng

    @property
    def is_running(self) -> bool:
        return self._running

    # -- Generators -----------------------------------------------------------

    def base_price(self, symbol: str) -> float:
        return BASE_PRICES.get(symbol, DEFAULT_BASE_PRICE)

    def symbol_volatility(self, symbol: str) -> float:
        base = SYMBOL_VOLATILITY.get(symbol, DEFAULT_VOLATILITY)
        return base + (self._rng.random() - 0.5) * 0.2

    def market_trend(self, symbol: str) -> float:
        base = SYMBOL_TREND.get(symbol, 0.0)
        return base + (self._rng.random() - 0.5) * 0.1

    def last_tick(self, symbol: str) -> PriceTick | None:
        return self._prices.get(symbol)

    def current_price(self, symbol: str) -> float:
        """Latest simulated price, or the base price jittered by ±0.05%."""
        tick = self._prices.get(symbol)
        if tick is not None:
            return tick.price
        base = self.base_price(symbol)
        return round(base + (self._rng.random() - 0.5) * base * 0.001, 5)

    def generate_tick(self, symbol: str) -> PriceTick:
        """Advance the symbol's price by one step and return the new tick."""
        base = self.base_price(symbol)
        previous = self._prices.get(symbol)
        last_price = previous.price if previous else base

        volatility = self.symbol_volatility(symbol)
        trend = self.market_trend(symbol)
        noise = (self._rng.random() - 0.5) * 2

        change = trend * 0.0001 + volatility * noise * 0.0005
        price = max(0.00001, last_price + change)
        spread = 0.00005

        tick = PriceTick(
            symbol=symbol,
            price=round(price, 5),
            change=round(change, 5),
            change_percent=round((price - base) / base * 100, 2),
            timestamp=utcnow(),
            volume=int(self._rng.integers(0, 1_000_000)),
            bid=round(price - self._rng.random() * spread, 5),
            ask=round(price + self._rng.random() * spread, 5),
            high_24h=round(base * 1.02, 5),
            low_24h=round(base * 0.98, 5),
            volatility=volatility,
            trend="bullish" if trend > 0 else "bearish" if trend < 0 else "sideways",
        )
        self._prices[symbol] = tick
        return tick

    def generate_signal(self, symbol: str) -> MarketSignal:
        """Draw random indicator readings and derive a direction from them."""
        tick = self._prices.get(symbol)
        rsi = 30 + self._rng.random() * 40
        macd = "bullish" if self._rng.random() > 0.5 else "bearish"
        bollinger = "oversold" if self._rng.random() > 0.5 else "overbought"

        if rsi < 35 and macd == "bullish":
            direction = "BUY"
            strength = 70 + self._rng.random() * 20
        elif rsi > 65 and macd == "bearish":
            direction = "SELL"
            strength = 70 + self._rng.random() * 20
        else:
            direction = "HOLD"
            strength = 40 + self._rng.random() * 20

        return MarketSignal(
            symbol=symbol,
            direction=direction,
            strength=round(strength),
            confidence=round(strength * 0.9),
            timestamp=utcnow(),
            entry_price=tick.price if tick else 0.0,
            indicators={
                "rsi": round(rsi, 2),
                "macd": macd,
                "bollinger": bollinger,
            },
        )

    def generate_analysis(self, symbol: str) -> MarketAnalysis:
        tick = self._prices.get(symbol)
        volatility = self.symbol_volatility(symbol)
        trend = self.market_trend(symbol)

        if volatility > 0.7:
            volatility_label = "High"
        elif volatility > 0.4:
            volatility_label = "Medium"
        else:
            volatility_label = "Low"

        return MarketAnalysis(
            symbol=symbol,
            timestamp=utcnow(),
            market_condition=self.determine_market_condition(volatility, trend),
            volatility=volatility_label,
            trend=_trend_label(trend),
            support=round(tick.price * 0.995, 5) if tick else 0.0,
            resistance=round(tick.price * 1.005, 5) if tick else 0.0,
            recommended_expiry=self.calculate_optimal_expiry(volatility, trend),
            risk_level="High" if volatility > 0.6 else "Medium" if volatility > 0.3 else "Low",
        )

    @staticmethod
    def calculate_optimal_expiry(volatility: float, trend: float) -> str:
        """Shorter expiries for volatile markets, longer ones for strong trends."""
        strong = abs(trend) > 0.1
        if volatility > 0.7:
            return "1m" if strong else "30s"
        if volatility > 0.4:
            return "2m" if strong else "1m"
        return "5m" if strong else "2m"

    @staticmethod
    def determine_market_condition(volatility: float, trend: float) -> str:
        if volatility > 0.6 and abs(trend) > 0.1:
            return "Trending Volatile"
        if volatility > 0.6:
            return "Ranging Volatile"
        if abs(trend) > 0.1:
            return "Trending Stable"
        return "Ranging Stable"

    # -- Subscriptions --------------------------------------------------------

    def subscribe(
        self,
        symbol: str,
        event: MarketEvent,
        callback: Callback,
    ) -> Callable[[], None]:
        """Register *callback* for *event* on *symbol*.

        Returns a function that removes the subscription.
        """
        callbacks = self._listeners.setdefault(symbol, {}).setdefault(event, [])
        callbacks.append(callback)
        logger.debug("Subscribed to %s %s", symbol, event.value)
        return lambda: self.unsubscribe(symbol, event, callback)

    def unsubscribe(self, symbol: str, event: MarketEvent, callback: Callback) -> None:
        symbol_listeners = self._listeners.get(symbol)
        if not symbol_listeners or event not in symbol_listeners:
            return

        callbacks = symbol_listeners[event]
        if callback in callbacks:
            callbacks.remove(callback)
        if not callbacks:
            del symbol_listeners[event]
        if not symbol_listeners:
            del self._listeners[symbol]

    def subscribed_symbols(self, event: MarketEvent | None = None) -> list[str]:
        if event is None:
            return list(self._listeners)
        return [s for s, listeners in self._listeners.items() if event in listeners]

    async def publish(self, symbol: str, event: MarketEvent, payload: Any) -> None:
        """Deliver *payload* to every subscriber; callback errors are logged."""
        callbacks = list(self._listeners.get(symbol, {}).get(event, []))
        for callback in callbacks:
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s callback failed for %s", event.value, symbol)

    async def emit(self, event: MarketEvent) -> None:
        """Generate and publish one update for every subscribed symbol."""
        producers = {
            MarketEvent.PRICE_UPDATE: self.generate_tick,
            MarketEvent.SIGNAL_UPDATE: self.generate_signal,
            MarketEvent.ANALYSIS_UPDATE: self.generate_analysis,
        }
        for symbol in self.subscribed_symbols(event):
            await self.publish(symbol, event, producers[event](symbol))

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic update tasks."""
        if self._running:
            return
        self._running = True
        interval = self._settings.update_interval
        self._tasks = {
            MarketEvent.PRICE_UPDATE: asyncio.create_task(
                self._run_loop(MarketEvent.PRICE_UPDATE, interval)
            ),
            MarketEvent.SIGNAL_UPDATE: asyncio.create_task(
                self._run_loop(MarketEvent.SIGNAL_UPDATE, interval)
            ),
            MarketEvent.ANALYSIS_UPDATE: asyncio.create_task(
                self._run_loop(
                    MarketEvent.ANALYSIS_UPDATE,
                    interval * self._settings.analysis_every,
                )
            ),
        }
        logger.info("Market simulator started (interval=%.1fs)", interval)

    async def stop(self) -> None:
        """Cancel the update tasks and wait for them to finish."""
        if not self._running:
            return
        self._running = False
        for task in self._tasks.values():
            task.cancel()
        for task in self._tasks.values():
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = {}
        logger.info("Market simulator stopped")

    async def _run_loop(self, event: MarketEvent, interval: float) -> None:
        while self._running:
            await asyncio.sleep(interval)
            await self.emit(event)

    def status(self) -> dict[str, Any]:
        return {
            "is_running": self._running,
            "symbols": self.subscribed_symbols(),
            "update_interval": self._settings.update_interval,
        }


def _trend_label(trend: float) -> str:
    if trend > 0.1:
        return "Strong Bullish"
    if trend > 0:
        return "Bullish"
    if trend < -0.1:
        return "Strong Bearish"
    if trend < 0:
        return "Bearish"
    return "Neutral"
