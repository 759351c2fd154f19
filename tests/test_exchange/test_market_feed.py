"""Tests for the market simulator."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from optiondesk.config.constants import BASE_PRICES, DEFAULT_BASE_PRICE, MarketEvent
from optiondesk.config.settings import SimulatorSettings
from optiondesk.exchange.market_feed import MarketSimulator


@pytest.fixture
def sim() -> MarketSimulator:
    return MarketSimulator(SimulatorSettings(update_interval=0.01, seed=7))


class TestGenerators:
    def test_tick_walks_from_base_price(self, sim):
        first = sim.generate_tick("EURUSD")
        assert first.symbol == "EURUSD"
        assert abs(first.price - BASE_PRICES["EURUSD"]) < 0.01
        assert first.bid <= first.price <= first.ask
        assert first.trend in ("bullish", "bearish", "sideways")

        second = sim.generate_tick("EURUSD")
        assert sim.last_tick("EURUSD") is second
        assert sim.current_price("EURUSD") == second.price

    def test_unknown_symbol_uses_default_base(self, sim):
        assert sim.base_price("XYZ") == DEFAULT_BASE_PRICE
        assert abs(sim.current_price("XYZ") - DEFAULT_BASE_PRICE) <= DEFAULT_BASE_PRICE * 0.0005

    def test_seed_makes_output_reproducible(self):
        a = MarketSimulator(SimulatorSettings(seed=1))
        b = MarketSimulator(SimulatorSettings(seed=1))
        assert [a.generate_tick("BTCUSD").price for _ in range(5)] == [
            b.generate_tick("BTCUSD").price for _ in range(5)
        ]

    def test_signal_direction_matches_indicators(self, sim):
        for _ in range(50):
            signal = sim.generate_signal("EURUSD")
            rsi = signal.indicators["rsi"]
            assert 30 <= rsi <= 70
            if signal.direction == "BUY":
                assert rsi <= 35 and signal.indicators["macd"] == "bullish"
            elif signal.direction == "SELL":
                assert rsi >= 65 and signal.indicators["macd"] == "bearish"

    def test_analysis_labels(self, sim):
        sim.generate_tick("BTCUSD")
        analysis = sim.generate_analysis("BTCUSD")
        assert analysis.volatility in ("High", "Medium", "Low")
        assert analysis.support < analysis.resistance
        assert analysis.recommended_expiry in ("30s", "1m", "2m", "5m")

    @pytest.mark.parametrize(
        "volatility,trend,expected",
        [
            (0.8, 0.0, "30s"),
            (0.8, 0.2, "1m"),
            (0.5, 0.0, "1m"),
            (0.5, -0.2, "2m"),
            (0.2, 0.0, "2m"),
            (0.2, 0.2, "5m"),
        ],
    )
    def test_optimal_expiry(self, volatility, trend, expected):
        assert MarketSimulator.calculate_optimal_expiry(volatility, trend) == expected

    def test_market_condition(self):
        assert MarketSimulator.determine_market_condition(0.7, 0.2) == "Trending Volatile"
        assert MarketSimulator.determine_market_condition(0.7, 0.0) == "Ranging Volatile"
        assert MarketSimulator.determine_market_condition(0.3, -0.2) == "Trending Stable"
        assert MarketSimulator.determine_market_condition(0.3, 0.0) == "Ranging Stable"

    def test_injected_rng(self):
        rng = np.random.default_rng(3)
        sim = MarketSimulator(SimulatorSettings(), rng=rng)
        assert sim.rng is rng


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_publish_to_sync_and_async_callbacks(self, sim):
        sync_cb = MagicMock()
        async_cb = AsyncMock()
        sim.subscribe("EURUSD", MarketEvent.PRICE_UPDATE, sync_cb)
        sim.subscribe("EURUSD", MarketEvent.PRICE_UPDATE, async_cb)

        await sim.emit(MarketEvent.PRICE_UPDATE)

        sync_cb.assert_called_once()
        async_cb.assert_awaited_once()
        assert sync_cb.call_args.args[0].symbol == "EURUSD"

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, sim):
        callback = MagicMock()
        unsubscribe = sim.subscribe("EURUSD", MarketEvent.SIGNAL_UPDATE, callback)
        unsubscribe()

        await sim.emit(MarketEvent.SIGNAL_UPDATE)
        callback.assert_not_called()
        assert sim.subscribed_symbols() == []

    @pytest.mark.asyncio
    async def test_callback_errors_are_contained(self, sim):
        failing = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        sim.subscribe("EURUSD", MarketEvent.PRICE_UPDATE, failing)
        sim.subscribe("EURUSD", MarketEvent.PRICE_UPDATE, healthy)

        await sim.emit(MarketEvent.PRICE_UPDATE)
        healthy.assert_called_once()

    def test_subscribed_symbols_by_event(self, sim):
        sim.subscribe("EURUSD", MarketEvent.PRICE_UPDATE, MagicMock())
        sim.subscribe("BTCUSD", MarketEvent.ANALYSIS_UPDATE, MagicMock())
        assert sim.subscribed_symbols(MarketEvent.PRICE_UPDATE) == ["EURUSD"]
        assert sorted(sim.subscribed_symbols()) == ["BTCUSD", "EURUSD"]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_emits_until_stopped(self, sim):
        ticks = []
        sim.subscribe("EURUSD", MarketEvent.PRICE_UPDATE, ticks.append)

        await sim.start()
        assert sim.is_running
        await asyncio.sleep(0.1)
        await sim.stop()

        assert not sim.is_running
        assert len(ticks) >= 2
        count = len(ticks)
        await asyncio.sleep(0.05)
        assert len(ticks) == count

    @pytest.mark.asyncio
    async def test_status(self, sim):
        sim.subscribe("EURUSD", MarketEvent.PRICE_UPDATE, MagicMock())
        status = sim.status()
        assert status == {"is_running": False, "symbols": ["EURUSD"], "update_interval": 0.01}
