"""Tests for typed persistence of domain records."""

from __future__ import annotations

from datetime import timedelta

import pytest

from optiondesk.config.constants import PENDING_ORDERS_KEY, PendingStatus, TradeSide
from optiondesk.data.models import (
    AccountInfo,
    ConnectionState,
    Credentials,
    DailyStats,
    LearningData,
    PendingOrder,
    RiskSettings,
    TradingState,
)
from tests.factories import NOW, make_outcome


def _order(order_id: str = "pending_1", **overrides) -> PendingOrder:
    values = dict(
        id=order_id,
        symbol="EURUSD",
        side=TradeSide.BUY,
        amount=25.0,
        target_price=1.08,
        expiry_time=NOW + timedelta(minutes=5),
        created_at=NOW,
    )
    values.update(overrides)
    return PendingOrder(**values)


class TestPendingOrders:
    @pytest.mark.asyncio
    async def test_save_and_get(self, repo):
        orders = [_order("a"), _order("b", side=TradeSide.SELL, status=PendingStatus.EXPIRED)]
        assert await repo.save_pending_orders(orders)

        loaded = await repo.get_pending_orders()
        assert loaded == orders

    @pytest.mark.asyncio
    async def test_malformed_records_are_dropped(self, repo, store):
        good = _order("good").to_dict()
        await store.save(
            PENDING_ORDERS_KEY,
            [
                good,
                {"id": "no-symbol"},
                {**good, "id": "bad-side", "side": "HOLD"},
                {**good, "id": "bad-price", "target_price": "abc"},
                "not a dict",
            ],
        )
        loaded = await repo.get_pending_orders()
        assert [o.id for o in loaded] == ["good"]

    @pytest.mark.asyncio
    async def test_empty_when_nothing_stored(self, repo):
        assert await repo.get_pending_orders() == []

    @pytest.mark.asyncio
    async def test_naive_timestamps_are_read_as_utc(self, repo, store):
        raw = {**_order("naive").to_dict(), "expiry_time": "2024-03-01T12:05:00"}
        await store.save(PENDING_ORDERS_KEY, [raw])

        [loaded] = await repo.get_pending_orders()
        assert loaded.expiry_time == NOW + timedelta(minutes=5)
        assert loaded.expiry_time.tzinfo is not None


class TestLearningData:
    @pytest.mark.asyncio
    async def test_round_trip(self, repo):
        data = LearningData(total_trades=1, successful_trades=1, win_streaks=[1])
        data.learning_history.append(make_outcome())
        await repo.save_learning_data(data)

        loaded = await repo.get_learning_data()
        assert loaded == data

    @pytest.mark.asyncio
    async def test_clear(self, repo):
        await repo.save_learning_data(LearningData(total_trades=3))
        await repo.clear_learning_data()
        assert await repo.get_learning_data() is None


class TestRisk:
    @pytest.mark.asyncio
    async def test_risk_settings_round_trip(self, repo):
        settings = RiskSettings(max_position_size=2.5, daily_loss_limit=50.0)
        await repo.save_risk_settings(settings)
        assert await repo.get_risk_settings() == settings

    @pytest.mark.asyncio
    async def test_daily_stats_round_trip(self, repo):
        stats = DailyStats(date="2024-03-01", trades_count=4, total_loss=30.0)
        stats.risk_events.append({"symbol": "EURUSD"})
        await repo.save_daily_stats(stats)
        assert await repo.get_daily_stats() == stats


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_trading_state_expires_after_an_hour(self, repo, clock):
        state = TradingState(selected_symbol="BTCUSD", analysis={"trend": "Bullish"}, timestamp=NOW)
        await repo.save_trading_state(state)

        clock.advance(1800)
        assert await repo.get_trading_state() == state

        clock.advance(1800)
        assert await repo.get_trading_state() is None

    @pytest.mark.asyncio
    async def test_connection_state_lives_a_day(self, repo, clock):
        state = ConnectionState(
            is_connected=True,
            account_info=AccountInfo(account_id="100200300", balance=2500.0, last_update=NOW),
            credentials=Credentials("k" * 20, "secret123", "100200300"),
            session_id="abc",
            timestamp=NOW,
        )
        await repo.save_connection_state(state)

        clock.advance(23 * 3600)
        assert await repo.get_connection_state() == state

        clock.advance(3600)
        assert await repo.get_connection_state() is None

    @pytest.mark.asyncio
    async def test_clear_connection_state(self, repo):
        await repo.save_connection_state(
            ConnectionState(is_connected=False, account_info=None, credentials=None, session_id="")
        )
        await repo.clear_connection_state()
        assert await repo.get_connection_state() is None
