"""Tests for the stub Pocket Option client."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from optiondesk.config.constants import BASE_PRICES, ConnectionStatus, TradeSide
from optiondesk.config.settings import BrokerSettings, SimulatorSettings
from optiondesk.data.models import Credentials, TradeRequest
from optiondesk.exchange.client import (
    PocketOptionClient,
    expiry_for,
    validate_credentials,
)
from optiondesk.exchange.market_feed import MarketSimulator

GOOD_CREDS = Credentials(
    api_key="live_key_0123456789abcdef",
    secret_key="secret_123",
    account_id="1002003",
)


@pytest.fixture
def broker_settings() -> BrokerSettings:
    return BrokerSettings(
        auth_delay=0.0,
        connect_delay=0.0,
        account_delay=0.0,
        execution_delay=0.0,
        heartbeat_interval=60.0,
        reconnect_delay=0.0,
        reconnect_attempts=3,
    )


@pytest.fixture
def market() -> MarketSimulator:
    return MarketSimulator(SimulatorSettings(seed=11))


@pytest.fixture
async def client(broker_settings, market, repo):
    client = PocketOptionClient(broker_settings, market, repo)
    yield client
    await client.close()


def _request(**overrides) -> TradeRequest:
    values = dict(symbol="EURUSD", side=TradeSide.CALL, amount=10.0, timeframe="1m")
    values.update(overrides)
    return TradeRequest(**values)


class TestCredentials:
    @pytest.mark.parametrize(
        "creds,message",
        [
            (Credentials("short", "secret_123", "1002003"), "Invalid API Key format"),
            (Credentials("k" * 12, "short", "1002003"), "Invalid Secret Key format"),
            (Credentials("k" * 12, "secret_123", "acc-12"), "Invalid Account ID format"),
            (Credentials("k" * 12, "secret_123", ""), "Invalid Account ID format"),
        ],
    )
    def test_invalid_formats(self, creds, message):
        assert validate_credentials(creds) == (False, message)

    def test_valid_format(self):
        valid, _ = validate_credentials(GOOD_CREDS)
        assert valid

    def test_expiry_for_timeframe(self):
        assert expiry_for("30s").total_seconds() == 30
        assert expiry_for("5m").total_seconds() == 300
        assert expiry_for("weird").total_seconds() == 60


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_success(self, client, repo):
        listener = MagicMock()
        client.add_listener(listener)

        result = await client.connect(GOOD_CREDS)

        assert result.success
        assert client.is_connected
        assert 1000 <= client.account.balance <= 6000
        assert result.account_balance == client.account.balance
        listener.assert_called_once_with("connected", client.account)

        snapshot = await repo.get_connection_state()
        assert snapshot.is_connected
        assert snapshot.account_info.account_id == "1002003"

    @pytest.mark.asyncio
    async def test_bad_format_fails_without_raising(self, client):
        result = await client.connect(Credentials("short", "secret_123", "1002003"))
        assert not result.success
        assert result.message == "Invalid API Key format"
        assert client.connection_status == ConnectionStatus.ERROR

    @pytest.mark.asyncio
    async def test_authentication_rejects_short_keys(self, client):
        # Valid format but too short for the simulated auth server
        result = await client.connect(Credentials("k" * 12, "secret_123", "1002003"))
        assert not result.success
        assert result.message == "Invalid credentials provided"

    @pytest.mark.asyncio
    async def test_restore_from_snapshot(self, client, broker_settings, market, repo):
        await client.connect(GOOD_CREDS)

        fresh = PocketOptionClient(broker_settings, market, repo)
        try:
            assert await fresh.restore()
            assert fresh.is_connected
            assert fresh.account.balance == client.account.balance
        finally:
            await fresh.close()

    @pytest.mark.asyncio
    async def test_disconnect_clears_snapshot(self, client, repo):
        await client.connect(GOOD_CREDS)
        await client.disconnect()
        assert not client.is_connected
        assert await repo.get_connection_state() is None


class TestExecuteTrade:
    @pytest.mark.asyncio
    async def test_executes_and_debits(self, client):
        await client.connect(GOOD_CREDS)
        balance = client.account.balance

        result = await client.execute_trade(_request(amount=25.0, timeframe="2m"))

        assert result.success
        trade = result.trade
        assert trade.trade_id.startswith("PO_")
        assert trade.expected_return == pytest.approx(25.0 * 0.85)
        assert (trade.expiry_time - trade.timestamp).total_seconds() == 120
        assert trade.entry_price == pytest.approx(BASE_PRICES["EURUSD"], rel=1e-3)
        assert client.account.balance == pytest.approx(balance - 25.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"symbol": ""}, "Symbol is required"),
            ({"amount": 0.5}, "Amount must be at least $1"),
            ({"amount": 1500.0}, "Maximum trade amount is $1000"),
            ({"timeframe": ""}, "Timeframe is required"),
            ({"side": "HOLD"}, "Invalid action"),
        ],
    )
    async def test_validation_failures(self, client, overrides, message):
        await client.connect(GOOD_CREDS)
        result = await client.execute_trade(_request(**overrides))
        assert not result.success
        assert message in result.message

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, client):
        await client.connect(GOOD_CREDS)
        client.account.balance = 5.0
        result = await client.execute_trade(_request(amount=10.0))
        assert not result.success
        assert "Insufficient balance" in result.message

    @pytest.mark.asyncio
    async def test_queued_while_disconnected_then_drained(self, client):
        result = await client.execute_trade(_request())
        assert not result.success
        assert "queued" in result.message
        assert len(client.queued_trades) == 1

        assert result.queued
        await client.connect(GOOD_CREDS)
        assert client.queued_trades == []

    @pytest.mark.asyncio
    async def test_drained_trades_are_announced(self, client):
        listener = MagicMock()
        client.add_listener(listener)
        ok = _request()
        too_big = _request(amount=50_000.0)
        await client.execute_trade(ok)
        await client.execute_trade(too_big)

        await client.connect(GOOD_CREDS)

        events = {
            call.args[0]: call.args[1]
            for call in listener.call_args_list
            if call.args[0].startswith("trade_")
        }
        request, result = events["trade_executed"]
        assert request is ok
        assert result.success and result.trade.amount == 10.0
        request, result = events["trade_failed"]
        assert request is too_big
        assert not result.success

    @pytest.mark.asyncio
    async def test_credit(self, client):
        await client.connect(GOOD_CREDS)
        balance = client.account.balance
        await client.credit(18.5)
        assert client.account.balance == pytest.approx(balance + 18.5)


class TestReconnect:
    @pytest.mark.asyncio
    async def test_reconnect_succeeds(self, client):
        await client.connect(GOOD_CREDS)
        client._status = ConnectionStatus.DISCONNECTED

        assert await client.reconnect()
        assert client.reconnect_attempts == 0
        assert client.is_connected

    @pytest.mark.asyncio
    async def test_reconnect_keeps_session_balance(self, client):
        await client.connect(GOOD_CREDS)
        await client.execute_trade(_request())
        balance = client.account.balance

        await client.handle_connection_loss()
        await client._reconnect_task

        assert client.is_connected
        assert client.account.balance == pytest.approx(balance)

    @pytest.mark.asyncio
    async def test_reconnect_gives_up(self, client, broker_settings):
        await client.connect(GOOD_CREDS)
        failure = AsyncMock(return_value=MagicMock(success=False, message="down"))

        with patch.object(client, "connect", failure):
            assert not await client.reconnect()

        assert failure.await_count == broker_settings.reconnect_attempts
        assert client.reconnect_attempts == broker_settings.reconnect_attempts

    @pytest.mark.asyncio
    async def test_reconnect_without_credentials(self, client):
        assert not await client.reconnect()

    @pytest.mark.asyncio
    async def test_connection_loss_starts_reconnect(self, client):
        await client.connect(GOOD_CREDS)
        listener = MagicMock()
        client.add_listener(listener)

        await client.handle_connection_loss()
        listener.assert_any_call("disconnected", None)
        await client._reconnect_task
        assert client.is_connected

    @pytest.mark.asyncio
    async def test_status(self, client):
        await client.connect(GOOD_CREDS)
        status = client.status()
        assert status["is_connected"] is True
        assert status["status"] == "connected"
        assert status["queued_trades"] == 0
