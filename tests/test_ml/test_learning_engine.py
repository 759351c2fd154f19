"""Tests for the learning engine."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from optiondesk.config.constants import TradeResult
from optiondesk.config.settings import LearningSettings
from optiondesk.data.models import MarketConditions
from optiondesk.ml.learning_engine import LearningEngine, experience_level, moving_average
from tests.factories import make_outcome

WIN = TradeResult.WIN
LOSS = TradeResult.LOSS
HIGH_BULL = MarketConditions(volatility="High", sentiment="Bullish")


@pytest.fixture
def mock_repo():
    repo = MagicMock()
    repo.get_learning_data = AsyncMock(return_value=None)
    repo.save_learning_data = AsyncMock(return_value=True)
    repo.clear_learning_data = AsyncMock()
    return repo


@pytest.fixture
def learning(mock_repo) -> LearningEngine:
    return LearningEngine(LearningSettings(), mock_repo)


async def _record(engine: LearningEngine, results, **kwargs) -> None:
    for result in results:
        await engine.record_outcome(make_outcome(result, **kwargs))


class TestMovingAverage:
    def test_matches_mean(self):
        avg = 0.0
        values = [60, 70, 80, 90]
        for i, value in enumerate(values, start=1):
            avg = moving_average(avg, value, i)
        assert avg == pytest.approx(75.0)


class TestRecordOutcome:
    @pytest.mark.asyncio
    async def test_counters(self, learning, mock_repo):
        await _record(learning, [WIN, WIN, LOSS], amount=10)

        data = learning.data
        assert data.total_trades == 3
        assert data.successful_trades == 2
        assert data.total_profit == pytest.approx(17.0)
        assert data.total_loss == pytest.approx(10.0)
        assert mock_repo.save_learning_data.await_count == 3

    @pytest.mark.asyncio
    async def test_strategy_averages(self, learning):
        for confidence in (60, 70, 80):
            await learning.record_outcome(make_outcome(WIN, confidence=confidence))

        perf = learning.data.strategy_performance["Trend Following"]
        assert perf.total_trades == 3
        assert perf.avg_confidence == pytest.approx(70.0)
        assert perf.avg_risk_score == pytest.approx(50.0)
        assert perf.recent_performance[-1]["result"] == "win"

    @pytest.mark.asyncio
    async def test_streaks(self, learning):
        await _record(learning, [WIN, WIN, LOSS, WIN])
        assert learning.data.win_streaks == [1, 2, 1]
        assert learning.data.loss_streaks == [1]

    @pytest.mark.asyncio
    async def test_streak_list_is_bounded(self, learning):
        await _record(learning, [WIN] * 60)
        assert len(learning.data.win_streaks) == 50

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, mock_repo):
        engine = LearningEngine(LearningSettings(history_limit=5), mock_repo)
        await _record(engine, [LOSS] * 8)

        assert engine.data.total_trades == 8
        assert len(engine.data.learning_history) == 5

    @pytest.mark.asyncio
    async def test_pending_result_skips_streaks(self, learning):
        await _record(learning, [TradeResult.PENDING])
        assert learning.data.total_trades == 1
        assert learning.data.win_streaks == []
        assert learning.data.loss_streaks == []

    @pytest.mark.asyncio
    async def test_condition_buckets(self, learning):
        await learning.record_outcome(
            make_outcome(WIN, confidence=70.4, conditions=HIGH_BULL, timeframe="2m")
        )

        data = learning.data
        assert data.market_condition_performance["High_Bullish"].wins == 1
        assert data.condition_strategies["High_Bullish"]["Trend Following"].total == 1
        assert data.timeframe_analysis["2m"]["EURUSD_high"].total == 1
        assert data.signal_accuracy["BUY_70"].wins == 1


class TestConfidence:
    def test_default_for_unknown_strategy(self, learning):
        assert learning.get_confidence("Unknown") == 60

    @pytest.mark.asyncio
    async def test_losing_strategy_floors_at_30(self, learning):
        await _record(learning, [LOSS] * 5)
        assert learning.get_confidence("Trend Following") == 30

    @pytest.mark.asyncio
    async def test_winning_strategy_caps_at_95(self, learning):
        await _record(learning, [WIN] * 6)
        assert learning.get_confidence("Trend Following") == 95

    @pytest.mark.asyncio
    async def test_condition_blend(self, learning):
        await _record(learning, [WIN] * 3, conditions=HIGH_BULL)
        await _record(learning, [LOSS] * 3)

        assert learning.get_confidence("Trend Following") == 50
        assert learning.get_confidence("Trend Following", HIGH_BULL) == 65


class TestAdaptiveSettings:
    @pytest.mark.asyncio
    async def test_not_adapted_below_minimum_history(self, learning):
        await _record(learning, [LOSS] * 19)
        assert learning.adaptive_settings.confidence_threshold == 70

    @pytest.mark.asyncio
    async def test_losing_streak_raises_threshold(self, learning):
        await _record(learning, [LOSS] * 21)
        assert learning.adaptive_settings.confidence_threshold == 74

    @pytest.mark.asyncio
    async def test_winning_low_risk_relaxes(self, learning):
        await _record(learning, [WIN] * 20, risk_score=30)

        adaptive = learning.adaptive_settings
        assert adaptive.confidence_threshold == 69
        assert adaptive.max_risk_per_trade == 5.5

    @pytest.mark.asyncio
    async def test_high_risk_reduces_max_risk(self, learning):
        await _record(learning, [WIN] * 20, risk_score=80)
        assert learning.adaptive_settings.max_risk_per_trade == 4.5


class TestStrategySelection:
    def test_no_data_picks_first(self, learning):
        assert learning.get_optimal_strategy(MarketConditions()) == "Trend Following"

    def test_empty_candidates(self, learning):
        assert learning.get_optimal_strategy(MarketConditions(), []) is None

    @pytest.mark.asyncio
    async def test_prefers_winning_strategy(self, learning):
        await _record(learning, [WIN] * 5, strategy="Range Reversal", risk_score=30)
        await _record(learning, [LOSS] * 5, strategy="Trend Following")

        assert learning.get_optimal_strategy(MarketConditions()) == "Range Reversal"
        assert learning.score_strategy("Trend Following", MarketConditions()) < 50


class TestDynamicExpiry:
    def test_defaults_by_volatility(self, learning):
        assert learning.get_dynamic_expiry("EURUSD", "High") == "30s"
        assert learning.get_dynamic_expiry("EURUSD", "medium") == "1m"
        assert learning.get_dynamic_expiry("EURUSD", "low") == "2m"
        assert learning.get_dynamic_expiry("EURUSD", "unknown") == "2m"

    @pytest.mark.asyncio
    async def test_uses_best_historical_timeframe(self, learning):
        await _record(learning, [WIN] * 3, conditions=HIGH_BULL, timeframe="1m")
        await _record(learning, [LOSS] * 3, conditions=HIGH_BULL, timeframe="30s")

        assert learning.best_timeframe("EURUSD_high") == "1m"
        assert learning.get_dynamic_expiry("EURUSD", "high") == "1m"

    @pytest.mark.asyncio
    async def test_strong_trend_allows_longer_expiry(self, learning):
        await _record(learning, [WIN] * 3, conditions=HIGH_BULL, timeframe="5m")

        assert learning.get_dynamic_expiry("EURUSD", "high") == "30s"
        assert learning.get_dynamic_expiry("EURUSD", "high", "Strong Bullish") == "5m"


class TestRiskScore:
    def test_risky_trade(self):
        assert LearningEngine.calculate_risk_score("High", 85, "30s", 200) == 100

    def test_conservative_trade(self):
        assert LearningEngine.calculate_risk_score("low", 70, "5m", 10) == 25


class TestInsights:
    def test_empty(self, learning):
        insights = learning.get_learning_insights()
        assert insights["total_trades"] == 0
        assert insights["overall_win_rate"] == 0
        assert insights["best_strategy"] is None
        assert insights["risk_metrics"] is None
        assert insights["experience_level"] == "Beginner"
        assert len(insights["recommendations"]) == 2

    @pytest.mark.asyncio
    async def test_after_trading(self, learning):
        await _record(learning, [WIN, WIN, LOSS, LOSS, LOSS] * 2, amount=10)

        insights = learning.get_learning_insights()
        assert insights["overall_win_rate"] == 40
        assert insights["profit_factor"] == pytest.approx(0.57)
        assert insights["best_strategy"]["name"] == "Trend Following"
        assert insights["risk_metrics"]["largest_loss"] == 10
        assert insights["recommendations"][0].startswith("Consider reducing position sizes")

    def test_experience_levels(self):
        assert experience_level(19) == "Beginner"
        assert experience_level(20) == "Intermediate"
        assert experience_level(100) == "Advanced"
        assert experience_level(500) == "Expert"


class TestPersistence:
    @pytest.mark.asyncio
    async def test_clear(self, learning, mock_repo):
        await _record(learning, [WIN])
        await learning.clear()

        assert learning.data.total_trades == 0
        mock_repo.clear_learning_data.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reload_from_repository(self, repo):
        engine = LearningEngine(LearningSettings(), repo)
        await _record(engine, [WIN, LOSS], conditions=HIGH_BULL)

        reloaded = LearningEngine(LearningSettings(), repo)
        await reloaded.load()

        assert reloaded.data.total_trades == 2
        assert reloaded.data.market_condition_performance["High_Bullish"].total == 2
        assert reloaded.data.learning_history[0].market_conditions == HIGH_BULL
