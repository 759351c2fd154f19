"""Outcome-driven confidence scoring and adaptive thresholds."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from optiondesk.config.constants import DEFAULT_STRATEGIES, TradeResult
from optiondesk.data.models import (
    AdaptiveSettings,
    ConditionPerformance,
    LearningData,
    StrategyPerformance,
)
from optiondesk.ml.metrics import calculate_risk_metrics

if TYPE_CHECKING:
    from optiondesk.config.settings import LearningSettings
    from optiondesk.data.models import MarketConditions, TradeOutcome
    from optiondesk.data.repository import Repository

logger = logging.getLogger(__name__)

_MIN_CONFIDENCE = 30
_MAX_CONFIDENCE = 95

# Expiry candidates per volatility level, most conservative first
_EXPIRY_OPTIONS: dict[str, list[str]] = {
    "high": ["30s", "1m"],
    "medium": ["1m", "2m"],
    "low": ["2m", "5m"],
}


def moving_average(current: float, value: float, count: int) -> float:
    """Incremental mean: fold the *count*-th *value* into *current*."""
    return (current * (count - 1) + value) / count


class LearningEngine:
    """Learns per-strategy and per-condition win rates from settled trades.

    Aggregates are updated incrementally on each ``record_outcome`` and
    never recomputed from history. They drive ``get_confidence`` and
    ``get_optimal_strategy``, and nudge the ``AdaptiveSettings``.

    Parameters
    ----------
    settings:
        Window sizes, sample-size thresholds and initial adaptive values.
    repository:
        Persistence for the ``LearningData`` record.
    """

    def __init__(
        self,
        settings: "LearningSettings",
        repository: "Repository",
    ) -> None:
        self._settings = settings
        self._repo = repository
        self._data = self._fresh_data()

    @property
    def data(self) -> LearningData:
        return self._data

    @property
    def adaptive_settings(self) -> AdaptiveSettings:
        return self._data.adaptive_settings

    async def load(self) -> None:
        stored = await self._repo.get_learning_data()
        if stored is not None:
            self._data = stored
            logger.info(
                "Loaded learning data (%d trades, %d history entries)",
                stored.total_trades,
                len(stored.learning_history),
            )

    async def clear(self) -> None:
        """Forget everything learned so far."""
        self._data = self._fresh_data()
        await self._repo.clear_learning_data()
        logger.info("Learning data reset")

    def _fresh_data(self) -> LearningData:
        return LearningData(
            adaptive_settings=AdaptiveSettings(
                confidence_threshold=self._settings.confidence_threshold,
                max_risk_per_trade=self._settings.max_risk_per_trade,
            )
        )

    # -- Recording ------------------------------------------------------------

    async def record_outcome(self, outcome: "TradeOutcome") -> None:
        """Fold one trade result into every aggregate, then persist."""
        data = self._data
        won = outcome.result == TradeResult.WIN

        data.total_trades += 1
        if won:
            data.successful_trades += 1
            data.total_profit += outcome.profit
        elif outcome.result == TradeResult.LOSS:
            data.total_loss += abs(outcome.profit)

        self._update_streaks(outcome.result)
        self._update_strategy(outcome)

        condition_key = outcome.market_conditions.key
        data.market_condition_performance.setdefault(
            condition_key, ConditionPerformance()
        ).record(won)
        data.condition_strategies.setdefault(condition_key, {}).setdefault(
            outcome.strategy, ConditionPerformance()
        ).record(won)

        pattern = f"{outcome.symbol}_{outcome.market_conditions.volatility.lower()}"
        data.timeframe_analysis.setdefault(outcome.timeframe, {}).setdefault(
            pattern, ConditionPerformance()
        ).record(won)

        signal_key = f"{outcome.side.value}_{round(outcome.confidence)}"
        data.signal_accuracy.setdefault(signal_key, ConditionPerformance()).record(won)

        data.learning_history.append(outcome)
        limit = self._settings.history_limit
        if len(data.learning_history) > limit:
            data.learning_history = data.learning_history[-limit:]

        self.adapt_settings()

        if not await self._repo.save_learning_data(data):
            logger.warning("Learning data could not be saved")
        logger.debug(
            "Recorded %s for %s (total=%d)",
            outcome.result.value,
            outcome.strategy,
            data.total_trades,
        )

    def _update_streaks(self, result: TradeResult) -> None:
        if result == TradeResult.PENDING:
            return

        streak = 1
        for previous in reversed(self._data.learning_history[-10:]):
            if previous.result != result:
                break
            streak += 1

        streaks = (
            self._data.win_streaks if result == TradeResult.WIN
            else self._data.loss_streaks
        )
        streaks.append(streak)
        del streaks[:-self._settings.streak_limit]

    def _update_strategy(self, outcome: "TradeOutcome") -> None:
        perf = self._data.strategy_performance.setdefault(
            outcome.strategy, StrategyPerformance()
        )
        perf.total_trades += 1
        if outcome.result == TradeResult.WIN:
            perf.wins += 1
            perf.total_profit += outcome.profit
        elif outcome.result == TradeResult.LOSS:
            perf.losses += 1
            perf.total_loss += abs(outcome.profit)

        n = perf.total_trades
        perf.avg_confidence = moving_average(perf.avg_confidence, outcome.confidence, n)
        perf.avg_risk_score = moving_average(perf.avg_risk_score, outcome.risk_score, n)

        perf.recent_performance.append({
            "result": outcome.result.value,
            "profit": outcome.profit,
            "timestamp": outcome.timestamp.isoformat(),
        })
        del perf.recent_performance[:-self._settings.recent_window]

        perf.market_conditions.setdefault(
            outcome.market_conditions.key, ConditionPerformance()
        ).record(outcome.result == TradeResult.WIN)

    def adapt_settings(self) -> None:
        """Nudge the adaptive thresholds from the trailing window."""
        history = self._data.learning_history
        if len(history) < self._settings.adapt_min_history:
            return

        recent = history[-self._settings.adapt_window:]
        win_rate = sum(1 for o in recent if o.is_win) / len(recent) * 100
        avg_risk = sum(o.risk_score for o in recent) / len(recent)
        adaptive = self._data.adaptive_settings

        if win_rate < 50:
            adaptive.confidence_threshold = min(85.0, adaptive.confidence_threshold + 2)
        elif win_rate > 70:
            adaptive.confidence_threshold = max(60.0, adaptive.confidence_threshold - 1)

        if avg_risk > 70:
            adaptive.max_risk_per_trade = max(2.0, adaptive.max_risk_per_trade - 0.5)
        elif avg_risk < 40 and win_rate > 65:
            adaptive.max_risk_per_trade = min(10.0, adaptive.max_risk_per_trade + 0.5)

    # -- Queries --------------------------------------------------------------

    def get_confidence(
        self,
        strategy: str,
        conditions: "MarketConditions | None" = None,
    ) -> int:
        """Blended confidence for *strategy* in [30, 95].

        Lifetime win rate, blended 60/40 with the recent window and then
        70/30 with the win rate under the condition tag, each only when
        enough samples exist. Strategies with too few trades get the
        default confidence.
        """
        perf = self._data.strategy_performance.get(strategy)
        if perf is None or perf.total_trades < self._settings.min_strategy_trades:
            return _clamp_confidence(self._settings.default_confidence)

        confidence = perf.win_rate
        if len(perf.recent_performance) >= self._settings.min_recent_trades:
            confidence = confidence * 0.6 + perf.recent_win_rate * 0.4

        if conditions is not None:
            condition = perf.market_conditions.get(conditions.key)
            if condition and condition.total >= self._settings.min_condition_trades:
                confidence = confidence * 0.7 + condition.win_rate * 0.3

        return _clamp_confidence(confidence)

    def get_optimal_strategy(
        self,
        conditions: "MarketConditions",
        strategies: list[str] | None = None,
    ) -> str | None:
        """Pick the highest scoring strategy for *conditions*."""
        candidates = DEFAULT_STRATEGIES if strategies is None else strategies
        if not candidates:
            return None

        scores = {name: self.score_strategy(name, conditions) for name in candidates}
        best = max(candidates, key=lambda name: scores[name])
        logger.debug("Strategy scores: %s -> %s", scores, best)
        return best

    def score_strategy(self, strategy: str, conditions: "MarketConditions") -> float:
        score = 50.0
        perf = self._data.strategy_performance.get(strategy)
        if perf is None:
            return score

        if perf.total_trades >= self._settings.min_strategy_trades:
            score += (perf.win_rate - 50) * 0.4
            score += (perf.recent_win_rate - 50) * 0.3

            if perf.avg_risk_score < 50:
                score += 10
            elif perf.avg_risk_score > 70:
                score -= 15

            if perf.total_profit > perf.total_loss:
                profit_factor = perf.total_profit / max(perf.total_loss, 1.0)
                score += min(10.0, profit_factor * 2)

        condition = perf.market_conditions.get(conditions.key)
        if condition and condition.total >= self._settings.min_condition_trades:
            score += (condition.win_rate - 50) * 0.2
        return score

    def get_dynamic_expiry(
        self,
        symbol: str,
        volatility: str = "medium",
        trend: str = "neutral",
    ) -> str:
        """Expiry for *symbol*, preferring the best historical timeframe."""
        volatility = volatility.lower()
        options = list(_EXPIRY_OPTIONS.get(volatility, _EXPIRY_OPTIONS["low"]))
        if "Strong" in trend and "5m" not in options:
            options.append("5m")

        best = self.best_timeframe(f"{symbol}_{volatility}")
        if best in options:
            return best
        return options[0]

    def best_timeframe(self, pattern: str) -> str | None:
        best: str | None = None
        best_rate = 0.0
        for timeframe, patterns in self._data.timeframe_analysis.items():
            perf = patterns.get(pattern)
            if perf is None or perf.total < self._settings.min_condition_trades:
                continue
            if perf.win_rate > best_rate:
                best_rate = perf.win_rate
                best = timeframe
        return best

    @staticmethod
    def calculate_risk_score(
        volatility: str,
        confidence: float,
        timeframe: str,
        amount: float,
    ) -> float:
        """Heuristic 0-100 risk score for trades without a validator score."""
        score = 50.0
        volatility = volatility.lower()
        if volatility == "high":
            score += 20
        elif volatility == "low":
            score -= 10

        if confidence > 80:
            score -= 15
        elif confidence < 60:
            score += 15

        if timeframe == "30s":
            score += 25
        elif timeframe == "5m":
            score -= 10

        # Stake relative to a 1000 reference balance
        stake_pct = amount / 1000 * 100
        if stake_pct > 10:
            score += 20
        elif stake_pct < 2:
            score -= 5

        return max(0.0, min(100.0, score))

    def get_learning_insights(self) -> dict[str, Any]:
        data = self._data
        total = data.total_trades
        win_rate = data.successful_trades / total * 100 if total else 0.0
        profit_factor = data.total_profit / data.total_loss if data.total_loss > 0 else 0.0
        metrics = calculate_risk_metrics(
            data.learning_history, data.win_streaks, data.loss_streaks
        )

        return {
            "total_trades": total,
            "overall_win_rate": round(win_rate),
            "profit_factor": round(profit_factor, 2),
            "best_strategy": self._best_strategy(),
            "experience_level": experience_level(total),
            "recommendations": self._recommendations(),
            "risk_metrics": metrics.to_dict() if metrics else None,
            "adaptive_settings": data.adaptive_settings.to_dict(),
        }

    def _best_strategy(self) -> dict[str, Any] | None:
        best: dict[str, Any] | None = None
        best_score = 0.0
        for name, perf in self._data.strategy_performance.items():
            if perf.total_trades < self._settings.min_strategy_trades:
                continue
            profit_factor = perf.total_profit / perf.total_loss if perf.total_loss > 0 else 0.0
            score = perf.win_rate + profit_factor * 10
            if score > best_score:
                best_score = score
                best = {
                    "name": name,
                    "win_rate": round(perf.win_rate),
                    "profit_factor": round(profit_factor, 2),
                    "trades": perf.total_trades,
                }
        return best

    def _recommendations(self) -> list[str]:
        if self._data.total_trades < 10:
            return [
                "Build experience with small position sizes",
                "Focus on high-confidence signals (>75%)",
            ]

        recent = self._data.learning_history[-self._settings.recent_window:]
        if not recent:
            return []

        recommendations: list[str] = []
        win_rate = sum(1 for o in recent if o.is_win) / len(recent) * 100
        if win_rate < 50:
            recommendations.append(
                "Consider reducing position sizes until performance improves"
            )
            recommendations.append(
                "Focus on market conditions with historically better performance"
            )
        elif win_rate > 70:
            recommendations.append(
                "Performance is excellent - consider gradual position size increases"
            )
            recommendations.append("Current strategy selection is working well")

        avg_risk = sum(o.risk_score for o in recent) / len(recent)
        if avg_risk > 70:
            recommendations.append(
                "Current trades have high risk scores - consider more conservative approach"
            )
        return recommendations


def experience_level(total_trades: int) -> str:
    if total_trades < 20:
        return "Beginner"
    if total_trades < 100:
        return "Intermediate"
    if total_trades < 500:
        return "Advanced"
    return "Expert"


def _clamp_confidence(value: float) -> int:
    return int(max(_MIN_CONFIDENCE, min(_MAX_CONFIDENCE, round(value))))
