"""Risk management: per-trade validation and daily loss tracking."""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from optiondesk.config.constants import (
    RiskAction,
    RiskLevel,
    RiskType,
    Severity,
    TradeResult,
)
from optiondesk.data.models import (
    DailyStats,
    RiskAssessment,
    RiskFinding,
    RiskSettings,
    utcnow,
)

if TYPE_CHECKING:
    from optiondesk.config.settings import RiskSettingsConfig
    from optiondesk.data.models import TradeOutcome, TradeRequest
    from optiondesk.data.repository import Repository

logger = logging.getLogger(__name__)

_SEVERITY_POINTS = {Severity.HIGH: 25, Severity.MEDIUM: 15, Severity.LOW: 5}


class RiskManager:
    """Validate trades against the user's risk profile.

    Holds the persisted ``RiskSettings`` singleton and today's
    ``DailyStats``. The stats are replaced with a fresh record whenever
    the UTC date differs from the stored one.

    Parameters
    ----------
    settings:
        Configured defaults, used until the user saves a profile.
    repository:
        Persistence for the risk profile and daily stats.
    clock:
        Returns the current UTC time. Injected by tests.
    """

    def __init__(
        self,
        settings: "RiskSettingsConfig",
        repository: "Repository",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = settings
        self._repo = repository
        self._clock = clock
        self._settings = _settings_from_config(settings)
        self._daily = DailyStats.fresh(clock().date())

    @property
    def settings(self) -> RiskSettings:
        return self._settings

    @property
    def daily_stats(self) -> DailyStats:
        self._roll_over()
        return self._daily

    async def load(self) -> None:
        """Restore the saved risk profile and today's stats."""
        stored = await self._repo.get_risk_settings()
        if stored is not None:
            self._settings = stored

        daily = await self._repo.get_daily_stats()
        if daily is not None:
            self._daily = daily
        if self._roll_over():
            await self._repo.save_daily_stats(self._daily)

    # -- Validation -----------------------------------------------------------

    def validate(self, request: "TradeRequest", balance: float) -> RiskAssessment:
        """Run every risk check against *request*.

        Checks are not short-circuited. The trade is allowed unless at
        least one finding has action ``BLOCK``.
        """
        daily = self.daily_stats
        settings = self._settings
        amount = request.amount
        risks: list[RiskFinding] = []

        if settings.daily_loss_limit > 0:
            if daily.total_loss >= settings.daily_loss_limit:
                risks.append(RiskFinding(
                    type=RiskType.DAILY_LOSS_LIMIT,
                    severity=Severity.HIGH,
                    message=f"Daily loss limit of ${settings.daily_loss_limit:g} reached",
                    action=RiskAction.BLOCK,
                ))
            elif daily.total_loss + amount > settings.daily_loss_limit:
                risks.append(RiskFinding(
                    type=RiskType.DAILY_LOSS_WARNING,
                    severity=Severity.MEDIUM,
                    message="This trade could exceed your daily loss limit",
                    action=RiskAction.WARN,
                ))

        if balance <= 0:
            position_pct = 100.0
            risks.append(RiskFinding(
                type=RiskType.INSUFFICIENT_BALANCE,
                severity=Severity.HIGH,
                message="Account balance is empty",
                action=RiskAction.BLOCK,
            ))
        else:
            position_pct = amount / balance * 100

        if position_pct > settings.max_position_size:
            risks.append(RiskFinding(
                type=RiskType.POSITION_SIZE,
                severity=Severity.HIGH,
                message=(
                    f"Position size ({position_pct:.1f}%) exceeds maximum "
                    f"({settings.max_position_size:g}%)"
                ),
                action=RiskAction.REDUCE,
            ))

        if daily.consecutive_losses >= settings.max_consecutive_losses:
            risks.append(RiskFinding(
                type=RiskType.CONSECUTIVE_LOSSES,
                severity=Severity.HIGH,
                message=f"Maximum consecutive losses ({settings.max_consecutive_losses}) reached",
                action=RiskAction.BLOCK,
            ))

        if request.confidence < settings.min_confidence:
            risks.append(RiskFinding(
                type=RiskType.LOW_CONFIDENCE,
                severity=Severity.MEDIUM,
                message=(
                    f"Signal confidence ({request.confidence:g}%) below minimum "
                    f"({settings.min_confidence:g}%)"
                ),
                action=RiskAction.WARN,
            ))

        assessment = RiskAssessment(
            allowed=not any(r.action == RiskAction.BLOCK for r in risks),
            risks=risks,
            recommended_amount=self.calculate_recommended_amount(amount, balance, risks),
            risk_score=self.calculate_trade_risk_score(
                risks, position_pct, request.confidence
            ),
        )
        logger.debug(
            "Risk check %s %s %.2f: allowed=%s findings=%d score=%.0f",
            request.side.value,
            request.symbol,
            amount,
            assessment.allowed,
            len(risks),
            assessment.risk_score,
        )
        return assessment

    def calculate_recommended_amount(
        self,
        amount: float,
        balance: float,
        risks: list[RiskFinding],
    ) -> float:
        """Scale the stake down according to the findings.

        Capped at ``max_position_size`` percent of the balance, then halved
        for any HIGH finding, or cut by 30% / 20% for two / one MEDIUM
        findings. Never below 1.
        """
        recommended = min(amount, max(balance, 0.0) * self._settings.max_position_size / 100)

        high = sum(1 for r in risks if r.severity == Severity.HIGH)
        medium = sum(1 for r in risks if r.severity == Severity.MEDIUM)
        if high:
            recommended *= 0.5
        elif medium >= 2:
            recommended *= 0.7
        elif medium == 1:
            recommended *= 0.8

        return float(max(1, round(recommended)))

    @staticmethod
    def calculate_trade_risk_score(
        risks: list[RiskFinding],
        position_pct: float,
        confidence: float,
    ) -> float:
        score = 30.0
        score += sum(_SEVERITY_POINTS[r.severity] for r in risks)
        score += position_pct * 2
        if confidence < 60:
            score += 20
        elif confidence > 80:
            score -= 10
        return max(0.0, min(100.0, score))

    # -- Bookkeeping ----------------------------------------------------------

    async def record_outcome(self, outcome: "TradeOutcome") -> DailyStats:
        """Fold a trade result into today's stats."""
        daily = self.daily_stats
        daily.trades_count += 1
        daily.total_risk += outcome.amount

        if outcome.result == TradeResult.WIN:
            daily.total_profit += outcome.profit
            daily.consecutive_losses = 0
        elif outcome.result == TradeResult.LOSS:
            loss = abs(outcome.profit)
            daily.total_loss += loss
            daily.consecutive_losses += 1
            daily.max_consecutive_losses = max(
                daily.max_consecutive_losses, daily.consecutive_losses
            )
            daily.largest_loss = max(daily.largest_loss, loss)

        await self._repo.save_daily_stats(daily)
        logger.debug(
            "Daily stats: trades=%d loss=%.2f streak=%d",
            daily.trades_count,
            daily.total_loss,
            daily.consecutive_losses,
        )
        return daily

    async def record_blocked(
        self,
        request: "TradeRequest",
        assessment: RiskAssessment,
    ) -> None:
        """Log a risk event for a trade the validator refused."""
        daily = self.daily_stats
        daily.risk_events.append({
            "timestamp": self._clock().isoformat(),
            "symbol": request.symbol,
            "side": request.side.value,
            "amount": request.amount,
            "risks": [r.to_dict() for r in assessment.blocking],
        })
        await self._repo.save_daily_stats(daily)
        logger.warning(
            "Trade blocked: %s",
            "; ".join(r.message for r in assessment.blocking),
        )

    async def update_settings(self, **changes: Any) -> RiskSettings:
        """Merge *changes* into the risk profile and persist it."""
        known = {f.name for f in fields(RiskSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown risk settings: {', '.join(sorted(unknown))}")

        self._settings = replace(self._settings, **changes)
        await self._repo.save_risk_settings(self._settings)
        logger.info("Risk settings updated: %s", changes)
        return self._settings

    def get_risk_status(self) -> dict[str, Any]:
        return {
            "daily_stats": self.daily_stats.to_dict(),
            "settings": self._settings.to_dict(),
            "risk_level": self.overall_risk_level().value,
        }

    def overall_risk_level(self) -> RiskLevel:
        daily = self.daily_stats
        factors = 0
        if daily.consecutive_losses >= 2:
            factors += 1
        if daily.total_loss > self._settings.daily_loss_limit * 0.7:
            factors += 1
        if daily.trades_count > 20:
            factors += 1

        if factors >= 2:
            return RiskLevel.HIGH
        if factors == 1:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def _roll_over(self) -> bool:
        today = self._clock().date().isoformat()
        if self._daily.date == today:
            return False
        logger.info("New trading day %s, resetting daily stats", today)
        self._daily = DailyStats(date=today)
        return True


def _settings_from_config(config: "RiskSettingsConfig") -> RiskSettings:
    names = {f.name for f in fields(RiskSettings)}
    return RiskSettings(**{k: v for k, v in config.model_dump().items() if k in names})
