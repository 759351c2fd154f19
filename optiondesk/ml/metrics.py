"""Risk metrics over the settled trade history."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

import pandas as pd

if TYPE_CHECKING:
    from optiondesk.data.models import TradeOutcome

logger = logging.getLogger(__name__)

# Fewer outcomes than this produce no metrics
MIN_OUTCOMES = 5


@dataclass
class RiskMetrics:
    """Summary of the profit distribution of past trades."""

    max_drawdown: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    max_win_streak: int = 0
    max_loss_streak: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def calculate_risk_metrics(
    history: list["TradeOutcome"],
    win_streaks: list[int],
    loss_streaks: list[int],
) -> RiskMetrics | None:
    """Compute drawdown and win/loss statistics.

    Returns ``None`` when fewer than ``MIN_OUTCOMES`` outcomes exist.

    - **Max drawdown**: largest decline of cumulative profit from its
      running peak, in percent of that peak (0 while the peak is ≤ 0)
    - **Avg / largest win**: over outcomes with positive profit
    - **Avg / largest loss**: absolute values, over negative profits
    """
    if len(history) < MIN_OUTCOMES:
        return None

    profits = pd.Series([o.profit for o in history], dtype="float64")
    wins = profits[profits > 0]
    losses = profits[profits < 0].abs()

    return RiskMetrics(
        max_drawdown=calculate_max_drawdown(profits),
        avg_win=float(wins.mean()) if not wins.empty else 0.0,
        avg_loss=float(losses.mean()) if not losses.empty else 0.0,
        largest_win=float(wins.max()) if not wins.empty else 0.0,
        largest_loss=float(losses.max()) if not losses.empty else 0.0,
        max_win_streak=max(win_streaks, default=0),
        max_loss_streak=max(loss_streaks, default=0),
    )


def calculate_max_drawdown(profits: pd.Series) -> float:
    """Maximum drawdown of the cumulative profit curve, in percent."""
    if profits.empty:
        return 0.0

    equity = profits.cumsum()
    peak = equity.cummax().clip(lower=0.0)
    drawdown = ((peak - equity) / peak.where(peak > 0)).fillna(0.0) * 100
    return float(drawdown.max())
