"""Return-series statistics on a single annualization convention.

Ratios are computed on per-period simple returns. ``periods_per_year`` is
derived from the median timestamp spacing of the series, the 2% annual
risk-free rate is converted per period, and Sharpe/Sortino are scaled by
``sqrt(periods_per_year)``.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Sequence

import numpy as np

from strategy_engine.features.indicators import simple_returns

RISK_FREE_RATE = 0.02
SECONDS_PER_YEAR = 365.0 * 24.0 * 3600.0
HOURLY_PERIODS_PER_YEAR = 24.0 * 365.0


def periods_per_year(timestamps: Sequence[datetime]) -> float:
    """Sampling frequency implied by the median spacing of timestamps."""
    if len(timestamps) < 2:
        return HOURLY_PERIODS_PER_YEAR
    gaps = [
        (later - earlier).total_seconds()
        for earlier, later in zip(timestamps[:-1], timestamps[1:])
    ]
    positive = [gap for gap in gaps if gap > 0]
    if not positive:
        return HOURLY_PERIODS_PER_YEAR
    return SECONDS_PER_YEAR / float(np.median(positive))


def max_drawdown_pct(values: Sequence[float]) -> float:
    peak = -math.inf
    worst = 0.0
    for value in values:
        peak = max(peak, value)
        if peak > 0:
            worst = max(worst, (peak - value) / peak * 100.0)
    return worst


def drawdown_from_peak_pct(peak: float, value: float) -> float:
    if peak <= 0:
        return 0.0
    return max(0.0, (peak - value) / peak * 100.0)


def total_return_pct(values: Sequence[float]) -> float:
    if len(values) < 2 or values[0] <= 0:
        return 0.0
    return (values[-1] - values[0]) / values[0] * 100.0


def annualized_return_pct(total_pct: float, periods: int, per_year: float) -> float:
    """Compound a total return over ``periods`` samples up to one year."""
    if periods <= 0 or per_year <= 0:
        return 0.0
    growth = 1.0 + total_pct / 100.0
    if growth <= 0:
        return -100.0
    exponent = per_year / periods
    try:
        return (growth**exponent - 1.0) * 100.0
    except OverflowError:
        return math.inf


def sharpe_ratio(returns: Sequence[float], per_year: float) -> float:
    values = np.asarray(returns, dtype=float)
    if values.size < 2:
        return 0.0
    std = float(np.std(values))
    if std <= 0:
        return 0.0
    excess = float(np.mean(values)) - RISK_FREE_RATE / per_year
    return excess / std * math.sqrt(per_year)


def sortino_ratio(returns: Sequence[float], per_year: float) -> float:
    values = np.asarray(returns, dtype=float)
    if values.size < 2:
        return 0.0
    downside = values[values < 0]
    if downside.size == 0:
        return 0.0
    deviation = float(np.sqrt(np.mean(downside**2)))
    if deviation <= 0:
        return 0.0
    excess = float(np.mean(values)) - RISK_FREE_RATE / per_year
    return excess / deviation * math.sqrt(per_year)


def calmar_ratio(annualized_pct: float, drawdown_pct: float) -> float:
    if drawdown_pct <= 0 or not math.isfinite(annualized_pct):
        return 0.0
    return annualized_pct / drawdown_pct


def value_at_risk_pct(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Historical-simulation VaR, as a (negative) percent return."""
    ordered = np.sort(np.asarray(returns, dtype=float))
    if ordered.size == 0:
        return 0.0
    index = int(math.floor((1.0 - confidence) * ordered.size))
    return float(ordered[min(index, ordered.size - 1)]) * 100.0


def conditional_value_at_risk_pct(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Mean of the returns at or beyond the VaR cut-off, in percent."""
    ordered = np.sort(np.asarray(returns, dtype=float))
    if ordered.size == 0:
        return 0.0
    cutoff = int(math.floor((1.0 - confidence) * ordered.size))
    tail = ordered[: min(cutoff, ordered.size - 1) + 1]
    return float(np.mean(tail)) * 100.0


def volatility_pct(returns: Sequence[float]) -> float:
    values = np.asarray(returns, dtype=float)
    if values.size < 2:
        return 0.0
    return float(np.std(values)) * 100.0


def ratio_inputs(
    timestamps: Sequence[datetime], values: Sequence[float]
) -> tuple[np.ndarray, float]:
    """Per-period returns of a value series and its annualization factor."""
    return simple_returns(values), periods_per_year(timestamps)
