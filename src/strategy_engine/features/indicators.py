"""Indicator computation shared by strategy evaluators and risk checks."""

from __future__ import annotations

from typing import Sequence

import numpy as np


def simple_returns(prices: Sequence[float]) -> np.ndarray:
    """Period-over-period simple returns of a price or value series."""
    values = np.asarray(prices, dtype=float)
    if values.size < 2:
        return np.empty(0, dtype=float)
    previous = values[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        returns = np.where(previous != 0, np.diff(values) / previous, 0.0)
    return returns


def return_std(prices: Sequence[float]) -> float:
    """Population standard deviation of simple returns."""
    returns = simple_returns(prices)
    if returns.size == 0:
        return 0.0
    return float(np.std(returns))


def rms_return(prices: Sequence[float]) -> float:
    """Root mean square of simple returns."""
    returns = simple_returns(prices)
    if returns.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(returns**2)))


def linear_fit(values: Sequence[float]) -> tuple[float, float]:
    """Least-squares slope and R-squared of values against their index."""
    y = np.asarray(values, dtype=float)
    n = y.size
    if n < 2:
        return 0.0, 0.0
    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if ss_tot <= 0:
        return float(slope), 0.0
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    r_squared = max(0.0, min(1.0, 1.0 - ss_res / ss_tot))
    return float(slope), r_squared


def percent_change(first: float, last: float) -> float:
    if first == 0:
        return 0.0
    return (last - first) / first * 100.0


def volume_ratio(volumes: Sequence[float]) -> float:
    """Latest volume over the mean of the given window; 1.0 when undefined."""
    if len(volumes) == 0:
        return 1.0
    average = float(np.mean(volumes))
    if average <= 0:
        return 1.0
    return float(volumes[-1]) / average


def volume_trend(volumes: Sequence[float]) -> float:
    """Relative distance of the latest volume from the window mean."""
    if len(volumes) == 0:
        return 0.0
    average = float(np.mean(volumes))
    if average <= 0:
        return 0.0
    return (float(volumes[-1]) - average) / average


def up_tick_fraction(prices: Sequence[float]) -> float:
    """Share of steps in the window where price rose."""
    if len(prices) < 2:
        return 0.0
    steps = np.diff(np.asarray(prices, dtype=float))
    return float(np.count_nonzero(steps > 0)) / float(steps.size)


def channel_index(typical_prices: Sequence[float]) -> float:
    """Commodity channel index of the last typical price over the window."""
    window = np.asarray(typical_prices, dtype=float)
    if window.size == 0:
        return 0.0
    mean = float(window.mean())
    mean_deviation = float(np.mean(np.abs(window - mean)))
    if mean_deviation == 0:
        return 0.0
    return (float(window[-1]) - mean) / (0.015 * mean_deviation)
