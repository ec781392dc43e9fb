from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from strategy_engine.risk import statistics

START = datetime(2024, 1, 1, tzinfo=UTC)


def test_periods_per_year_from_spacing() -> None:
    hourly = [START + timedelta(hours=index) for index in range(5)]
    daily = [START + timedelta(days=index) for index in range(5)]
    assert statistics.periods_per_year(hourly) == pytest.approx(8_760.0)
    assert statistics.periods_per_year(daily) == pytest.approx(365.0)
    assert statistics.periods_per_year([START]) == statistics.HOURLY_PERIODS_PER_YEAR


def test_drawdown_helpers() -> None:
    assert statistics.max_drawdown_pct([100.0, 120.0, 90.0, 130.0]) == pytest.approx(25.0)
    assert statistics.max_drawdown_pct([]) == 0.0
    assert statistics.drawdown_from_peak_pct(200.0, 150.0) == pytest.approx(25.0)
    assert statistics.drawdown_from_peak_pct(0.0, 10.0) == 0.0


def test_returns_and_annualization() -> None:
    assert statistics.total_return_pct([100.0, 110.0]) == pytest.approx(10.0)
    assert statistics.annualized_return_pct(10.0, 365, 365.0) == pytest.approx(10.0)
    assert statistics.annualized_return_pct(-150.0, 10, 365.0) == -100.0
    assert statistics.annualized_return_pct(5.0, 0, 365.0) == 0.0


def test_ratios_guard_degenerate_inputs() -> None:
    assert statistics.sharpe_ratio([0.01, 0.01, 0.01], 365.0) == 0.0
    assert statistics.sortino_ratio([0.01, 0.02], 365.0) == 0.0
    assert statistics.calmar_ratio(12.0, 0.0) == 0.0
    assert statistics.calmar_ratio(12.0, 6.0) == pytest.approx(2.0)


def test_sharpe_sign_follows_returns() -> None:
    assert statistics.sharpe_ratio([0.02, 0.01, 0.03, 0.02], 365.0) > 0
    assert statistics.sortino_ratio([-0.02, 0.01, -0.03, 0.0], 365.0) < 0


def test_value_at_risk_and_tail_mean() -> None:
    returns = [value / 100.0 for value in range(-10, 10)]
    var_95 = statistics.value_at_risk_pct(returns)
    cvar_95 = statistics.conditional_value_at_risk_pct(returns)
    assert var_95 == pytest.approx(-9.0)
    assert cvar_95 == pytest.approx(-9.5)
    assert cvar_95 <= var_95
    assert statistics.value_at_risk_pct([]) == 0.0
    assert statistics.conditional_value_at_risk_pct([0.02, -0.05, 0.01]) == pytest.approx(-5.0)


def test_volatility_pct() -> None:
    assert statistics.volatility_pct([0.01]) == 0.0
    assert statistics.volatility_pct([0.01, -0.01]) == pytest.approx(1.0)
