from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

import pytest

from strategy_engine.backtest.metrics import (
    compute_performance_metrics,
    evaluate_test_result,
    generate_comparison_report,
    performance_as_dict,
    summarize_by_strategy,
)
from strategy_engine.backtest.types import (
    EquityPoint,
    PerformanceMetrics,
    TestResult,
    TradeRecord,
)
from strategy_engine.engine.ledger import ClosedTrade

START = datetime(2024, 1, 1, tzinfo=UTC)


def _equity(values: list[float]) -> list[EquityPoint]:
    return [
        EquityPoint(
            timestamp=(START + timedelta(hours=index)).isoformat(),
            equity=value,
            cash=value,
            exposure=0.0,
        )
        for index, value in enumerate(values)
    ]


def _trade(action: str, pnl: float) -> TradeRecord:
    return TradeRecord(
        strategy="momentum",
        scenario="bull_market",
        timestamp=START.isoformat(),
        action=action,  # type: ignore[arg-type]
        symbol="BTC",
        price=100.0,
        quantity=1.0,
        pnl=pnl,
        reason="test",
    )


def _closed(hours: float) -> ClosedTrade:
    return ClosedTrade(
        symbol="BTC",
        quantity=1.0,
        entry_price=100.0,
        exit_price=101.0,
        opened_at=START,
        closed_at=START + timedelta(hours=hours),
    )


def test_performance_metrics_from_curve_and_trades() -> None:
    trades = [_trade("BUY", 0.0), _trade("SELL", 150.0), _trade("SELL", -50.0)]
    metrics = compute_performance_metrics(
        _equity([10_100.0, 10_050.0, 10_200.0]),
        trades,
        [_closed(2.0), _closed(4.0)],
        10_000.0,
    )
    assert metrics.total_return_pct == pytest.approx(2.0)
    assert metrics.max_drawdown_pct == pytest.approx(50.0 / 10_100.0 * 100.0)
    assert metrics.max_drawdown_recovery_bars == 1
    assert metrics.win_rate_pct == pytest.approx(50.0)
    assert metrics.profit_factor == pytest.approx(3.0)
    assert metrics.largest_win == 150.0
    assert metrics.largest_loss == -50.0
    assert metrics.total_trades == 3
    assert metrics.winning_trades == 1
    assert metrics.losing_trades == 1
    assert metrics.average_trade_duration_hours == pytest.approx(3.0)


def test_empty_curve_gives_zero_metrics() -> None:
    assert compute_performance_metrics([], [], [], 10_000.0) == PerformanceMetrics()


def test_profit_factor_without_losses_serializes_as_none() -> None:
    metrics = compute_performance_metrics(
        _equity([10_100.0]), [_trade("SELL", 100.0)], [], 10_000.0
    )
    assert math.isinf(metrics.profit_factor)
    payload = performance_as_dict(metrics)
    assert payload["profit_factor"] is None
    assert payload["total_trades"] == 1


def test_strong_bull_result_passes() -> None:
    performance = PerformanceMetrics(
        total_return_pct=15.0,
        sharpe_ratio=2.0,
        win_rate_pct=70.0,
        max_drawdown_pct=5.0,
        profit_factor=2.0,
        winning_trades=7,
        losing_trades=3,
    )
    passed, score, issues, recommendations = evaluate_test_result(
        "bull_market", performance, None
    )
    assert passed
    assert score == 100.0
    assert issues == []
    assert recommendations == []


def test_deep_crash_drawdown_fails() -> None:
    performance = PerformanceMetrics(
        total_return_pct=-20.0,
        sharpe_ratio=-1.0,
        max_drawdown_pct=30.0,
        win_rate_pct=20.0,
        profit_factor=0.2,
        winning_trades=1,
        losing_trades=4,
    )
    passed, score, issues, _ = evaluate_test_result("market_crash", performance, None)
    assert not passed
    assert "Excessive drawdown during crash" in issues
    assert "High maximum drawdown" in issues
    assert score == 20.0


def test_win_rate_ignored_without_closed_trades() -> None:
    passed, score, issues, _ = evaluate_test_result(
        "sideways_market", PerformanceMetrics(), None
    )
    assert issues == ["Low Sharpe ratio indicates poor risk-adjusted returns"]
    assert score == 35.0
    assert not passed


def test_summary_and_report() -> None:
    results = [
        TestResult(
            scenario="bull_market",
            strategy="momentum",
            performance=PerformanceMetrics(total_return_pct=12.0, total_trades=4),
            passed=True,
            score=80.0,
        ),
        TestResult(
            scenario="bear_market",
            strategy="momentum",
            performance=PerformanceMetrics(),
            error="boom",
        ),
        TestResult(
            scenario="bull_market",
            strategy="dca",
            performance=PerformanceMetrics(total_return_pct=4.0),
            score=40.0,
        ),
    ]
    summary = summarize_by_strategy(results)
    assert list(summary) == ["dca", "momentum"]
    assert summary["momentum"]["scenarios"] == 2
    assert summary["momentum"]["errors"] == 1
    assert summary["momentum"]["pass_rate_pct"] == pytest.approx(50.0)
    assert summary["momentum"]["average_return_pct"] == pytest.approx(6.0)

    report = generate_comparison_report(results)
    assert report.startswith("# Algorithm Comparison Report")
    assert "## MOMENTUM BOT" in report
    assert "## DCA BOT" in report
    assert "| bull_market | 12.00 | 0.00 | 4 | 80 | PASS |" in report
    assert "| bear_market | 0.00 | 0.00 | 0 | 0 | ERROR |" in report
    assert "| bull_market | 4.00 | 0.00 | 0 | 40 | FAIL |" in report


def test_report_without_results() -> None:
    assert "No results." in generate_comparison_report([])
    assert summarize_by_strategy([]) == {}
