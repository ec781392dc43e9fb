"""Metrics, scoring and reporting rules for scenario backtests."""

from __future__ import annotations

import math
from dataclasses import asdict
from datetime import datetime
from statistics import fmean
from typing import Iterable, Sequence

import pandas as pd  # type: ignore[import-untyped]

from strategy_engine.backtest.types import (
    EquityPoint,
    PerformanceMetrics,
    TestResult,
    TradeRecord,
)
from strategy_engine.engine.ledger import ClosedTrade
from strategy_engine.features.indicators import simple_returns
from strategy_engine.risk import statistics
from strategy_engine.risk.types import RiskMetrics

PASS_SCORE = 60.0
MAX_ISSUES = 2


def compute_performance_metrics(
    equity_curve: Sequence[EquityPoint],
    trades: Sequence[TradeRecord],
    closed_trades: Sequence[ClosedTrade],
    initial_capital: float,
) -> PerformanceMetrics:
    """Compute return, risk-adjusted and trade statistics for one simulation."""
    if not equity_curve:
        return PerformanceMetrics()

    values = [initial_capital] + [point.equity for point in equity_curve]
    timestamps = [_parse_iso(point.timestamp) for point in equity_curve]
    per_year = statistics.periods_per_year(timestamps)
    returns = simple_returns(values)

    total_return = statistics.total_return_pct(values)
    max_drawdown, recovery_bars = _max_drawdown_with_recovery(values)
    annualized = statistics.annualized_return_pct(total_return, len(values) - 1, per_year)

    exits = [trade for trade in trades if trade.action == "SELL"]
    wins = [trade.pnl for trade in exits if trade.pnl > 0]
    losses = [trade.pnl for trade in exits if trade.pnl < 0]
    gross_profit = sum(wins)
    gross_loss = abs(sum(losses))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = math.inf if gross_profit > 0 else 0.0

    return PerformanceMetrics(
        total_return_pct=total_return,
        annualized_return_pct=annualized,
        max_drawdown_pct=max_drawdown,
        max_drawdown_recovery_bars=recovery_bars,
        sharpe_ratio=statistics.sharpe_ratio(returns, per_year),
        sortino_ratio=statistics.sortino_ratio(returns, per_year),
        calmar_ratio=statistics.calmar_ratio(annualized, max_drawdown),
        win_rate_pct=len(wins) / len(exits) * 100.0 if exits else 0.0,
        profit_factor=profit_factor,
        average_win=fmean(wins) if wins else 0.0,
        average_loss=fmean(losses) if losses else 0.0,
        largest_win=max(wins, default=0.0),
        largest_loss=min(losses, default=0.0),
        total_trades=len(trades),
        winning_trades=len(wins),
        losing_trades=len(losses),
        average_trade_duration_hours=(
            fmean(trade.duration_hours for trade in closed_trades) if closed_trades else 0.0
        ),
        volatility_pct=statistics.volatility_pct(returns),
    )


def evaluate_test_result(
    scenario: str,
    performance: PerformanceMetrics,
    risk_metrics: RiskMetrics | None,
) -> tuple[bool, float, list[str], list[str]]:
    """Score a simulation; returns (passed, score, issues, recommendations)."""
    issues: list[str] = []
    recommendations: list[str] = []
    score = 0.0

    if scenario == "bull_market":
        if performance.total_return_pct < 10:
            issues.append("Low returns in bull market")
            recommendations.append("Increase position sizes or loosen stop-losses in bull markets")
        else:
            score += 20
    elif scenario == "bear_market":
        if performance.total_return_pct < -5:
            issues.append("Excessive losses in bear market")
            recommendations.append("Improve bear market protection and stop-loss mechanisms")
        else:
            score += 20
    elif scenario == "market_crash":
        if performance.max_drawdown_pct > 20:
            issues.append("Excessive drawdown during crash")
            recommendations.append("Implement better emergency stop-loss mechanisms")
        else:
            score += 20

    if performance.sharpe_ratio > 1.5:
        score += 15
    elif performance.sharpe_ratio < 0.5:
        issues.append("Low Sharpe ratio indicates poor risk-adjusted returns")
        recommendations.append("Optimize risk management and position sizing")

    # win rate is undefined until a position closes
    closed = performance.winning_trades + performance.losing_trades
    if closed:
        if performance.win_rate_pct > 60:
            score += 15
        elif performance.win_rate_pct < 40:
            issues.append("Low win rate")
            recommendations.append("Improve signal quality and entry timing")

    if performance.max_drawdown_pct < 10:
        score += 15
    elif performance.max_drawdown_pct > 25:
        issues.append("High maximum drawdown")
        recommendations.append("Implement better risk management and position sizing")

    if performance.profit_factor > 1.5:
        score += 15
    elif performance.losing_trades and performance.profit_factor < 1.0:
        issues.append("Profit factor below 1.0 indicates losing strategy")
        recommendations.append("Review and improve trading logic")

    volatility = risk_metrics.volatility_pct if risk_metrics is not None else 0.0
    correlation = risk_metrics.correlation if risk_metrics is not None else 0.0
    if volatility < 15:
        score += 10
    elif volatility > 30:
        issues.append("High portfolio volatility")
        recommendations.append("Reduce position sizes and improve diversification")
    if correlation < 0.5:
        score += 10
    elif correlation > 0.8:
        issues.append("High portfolio correlation")
        recommendations.append("Improve diversification across uncorrelated assets")

    passed = score >= PASS_SCORE and len(issues) <= MAX_ISSUES
    return passed, min(100.0, score), issues, recommendations


def summarize_by_strategy(results: Sequence[TestResult]) -> dict[str, dict[str, float | int]]:
    """Average the scenario results of each strategy."""
    rows = [
        {
            "strategy": result.strategy,
            "total_return_pct": result.performance.total_return_pct,
            "sharpe_ratio": result.performance.sharpe_ratio,
            "max_drawdown_pct": result.performance.max_drawdown_pct,
            "win_rate_pct": result.performance.win_rate_pct,
            "score": result.score,
            "passed": 1.0 if result.passed else 0.0,
            "errored": 1 if result.error is not None else 0,
        }
        for result in results
    ]
    if not rows:
        return {}
    grouped = pd.DataFrame(rows).groupby("strategy", sort=True)
    means = grouped.mean(numeric_only=True)
    counts = grouped.size()
    errors = grouped["errored"].sum()
    summary: dict[str, dict[str, float | int]] = {}
    for strategy, row in means.iterrows():
        summary[str(strategy)] = {
            "scenarios": int(counts[strategy]),
            "average_return_pct": float(row["total_return_pct"]),
            "average_sharpe_ratio": float(row["sharpe_ratio"]),
            "average_max_drawdown_pct": float(row["max_drawdown_pct"]),
            "average_win_rate_pct": float(row["win_rate_pct"]),
            "average_score": float(row["score"]),
            "pass_rate_pct": float(row["passed"]) * 100.0,
            "errors": int(errors[strategy]),
        }
    return summary


def generate_comparison_report(results: Sequence[TestResult]) -> str:
    """Render a markdown comparison of every strategy across scenarios."""
    lines = ["# Algorithm Comparison Report", ""]
    summary = summarize_by_strategy(results)
    if not summary:
        lines.append("No results.")
        return "\n".join(lines) + "\n"
    for strategy, row in summary.items():
        lines.extend(
            [
                f"## {strategy.upper()} BOT",
                "",
                f"- Average Return: {row['average_return_pct']:.2f}%",
                f"- Average Sharpe Ratio: {row['average_sharpe_ratio']:.2f}",
                f"- Average Max Drawdown: {row['average_max_drawdown_pct']:.2f}%",
                f"- Average Win Rate: {row['average_win_rate_pct']:.2f}%",
                f"- Average Score: {row['average_score']:.1f}",
                f"- Pass Rate: {row['pass_rate_pct']:.1f}%",
                "",
                "| Scenario | Return % | Max DD % | Trades | Score | Result |",
                "| --- | ---: | ---: | ---: | ---: | --- |",
            ]
        )
        for result in results:
            if result.strategy != strategy:
                continue
            if result.error is not None:
                verdict = "ERROR"
            else:
                verdict = "PASS" if result.passed else "FAIL"
            lines.append(
                f"| {result.scenario} | {result.performance.total_return_pct:.2f} "
                f"| {result.performance.max_drawdown_pct:.2f} | {result.performance.total_trades} "
                f"| {result.score:.0f} | {verdict} |"
            )
        lines.append("")
    return "\n".join(lines)


def performance_as_dict(metrics: PerformanceMetrics) -> dict[str, float | int | None]:
    """Serializable metrics; non-finite ratios become None."""
    return {key: _finite_or_none(value) for key, value in asdict(metrics).items()}


def _finite_or_none(value: float | int) -> float | int | None:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _max_drawdown_with_recovery(values: Sequence[float]) -> tuple[float, int | None]:
    if not values:
        return 0.0, None
    peak_value = values[0]
    peak_idx = 0
    max_dd = 0.0
    trough_idx = 0
    peak_idx_for_max_dd = 0

    for idx, value in enumerate(values):
        if value > peak_value:
            peak_value = value
            peak_idx = idx
        drawdown = 0.0 if peak_value <= 0 else (peak_value - value) / peak_value * 100.0
        if drawdown > max_dd:
            max_dd = drawdown
            trough_idx = idx
            peak_idx_for_max_dd = peak_idx

    if max_dd <= 0:
        return 0.0, 0

    recovery_bars: int | None = None
    target = values[peak_idx_for_max_dd]
    for idx in range(trough_idx + 1, len(values)):
        if values[idx] >= target:
            recovery_bars = idx - trough_idx
            break
    return max_dd, recovery_bars


def _parse_iso(text: str) -> datetime:
    return datetime.fromisoformat(text)


def trade_records_as_rows(records: Iterable[TradeRecord]) -> list[dict[str, object]]:
    """Convert trade records to serializable row dicts."""
    return [
        {
            "strategy": row.strategy,
            "scenario": row.scenario,
            "timestamp": row.timestamp,
            "action": row.action,
            "symbol": row.symbol,
            "price": row.price,
            "quantity": row.quantity,
            "pnl": row.pnl,
            "reason": row.reason,
        }
        for row in records
    ]


def equity_points_as_rows(points: Iterable[EquityPoint]) -> list[dict[str, object]]:
    """Convert equity points to serializable row dicts."""
    return [
        {
            "timestamp": point.timestamp,
            "equity": point.equity,
            "cash": point.cash,
            "exposure": point.exposure,
        }
        for point in points
    ]
