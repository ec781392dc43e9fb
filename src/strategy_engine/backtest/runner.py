"""Scenario backtest runner: replays synthetic markets through every strategy."""

from __future__ import annotations

from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, fields
from datetime import datetime
from pathlib import Path
from typing import Callable, Sequence

import pandas as pd  # type: ignore[import-untyped]

from strategy_engine.backtest.metrics import (
    compute_performance_metrics,
    equity_points_as_rows,
    evaluate_test_result,
    generate_comparison_report,
    performance_as_dict,
    summarize_by_strategy,
    trade_records_as_rows,
)
from strategy_engine.backtest.scenarios import generate_edge_cases, generate_test_scenarios
from strategy_engine.backtest.types import (
    EdgeCaseResult,
    EdgeCaseTest,
    EquityPoint,
    PerformanceMetrics,
    ScenarioStep,
    TestResult,
    TestScenario,
    TradeRecord,
)
from strategy_engine.config import Settings, get_settings
from strategy_engine.engine.state import EngineState
from strategy_engine.errors import InvalidObservationError
from strategy_engine.risk.manager import RiskManager
from strategy_engine.risk.types import RiskMetrics
from strategy_engine.schemas import StrategyConfig, StrategyKind
from strategy_engine.strategy.base import Strategy
from strategy_engine.strategy.registry import build_strategy
from strategy_engine.types import (
    MarketObservation,
    RiskLimits,
    TradingSignal,
    validate_observation,
)
from strategy_engine.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ENABLED_SYMBOLS: tuple[str, ...] = ("BTC", "ETH", "SOL", "ADA", "DOT")
OBSERVATION_WINDOW = 100
SIGNAL_STORM_LIMIT = 10
MIN_ORDER_NOTIONAL = 1.0

_TRADE_COLUMNS = [item.name for item in fields(TradeRecord)]
_EQUITY_COLUMNS = [item.name for item in fields(EquityPoint)]


@dataclass(slots=True)
class SimulationOutcome:
    """Raw products of one replay before scoring."""

    state: EngineState
    risk_manager: RiskManager
    cash: float
    trades: list[TradeRecord] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    recent: deque[MarketObservation] = field(
        default_factory=lambda: deque(maxlen=OBSERVATION_WINDOW)
    )
    signal_count: int = 0
    step_signal_counts: list[int] = field(default_factory=list)
    rejected_signals: int = 0


def default_strategy_configs(
    initial_capital: float = 10_000.0,
    enabled_symbols: Sequence[str] = DEFAULT_ENABLED_SYMBOLS,
) -> list[StrategyConfig]:
    """One moderate configuration per strategy kind."""
    configs: list[StrategyConfig] = []
    for kind in StrategyKind:
        payload: dict[str, object] = {
            "id": f"{kind.value}-bot",
            "name": f"{kind.value.upper()} bot",
            "kind": kind,
            "allocation_capital": initial_capital,
            "stop_loss_pct": 5.0,
            "take_profit_pct": 15.0,
            "max_positions": 5,
            "risk_profile": "MODERATE",
            "enabled_symbols": list(enabled_symbols),
        }
        if kind == StrategyKind.DCA:
            payload["params"] = {
                "kind": "dca",
                "frequency": "DAILY",
                "interval_hours": 24.0,
                "amount": 100.0,
            }
        configs.append(StrategyConfig.model_validate(payload))
    return configs


def simulate(
    strategy: Strategy,
    steps: Sequence[ScenarioStep],
    *,
    scenario: str,
    initial_capital: float,
    limits: RiskLimits | None = None,
) -> SimulationOutcome:
    """Feed steps in timestamp order, validating and executing every signal."""
    outcome = SimulationOutcome(
        state=strategy.new_state(),
        risk_manager=RiskManager(limits),
        cash=initial_capital,
    )
    for step in sorted(steps, key=lambda item: item.timestamp):
        state, signals = strategy.evaluate(outcome.state, step.observations, step.timestamp)
        outcome.state = state
        outcome.recent.extend(_valid_observations(step.observations))
        outcome.signal_count += len(signals)
        outcome.step_signal_counts.append(len(signals))
        for signal in signals:
            _execute(strategy, outcome, signal, scenario, step.timestamp)

        exposure = state.ledger.market_value
        equity = outcome.cash + exposure
        outcome.risk_manager.record_portfolio_value(equity, step.timestamp)
        outcome.equity_curve.append(
            EquityPoint(
                timestamp=step.timestamp.isoformat(),
                equity=equity,
                cash=outcome.cash,
                exposure=exposure,
            )
        )
    return outcome


def _execute(
    strategy: Strategy,
    outcome: SimulationOutcome,
    signal: TradingSignal,
    scenario: str,
    now: datetime,
) -> None:
    ledger = outcome.state.ledger
    verdict = outcome.risk_manager.validate_signal(
        signal, ledger.positions(), list(outcome.recent), cash=outcome.cash
    )
    executable = verdict.apply_to(signal)
    if executable is None:
        outcome.rejected_signals += 1
        return

    held = ledger.get(signal.symbol)
    if executable.action == "BUY":
        quantity = min(executable.quantity or 0.0, outcome.cash / executable.price)
        if quantity * executable.price < MIN_ORDER_NOTIONAL:
            logger.debug(
                "buy_skipped_below_min_notional",
                symbol=signal.symbol,
                notional=quantity * executable.price,
                cash=outcome.cash,
            )
            outcome.rejected_signals += 1
            return
    elif executable.action == "SELL":
        if held is None:
            return
        quantity = min(executable.quantity or held.quantity, held.quantity)
    else:
        return

    before = held.quantity if held is not None else 0.0
    pnl = strategy.apply_trade(
        outcome.state, signal.symbol, executable.action, quantity, executable.price, now
    )
    remaining = ledger.get(signal.symbol)
    after = remaining.quantity if remaining is not None else 0.0
    filled = abs(after - before)
    if executable.action == "BUY":
        outcome.cash -= filled * executable.price
    else:
        outcome.cash += filled * executable.price
    outcome.trades.append(
        TradeRecord(
            strategy=strategy.name,
            scenario=scenario,
            timestamp=now.isoformat(),
            action=executable.action,
            symbol=signal.symbol,
            price=executable.price,
            quantity=filled,
            pnl=pnl,
            reason=signal.reason,
        )
    )


def _valid_observations(observations: Sequence[MarketObservation]) -> list[MarketObservation]:
    valid: list[MarketObservation] = []
    for observation in observations:
        try:
            valid.append(validate_observation(observation))
        except InvalidObservationError as exc:
            logger.debug("observation_skipped", symbol=observation.symbol, reason=str(exc))
    return valid


def run_scenario(
    config: StrategyConfig,
    scenario: TestScenario,
    *,
    initial_capital: float,
    limits: RiskLimits | None = None,
) -> TestResult:
    """Simulate and score one (scenario, strategy) pair."""
    strategy = build_strategy(config)
    outcome = simulate(
        strategy,
        scenario.steps,
        scenario=scenario.name,
        initial_capital=initial_capital,
        limits=limits,
    )
    performance = compute_performance_metrics(
        outcome.equity_curve,
        outcome.trades,
        outcome.state.ledger.closed_trades,
        initial_capital,
    )
    risk_metrics = outcome.risk_manager.calculate_risk_metrics(
        outcome.state.ledger.positions(), list(outcome.recent), cash=outcome.cash
    )
    passed, score, issues, recommendations = evaluate_test_result(
        scenario.name, performance, risk_metrics
    )
    logger.info(
        "scenario_completed",
        scenario=scenario.name,
        strategy=strategy.name,
        total_return_pct=round(performance.total_return_pct, 2),
        max_drawdown_pct=round(performance.max_drawdown_pct, 2),
        trades=performance.total_trades,
        score=score,
        passed=passed,
    )
    return TestResult(
        scenario=scenario.name,
        strategy=strategy.name,
        performance=performance,
        risk_metrics=risk_metrics,
        trades=outcome.trades,
        equity_curve=outcome.equity_curve,
        signal_count=outcome.signal_count,
        rejected_signals=outcome.rejected_signals,
        passed=passed,
        score=score,
        issues=issues,
        recommendations=recommendations,
    )


def run_algorithm_tests(
    *,
    configs: Sequence[StrategyConfig] | None = None,
    scenarios: Sequence[TestScenario] | None = None,
    settings: Settings | None = None,
    max_workers: int | None = None,
    should_abort: Callable[[], bool] | None = None,
) -> list[TestResult]:
    """Run every strategy through every scenario; failures are recorded, not raised."""
    settings = settings or get_settings()
    if configs is None:
        configs = default_strategy_configs(settings.initial_capital)
    if scenarios is None:
        scenarios = generate_test_scenarios(
            seed=settings.scenario_seed, symbols=settings.scenario_symbols
        )
    limits = settings.risk_limits()
    workers = max_workers or settings.max_workers
    jobs = [(scenario, config) for scenario in scenarios for config in configs]
    logger.info(
        "backtest_started",
        scenarios=len(scenarios),
        strategies=len(configs),
        max_workers=workers,
    )

    def run_job(job: tuple[TestScenario, StrategyConfig]) -> TestResult | None:
        scenario, config = job
        if should_abort is not None and should_abort():
            return None
        try:
            return run_scenario(
                config, scenario, initial_capital=settings.initial_capital, limits=limits
            )
        except Exception as exc:
            logger.exception("scenario_failed", scenario=scenario.name, strategy=config.kind.value)
            return TestResult(
                scenario=scenario.name,
                strategy=config.kind.value,
                performance=PerformanceMetrics(),
                issues=[f"Simulation error: {exc}"],
                error=str(exc),
            )

    if workers <= 1:
        outputs = [run_job(job) for job in jobs]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            outputs = list(executor.map(run_job, jobs))

    results = [result for result in outputs if result is not None]
    if len(results) < len(jobs):
        logger.warning("backtest_aborted", completed=len(results), planned=len(jobs))
    return results


def run_edge_case_tests(
    *,
    configs: Sequence[StrategyConfig] | None = None,
    cases: Sequence[EdgeCaseTest] | None = None,
    settings: Settings | None = None,
) -> list[EdgeCaseResult]:
    """Replay each edge case through every strategy and check its expected behavior."""
    settings = settings or get_settings()
    if configs is None:
        configs = default_strategy_configs(settings.initial_capital)
    cases = list(cases) if cases is not None else generate_edge_cases(seed=settings.scenario_seed)
    limits = settings.risk_limits()

    results: list[EdgeCaseResult] = []
    for case in cases:
        result = EdgeCaseResult(name=case.name, critical_level=case.critical_level, passed=True)
        for config in configs:
            strategy = build_strategy(config)
            try:
                outcome = simulate(
                    strategy,
                    case.steps,
                    scenario=case.name,
                    initial_capital=settings.initial_capital,
                    limits=limits,
                )
            except Exception as exc:
                logger.exception("edge_case_failed", case=case.name, strategy=strategy.name)
                result.issues.append(f"{strategy.name}: raised {type(exc).__name__}: {exc}")
                continue
            result.signal_counts[strategy.name] = outcome.signal_count
            issue = _edge_case_issue(case, outcome)
            if issue is not None:
                result.issues.append(f"{strategy.name}: {issue}")
        result.passed = not result.issues
        logger.info(
            "edge_case_completed",
            case=case.name,
            passed=result.passed,
            issues=len(result.issues),
        )
        results.append(result)
    return results


def _edge_case_issue(case: EdgeCaseTest, outcome: SimulationOutcome) -> str | None:
    counts = outcome.step_signal_counts
    if case.name in ("zero_volume", "negative_price"):
        if outcome.signal_count:
            return f"emitted {outcome.signal_count} signals on unusable data"
    elif case.name == "extreme_price_spike":
        if counts and counts[-1]:
            return f"emitted {counts[-1]} signals on the anomalous tick"
    elif case.name == "missing_data":
        empty = [count for step, count in zip(case.steps, counts) if not step.observations]
        if any(empty):
            return f"emitted {sum(empty)} signals on empty ticks"
    elif case.name == "signal_storm":
        if outcome.signal_count > SIGNAL_STORM_LIMIT:
            return f"emitted {outcome.signal_count} signals, limit {SIGNAL_STORM_LIMIT}"
    return None


def write_backtest_artifacts(
    output_dir: Path,
    results: Sequence[TestResult],
    edge_results: Sequence[EdgeCaseResult] | None = None,
) -> None:
    """Persist backtest outputs grouped by strategy + scenario."""
    output_dir.mkdir(parents=True, exist_ok=True)
    for result in results:
        run_dir = output_dir / result.strategy / result.scenario
        run_dir.mkdir(parents=True, exist_ok=True)
        pd.DataFrame(trade_records_as_rows(result.trades), columns=_TRADE_COLUMNS).to_csv(
            run_dir / "trades.csv",
            index=False,
        )
        pd.DataFrame(equity_points_as_rows(result.equity_curve), columns=_EQUITY_COLUMNS).to_csv(
            run_dir / "equity_curve.csv", index=False
        )
        _write_json(run_dir / "metrics.json", _result_payload(result))

    summary = {
        "strategies": summarize_by_strategy(results),
        "results": [
            {
                "scenario": result.scenario,
                "strategy": result.strategy,
                "passed": result.passed,
                "score": result.score,
                "issues": result.issues,
                "error": result.error,
            }
            for result in results
        ],
        "edge_cases": [
            {
                "name": edge.name,
                "critical_level": edge.critical_level,
                "passed": edge.passed,
                "issues": edge.issues,
                "signal_counts": edge.signal_counts,
            }
            for edge in edge_results or []
        ],
    }
    _write_json(output_dir / "summary.json", summary)
    (output_dir / "comparison_report.md").write_text(
        generate_comparison_report(results), encoding="utf-8"
    )


def _result_payload(result: TestResult) -> dict[str, object]:
    risk: RiskMetrics | None = result.risk_metrics
    return {
        "scenario": result.scenario,
        "strategy": result.strategy,
        "performance": performance_as_dict(result.performance),
        "risk_metrics": risk.as_dict() if risk is not None else None,
        "signal_count": result.signal_count,
        "rejected_signals": result.rejected_signals,
        "passed": result.passed,
        "score": result.score,
        "issues": result.issues,
        "recommendations": result.recommendations,
        "error": result.error,
    }


def _write_json(path: Path, payload: object) -> None:
    import json

    path.write_text(json.dumps(payload, ensure_ascii=True, indent=2), encoding="utf-8")
