from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from strategy_engine.backtest.runner import (
    default_strategy_configs,
    run_algorithm_tests,
    run_edge_case_tests,
    run_scenario,
    simulate,
    write_backtest_artifacts,
)
from strategy_engine.backtest.scenarios import (
    SCENARIO_NAMES,
    generate_edge_cases,
    generate_test_scenarios,
)
from strategy_engine.backtest.types import ScenarioStep, TestResult, TestScenario
from strategy_engine.config import Settings
from strategy_engine.schemas import StrategyKind
from strategy_engine.strategy.registry import build_strategy
from strategy_engine.types import POSITION_EPSILON, MarketObservation, RiskLimits


def _settings() -> Settings:
    return Settings(_env_file=None)


def _crash() -> TestScenario:
    return generate_test_scenarios(names=["market_crash"])[0]


def test_scenarios_are_deterministic() -> None:
    first = generate_test_scenarios(seed=7)
    second = generate_test_scenarios(seed=7)
    other = generate_test_scenarios(seed=8)
    assert [scenario.name for scenario in first] == list(SCENARIO_NAMES)
    prices = [item.price for item in first[0].observations]
    assert prices == [item.price for item in second[0].observations]
    assert prices != [item.price for item in other[0].observations]


def test_scenario_shapes() -> None:
    scenarios = {scenario.name: scenario for scenario in generate_test_scenarios()}
    crash = scenarios["market_crash"]
    assert len(crash.steps) == 7 * 24
    prices = [item.price for item in crash.observations]
    assert prices[23] < prices[11] * 0.75
    assert all(item.volume < 100_000.0 for item in scenarios["low_liquidity"].observations)
    assert len(scenarios["flash_crash_recovery"].steps) == 3 * 24


def test_scenarios_cover_every_symbol() -> None:
    scenario = generate_test_scenarios(symbols=("BTC", "ETH"), names=["sideways_market"])[0]
    assert all(
        [item.symbol for item in step.observations] == ["BTC", "ETH"] for step in scenario.steps
    )


def test_unknown_scenario_name_is_rejected() -> None:
    with pytest.raises(ValueError, match="unknown_scenario:moon"):
        generate_test_scenarios(names=["moon"])
    with pytest.raises(ValueError, match="scenario_symbols_empty"):
        generate_test_scenarios(symbols=())


def test_default_configs_cover_every_kind() -> None:
    configs = default_strategy_configs()
    assert [config.kind for config in configs] == list(StrategyKind)
    assert all(config.take_profit_pct == 15.0 for config in configs)


def test_crash_triggers_exits_for_every_strategy() -> None:
    scenario = _crash()
    for config in default_strategy_configs():
        result = run_scenario(config, scenario, initial_capital=10_000.0, limits=RiskLimits())
        sells = [trade for trade in result.trades if trade.action == "SELL"]
        assert sells, config.kind
        assert result.performance.max_drawdown_pct <= 25.0
        assert len(result.equity_curve) == len(scenario.steps)
        assert result.risk_metrics is not None


def test_simulation_keeps_cash_consistent() -> None:
    scenario = _crash()
    strategy = build_strategy(default_strategy_configs()[0])
    outcome = simulate(
        strategy,
        scenario.steps,
        scenario=scenario.name,
        initial_capital=10_000.0,
        limits=RiskLimits(),
    )
    assert outcome.cash >= 0.0
    last = outcome.equity_curve[-1]
    assert last.equity == pytest.approx(last.cash + last.exposure)
    assert outcome.signal_count == sum(outcome.step_signal_counts)
    for trade in outcome.trades:
        assert trade.quantity > 0


def test_low_liquidity_entries_are_rejected() -> None:
    scenario = generate_test_scenarios(names=["low_liquidity"])[0]
    config = default_strategy_configs()[1]
    result = run_scenario(config, scenario, initial_capital=10_000.0, limits=RiskLimits())
    assert result.trades == []
    assert result.rejected_signals > 0


def test_edge_cases_pass() -> None:
    results = run_edge_case_tests(settings=_settings())
    assert [result.name for result in results] == [case.name for case in generate_edge_cases()]
    for result in results:
        assert result.passed, (result.name, result.issues)
        assert set(result.signal_counts) == {"momentum", "dca", "staking", "cci"}


def test_failures_are_recorded_not_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(*args: object, **kwargs: object) -> TestResult:
        raise RuntimeError("simulated failure")

    monkeypatch.setattr("strategy_engine.backtest.runner.run_scenario", _boom)
    results = run_algorithm_tests(scenarios=[_crash()], settings=_settings(), max_workers=2)
    assert len(results) == 4
    assert all(result.error == "simulated failure" for result in results)
    assert all(not result.passed for result in results)


def test_abort_stops_pending_jobs() -> None:
    results = run_algorithm_tests(
        scenarios=[_crash()], settings=_settings(), should_abort=lambda: True
    )
    assert results == []


def test_artifacts_are_written(tmp_path: Path) -> None:
    configs = default_strategy_configs()[:1]
    results = run_algorithm_tests(configs=configs, scenarios=[_crash()], settings=_settings())
    edge_results = run_edge_case_tests(configs=configs, settings=_settings())
    write_backtest_artifacts(tmp_path, results, edge_results)

    run_dir = tmp_path / "momentum" / "market_crash"
    assert (run_dir / "trades.csv").read_text(encoding="utf-8").startswith("strategy,scenario")
    assert (run_dir / "equity_curve.csv").exists()
    metrics = json.loads((run_dir / "metrics.json").read_text(encoding="utf-8"))
    assert metrics["strategy"] == "momentum"
    assert "sharpe_ratio" in metrics["performance"]

    summary = json.loads((tmp_path / "summary.json").read_text(encoding="utf-8"))
    assert summary["strategies"]["momentum"]["scenarios"] == 1
    assert len(summary["edge_cases"]) == len(edge_results)
    report = (tmp_path / "comparison_report.md").read_text(encoding="utf-8")
    assert "## MOMENTUM BOT" in report


def test_small_notional_buy_of_expensive_asset_executes() -> None:
    strategy = build_strategy(
        {
            "id": "dca-small",
            "name": "DCA small",
            "kind": "dca",
            "allocation_capital": 10_000.0,
            "stop_loss_pct": 5.0,
            "enabled_symbols": ["BTC"],
            "params": {"kind": "dca", "amount": 20.0},
        }
    )
    start = datetime(2024, 1, 1, tzinfo=UTC)
    steps = [
        ScenarioStep(
            timestamp=start + timedelta(hours=index),
            observations=[
                MarketObservation(
                    symbol="BTC",
                    timestamp=start + timedelta(hours=index),
                    price=60_000.0,
                    volume=5_000_000.0,
                )
            ],
        )
        for index in range(3)
    ]
    outcome = simulate(
        strategy, steps, scenario="tiny", initial_capital=10_000.0, limits=RiskLimits()
    )
    assert outcome.rejected_signals == 0
    assert len(outcome.trades) == 1
    trade = outcome.trades[0]
    assert trade.action == "BUY"
    assert trade.quantity < POSITION_EPSILON
    assert outcome.cash == pytest.approx(10_000.0 - trade.quantity * 60_000.0)
