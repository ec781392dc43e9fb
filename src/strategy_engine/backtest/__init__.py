"""Backtest package exports."""

from strategy_engine.backtest.metrics import (
    compute_performance_metrics,
    evaluate_test_result,
    generate_comparison_report,
    summarize_by_strategy,
)
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
from strategy_engine.backtest.types import (
    EdgeCaseResult,
    EdgeCaseTest,
    PerformanceMetrics,
    ScenarioStep,
    TestResult,
    TestScenario,
)

__all__ = [
    "SCENARIO_NAMES",
    "EdgeCaseResult",
    "EdgeCaseTest",
    "PerformanceMetrics",
    "ScenarioStep",
    "TestResult",
    "TestScenario",
    "compute_performance_metrics",
    "default_strategy_configs",
    "evaluate_test_result",
    "generate_comparison_report",
    "generate_edge_cases",
    "generate_test_scenarios",
    "run_algorithm_tests",
    "run_edge_case_tests",
    "run_scenario",
    "simulate",
    "summarize_by_strategy",
    "write_backtest_artifacts",
]
