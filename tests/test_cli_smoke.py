from pathlib import Path

import pytest
from click.testing import CliRunner

from strategy_engine import __version__
from strategy_engine.backtest.types import EdgeCaseResult, PerformanceMetrics, TestResult
from strategy_engine.main import cli


def test_cli_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert f"strategy-engine version {__version__}" in result.output


def test_cli_status_smoke() -> None:
    result = CliRunner().invoke(cli, ["status"])
    assert result.exit_code == 0
    assert "Strategy Engine - Status" in result.output
    assert "Max position size: 20.0%" in result.output


def test_cli_backtest_smoke(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def _fake_run_algorithm_tests(**kwargs: object) -> list[TestResult]:
        return [
            TestResult(
                scenario="market_crash",
                strategy="dca",
                performance=PerformanceMetrics(total_return_pct=-3.0),
                passed=True,
                score=75.0,
            )
        ]

    def _fake_run_edge_case_tests(**kwargs: object) -> list[EdgeCaseResult]:
        return [EdgeCaseResult(name="zero_volume", critical_level="HIGH", passed=True)]

    monkeypatch.setattr("strategy_engine.main.run_algorithm_tests", _fake_run_algorithm_tests)
    monkeypatch.setattr("strategy_engine.main.run_edge_case_tests", _fake_run_edge_case_tests)
    result = CliRunner().invoke(
        cli, ["backtest", "--scenario", "market_crash", "-s", "dca", "-o", str(tmp_path)]
    )
    assert result.exit_code == 0
    assert "## DCA BOT" in result.output
    assert "[OK] edge case zero_volume (HIGH)" in result.output
    assert (tmp_path / "comparison_report.md").exists()
    assert (tmp_path / "dca" / "market_crash" / "metrics.json").exists()


def test_cli_backtest_failure_exits_nonzero(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    def _failing(**kwargs: object) -> list[TestResult]:
        raise RuntimeError("scenario generator offline")

    monkeypatch.setattr("strategy_engine.main.run_algorithm_tests", _failing)
    result = CliRunner().invoke(cli, ["backtest", "--skip-edge-cases", "-o", str(tmp_path)])
    assert result.exit_code == 1


def test_cli_rejects_unknown_scenario() -> None:
    result = CliRunner().invoke(cli, ["backtest", "--scenario", "moon"])
    assert result.exit_code != 0


def test_cli_edge_cases_strict() -> None:
    result = CliRunner().invoke(cli, ["edge-cases", "--strict"])
    assert result.exit_code == 0
    assert "[OK] zero_volume (HIGH)" in result.output
    assert "[OK] signal_storm (HIGH)" in result.output


def test_cli_optimize_smoke() -> None:
    result = CliRunner().invoke(cli, ["optimize", "--scenario", "market_crash"])
    assert result.exit_code == 0
    assert "[Market] trend=" in result.output
    assert "[cci] optimized=" in result.output
