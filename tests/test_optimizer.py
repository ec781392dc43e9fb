from __future__ import annotations

import pytest

from strategy_engine.risk.manager import RiskManager
from strategy_engine.risk.optimizer import apply_optimization, optimize_parameters
from strategy_engine.risk.types import MarketCondition
from strategy_engine.schemas import ChannelIndexParams, MomentumParams, StrategyKind
from strategy_engine.strategy.registry import build_strategy
from strategy_engine.types import RiskLimits


def _config(kind: str) -> dict[str, object]:
    return {
        "id": f"{kind}-opt",
        "name": f"{kind} optimizer",
        "kind": kind,
        "allocation_capital": 10_000.0,
        "stop_loss_pct": 5.0,
        "enabled_symbols": ["BTC"],
    }


def test_momentum_tightens_for_extreme_volatility() -> None:
    condition = MarketCondition(volatility="EXTREME")
    result = optimize_parameters(
        StrategyKind.MOMENTUM, {"max_positions": 5, "stop_loss_pct": 5.0}, condition
    )
    assert result.optimized
    assert result.new_parameters["max_positions"] == 2
    assert result.new_parameters["stop_loss_pct"] == pytest.approx(3.5)
    assert result.risk_reduction == 20
    assert result.confidence == 70.0


def test_dca_bear_and_volatile() -> None:
    condition = MarketCondition(trend="BEAR", volatility="HIGH")
    result = optimize_parameters("dca", {"amount": 100.0}, condition)
    assert result.new_parameters["frequency"] == "WEEKLY"
    assert result.new_parameters["amount"] == pytest.approx(80.0)
    assert len(result.improvements) == 2
    assert result.confidence == 85.0


def test_staking_extreme_volatility() -> None:
    result = optimize_parameters(
        StrategyKind.STAKING, {"max_allocation_pct": 30.0}, MarketCondition(volatility="EXTREME")
    )
    assert result.new_parameters["max_allocation_pct"] == pytest.approx(15.0)
    assert result.new_parameters["min_apy"] == pytest.approx(5.0)


def test_channel_index_sideways_tightens_levels() -> None:
    result = optimize_parameters(
        StrategyKind.CHANNEL_INDEX, {"overbought": 100.0, "oversold": -100.0}, MarketCondition()
    )
    assert result.new_parameters["overbought"] == pytest.approx(110.0)
    assert result.new_parameters["oversold"] == pytest.approx(-110.0)
    assert result.expected_improvement == 10


def test_unknown_kind_is_unchanged() -> None:
    params = {"window": 14}
    result = optimize_parameters("grid", params, MarketCondition(volatility="EXTREME"))
    assert not result.optimized
    assert result.strategy == "grid"
    assert result.new_parameters == params
    assert result.improvements == []


def test_apply_optimization_rebuilds_strategy() -> None:
    strategy = build_strategy(_config("cci"))
    result = optimize_parameters(strategy.kind, strategy.params_dict(), MarketCondition())
    tuned = apply_optimization(strategy, result)
    assert tuned is not strategy
    assert isinstance(tuned.config.params, ChannelIndexParams)
    assert tuned.config.params.overbought == pytest.approx(110.0)
    assert tuned.config.params.oversold == pytest.approx(-110.0)


def test_apply_optimization_ignores_unknown_keys() -> None:
    strategy = build_strategy(_config("momentum"))
    condition = MarketCondition(trend="BEAR", sentiment="FEAR")
    result = optimize_parameters(strategy.kind, strategy.params_dict(), condition)
    assert "max_position_size" in result.new_parameters

    tuned = apply_optimization(strategy, result)
    assert isinstance(tuned.config.params, MomentumParams)
    assert tuned.config.params.rebalance_interval_minutes == pytest.approx(60.0)
    assert tuned.config.params.momentum_threshold == pytest.approx(0.06)


def test_manager_delegates_optimization() -> None:
    manager = RiskManager(RiskLimits())
    result = manager.optimize_algorithm("staking", {}, MarketCondition(trend="BEAR"))
    assert result.new_parameters["lock_period_preference"] == "SHORT"
    assert result.confidence == 72.0
