"""Market-condition driven parameter nudges for each strategy kind."""

from __future__ import annotations

import math
from typing import Any, Callable, Mapping

from strategy_engine.risk.types import MarketCondition, OptimizationResult
from strategy_engine.schemas import StrategyKind
from strategy_engine.strategy.base import Strategy
from strategy_engine.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MOMENTUM_THRESHOLD = 0.05
DEFAULT_MAX_POSITION_SIZE = 0.2


def _number(params: Mapping[str, Any], key: str, default: float) -> float:
    value = params.get(key)
    return float(value) if value is not None else default


def _momentum(
    params: Mapping[str, Any], condition: MarketCondition, result: OptimizationResult
) -> None:
    new = result.new_parameters
    max_positions = int(_number(params, "max_positions", 5))
    threshold = _number(params, "momentum_threshold", DEFAULT_MOMENTUM_THRESHOLD)
    if condition.volatility == "EXTREME":
        new["max_positions"] = max(2, math.floor(max_positions * 0.5))
        new["stop_loss_pct"] = min(5.0, _number(params, "stop_loss_pct", 5.0) * 0.7)
        result.improvements.append(
            "Reduced position count and tighter stop-loss for extreme volatility"
        )
        result.risk_reduction += 20
    if condition.trend == "BEAR":
        new["rebalance_interval_minutes"] = max(
            60.0, _number(params, "rebalance_interval_minutes", 15.0) * 1.5
        )
        new["momentum_threshold"] = max(0.05, threshold * 1.2)
        result.improvements.append(
            "Slower rebalancing and higher momentum threshold for bear market"
        )
        result.risk_reduction += 15
    if condition.sentiment == "FEAR":
        new["max_position_size"] = max(
            0.05, _number(params, "max_position_size", DEFAULT_MAX_POSITION_SIZE) * 0.8
        )
        result.improvements.append("Reduced position size for fear sentiment")
        result.risk_reduction += 10
    if condition.volatility == "LOW" and condition.trend == "BULL":
        new["max_positions"] = min(10, int(max_positions * 1.2))
        new["momentum_threshold"] = max(0.02, threshold * 0.8)
        result.improvements.append(
            "Increased position count and lowered momentum threshold for stable bull market"
        )
        result.expected_improvement += 15
    result.confidence = min(90.0, 60.0 + len(result.improvements) * 10)


def _dca(params: Mapping[str, Any], condition: MarketCondition, result: OptimizationResult) -> None:
    new = result.new_parameters
    amount = _number(params, "amount", 100.0)
    if condition.volatility in ("HIGH", "EXTREME"):
        new["frequency"] = "WEEKLY"
        new["amount"] = amount * 0.7
        result.improvements.append("Reduced DCA frequency and amount for high volatility")
        result.risk_reduction += 25
    if condition.trend == "BEAR":
        new["amount"] = amount * 0.8
        result.improvements.append("Reduced DCA amount for bear market")
        result.risk_reduction += 15
    if condition.trend == "BULL" and condition.volatility == "LOW":
        new["amount"] = amount * 1.3
        result.improvements.append("Increased DCA amount for stable bull market")
        result.expected_improvement += 20
    result.confidence = min(85.0, 70.0 + len(result.improvements) * 8)


def _staking(
    params: Mapping[str, Any], condition: MarketCondition, result: OptimizationResult
) -> None:
    new = result.new_parameters
    allocation = _number(params, "max_allocation_pct", 30.0)
    if condition.volatility == "EXTREME":
        new["max_allocation_pct"] = max(10.0, allocation * 0.5)
        new["min_apy"] = max(5.0, _number(params, "min_apy", 0.0) * 1.2)
        result.improvements.append(
            "Reduced staking allocation and increased minimum APY for extreme volatility"
        )
        result.risk_reduction += 30
    if condition.trend == "BEAR":
        new["lock_period_preference"] = "SHORT"
        result.improvements.append("Prefer shorter lock periods for bear market")
        result.risk_reduction += 20
    if condition.trend == "BULL" and condition.volatility == "LOW":
        new["max_allocation_pct"] = min(80.0, allocation * 1.2)
        result.improvements.append("Increased staking allocation for stable bull market")
        result.expected_improvement += 25
    result.confidence = min(80.0, 65.0 + len(result.improvements) * 7)


def _channel_index(
    params: Mapping[str, Any], condition: MarketCondition, result: OptimizationResult
) -> None:
    new = result.new_parameters
    overbought = _number(params, "overbought", 100.0)
    oversold = _number(params, "oversold", -100.0)
    if condition.volatility == "EXTREME":
        new["overbought"] = min(150.0, overbought * 1.2)
        new["oversold"] = max(-150.0, oversold * 1.2)
        new["period"] = max(15, int(_number(params, "period", 20) * 0.8))
        result.improvements.append("Adjusted CCI levels and period for extreme volatility")
        result.risk_reduction += 20
    if condition.trend == "SIDEWAYS":
        new["overbought"] = min(120.0, overbought * 1.1)
        new["oversold"] = max(-120.0, oversold * 1.1)
        result.improvements.append("Tightened CCI levels for sideways market")
        result.expected_improvement += 10
    if condition.volume == "LOW":
        new["volume_threshold"] = max(1.5, _number(params, "volume_threshold", 1.2) * 1.2)
        result.improvements.append("Increased volume threshold for low volume conditions")
        result.risk_reduction += 15
    result.confidence = min(85.0, 70.0 + len(result.improvements) * 8)


ParameterNudge = Callable[[Mapping[str, Any], MarketCondition, OptimizationResult], None]

_OPTIMIZERS: dict[StrategyKind, ParameterNudge] = {
    StrategyKind.MOMENTUM: _momentum,
    StrategyKind.DCA: _dca,
    StrategyKind.STAKING: _staking,
    StrategyKind.CHANNEL_INDEX: _channel_index,
}


def optimize_parameters(
    kind: StrategyKind | str,
    current_params: Mapping[str, Any],
    condition: MarketCondition,
) -> OptimizationResult:
    """Propose new parameters for ``kind``; unknown kinds come back unchanged."""
    name = kind.value if isinstance(kind, StrategyKind) else str(kind)
    result = OptimizationResult(strategy=name, new_parameters=dict(current_params))
    try:
        optimizer = _OPTIMIZERS[StrategyKind(name)]
    except ValueError:
        logger.warning("optimization_unknown_strategy", strategy=name)
        return result
    optimizer(current_params, condition, result)
    result.optimized = bool(result.improvements)
    return result


def apply_optimization(strategy: Strategy, result: OptimizationResult) -> Strategy:
    """Return ``strategy`` rebuilt with the changed parameters it understands."""
    current = strategy.params_dict()
    changes: dict[str, Any] = {}
    for key, value in result.new_parameters.items():
        if key not in current:
            logger.info("optimization_parameter_ignored", strategy=result.strategy, parameter=key)
            continue
        if current[key] != value:
            changes[key] = value
    if not changes:
        return strategy
    return strategy.with_params(**changes)
