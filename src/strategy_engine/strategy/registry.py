"""Strategy construction from validated configuration."""

from __future__ import annotations

from typing import Any, Mapping

from strategy_engine.errors import ConfigurationError
from strategy_engine.schemas import StrategyConfig, StrategyKind
from strategy_engine.strategy.base import Strategy, coerce_config
from strategy_engine.strategy.channel_index import ChannelIndexStrategy
from strategy_engine.strategy.dca import DCAStrategy
from strategy_engine.strategy.momentum import MomentumStrategy
from strategy_engine.strategy.staking import StakingStrategy

STRATEGY_TYPES: dict[StrategyKind, type[Strategy]] = {
    StrategyKind.MOMENTUM: MomentumStrategy,
    StrategyKind.DCA: DCAStrategy,
    StrategyKind.STAKING: StakingStrategy,
    StrategyKind.CHANNEL_INDEX: ChannelIndexStrategy,
}


def build_strategy(config: StrategyConfig | Mapping[str, Any]) -> Strategy:
    validated = coerce_config(config)
    strategy_type = STRATEGY_TYPES.get(validated.kind)
    if strategy_type is None:
        raise ConfigurationError(f"unsupported_strategy_kind:{validated.kind.value}")
    return strategy_type(validated)
