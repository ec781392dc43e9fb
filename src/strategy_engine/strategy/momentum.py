"""Multi-timeframe momentum ranking with top-K rebalancing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping

from strategy_engine.engine.state import EngineState
from strategy_engine.features.indicators import (
    linear_fit,
    percent_change,
    return_std,
    simple_returns,
    up_tick_fraction,
    volume_trend,
)
from strategy_engine.schemas import MomentumParams, StrategyKind
from strategy_engine.strategy.base import Strategy
from strategy_engine.types import MarketObservation, RiskProfile, TradingSignal

MIN_HISTORY = 10

_WEIGHTS: dict[RiskProfile, tuple[float, float, float, float, float]] = {
    "CONSERVATIVE": (0.2, 0.4, 0.2, 0.15, 0.05),
    "MODERATE": (0.3, 0.3, 0.2, 0.15, 0.05),
    "AGGRESSIVE": (0.4, 0.2, 0.2, 0.1, 0.1),
}


@dataclass(slots=True, frozen=True)
class MomentumScore:
    symbol: str
    score: float
    observation: MarketObservation


def short_term_momentum(prices: list[float], volumes: list[float]) -> float:
    """4-observation percent change amplified by the volume trend."""
    if len(prices) < 4:
        return 0.0
    change = percent_change(prices[-4], prices[-1])
    return change * (1.0 + volume_trend(volumes[-4:]))


def medium_term_momentum(prices: list[float]) -> float:
    if len(prices) < 24:
        return 0.0
    recent = prices[-24:]
    return percent_change(recent[0], recent[-1]) * up_tick_fraction(recent[-10:])


def volume_weighted_momentum(prices: list[float], volumes: list[float]) -> float:
    if len(prices) < 10:
        return 0.0
    returns = simple_returns(prices[-10:])
    weights = volumes[-9:]
    total = sum(weights)
    if total <= 0:
        return 0.0
    return float(sum(r * w for r, w in zip(returns, weights))) / total * 100.0


def volatility_adjusted_momentum(prices: list[float], volumes: list[float]) -> float:
    if len(prices) < 20:
        return 0.0
    momentum = short_term_momentum(prices[-20:], volumes[-20:])
    volatility = return_std(prices[-20:])
    return momentum / (1.0 + volatility) if volatility > 0 else momentum


def trend_strength(prices: list[float]) -> float:
    if len(prices) < 10:
        return 0.0
    slope, r_squared = linear_fit(prices[-10:])
    return slope * r_squared * 100.0


class MomentumStrategy(Strategy):
    """Hold the top ``max_positions`` symbols by composite momentum score."""

    kind = StrategyKind.MOMENTUM

    @property
    def params(self) -> MomentumParams:
        assert isinstance(self.config.params, MomentumParams)
        return self.config.params

    def new_state(self) -> EngineState:
        state = super().new_state()
        state.history.max_window = self.params.history_cap
        return state

    def score_symbols(
        self,
        state: EngineState,
        latest: Mapping[str, MarketObservation],
    ) -> list[MomentumScore]:
        """Composite scores for the batch, highest first."""
        weights = _WEIGHTS[self.config.risk_profile]
        scores: list[MomentumScore] = []
        for symbol, observation in latest.items():
            window = state.history.window(symbol, 30)
            if len(window) < MIN_HISTORY:
                scores.append(MomentumScore(symbol, 0.0, observation))
                continue
            prices = [item.price for item in window]
            volumes = [item.volume for item in window]
            parts = (
                short_term_momentum(prices, volumes),
                medium_term_momentum(prices),
                volume_weighted_momentum(prices, volumes),
                volatility_adjusted_momentum(prices, volumes),
                trend_strength(prices),
            )
            score = sum(part * weight for part, weight in zip(parts, weights))
            scores.append(MomentumScore(symbol, score, observation))
        scores.sort(key=lambda item: item.score, reverse=True)
        return scores

    def _generate(
        self,
        state: EngineState,
        latest: Mapping[str, MarketObservation],
        now: datetime,
    ) -> list[TradingSignal]:
        signals: list[TradingSignal] = []
        interval = timedelta(minutes=self.params.rebalance_interval_minutes)
        if state.last_rebalance_at is None or now - state.last_rebalance_at >= interval:
            signals.extend(self._rebalance(state, latest, now))
            state.last_rebalance_at = now

        for position in state.ledger:
            exit_signal = self._exit_signal(position, now)
            if exit_signal is not None:
                signals.append(exit_signal)
        return signals

    def _rebalance(
        self,
        state: EngineState,
        latest: Mapping[str, MarketObservation],
        now: datetime,
    ) -> list[TradingSignal]:
        enabled = set(self.config.enabled_symbols)
        ranked = [item for item in self.score_symbols(state, latest) if item.symbol in enabled]
        threshold = self.params.momentum_threshold
        if threshold is not None:
            ranked = [item for item in ranked if item.score >= threshold]
        top = ranked[: self.config.max_positions]
        top_symbols = {item.symbol for item in top}

        signals: list[TradingSignal] = []
        for position in state.ledger:
            if position.symbol not in top_symbols:
                signals.append(
                    TradingSignal(
                        action="SELL",
                        symbol=position.symbol,
                        confidence=85.0,
                        price=position.current_price,
                        quantity=position.quantity,
                        reason="Not in top performers - rebalancing",
                        timestamp=now,
                        risk_level="MEDIUM",
                    )
                )

        per_position = self.config.allocation_capital / self.config.max_positions
        for item in top:
            price = item.observation.price
            target = per_position / price
            held = state.ledger.get(item.symbol)
            if held is None:
                signals.append(
                    TradingSignal(
                        action="BUY",
                        symbol=item.symbol,
                        confidence=min(95.0, 60.0 + item.score),
                        price=price,
                        quantity=target,
                        reason=f"High momentum score: {item.score:.2f}",
                        timestamp=now,
                        risk_level="HIGH" if item.score > 50 else "MEDIUM",
                    )
                )
            elif abs(held.quantity - target) / target > 0.1:
                difference = target - held.quantity
                signals.append(
                    TradingSignal(
                        action="BUY" if difference > 0 else "SELL",
                        symbol=item.symbol,
                        confidence=75.0,
                        price=price,
                        quantity=abs(difference),
                        reason="Rebalancing position",
                        timestamp=now,
                        risk_level="MEDIUM",
                    )
                )
        return signals
