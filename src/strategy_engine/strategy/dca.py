"""Dollar-cost averaging on a schedule with dynamic sizing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping

from strategy_engine.engine.ledger import DCAPosition, Position, PositionFactory, PurchaseRecord
from strategy_engine.engine.state import EngineState
from strategy_engine.features.indicators import return_std, volume_ratio
from strategy_engine.schemas import DCAParams, StrategyKind
from strategy_engine.strategy.base import Strategy
from strategy_engine.types import Action, MarketObservation, RiskLevel, TradingSignal

_FREQUENCY_HOURS = {"DAILY": 24.0, "WEEKLY": 24.0 * 7, "MONTHLY": 24.0 * 30}
_PROFILE_MULTIPLIER = {"CONSERVATIVE": 0.8, "MODERATE": 1.0, "AGGRESSIVE": 1.3}


@dataclass(slots=True, frozen=True)
class ScheduledPurchase:
    symbol: str
    next_purchase_at: datetime


def _new_dca_position(symbol: str, quantity: float, price: float, now: datetime) -> Position:
    return DCAPosition(
        symbol=symbol,
        quantity=quantity,
        average_price=price,
        current_price=price,
        opened_at=now,
        updated_at=now,
    )


class DCAStrategy(Strategy):
    """Buy a fixed quote amount per interval, scaled by market conditions."""

    kind = StrategyKind.DCA

    @property
    def params(self) -> DCAParams:
        assert isinstance(self.config.params, DCAParams)
        return self.config.params

    @property
    def interval(self) -> timedelta:
        if self.params.frequency == "CUSTOM":
            return timedelta(hours=self.params.interval_hours)
        return timedelta(hours=_FREQUENCY_HOURS[self.params.frequency])

    def next_purchases(self, state: EngineState) -> list[ScheduledPurchase]:
        """Next due time for every symbol that has been bought at least once."""
        last_purchases: dict[str, datetime] = state.scratch.get("last_purchase_at", {})
        return [
            ScheduledPurchase(symbol=symbol, next_purchase_at=bought_at + self.interval)
            for symbol, bought_at in sorted(last_purchases.items())
        ]

    def _generate(
        self,
        state: EngineState,
        latest: Mapping[str, MarketObservation],
        now: datetime,
    ) -> list[TradingSignal]:
        signals: list[TradingSignal] = []
        for symbol in self.config.enabled_symbols:
            observation = latest.get(symbol)
            if observation is None:
                continue
            position = state.ledger.get(symbol)
            if self._purchase_due(state, symbol, now):
                signals.append(self._purchase_signal(state, observation, position, now))
            if position is not None:
                exit_signal = self._exit_signal(position, now)
                if exit_signal is not None:
                    signals.append(exit_signal)
        return signals

    def _purchase_due(self, state: EngineState, symbol: str, now: datetime) -> bool:
        params = self.params
        start = params.start_at or state.started_at
        if start is not None and now < start:
            return False
        if params.end_at is not None and now > params.end_at:
            return False
        count = state.scratch.get("purchase_count", {}).get(symbol, 0)
        if params.max_purchases is not None and count >= params.max_purchases:
            return False
        last = state.scratch.get("last_purchase_at", {}).get(symbol)
        return last is None or now - last >= self.interval

    def _purchase_signal(
        self,
        state: EngineState,
        observation: MarketObservation,
        position: Position | None,
        now: datetime,
    ) -> TradingSignal:
        volatility = self._volatility(state, observation.symbol)
        ratio = self._volume_ratio(state, observation.symbol)
        amount = self._sized_amount(observation, position, volatility, ratio)
        return TradingSignal(
            action="BUY",
            symbol=observation.symbol,
            confidence=self._confidence(observation, position, ratio),
            price=observation.price,
            quantity=amount / observation.price,
            reason=f"DCA purchase - {self.params.frequency.lower()} schedule",
            timestamp=now,
            risk_level=self._risk_level(observation, position, volatility, ratio),
        )

    def _sized_amount(
        self,
        observation: MarketObservation,
        position: Position | None,
        volatility: float,
        ratio: float,
    ) -> float:
        base = self.params.amount
        multiplier = 1.0
        if volatility > 0.05:
            multiplier *= 0.8
        elif volatility < 0.02:
            multiplier *= 1.2

        if position is not None and position.average_price > 0:
            change = (observation.price - position.average_price) / position.average_price
            if change <= -0.1:
                multiplier *= 1.5
            elif change >= 0.2:
                multiplier *= 0.7

        if ratio > 1.5:
            multiplier *= 1.1
        elif ratio < 0.5:
            multiplier *= 0.9

        multiplier *= _PROFILE_MULTIPLIER[self.config.risk_profile]
        return max(base * 0.5, min(base * 2.0, base * multiplier))

    def _confidence(
        self,
        observation: MarketObservation,
        position: Position | None,
        ratio: float,
    ) -> float:
        confidence = 70.0
        if observation.change_24h < -5:
            confidence += 15
        elif observation.change_24h > 10:
            confidence -= 10

        if ratio > 1.2:
            confidence += 5
        elif ratio < 0.8:
            confidence -= 5

        if position is not None:
            concentration = position.cost_basis / self.config.allocation_capital * 100.0
            if concentration < 20:
                confidence += 10
            elif concentration > 50:
                confidence -= 10
        return max(30.0, min(95.0, confidence))

    def _risk_level(
        self,
        observation: MarketObservation,
        position: Position | None,
        volatility: float,
        ratio: float,
    ) -> RiskLevel:
        score = 0
        if volatility > 0.08:
            score += 3
        elif volatility > 0.05:
            score += 2
        elif volatility > 0.03:
            score += 1

        move = abs(observation.change_24h)
        if move > 15:
            score += 2
        elif move > 10:
            score += 1

        if ratio < 0.5:
            score += 1
        if position is not None:
            if position.cost_basis / self.config.allocation_capital * 100.0 > 40:
                score += 1

        if score >= 4:
            return "HIGH"
        if score >= 2:
            return "MEDIUM"
        return "LOW"

    def _volatility(self, state: EngineState, symbol: str) -> float:
        prices = state.history.prices(symbol, 20, minimum=10)
        return return_std(prices) if prices is not None else 0.0

    def _volume_ratio(self, state: EngineState, symbol: str) -> float:
        volumes = state.history.volumes(symbol, 10, minimum=10)
        return volume_ratio(volumes) if volumes is not None else 1.0

    def _factory(self, state: EngineState) -> PositionFactory:
        return _new_dca_position

    def _on_trade(
        self,
        state: EngineState,
        symbol: str,
        action: Action,
        quantity: float,
        price: float,
        now: datetime,
    ) -> None:
        if action != "BUY":
            return
        state.scratch.setdefault("last_purchase_at", {})[symbol] = now
        counts = state.scratch.setdefault("purchase_count", {})
        counts[symbol] = counts.get(symbol, 0) + 1
        position = state.ledger.get(symbol)
        if isinstance(position, DCAPosition):
            position.purchases.append(
                PurchaseRecord(
                    timestamp=now, price=price, quantity=quantity, amount=quantity * price
                )
            )
            position.last_purchase_at = now
