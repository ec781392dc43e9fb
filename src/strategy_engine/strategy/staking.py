"""Greedy yield allocation across staking opportunities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping

from strategy_engine.engine.ledger import Position, PositionFactory, StakingPosition
from strategy_engine.engine.state import EngineState
from strategy_engine.schemas import StakingParams, StrategyKind
from strategy_engine.strategy.base import Strategy
from strategy_engine.strategy.staking_catalog import StakingOpportunity, opportunities_for
from strategy_engine.types import Action, MarketObservation, TradingSignal

SHORT_LOCK_DAYS = 7

_RISK_FACTOR = {"LOW": 1.2, "MEDIUM": 1.0, "HIGH": 0.7}
_LIQUIDITY_FACTOR = {"HIGH": 1.1, "MEDIUM": 1.0, "LOW": 0.8}
_CADENCE_FACTOR = {"DAILY": 1.1, "WEEKLY": 1.0, "MONTHLY": 0.9}
_CADENCE = {
    "DAILY": timedelta(days=1),
    "WEEKLY": timedelta(days=7),
    "MONTHLY": timedelta(days=30),
}


@dataclass(slots=True, frozen=True)
class StakingAllocation:
    symbol: str
    platform: str
    amount: float
    apy: float
    priority: int
    opportunity: StakingOpportunity

    @property
    def reason(self) -> str:
        return f"High APY: {self.apy:.2f}%, Risk: {self.opportunity.risk}"


def staking_score(opportunity: StakingOpportunity, observation: MarketObservation | None) -> float:
    """Risk-adjusted yield score of one opportunity, never negative."""
    score = opportunity.apy * 10.0
    score *= _RISK_FACTOR[opportunity.risk]
    score *= _LIQUIDITY_FACTOR[opportunity.liquidity]
    score *= 1.0 - opportunity.fee_pct / 100.0
    if opportunity.lock_period_days > 0:
        score *= max(0.5, 1.0 - opportunity.lock_period_days / 365.0)
    score *= _CADENCE_FACTOR[opportunity.compound_frequency]
    if observation is not None:
        if -2.0 < observation.change_24h < 5.0:
            score *= 1.1
        elif observation.change_24h < -10.0:
            score *= 0.8
    return max(0.0, score)


def allocation_confidence(allocation: StakingAllocation) -> float:
    confidence = 70.0
    if allocation.apy > 15:
        confidence += 15
    elif allocation.apy > 10:
        confidence += 10
    elif allocation.apy > 5:
        confidence += 5
    confidence += allocation.priority * 2
    return min(95.0, confidence)


class StakingStrategy(Strategy):
    """Allocate capital to the best risk-adjusted staking yields."""

    kind = StrategyKind.STAKING

    @property
    def params(self) -> StakingParams:
        assert isinstance(self.config.params, StakingParams)
        return self.config.params

    def opportunities(self, symbol: str) -> list[StakingOpportunity]:
        """Configured opportunities for the symbol, else the catalog's."""
        custom = self.params.opportunities
        if custom is not None:
            return [StakingOpportunity.from_model(item) for item in custom if item.symbol == symbol]
        return opportunities_for(symbol)

    def plan_allocations(
        self,
        state: EngineState,
        latest: Mapping[str, MarketObservation],
    ) -> list[StakingAllocation]:
        """Greedy allocation of total capital, one platform per symbol."""
        total = self.config.allocation_capital
        cap = total * self.params.max_allocation_pct / 100.0
        scored: list[tuple[float, StakingOpportunity]] = []
        for symbol in self.config.enabled_symbols:
            observation = latest.get(symbol)
            if observation is None:
                continue
            held = state.ledger.get(symbol)
            for opportunity in self.opportunities(symbol):
                if not self._eligible(opportunity, held):
                    continue
                scored.append((staking_score(opportunity, observation), opportunity))
        scored.sort(key=lambda item: item[0], reverse=True)

        remaining = total
        allocations: list[StakingAllocation] = []
        allocated: set[str] = set()
        for score, opportunity in scored:
            if remaining <= 0:
                break
            if opportunity.symbol in allocated:
                continue
            amount = min(remaining, opportunity.max_stake, cap)
            if amount < opportunity.min_stake:
                continue
            allocations.append(
                StakingAllocation(
                    symbol=opportunity.symbol,
                    platform=opportunity.platform,
                    amount=amount,
                    apy=opportunity.apy,
                    priority=round(score),
                    opportunity=opportunity,
                )
            )
            allocated.add(opportunity.symbol)
            remaining -= amount
        return allocations

    def total_staked_value(self, state: EngineState) -> float:
        return sum(
            position.market_value
            for position in state.ledger
            if isinstance(position, StakingPosition)
        )

    def _eligible(self, opportunity: StakingOpportunity, held: Position | None) -> bool:
        if opportunity.apy < self.params.min_apy:
            return False
        short_only = self.params.lock_period_preference == "SHORT"
        if short_only and opportunity.lock_period_days > SHORT_LOCK_DAYS:
            return False
        if isinstance(held, StakingPosition) and held.platform:
            return opportunity.platform == held.platform
        return True

    def _generate(
        self,
        state: EngineState,
        latest: Mapping[str, MarketObservation],
        now: datetime,
    ) -> list[TradingSignal]:
        signals: list[TradingSignal] = []
        interval = timedelta(minutes=self.params.optimization_interval_minutes)
        if state.last_rebalance_at is None or now - state.last_rebalance_at >= interval:
            signals.extend(self._optimize(state, latest, now))
            state.last_rebalance_at = now

        for position in state.ledger:
            if isinstance(position, StakingPosition):
                signals.extend(self._manage(position, now))
        return signals

    def _optimize(
        self,
        state: EngineState,
        latest: Mapping[str, MarketObservation],
        now: datetime,
    ) -> list[TradingSignal]:
        allocations = self.plan_allocations(state, latest)
        planned: dict[str, StakingOpportunity] = state.scratch.setdefault("planned", {})
        signals: list[TradingSignal] = []
        for allocation in allocations:
            planned[allocation.symbol] = allocation.opportunity
            price = latest[allocation.symbol].price
            position = state.ledger.get(allocation.symbol)
            if position is None:
                signals.append(
                    TradingSignal(
                        action="BUY",
                        symbol=allocation.symbol,
                        confidence=allocation_confidence(allocation),
                        price=price,
                        quantity=allocation.amount / price,
                        reason=(
                            f"Optimal staking allocation: {allocation.apy:.2f}% APY "
                            f"on {allocation.platform}"
                        ),
                        timestamp=now,
                        risk_level=allocation.opportunity.risk,
                    )
                )
                continue
            difference = allocation.amount - position.cost_basis
            if abs(difference) / allocation.amount > 0.1:
                signals.append(
                    TradingSignal(
                        action="BUY" if difference > 0 else "SELL",
                        symbol=allocation.symbol,
                        confidence=75.0,
                        price=price,
                        quantity=abs(difference) / price,
                        reason="Rebalancing staking position",
                        timestamp=now,
                        risk_level="MEDIUM",
                    )
                )
        return signals

    def _manage(self, position: StakingPosition, now: datetime) -> list[TradingSignal]:
        # Status changes only on executed fills.
        matured = position.unlock_at is not None and now >= position.unlock_at
        if position.lock_period_days > 0 and matured:
            return [
                TradingSignal(
                    action="SELL",
                    symbol=position.symbol,
                    confidence=100.0,
                    price=position.current_price,
                    quantity=position.quantity,
                    reason="Staking period completed - unlocking funds",
                    timestamp=now,
                    risk_level="LOW",
                )
            ]

        pnl_pct = position.unrealized_pnl_pct
        if pnl_pct <= -self.config.stop_loss_pct:
            return [
                TradingSignal(
                    action="SELL",
                    symbol=position.symbol,
                    confidence=100.0,
                    price=position.current_price,
                    quantity=position.quantity,
                    reason=f"Emergency unstaking: {pnl_pct:.2f}% loss exceeds stop-loss",
                    timestamp=now,
                    risk_level="HIGH",
                )
            ]

        since = position.last_compound_at or position.opened_at
        elapsed = now - since
        rewards = position.rewards_accrued(now)
        if elapsed >= _CADENCE[position.compound_frequency] and rewards > 0:
            return [
                TradingSignal(
                    action="BUY",
                    symbol=position.symbol,
                    confidence=85.0,
                    price=position.current_price,
                    quantity=rewards / position.current_price,
                    reason="Compounding staking rewards",
                    timestamp=now,
                    risk_level="LOW",
                )
            ]
        return []

    def _factory(self, state: EngineState) -> PositionFactory:
        planned: dict[str, StakingOpportunity] = state.scratch.get("planned", {})

        def open_stake(symbol: str, quantity: float, price: float, now: datetime) -> Position:
            opportunity = planned.get(symbol) or self._best_opportunity(symbol)
            position = StakingPosition(
                symbol=symbol,
                quantity=quantity,
                average_price=price,
                current_price=price,
                opened_at=now,
                updated_at=now,
                last_compound_at=now,
            )
            if opportunity is not None:
                position.platform = opportunity.platform
                position.apy = opportunity.apy
                position.lock_period_days = opportunity.lock_period_days
                position.compound_frequency = opportunity.compound_frequency
                if opportunity.lock_period_days > 0:
                    position.unlock_at = now + timedelta(days=opportunity.lock_period_days)
            return position

        return open_stake

    def _best_opportunity(self, symbol: str) -> StakingOpportunity | None:
        candidates = self.opportunities(symbol)
        if not candidates:
            return None
        return max(candidates, key=lambda item: staking_score(item, None))

    def _on_trade(
        self,
        state: EngineState,
        symbol: str,
        action: Action,
        quantity: float,
        price: float,
        now: datetime,
    ) -> None:
        position = state.ledger.get(symbol)
        if not isinstance(position, StakingPosition):
            return
        if action == "BUY":
            position.last_compound_at = now
        elif action == "SELL" and position.unlock_at is not None and now >= position.unlock_at:
            position.status = "UNLOCKED"
