"""Strategy evaluator base class and the shared evaluation pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, ClassVar, Iterable, Mapping

from pydantic import ValidationError

from strategy_engine.engine.history import DEFAULT_MAX_WINDOW, HistoryStore
from strategy_engine.engine.ledger import Position, PositionFactory, default_position
from strategy_engine.engine.state import EngineState
from strategy_engine.errors import ConfigurationError, InvalidObservationError
from strategy_engine.risk.statistics import max_drawdown_pct, ratio_inputs, sharpe_ratio
from strategy_engine.schemas import StrategyConfig, StrategyKind
from strategy_engine.types import (
    Action,
    MarketObservation,
    PerformanceSummary,
    TradingSignal,
    validate_observation,
)
from strategy_engine.utils.logging import get_logger, log_trade_applied, log_trade_signal

logger = get_logger(__name__)

_CONFIG_FIELDS = frozenset(
    {
        "allocation_capital",
        "stop_loss_pct",
        "take_profit_pct",
        "max_positions",
        "risk_profile",
        "enabled_symbols",
        "signal_cooldown_seconds",
        "anomaly_jump_pct",
    }
)


def coerce_config(config: StrategyConfig | Mapping[str, Any]) -> StrategyConfig:
    """Validate raw configuration, mapping schema errors to ConfigurationError."""
    if isinstance(config, StrategyConfig):
        return config
    try:
        return StrategyConfig.model_validate(config)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ConfigurationError(f"invalid_strategy_config:{location}:{first['msg']}") from exc


class Strategy(ABC):
    """Pluggable signal generator over an explicit EngineState."""

    kind: ClassVar[StrategyKind]
    history_window: ClassVar[int] = DEFAULT_MAX_WINDOW

    def __init__(self, config: StrategyConfig | Mapping[str, Any]) -> None:
        validated = coerce_config(config)
        if validated.kind != self.kind:
            raise ConfigurationError(f"strategy_kind_mismatch:{validated.kind.value}")
        self.config = validated
        self._log = logger.bind(strategy=validated.id, kind=validated.kind.value)

    @property
    def name(self) -> str:
        return self.config.kind.value

    def new_state(self) -> EngineState:
        return EngineState(history=HistoryStore(max_window=self.history_window))

    def evaluate(
        self,
        state: EngineState,
        observations: Iterable[MarketObservation],
        now: datetime,
    ) -> tuple[EngineState, list[TradingSignal]]:
        """Record a batch of observations and return the signals it produces."""
        latest: dict[str, MarketObservation] = {}
        blocked: set[str] = set()
        for observation in sorted(_accept_valid(observations, self._log), key=_by_time):
            previous = state.history.latest(observation.symbol)
            state.history.record(observation)
            latest[observation.symbol] = observation
            if observation.volume == 0 or self._is_price_anomaly(previous, observation):
                blocked.add(observation.symbol)
            else:
                blocked.discard(observation.symbol)

        if not latest:
            return state, []
        if state.started_at is None:
            state.started_at = now

        state.ledger.mark_to_market(
            {symbol: observation.price for symbol, observation in latest.items()}, now
        )
        raw_signals = self._generate(state, latest, now)
        signals = self._post_process(state, raw_signals, blocked, now)
        ledger = state.ledger
        state.record_value(
            now, self.config.allocation_capital + ledger.realized_pnl + ledger.unrealized_pnl
        )
        return state, signals

    def apply_trade(
        self,
        state: EngineState,
        symbol: str,
        action: Action,
        quantity: float,
        price: float,
        now: datetime,
    ) -> float:
        """Record an executed fill in the ledger and return its realized P&L."""
        factory = self._factory(state)
        realized = state.ledger.apply(symbol, action, quantity, price, now, factory=factory)
        if action != "HOLD":
            self._on_trade(state, symbol, action, quantity, price, now)
            log_trade_applied(
                self._log,
                symbol=symbol,
                action=action,
                quantity=quantity,
                price=price,
                realized_pnl=realized,
            )
        return realized

    def performance(self, state: EngineState) -> PerformanceSummary:
        ledger = state.ledger
        closed = ledger.closed_trades
        wins = sum(1 for trade in closed if trade.realized_pnl > 0)
        total_pnl = ledger.realized_pnl + ledger.unrealized_pnl
        timestamps = [timestamp for timestamp, _ in state.value_history]
        values = [value for _, value in state.value_history]
        returns, per_year = ratio_inputs(timestamps, values)
        return PerformanceSummary(
            total_pnl=total_pnl,
            total_pnl_pct=total_pnl / self.config.allocation_capital * 100.0,
            realized_pnl=ledger.realized_pnl,
            unrealized_pnl=ledger.unrealized_pnl,
            win_rate=wins / len(closed) * 100.0 if closed else 0.0,
            total_trades=ledger.trade_count,
            open_positions=len(ledger),
            max_drawdown_pct=max_drawdown_pct(values),
            sharpe_ratio=sharpe_ratio(returns, per_year),
            last_update=timestamps[-1] if timestamps else None,
        )

    def params_dict(self) -> dict[str, Any]:
        """Tunable parameters: top-level risk knobs plus the variant parameters."""
        params = self.config.params.model_dump(exclude={"kind"})
        params.update(
            {
                "max_positions": self.config.max_positions,
                "stop_loss_pct": self.config.stop_loss_pct,
                "take_profit_pct": self.config.take_profit_pct,
            }
        )
        return params

    def with_params(self, **changes: Any) -> Strategy:
        """Return a new evaluator with changed parameters; state is untouched."""
        config = self.config.model_dump()
        params = dict(config["params"])
        for key, value in changes.items():
            if key in _CONFIG_FIELDS:
                config[key] = value
            elif key in params:
                params[key] = value
            else:
                raise ConfigurationError(f"unknown_parameter:{key}")
        config["params"] = params
        return type(self)(coerce_config(config))

    @abstractmethod
    def _generate(
        self,
        state: EngineState,
        latest: Mapping[str, MarketObservation],
        now: datetime,
    ) -> list[TradingSignal]:
        """Variant decision logic over the freshly recorded batch."""

    def _factory(self, state: EngineState) -> PositionFactory:
        return default_position

    def _on_trade(
        self,
        state: EngineState,
        symbol: str,
        action: Action,
        quantity: float,
        price: float,
        now: datetime,
    ) -> None:
        return None

    def _exit_signal(
        self,
        position: Position,
        now: datetime,
    ) -> TradingSignal | None:
        """Stop-loss (losses only) and optional take-profit full exits."""
        pnl_pct = position.unrealized_pnl_pct
        if pnl_pct <= -self.config.stop_loss_pct:
            return TradingSignal(
                action="SELL",
                symbol=position.symbol,
                confidence=100.0,
                price=position.current_price,
                quantity=position.quantity,
                reason=f"Stop-loss triggered: {pnl_pct:.2f}% loss",
                timestamp=now,
                risk_level="HIGH",
            )
        take_profit = self.config.take_profit_pct
        if take_profit is not None and pnl_pct >= take_profit:
            return TradingSignal(
                action="SELL",
                symbol=position.symbol,
                confidence=90.0,
                price=position.current_price,
                quantity=position.quantity,
                reason=f"Take-profit triggered: {pnl_pct:.2f}% gain",
                timestamp=now,
                risk_level="LOW",
            )
        return None

    def _is_price_anomaly(
        self,
        previous: MarketObservation | None,
        observation: MarketObservation,
    ) -> bool:
        if previous is None or previous.price <= 0:
            return False
        jump_pct = abs(observation.price - previous.price) / previous.price * 100.0
        return jump_pct > self.config.anomaly_jump_pct

    def _post_process(
        self,
        state: EngineState,
        signals: list[TradingSignal],
        blocked: set[str],
        now: datetime,
    ) -> list[TradingSignal]:
        cooldown = timedelta(seconds=self.config.signal_cooldown_seconds)
        accepted: list[TradingSignal] = []
        for signal in signals:
            if signal.symbol in blocked:
                self._log.debug("signal_suppressed", symbol=signal.symbol, action=signal.action)
                continue
            if signal.price <= 0 or (signal.quantity is not None and signal.quantity <= 0):
                continue
            key = (signal.symbol, signal.action)
            last = state.last_signal_at.get(key)
            if last is not None and now - last < cooldown:
                continue
            state.last_signal_at[key] = now
            signal = replace(signal, confidence=max(0.0, min(100.0, signal.confidence)))
            log_trade_signal(
                self._log,
                strategy=self.name,
                symbol=signal.symbol,
                action=signal.action,
                confidence=signal.confidence,
                reason=signal.reason,
            )
            accepted.append(signal)
        return accepted


def _accept_valid(observations: Iterable[MarketObservation], log: Any) -> list[MarketObservation]:
    valid: list[MarketObservation] = []
    for observation in observations:
        try:
            valid.append(validate_observation(observation))
        except InvalidObservationError as exc:
            log.warning("invalid_observation", symbol=observation.symbol, reason=str(exc))
    return valid


def _by_time(observation: MarketObservation) -> datetime:
    return observation.timestamp
