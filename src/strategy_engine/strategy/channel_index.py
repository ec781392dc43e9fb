"""Mean reversion on commodity channel index extremes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Mapping

from strategy_engine.engine.ledger import ChannelPosition, Position, PositionFactory
from strategy_engine.engine.state import EngineState
from strategy_engine.features.indicators import channel_index, linear_fit, volume_ratio
from strategy_engine.schemas import ChannelIndexParams, StrategyKind
from strategy_engine.strategy.base import Strategy
from strategy_engine.types import MarketObservation, RiskLevel, TradingSignal

Zone = Literal["OVERBOUGHT", "OVERSOLD", "NEUTRAL"]
Trend = Literal["BULLISH", "BEARISH", "SIDEWAYS"]

DIVERGENCE_WINDOW = 20
VOLUME_WINDOW = 10
STRONG_TREND = 60.0
MIN_BUY_CONFIDENCE = 60.0
MIN_SELL_CONFIDENCE = 65.0

_PROFILE_SCALE = {"CONSERVATIVE": 0.8, "MODERATE": 1.0, "AGGRESSIVE": 1.1}


@dataclass(slots=True, frozen=True)
class ChannelReading:
    """Oscillator state computed for one observation."""

    symbol: str
    timestamp: datetime
    price: float
    volume: float
    cci: float = 0.0
    cci_ma: float = 0.0
    zone: Zone = "NEUTRAL"
    trend: Trend = "SIDEWAYS"
    strength: float = 0.0

    def as_row(self) -> dict[str, object]:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "price": self.price,
            "volume": self.volume,
            "cci": self.cci,
            "cci_ma": self.cci_ma,
            "zone": self.zone,
            "trend": self.trend,
            "strength": self.strength,
        }


class ChannelIndexStrategy(Strategy):
    """Buy oversold extremes and sell overbought ones, volume permitting."""

    kind = StrategyKind.CHANNEL_INDEX

    @property
    def params(self) -> ChannelIndexParams:
        assert isinstance(self.config.params, ChannelIndexParams)
        return self.config.params

    @property
    def buffer_size(self) -> int:
        return self.params.period + self.params.ma_period + 10

    def current_readings(self, state: EngineState) -> list[ChannelReading]:
        readings: dict[str, list[ChannelReading]] = state.scratch.get("readings", {})
        return [history[-1] for _, history in sorted(readings.items()) if history]

    def reading_history(self, state: EngineState, symbol: str) -> list[ChannelReading]:
        return list(state.scratch.get("readings", {}).get(symbol, []))

    def classify(self, cci: float) -> Zone:
        if cci >= self.params.overbought:
            return "OVERBOUGHT"
        if cci <= self.params.oversold:
            return "OVERSOLD"
        return "NEUTRAL"

    def _generate(
        self,
        state: EngineState,
        latest: Mapping[str, MarketObservation],
        now: datetime,
    ) -> list[TradingSignal]:
        for observation in latest.values():
            self._record_reading(state, observation)

        signals: list[TradingSignal] = []
        for symbol in self.config.enabled_symbols:
            if symbol not in latest:
                continue
            history = self.reading_history(state, symbol)
            if state.history.count(symbol) < self.params.period:
                continue
            reading = history[-1]
            if not self._volume_confirmed(state, symbol):
                continue
            position = state.ledger.get(symbol)
            if position is not None:
                exit_signal = self._protective_exit(position, reading, now)
                if exit_signal is not None:
                    signals.append(exit_signal)
                    continue
            if position is None:
                signal = self._buy_signal(reading, history, now)
            else:
                signal = self._sell_signal(position, reading, history, now)
            if signal is not None:
                signals.append(signal)
        return signals

    def _record_reading(self, state: EngineState, observation: MarketObservation) -> None:
        readings: dict[str, list[ChannelReading]] = state.scratch.setdefault("readings", {})
        history = readings.setdefault(observation.symbol, [])
        window = state.history.window(observation.symbol, self.params.period)
        if len(window) < self.params.period:
            history.append(
                ChannelReading(
                    symbol=observation.symbol,
                    timestamp=observation.timestamp,
                    price=observation.price,
                    volume=observation.volume,
                )
            )
        else:
            cci = channel_index([item.typical_price for item in window])
            smoothing = _tail(history, self.params.ma_period - 1)
            nonzero = [value for value in [*(item.cci for item in smoothing), cci] if value != 0]
            cci_ma = sum(nonzero) / len(nonzero) if nonzero else 0.0
            confirmation = _tail(history, self.params.trend_confirmation_period - 1)
            prices = [item.price for item in confirmation] + [observation.price]
            ccis = [item.cci for item in confirmation] + [cci]
            history.append(
                ChannelReading(
                    symbol=observation.symbol,
                    timestamp=observation.timestamp,
                    price=observation.price,
                    volume=observation.volume,
                    cci=cci,
                    cci_ma=cci_ma,
                    zone=self.classify(cci),
                    trend=self._trend(prices, ccis),
                    strength=self._strength(prices),
                )
            )
        if len(history) > self.buffer_size:
            del history[: len(history) - self.buffer_size]

    def _trend(self, prices: list[float], ccis: list[float]) -> Trend:
        if len(prices) < self.params.trend_confirmation_period or prices[0] <= 0:
            return "SIDEWAYS"
        nonzero = [value for value in ccis if value != 0]
        if len(nonzero) < 2:
            return "SIDEWAYS"
        price_change = (prices[-1] - prices[0]) / prices[0]
        cci_change = nonzero[-1] - nonzero[0]
        if price_change > 0.05 and cci_change > 0:
            return "BULLISH"
        if price_change < -0.05 and cci_change < 0:
            return "BEARISH"
        return "SIDEWAYS"

    def _strength(self, prices: list[float]) -> float:
        if len(prices) < self.params.trend_confirmation_period:
            return 0.0
        _, r_squared = linear_fit(prices)
        return max(0.0, min(100.0, r_squared * 100.0))

    def _volume_confirmed(self, state: EngineState, symbol: str) -> bool:
        volumes = state.history.volumes(symbol, VOLUME_WINDOW, minimum=VOLUME_WINDOW)
        if volumes is None:
            return False
        return volume_ratio(volumes) >= self.params.volume_threshold

    def _protective_exit(
        self,
        position: Position,
        reading: ChannelReading,
        now: datetime,
    ) -> TradingSignal | None:
        pnl_pct = position.unrealized_pnl_pct
        stop_price = position.stop_loss_price if isinstance(position, ChannelPosition) else 0.0
        below_stop = stop_price > 0 and reading.price <= stop_price
        if pnl_pct <= -self.config.stop_loss_pct or below_stop:
            return TradingSignal(
                action="SELL",
                symbol=position.symbol,
                confidence=100.0,
                price=reading.price,
                quantity=position.quantity,
                reason=f"Stop-loss triggered: {pnl_pct:.2f}% loss",
                timestamp=now,
                risk_level="HIGH",
            )
        target = position.take_profit_price if isinstance(position, ChannelPosition) else None
        take_profit = self.config.take_profit_pct
        above_target = target is not None and reading.price >= target
        if (take_profit is not None and pnl_pct >= take_profit) or above_target:
            return TradingSignal(
                action="SELL",
                symbol=position.symbol,
                confidence=90.0,
                price=reading.price,
                quantity=position.quantity,
                reason=f"Take-profit triggered: {pnl_pct:.2f}% gain",
                timestamp=now,
                risk_level="LOW",
            )
        return None

    def _buy_signal(
        self,
        reading: ChannelReading,
        history: list[ChannelReading],
        now: datetime,
    ) -> TradingSignal | None:
        oversold = reading.zone == "OVERSOLD"
        extreme = reading.cci <= self.params.extreme_oversold
        strong = reading.strength > STRONG_TREND
        divergence = bullish_divergence(history)

        confidence = 0.0
        risk: RiskLevel = "MEDIUM"
        if extreme and divergence and strong:
            confidence, risk = 90.0, "LOW"
        elif oversold and reading.trend == "BULLISH" and strong:
            confidence = 80.0
        elif oversold and divergence:
            confidence = 70.0
        elif oversold:
            confidence, risk = 60.0, "HIGH"
        confidence *= _PROFILE_SCALE[self.config.risk_profile]
        if confidence < MIN_BUY_CONFIDENCE:
            return None

        allocation = self.config.allocation_capital / self.config.max_positions
        return TradingSignal(
            action="BUY",
            symbol=reading.symbol,
            confidence=min(95.0, confidence),
            price=reading.price,
            quantity=allocation / reading.price,
            reason=(
                f"CCI oversold: {reading.cci:.2f}, Trend: {reading.trend}, "
                f"Strength: {reading.strength:.1f}%"
            ),
            timestamp=now,
            risk_level=risk,
        )

    def _sell_signal(
        self,
        position: Position,
        reading: ChannelReading,
        history: list[ChannelReading],
        now: datetime,
    ) -> TradingSignal | None:
        overbought = reading.zone == "OVERBOUGHT"
        extreme = reading.cci >= self.params.extreme_overbought
        bearish = reading.trend == "BEARISH"
        divergence = bearish_divergence(history)

        confidence = 0.0
        risk: RiskLevel = "MEDIUM"
        if extreme and divergence and bearish:
            confidence, risk = 90.0, "LOW"
        elif overbought and bearish:
            confidence = 80.0
        elif overbought and divergence:
            confidence = 75.0
        elif overbought:
            confidence, risk = 65.0, "HIGH"
        if confidence < MIN_SELL_CONFIDENCE:
            return None
        return TradingSignal(
            action="SELL",
            symbol=position.symbol,
            confidence=min(95.0, confidence),
            price=reading.price,
            quantity=position.quantity,
            reason=f"CCI overbought: {reading.cci:.2f}, Trend: {reading.trend}",
            timestamp=now,
            risk_level=risk,
        )

    def _factory(self, state: EngineState) -> PositionFactory:
        stop_loss_pct = self.config.stop_loss_pct
        take_profit_pct = self.config.take_profit_pct

        def open_entry(symbol: str, quantity: float, price: float, now: datetime) -> Position:
            return ChannelPosition(
                symbol=symbol,
                quantity=quantity,
                average_price=price,
                current_price=price,
                opened_at=now,
                updated_at=now,
                stop_loss_price=price * (1.0 - stop_loss_pct / 100.0),
                take_profit_price=(
                    price * (1.0 + take_profit_pct / 100.0) if take_profit_pct else None
                ),
                entry_signal="CCI Oversold",
            )

        return open_entry


def _tail(history: list[ChannelReading], n: int) -> list[ChannelReading]:
    return history[-n:] if n > 0 else []


def _split(
    history: list[ChannelReading],
) -> tuple[list[ChannelReading], list[ChannelReading]] | None:
    if len(history) < DIVERGENCE_WINDOW:
        return None
    window = history[-DIVERGENCE_WINDOW:]
    half = DIVERGENCE_WINDOW // 2
    return window[:half], window[half:]


def bullish_divergence(history: list[ChannelReading]) -> bool:
    """Price makes a lower low while the oscillator makes a higher low."""
    halves = _split(history)
    if halves is None:
        return False
    previous, recent = halves
    return (
        min(item.price for item in recent) < min(item.price for item in previous)
        and min(item.cci for item in recent) > min(item.cci for item in previous)
    )


def bearish_divergence(history: list[ChannelReading]) -> bool:
    """Price makes a higher high while the oscillator makes a lower high."""
    halves = _split(history)
    if halves is None:
        return False
    previous, recent = halves
    return (
        max(item.price for item in recent) > max(item.price for item in previous)
        and max(item.cci for item in recent) < max(item.cci for item in previous)
    )
