"""Shared domain types for the strategy engine."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from strategy_engine.errors import InvalidObservationError

Action = Literal["BUY", "SELL", "HOLD"]
RiskLevel = Literal["LOW", "MEDIUM", "HIGH"]
RiskProfile = Literal["CONSERVATIVE", "MODERATE", "AGGRESSIVE"]

POSITION_EPSILON = 0.001


@dataclass(slots=True, frozen=True)
class MarketObservation:
    """One timestamped price/volume observation for a symbol."""

    symbol: str
    timestamp: datetime
    price: float
    volume: float
    change_24h: float = 0.0
    change_1h: float = 0.0
    high_24h: float = 0.0
    low_24h: float = 0.0

    @property
    def high(self) -> float:
        return self.high_24h if self.high_24h > 0 else self.price

    @property
    def low(self) -> float:
        return self.low_24h if self.low_24h > 0 else self.price

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.price) / 3.0

    def as_row(self) -> dict[str, object]:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "price": self.price,
            "volume": self.volume,
            "change_24h": self.change_24h,
            "change_1h": self.change_1h,
            "high_24h": self.high_24h,
            "low_24h": self.low_24h,
        }


def validate_observation(observation: MarketObservation) -> MarketObservation:
    """Reject observations that cannot describe a real market state."""
    if not observation.symbol:
        raise InvalidObservationError("observation_symbol_empty")
    for name in ("price", "volume", "change_24h", "change_1h", "high_24h", "low_24h"):
        if not math.isfinite(getattr(observation, name)):
            raise InvalidObservationError(f"observation_{name}_not_finite")
    if observation.price <= 0:
        raise InvalidObservationError("observation_price_non_positive")
    if observation.volume < 0:
        raise InvalidObservationError("observation_volume_negative")
    return observation


@dataclass(slots=True, frozen=True)
class TradingSignal:
    """A trade proposal emitted by a strategy evaluator."""

    action: Action
    symbol: str
    confidence: float
    price: float
    timestamp: datetime
    reason: str
    risk_level: RiskLevel = "MEDIUM"
    quantity: float | None = None

    @property
    def notional(self) -> float:
        return (self.quantity or 0.0) * self.price

    def as_row(self) -> dict[str, object]:
        return {
            "action": self.action,
            "symbol": self.symbol,
            "confidence": self.confidence,
            "price": self.price,
            "quantity": self.quantity,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "risk_level": self.risk_level,
        }


@dataclass(slots=True)
class RiskLimits:
    """Portfolio-wide limits read by every risk check."""

    max_position_size_pct: float = 20.0
    max_total_exposure_pct: float = 80.0
    max_drawdown_pct: float = 20.0
    max_correlation: float = 0.8
    max_daily_volatility_pct: float = 10.0
    min_liquidity: float = 100_000.0
    emergency_stop_loss_pct: float = 15.0


@dataclass(slots=True)
class PerformanceHistoryPoint:
    """Portfolio value sample used for drawdown and ratio statistics."""

    timestamp: datetime
    portfolio_value: float
    drawdown_pct: float


@dataclass(slots=True)
class PerformanceSummary:
    """Dashboard-level summary of one strategy instance."""

    total_pnl: float = 0.0
    total_pnl_pct: float = 0.0
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    win_rate: float = 0.0
    total_trades: int = 0
    open_positions: int = 0
    max_drawdown_pct: float = 0.0
    sharpe_ratio: float = 0.0
    last_update: datetime | None = None
    notes: list[str] = field(default_factory=list)
