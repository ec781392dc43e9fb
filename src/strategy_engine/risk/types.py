"""Result types returned by the risk manager."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

from strategy_engine.types import RiskLevel, TradingSignal

MarketTrend = Literal["BULL", "BEAR", "SIDEWAYS"]
VolatilityRegime = Literal["LOW", "MEDIUM", "HIGH", "EXTREME"]
VolumeRegime = Literal["LOW", "NORMAL", "HIGH"]
Sentiment = Literal["FEAR", "NEUTRAL", "GREED"]


@dataclass(slots=True, frozen=True)
class MarketCondition:
    """Coarse classification of the observed market."""

    trend: MarketTrend = "SIDEWAYS"
    volatility: VolatilityRegime = "MEDIUM"
    volume: VolumeRegime = "NORMAL"
    sentiment: Sentiment = "NEUTRAL"
    strength: float = 50.0
    confidence: float = 50.0


@dataclass(slots=True)
class RiskMetrics:
    """Portfolio risk snapshot. Percent fields are in percent units."""

    portfolio_value: float
    total_exposure: float
    max_drawdown_pct: float
    current_drawdown_pct: float
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    var_95_pct: float
    cvar_95_pct: float
    beta: float
    correlation: float
    volatility_pct: float
    last_updated: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "portfolio_value": self.portfolio_value,
            "total_exposure": self.total_exposure,
            "max_drawdown_pct": self.max_drawdown_pct,
            "current_drawdown_pct": self.current_drawdown_pct,
            "sharpe_ratio": self.sharpe_ratio,
            "sortino_ratio": self.sortino_ratio,
            "calmar_ratio": self.calmar_ratio,
            "var_95_pct": self.var_95_pct,
            "cvar_95_pct": self.cvar_95_pct,
            "beta": self.beta,
            "correlation": self.correlation,
            "volatility_pct": self.volatility_pct,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(slots=True, frozen=True)
class SignalValidation:
    """Risk verdict on one signal; a rejection is a value, never an exception."""

    approved: bool
    reason: str
    risk_level: RiskLevel
    adjusted_quantity: float | None = None

    def apply_to(self, signal: TradingSignal) -> TradingSignal | None:
        """The signal as it may be executed, or None when rejected."""
        if not self.approved:
            return None
        if self.adjusted_quantity is None:
            return signal
        return replace(signal, quantity=self.adjusted_quantity)


@dataclass(slots=True)
class OptimizationResult:
    """Parameter nudges proposed for one strategy kind."""

    strategy: str
    optimized: bool = False
    improvements: list[str] = field(default_factory=list)
    new_parameters: dict[str, Any] = field(default_factory=dict)
    expected_improvement: float = 0.0
    risk_reduction: float = 0.0
    confidence: float = 0.0
