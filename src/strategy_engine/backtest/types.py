"""Shared types for the scenario backtest workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from strategy_engine.risk.types import RiskMetrics
from strategy_engine.types import Action, MarketObservation

ScenarioRisk = Literal["LOW", "MEDIUM", "HIGH"]
CriticalLevel = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]


@dataclass(slots=True)
class ScenarioStep:
    """One evaluation tick; an empty batch models missing data."""

    timestamp: datetime
    observations: list[MarketObservation] = field(default_factory=list)


@dataclass(slots=True)
class TestScenario:
    """Synthetic market regime replayed through every strategy."""

    __test__ = False

    name: str
    description: str
    steps: list[ScenarioStep]
    expected_outcome: str
    risk_level: ScenarioRisk
    duration_days: float

    @property
    def observations(self) -> list[MarketObservation]:
        return [observation for step in self.steps for observation in step.observations]


@dataclass(slots=True)
class EdgeCaseTest:
    """Pathological input with the behavior every strategy must show."""

    __test__ = False

    name: str
    description: str
    market_condition: str
    steps: list[ScenarioStep]
    expected_behavior: str
    critical_level: CriticalLevel


@dataclass(slots=True)
class TradeRecord:
    """Executed fill with the realized pnl it produced."""

    strategy: str
    scenario: str
    timestamp: str
    action: Action
    symbol: str
    price: float
    quantity: float
    pnl: float
    reason: str


@dataclass(slots=True)
class EquityPoint:
    """Account value after one tick."""

    timestamp: str
    equity: float
    cash: float
    exposure: float


@dataclass(slots=True)
class PerformanceMetrics:
    """Return and trade statistics of one simulation. Percent fields in percent."""

    total_return_pct: float = 0.0
    annualized_return_pct: float = 0.0
    max_drawdown_pct: float = 0.0
    max_drawdown_recovery_bars: int | None = None
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    win_rate_pct: float = 0.0
    profit_factor: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    average_trade_duration_hours: float = 0.0
    volatility_pct: float = 0.0


@dataclass(slots=True)
class TestResult:
    """Outcome of one (scenario, strategy) simulation."""

    __test__ = False

    scenario: str
    strategy: str
    performance: PerformanceMetrics
    risk_metrics: RiskMetrics | None = None
    trades: list[TradeRecord] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    signal_count: int = 0
    rejected_signals: int = 0
    passed: bool = False
    score: float = 0.0
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class EdgeCaseResult:
    """Verdict of one edge case across all strategies."""

    name: str
    critical_level: CriticalLevel
    passed: bool
    issues: list[str] = field(default_factory=list)
    signal_counts: dict[str, int] = field(default_factory=dict)
