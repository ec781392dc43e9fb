"""Portfolio-level risk controls."""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import asdict, replace
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

import numpy as np
import pandas as pd  # type: ignore[import-untyped]

from strategy_engine.config import get_settings
from strategy_engine.engine.ledger import Position
from strategy_engine.features.indicators import linear_fit, simple_returns, volume_ratio
from strategy_engine.risk import statistics
from strategy_engine.risk.optimizer import optimize_parameters
from strategy_engine.risk.types import (
    MarketCondition,
    MarketTrend,
    OptimizationResult,
    RiskMetrics,
    Sentiment,
    SignalValidation,
    VolatilityRegime,
    VolumeRegime,
)
from strategy_engine.schemas import StrategyKind
from strategy_engine.types import (
    MarketObservation,
    PerformanceHistoryPoint,
    RiskLevel,
    RiskLimits,
    TradingSignal,
)
from strategy_engine.utils.logging import get_logger, log_risk_event

logger = get_logger(__name__)

MIN_OBSERVATIONS = 10
MIN_RATIO_POINTS = 10
PERFORMANCE_HISTORY_LIMIT = 1000


def _by_symbol(observations: Iterable[MarketObservation]) -> dict[str, list[MarketObservation]]:
    grouped: dict[str, list[MarketObservation]] = defaultdict(list)
    for observation in observations:
        grouped[observation.symbol].append(observation)
    for series in grouped.values():
        series.sort(key=lambda item: item.timestamp)
    return dict(grouped)


def _latest_prices(observations: Sequence[MarketObservation]) -> dict[str, float]:
    return {symbol: series[-1].price for symbol, series in _by_symbol(observations).items()}


def price_returns(observations: Sequence[MarketObservation]) -> pd.DataFrame:
    """Per-period price returns, one column per symbol, aligned on timestamp."""
    if not observations:
        return pd.DataFrame()
    frame = pd.DataFrame(
        [(item.timestamp, item.symbol, item.price) for item in observations],
        columns=["timestamp", "symbol", "price"],
    )
    prices = (
        frame.pivot_table(index="timestamp", columns="symbol", values="price", aggfunc="last")
        .sort_index()
        .ffill()
    )
    return prices.pct_change(fill_method=None).iloc[1:]


class RiskManager:
    """Validates signals against portfolio limits and tracks portfolio value."""

    def __init__(self, limits: RiskLimits | None = None) -> None:
        self._limits = limits if limits is not None else get_settings().risk_limits()
        self._history: list[PerformanceHistoryPoint] = []
        self._log = logger

    @property
    def risk_limits(self) -> RiskLimits:
        return replace(self._limits)

    @property
    def performance_history(self) -> list[PerformanceHistoryPoint]:
        return list(self._history)

    def update_risk_limits(self, **changes: Any) -> RiskLimits:
        known = asdict(self._limits)
        unknown = sorted(set(changes) - set(known))
        if unknown:
            raise ValueError(f"unknown_risk_limit:{unknown[0]}")
        self._limits = replace(self._limits, **changes)
        return self.risk_limits

    def record_portfolio_value(self, value: float, timestamp: datetime) -> None:
        peak = max([point.portfolio_value for point in self._history] + [value])
        self._history.append(
            PerformanceHistoryPoint(
                timestamp=timestamp,
                portfolio_value=value,
                drawdown_pct=statistics.drawdown_from_peak_pct(peak, value),
            )
        )
        if len(self._history) > PERFORMANCE_HISTORY_LIMIT:
            del self._history[: len(self._history) - PERFORMANCE_HISTORY_LIMIT]

    # ------------------------------------------------------------------
    # Market analysis
    # ------------------------------------------------------------------

    def analyze_market_conditions(
        self, observations: Sequence[MarketObservation]
    ) -> MarketCondition:
        if len(observations) < MIN_OBSERVATIONS:
            return MarketCondition()
        grouped = _by_symbol(observations)
        volatility = self._volatility_regime(grouped)
        volume = self._volume_regime(grouped)
        strength = self._trend_strength(grouped)
        return MarketCondition(
            trend=self._trend(grouped),
            volatility=volatility,
            volume=volume,
            sentiment=self._sentiment(observations),
            strength=strength,
            confidence=self._confidence(strength, volume, volatility),
        )

    def _trend(self, grouped: Mapping[str, list[MarketObservation]]) -> MarketTrend:
        changes = [
            (series[-1].price - series[0].price) / series[0].price
            for series in grouped.values()
            if series[0].price > 0
        ]
        change = float(np.mean(changes)) if changes else 0.0
        if change > 0.05:
            return "BULL"
        if change < -0.05:
            return "BEAR"
        return "SIDEWAYS"

    def _volatility_regime(
        self, grouped: Mapping[str, list[MarketObservation]]
    ) -> VolatilityRegime:
        returns = np.concatenate(
            [simple_returns([item.price for item in series]) for series in grouped.values()]
        )
        volatility = float(np.sqrt(np.mean(returns**2))) if returns.size else 0.0
        if volatility < 0.02:
            return "LOW"
        if volatility < 0.05:
            return "MEDIUM"
        if volatility < 0.1:
            return "HIGH"
        return "EXTREME"

    def _volume_regime(self, grouped: Mapping[str, list[MarketObservation]]) -> VolumeRegime:
        ratios = [volume_ratio([item.volume for item in series]) for series in grouped.values()]
        ratio = float(np.mean(ratios)) if ratios else 1.0
        if ratio < 0.7:
            return "LOW"
        if ratio > 1.5:
            return "HIGH"
        return "NORMAL"

    def _sentiment(self, observations: Sequence[MarketObservation]) -> Sentiment:
        average_change = float(np.mean([item.change_24h for item in observations]))
        fear_greed = (average_change + 10.0) * 5.0
        if fear_greed < 30:
            return "FEAR"
        if fear_greed > 70:
            return "GREED"
        return "NEUTRAL"

    def _trend_strength(self, grouped: Mapping[str, list[MarketObservation]]) -> float:
        fits = [
            linear_fit([item.price for item in series])[1]
            for series in grouped.values()
            if len(series) >= 2
        ]
        if not fits:
            return 50.0
        return max(0.0, min(100.0, float(np.mean(fits)) * 100.0))

    def _confidence(
        self,
        strength: float,
        volume: VolumeRegime,
        volatility: VolatilityRegime,
    ) -> float:
        confidence = strength
        if volume == "HIGH":
            confidence += 10
        elif volume == "LOW":
            confidence -= 15
        confidence += {"LOW": 5, "MEDIUM": 0, "HIGH": -10, "EXTREME": -20}[volatility]
        return max(0.0, min(100.0, confidence))

    # ------------------------------------------------------------------
    # Portfolio statistics
    # ------------------------------------------------------------------

    def calculate_risk_metrics(
        self,
        positions: Sequence[Position],
        observations: Sequence[MarketObservation],
        cash: float = 0.0,
    ) -> RiskMetrics:
        prices = _latest_prices(observations)
        exposure = sum(self._position_value(position, prices) for position in positions)
        portfolio_value = cash + exposure

        values = [point.portfolio_value for point in self._history]
        timestamps = [point.timestamp for point in self._history]
        max_drawdown = statistics.max_drawdown_pct(values) if len(values) >= 2 else 0.0
        current_drawdown = 0.0
        if len(values) >= 2:
            current_drawdown = statistics.drawdown_from_peak_pct(max(values), portfolio_value)

        sharpe = sortino = calmar = var_95 = cvar_95 = 0.0
        if len(values) >= MIN_RATIO_POINTS:
            returns, per_year = statistics.ratio_inputs(timestamps, values)
            sharpe = statistics.sharpe_ratio(returns, per_year)
            sortino = statistics.sortino_ratio(returns, per_year)
            annualized = statistics.annualized_return_pct(
                statistics.total_return_pct(values), len(values) - 1, per_year
            )
            calmar = statistics.calmar_ratio(annualized, max_drawdown)
            var_95 = statistics.value_at_risk_pct(returns)
            cvar_95 = statistics.conditional_value_at_risk_pct(returns)

        returns_frame = price_returns(observations)
        weights = self._weights(positions, prices)
        return RiskMetrics(
            portfolio_value=portfolio_value,
            total_exposure=exposure,
            max_drawdown_pct=max_drawdown,
            current_drawdown_pct=current_drawdown,
            sharpe_ratio=sharpe,
            sortino_ratio=sortino,
            calmar_ratio=calmar,
            var_95_pct=var_95,
            cvar_95_pct=cvar_95,
            beta=self._beta(returns_frame, weights),
            correlation=self._mean_correlation(returns_frame, list(weights)),
            volatility_pct=self._portfolio_volatility(returns_frame, weights),
            last_updated=max((item.timestamp for item in observations), default=None),
        )

    def _position_value(self, position: Position, prices: Mapping[str, float]) -> float:
        price = prices.get(position.symbol)
        return position.quantity * price if price is not None else position.market_value

    def _weights(
        self, positions: Sequence[Position], prices: Mapping[str, float]
    ) -> dict[str, float]:
        values = {position.symbol: self._position_value(position, prices) for position in positions}
        total = sum(values.values())
        if total <= 0:
            return {}
        return {symbol: value / total for symbol, value in values.items()}

    def _portfolio_returns(
        self, frame: pd.DataFrame, weights: Mapping[str, float]
    ) -> pd.Series | None:
        held = [symbol for symbol in weights if symbol in frame.columns]
        if not held or len(frame) < 2:
            return None
        held_weights = pd.Series({symbol: weights[symbol] for symbol in held})
        return frame[held].fillna(0.0).mul(held_weights).sum(axis=1)

    def _portfolio_volatility(self, frame: pd.DataFrame, weights: Mapping[str, float]) -> float:
        returns = self._portfolio_returns(frame, weights)
        if returns is None:
            return 0.0
        return float(np.std(returns.to_numpy())) * 100.0

    def _beta(self, frame: pd.DataFrame, weights: Mapping[str, float]) -> float:
        returns = self._portfolio_returns(frame, weights)
        if returns is None:
            return 0.0
        market = frame.mean(axis=1, skipna=True).fillna(0.0).to_numpy()
        variance = float(np.var(market))
        if variance <= 0:
            return 0.0
        portfolio = returns.to_numpy()
        covariance = float(np.mean((portfolio - portfolio.mean()) * (market - market.mean())))
        return covariance / variance

    def _mean_correlation(self, frame: pd.DataFrame, symbols: Sequence[str]) -> float:
        held = [symbol for symbol in symbols if symbol in frame.columns]
        if len(held) < 2 or len(frame) < 3:
            return 0.0
        matrix = frame[held].corr().to_numpy()
        off_diagonal = matrix[~np.eye(len(held), dtype=bool)]
        off_diagonal = off_diagonal[np.isfinite(off_diagonal)]
        if off_diagonal.size == 0:
            return 0.0
        return float(off_diagonal.mean())

    def position_correlation(
        self,
        symbol: str,
        positions: Sequence[Position],
        observations: Sequence[MarketObservation],
    ) -> float:
        """Mean return correlation of one held symbol with the other holdings."""
        frame = price_returns(observations)
        others = [position.symbol for position in positions if position.symbol != symbol]
        if symbol not in frame.columns or len(frame) < 3:
            return 0.0
        values = [
            frame[symbol].corr(frame[other]) for other in others if other in frame.columns
        ]
        finite = [value for value in values if math.isfinite(value)]
        return float(np.mean(finite)) if finite else 0.0

    # ------------------------------------------------------------------
    # Signal validation
    # ------------------------------------------------------------------

    def validate_signal(
        self,
        signal: TradingSignal,
        positions: Sequence[Position],
        observations: Sequence[MarketObservation],
        *,
        cash: float = 0.0,
    ) -> SignalValidation:
        """Check a signal against the limits in order; the first rejection wins.

        Portfolio value is `cash` plus the marked positions, so a first entry
        from an empty portfolio needs `cash`; without it every BUY is rejected
        as an empty portfolio.
        """
        if signal.action != "BUY":
            return SignalValidation(
                approved=True, reason="Risk-reducing signal approved", risk_level="LOW"
            )

        quantity = signal.quantity or 0.0
        if quantity <= 0 or signal.price <= 0:
            return self._reject(signal, "missing_quantity", "Buy signal has no positive quantity")

        metrics = self.calculate_risk_metrics(positions, observations, cash)
        condition = self.analyze_market_conditions(observations)
        limits = self._limits
        portfolio_value = metrics.portfolio_value
        if portfolio_value <= 0:
            return self._reject(signal, "empty_portfolio", "Portfolio value is zero")

        adjusted: float | None = None
        resize_reason = ""
        held = next((position for position in positions if position.symbol == signal.symbol), None)
        existing = held.quantity * signal.price if held is not None else 0.0
        size_pct = (existing + quantity * signal.price) / portfolio_value * 100.0
        if size_pct > limits.max_position_size_pct:
            room = limits.max_position_size_pct / 100.0 * portfolio_value - existing
            if room <= 0:
                return self._reject(
                    signal,
                    "position_size",
                    f"Position already at size limit {limits.max_position_size_pct}%",
                )
            adjusted = min(quantity, room / signal.price)
            resize_reason = (
                f"Position size reduced from {size_pct:.2f}% to {limits.max_position_size_pct}%"
            )
            quantity = adjusted

        exposure_pct = (metrics.total_exposure + quantity * signal.price) / portfolio_value * 100.0
        if exposure_pct > limits.max_total_exposure_pct:
            return self._reject(
                signal,
                "total_exposure",
                f"Total exposure would exceed limit: {exposure_pct:.2f}% "
                f"> {limits.max_total_exposure_pct}%",
            )
        if metrics.current_drawdown_pct > limits.max_drawdown_pct:
            return self._reject(
                signal,
                "drawdown",
                f"Current drawdown exceeds limit: {metrics.current_drawdown_pct:.2f}% "
                f"> {limits.max_drawdown_pct}%",
            )
        if metrics.volatility_pct > limits.max_daily_volatility_pct:
            return self._reject(
                signal,
                "volatility",
                f"Portfolio volatility exceeds limit: {metrics.volatility_pct:.2f}% "
                f"> {limits.max_daily_volatility_pct}%",
            )
        if metrics.correlation > limits.max_correlation:
            return self._reject(
                signal,
                "correlation",
                f"Portfolio correlation exceeds limit: {metrics.correlation:.2f} "
                f"> {limits.max_correlation}",
                risk_level="MEDIUM",
            )
        if condition.volatility == "EXTREME":
            return self._reject(
                signal, "market_condition", "Buy signals blocked during extreme volatility"
            )

        latest = _by_symbol(observations).get(signal.symbol)
        if latest and latest[-1].volume < limits.min_liquidity:
            return self._reject(
                signal,
                "liquidity",
                f"Insufficient liquidity: {latest[-1].volume} < {limits.min_liquidity}",
            )

        if adjusted is not None:
            return SignalValidation(
                approved=True, reason=resize_reason, risk_level="HIGH", adjusted_quantity=adjusted
            )
        return SignalValidation(
            approved=True,
            reason="Signal approved by risk management",
            risk_level=self._signal_risk_level(signal, condition),
        )

    def _reject(
        self,
        signal: TradingSignal,
        check: str,
        reason: str,
        risk_level: RiskLevel = "HIGH",
    ) -> SignalValidation:
        log_risk_event(
            self._log,
            event_type=f"signal_rejected_{check}",
            action=signal.action,
            symbol=signal.symbol,
            reason=reason,
        )
        return SignalValidation(approved=False, reason=reason, risk_level=risk_level)

    def _signal_risk_level(self, signal: TradingSignal, condition: MarketCondition) -> RiskLevel:
        score = 0
        if signal.confidence < 60:
            score += 2
        elif signal.confidence < 80:
            score += 1
        score += {"LOW": 0, "MEDIUM": 1, "HIGH": 2, "EXTREME": 3}[condition.volatility]
        if condition.sentiment == "FEAR":
            score += 2
        elif condition.sentiment == "GREED":
            score += 1
        if condition.trend == "BEAR":
            score += 2
        if score >= 4:
            return "HIGH"
        if score >= 2:
            return "MEDIUM"
        return "LOW"

    # ------------------------------------------------------------------
    # Emergency actions and optimization
    # ------------------------------------------------------------------

    def emergency_risk_management(
        self,
        positions: Sequence[Position],
        observations: Sequence[MarketObservation],
        cash: float = 0.0,
        now: datetime | None = None,
    ) -> list[TradingSignal]:
        """De-risking SELL signals for drawdown, panic and concentration."""
        if not positions:
            return []
        metrics = self.calculate_risk_metrics(positions, observations, cash)
        condition = self.analyze_market_conditions(observations)
        limits = self._limits
        timestamp = (
            now or metrics.last_updated or max(position.updated_at for position in positions)
        )
        signals: list[TradingSignal] = []

        if metrics.current_drawdown_pct > limits.emergency_stop_loss_pct:
            log_risk_event(
                self._log,
                event_type="emergency_stop_loss",
                action="SELL",
                drawdown_pct=round(metrics.current_drawdown_pct, 2),
            )
            for position in positions:
                signals.append(
                    TradingSignal(
                        action="SELL",
                        symbol=position.symbol,
                        confidence=100.0,
                        price=position.current_price,
                        quantity=position.quantity,
                        reason=(
                            f"Emergency stop-loss: Drawdown {metrics.current_drawdown_pct:.2f}% "
                            f"exceeds {limits.emergency_stop_loss_pct}%"
                        ),
                        timestamp=timestamp,
                        risk_level="HIGH",
                    )
                )

        if condition.volatility == "EXTREME" and condition.sentiment == "FEAR":
            log_risk_event(self._log, event_type="extreme_fear_reduction", action="SELL")
            for position in positions:
                signals.append(
                    TradingSignal(
                        action="SELL",
                        symbol=position.symbol,
                        confidence=95.0,
                        price=position.current_price,
                        quantity=position.quantity * 0.5,
                        reason="Risk reduction: Extreme market volatility and fear sentiment",
                        timestamp=timestamp,
                        risk_level="HIGH",
                    )
                )

        if metrics.correlation > limits.max_correlation * 1.5:
            log_risk_event(
                self._log,
                event_type="correlation_reduction",
                action="SELL",
                correlation=round(metrics.correlation, 3),
            )
            correlations = {
                position.symbol: self.position_correlation(position.symbol, positions, observations)
                for position in positions
            }
            ranked = sorted(
                positions, key=lambda position: correlations[position.symbol], reverse=True
            )
            for position in ranked[: math.ceil(len(ranked) / 2)]:
                signals.append(
                    TradingSignal(
                        action="SELL",
                        symbol=position.symbol,
                        confidence=85.0,
                        price=position.current_price,
                        quantity=position.quantity * 0.3,
                        reason=(
                            "Correlation reduction: High portfolio correlation "
                            f"{metrics.correlation:.2f}"
                        ),
                        timestamp=timestamp,
                        risk_level="MEDIUM",
                    )
                )
        return signals

    def optimize_algorithm(
        self,
        kind: StrategyKind | str,
        current_params: Mapping[str, Any],
        condition: MarketCondition,
    ) -> OptimizationResult:
        result = optimize_parameters(kind, current_params, condition)
        if result.optimized:
            self._log.info(
                "strategy_optimized",
                strategy=result.strategy,
                improvements=len(result.improvements),
                confidence=result.confidence,
            )
        return result
