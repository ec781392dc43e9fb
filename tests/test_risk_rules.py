from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from strategy_engine.engine.ledger import Position
from strategy_engine.risk.manager import PERFORMANCE_HISTORY_LIMIT, RiskManager
from strategy_engine.types import MarketObservation, RiskLimits, TradingSignal

START = datetime(2024, 1, 1, tzinfo=UTC)
ZIGZAG = [100.0, 102.0, 101.0, 104.0, 103.0, 106.0, 105.0, 108.0, 107.0, 110.0, 109.0, 112.0]


def _series(
    symbol: str, prices: list[float], volume: float = 1_000_000.0
) -> list[MarketObservation]:
    return [
        MarketObservation(
            symbol=symbol,
            timestamp=START + timedelta(hours=index),
            price=price,
            volume=volume,
        )
        for index, price in enumerate(prices)
    ]


def _position(symbol: str, quantity: float, price: float) -> Position:
    return Position(
        symbol=symbol,
        quantity=quantity,
        average_price=price,
        current_price=price,
        opened_at=START,
        updated_at=START,
    )


def _buy(symbol: str, quantity: float, price: float = 100.0) -> TradingSignal:
    return TradingSignal(
        action="BUY",
        symbol=symbol,
        confidence=70.0,
        price=price,
        timestamp=START,
        reason="test",
        quantity=quantity,
    )


def test_sell_signals_are_always_approved() -> None:
    manager = RiskManager(RiskLimits())
    signal = TradingSignal(
        action="SELL", symbol="BTC", confidence=50.0, price=100.0, timestamp=START, reason="exit"
    )
    verdict = manager.validate_signal(signal, [], [], cash=0.0)
    assert verdict.approved
    assert verdict.apply_to(signal) is signal


def test_small_buy_is_approved() -> None:
    manager = RiskManager(RiskLimits())
    observations = _series("BTC", [100.0] * 12)
    verdict = manager.validate_signal(_buy("BTC", 5.0), [], observations, cash=10_000.0)
    assert verdict.approved
    assert verdict.adjusted_quantity is None


def test_first_entry_needs_cash() -> None:
    manager = RiskManager(RiskLimits())
    observations = _series("BTC", [100.0] * 12)
    verdict = manager.validate_signal(_buy("BTC", 5.0), [], observations)
    assert not verdict.approved
    assert verdict.reason == "Portfolio value is zero"
    with pytest.raises(TypeError):
        manager.validate_signal(_buy("BTC", 5.0), [], observations, 10_000.0)  # type: ignore[misc]


def test_oversized_buy_is_resized_to_limit() -> None:
    manager = RiskManager(RiskLimits())
    observations = _series("BTC", [100.0] * 12)
    signal = _buy("BTC", 30.0)
    verdict = manager.validate_signal(signal, [], observations, cash=10_000.0)
    assert verdict.approved
    assert verdict.risk_level == "HIGH"
    assert verdict.adjusted_quantity == pytest.approx(20.0)
    executable = verdict.apply_to(signal)
    assert executable is not None
    assert executable.quantity is not None and executable.quantity <= signal.quantity


def test_existing_holding_counts_toward_size() -> None:
    manager = RiskManager(RiskLimits())
    observations = _series("BTC", [100.0] * 12)
    held = [_position("BTC", 20.0, 100.0)]
    verdict = manager.validate_signal(_buy("BTC", 5.0), held, observations, cash=8_000.0)
    assert not verdict.approved
    assert verdict.reason.startswith("Position already at size limit")


def test_buy_without_quantity_is_rejected() -> None:
    manager = RiskManager(RiskLimits())
    signal = TradingSignal(
        action="BUY", symbol="BTC", confidence=70.0, price=100.0, timestamp=START, reason="x"
    )
    assert not manager.validate_signal(signal, [], [], cash=10_000.0).approved


def test_total_exposure_limit() -> None:
    manager = RiskManager(RiskLimits())
    held = [_position("ETH", 100.0, 75.0)]
    verdict = manager.validate_signal(_buy("BTC", 10.0), held, [], cash=2_500.0)
    assert not verdict.approved
    assert verdict.reason.startswith("Total exposure would exceed limit")


def test_drawdown_limit() -> None:
    manager = RiskManager(RiskLimits())
    manager.record_portfolio_value(10_000.0, START)
    manager.record_portfolio_value(7_000.0, START + timedelta(hours=1))
    verdict = manager.validate_signal(_buy("BTC", 1.0), [], [], cash=7_000.0)
    assert not verdict.approved
    assert verdict.reason.startswith("Current drawdown exceeds limit")


def test_correlated_holdings_block_buys() -> None:
    manager = RiskManager(RiskLimits())
    observations = _series("BTC", ZIGZAG) + _series("ETH", [price * 2 for price in ZIGZAG])
    held = [_position("BTC", 1.0, 112.0), _position("ETH", 1.0, 224.0)]
    verdict = manager.validate_signal(_buy("BTC", 1.0, 112.0), held, observations, cash=9_000.0)
    assert not verdict.approved
    assert verdict.risk_level == "MEDIUM"
    assert "correlation" in verdict.reason


def test_extreme_volatility_blocks_buys() -> None:
    manager = RiskManager(RiskLimits())
    observations = _series("BTC", [100.0, 120.0] * 6)
    verdict = manager.validate_signal(_buy("BTC", 1.0), [], observations, cash=10_000.0)
    assert not verdict.approved
    assert verdict.reason == "Buy signals blocked during extreme volatility"


def test_thin_liquidity_blocks_buys() -> None:
    manager = RiskManager(RiskLimits())
    observations = _series("BTC", [100.0] * 12, volume=50_000.0)
    verdict = manager.validate_signal(_buy("BTC", 1.0), [], observations, cash=10_000.0)
    assert not verdict.approved
    assert verdict.reason.startswith("Insufficient liquidity")


def test_market_condition_classification() -> None:
    manager = RiskManager(RiskLimits())
    assert manager.analyze_market_conditions(_series("BTC", [100.0] * 5)).trend == "SIDEWAYS"

    rising = manager.analyze_market_conditions(
        _series("BTC", [100.0 + index for index in range(12)])
    )
    assert rising.trend == "BULL"
    assert rising.volatility == "LOW"
    assert rising.strength == pytest.approx(100.0)

    falling = manager.analyze_market_conditions(
        _series("BTC", [100.0 - index for index in range(12)])
    )
    assert falling.trend == "BEAR"


def test_risk_metrics_snapshot() -> None:
    manager = RiskManager(RiskLimits())
    for index, value in enumerate([10_000.0, 11_000.0, 9_900.0]):
        manager.record_portfolio_value(value, START + timedelta(hours=index))
    held = [_position("BTC", 10.0, 100.0)]
    metrics = manager.calculate_risk_metrics(held, _series("BTC", [100.0, 90.0]), cash=9_000.0)
    assert metrics.total_exposure == pytest.approx(900.0)
    assert metrics.portfolio_value == pytest.approx(9_900.0)
    assert metrics.max_drawdown_pct == pytest.approx(10.0)
    assert metrics.current_drawdown_pct == pytest.approx(10.0)
    assert metrics.sharpe_ratio == 0.0
    assert metrics.as_dict()["last_updated"] == (START + timedelta(hours=1)).isoformat()


def test_emergency_stop_loss_exits_everything() -> None:
    manager = RiskManager(RiskLimits())
    manager.record_portfolio_value(10_000.0, START)
    manager.record_portfolio_value(8_000.0, START + timedelta(hours=1))
    held = [_position("BTC", 10.0, 100.0), _position("ETH", 5.0, 200.0)]
    signals = manager.emergency_risk_management(held, [], cash=6_000.0)
    assert {signal.symbol for signal in signals} == {"BTC", "ETH"}
    assert all(signal.action == "SELL" and signal.confidence == 100.0 for signal in signals)
    assert signals[0].quantity == pytest.approx(10.0)


def test_no_positions_no_emergency() -> None:
    manager = RiskManager(RiskLimits())
    assert manager.emergency_risk_management([], [], cash=1_000.0) == []


def test_update_risk_limits() -> None:
    manager = RiskManager(RiskLimits())
    limits = manager.update_risk_limits(max_position_size_pct=10.0)
    assert limits.max_position_size_pct == 10.0
    assert manager.risk_limits.max_position_size_pct == 10.0
    with pytest.raises(ValueError, match="unknown_risk_limit:leverage"):
        manager.update_risk_limits(leverage=2.0)


def test_performance_history_is_bounded() -> None:
    manager = RiskManager(RiskLimits())
    for index in range(PERFORMANCE_HISTORY_LIMIT + 10):
        manager.record_portfolio_value(10_000.0 + index, START + timedelta(minutes=index))
    history = manager.performance_history
    assert len(history) == PERFORMANCE_HISTORY_LIMIT
    assert history[-1].drawdown_pct == 0.0
