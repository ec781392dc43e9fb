from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from strategy_engine.strategy.dca import DCAStrategy
from strategy_engine.strategy.registry import build_strategy
from strategy_engine.types import MarketObservation

START = datetime(2024, 1, 1, tzinfo=UTC)


def _dca(**params: object) -> DCAStrategy:
    strategy = build_strategy(
        {
            "id": "dca-pipeline",
            "name": "DCA pipeline",
            "kind": "dca",
            "allocation_capital": 10_000.0,
            "stop_loss_pct": 5.0,
            "enabled_symbols": ["BTC"],
            "params": {"kind": "dca", **params},
        }
    )
    assert isinstance(strategy, DCAStrategy)
    return strategy


def _tick(at: datetime, price: float, volume: float = 1_000_000.0) -> MarketObservation:
    return MarketObservation(symbol="BTC", timestamp=at, price=price, volume=volume)


def test_invalid_observations_are_dropped() -> None:
    strategy = _dca()
    state = strategy.new_state()
    state, signals = strategy.evaluate(state, [_tick(START, -100.0)], START)
    assert signals == []
    assert state.history.count("BTC") == 0
    assert state.started_at is None


def test_empty_batch_produces_nothing() -> None:
    strategy = _dca()
    state, signals = strategy.evaluate(strategy.new_state(), [], START)
    assert signals == []
    assert state.value_history == []


def test_zero_volume_suppresses_signals() -> None:
    strategy = _dca()
    state, signals = strategy.evaluate(
        strategy.new_state(), [_tick(START, 100.0, volume=0.0)], START
    )
    assert signals == []
    assert state.history.count("BTC") == 1


def test_price_anomaly_suppresses_signals_for_that_tick() -> None:
    strategy = _dca()
    state = strategy.new_state()
    state, first = strategy.evaluate(state, [_tick(START, 100.0)], START)
    assert [signal.action for signal in first] == ["BUY"]

    spike_at = START + timedelta(hours=25)
    state, spiked = strategy.evaluate(state, [_tick(spike_at, 1_100.0)], spike_at)
    assert spiked == []

    calm_at = START + timedelta(hours=26)
    state, calm = strategy.evaluate(state, [_tick(calm_at, 1_110.0)], calm_at)
    assert [signal.action for signal in calm] == ["BUY"]


def test_cooldown_suppresses_repeat_signals() -> None:
    strategy = _dca(frequency="CUSTOM", interval_hours=0.001)
    state = strategy.new_state()
    state, first = strategy.evaluate(state, [_tick(START, 100.0)], START)
    assert len(first) == 1

    soon = START + timedelta(seconds=30)
    state, repeated = strategy.evaluate(state, [_tick(soon, 100.0)], soon)
    assert repeated == []

    later = START + timedelta(seconds=61)
    state, resumed = strategy.evaluate(state, [_tick(later, 100.0)], later)
    assert len(resumed) == 1


def test_signals_carry_clamped_confidence_and_positive_quantity() -> None:
    strategy = _dca()
    _, signals = strategy.evaluate(strategy.new_state(), [_tick(START, 100.0)], START)
    signal = signals[0]
    assert 0.0 <= signal.confidence <= 100.0
    assert signal.quantity is not None and signal.quantity > 0
    assert signal.timestamp == START


def test_performance_summary_after_round_trip() -> None:
    strategy = _dca()
    state = strategy.new_state()
    state, _ = strategy.evaluate(state, [_tick(START, 100.0)], START)
    strategy.apply_trade(state, "BTC", "BUY", 1.0, 100.0, START)

    later = START + timedelta(hours=1)
    state, _ = strategy.evaluate(state, [_tick(later, 110.0)], later)
    realized = strategy.apply_trade(state, "BTC", "SELL", 1.0, 110.0, later)
    assert realized == pytest.approx(10.0)

    summary = strategy.performance(state)
    assert summary.total_pnl == pytest.approx(10.0)
    assert summary.total_pnl_pct == pytest.approx(0.1)
    assert summary.win_rate == 100.0
    assert summary.total_trades == 2
    assert summary.open_positions == 0
    assert summary.last_update == later
