"""Deterministic synthetic market scenarios and edge cases."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Sequence

import numpy as np

from strategy_engine.backtest.types import EdgeCaseTest, ScenarioRisk, ScenarioStep, TestScenario
from strategy_engine.types import MarketObservation

DEFAULT_START = datetime(2024, 1, 1, tzinfo=timezone.utc)
BASE_PRICE = 100.0
STEP = timedelta(hours=1)

# (next price, volume) from (rng, step index, previous price)
PriceStep = Callable[[np.random.Generator, int, float], tuple[float, float]]


@dataclass(slots=True, frozen=True)
class _ScenarioShape:
    name: str
    description: str
    expected_outcome: str
    risk_level: ScenarioRisk
    duration_days: float
    band_pct: float
    step: PriceStep


def _bull(rng: np.random.Generator, index: int, price: float) -> tuple[float, float]:
    price = max(50.0, price + (rng.random() - 0.3) * 2.0)
    return price, 1_000_000.0 + rng.random() * 500_000.0


def _volatile_bull(rng: np.random.Generator, index: int, price: float) -> tuple[float, float]:
    swing = rng.random() * 5.0
    price = max(30.0, price + (rng.random() - 0.2) * swing)
    return price, 800_000.0 + rng.random() * 1_200_000.0


def _bear(rng: np.random.Generator, index: int, price: float) -> tuple[float, float]:
    price = max(20.0, price + (rng.random() - 0.7) * 2.0)
    return price, 1_200_000.0 + rng.random() * 800_000.0


def _crash(rng: np.random.Generator, index: int, price: float) -> tuple[float, float]:
    if index < 12:
        price *= 1.0 + rng.uniform(-0.002, 0.002)
        return price, 2_000_000.0 + rng.random() * 500_000.0
    if index < 24:
        price *= 0.7 ** (1.0 / 12.0)
        return price, 2_000_000.0 * (1.5 + 0.25 * (index - 12))
    price *= 1.0 + rng.uniform(0.0, 0.004)
    return price, 1_500_000.0 + rng.random() * 500_000.0


def _sideways(rng: np.random.Generator, index: int, price: float) -> tuple[float, float]:
    price = min(110.0, max(90.0, price + (rng.random() - 0.5) * 2.0))
    return price, 500_000.0 + rng.random() * 300_000.0


def _volatile_sideways(rng: np.random.Generator, index: int, price: float) -> tuple[float, float]:
    price = min(130.0, max(70.0, price + (rng.random() - 0.5) * 8.0))
    return price, 600_000.0 + rng.random() * 900_000.0


def _flash_crash(rng: np.random.Generator, index: int, price: float) -> tuple[float, float]:
    if index == 12:
        return price * 0.5, 5_000_000.0
    if 13 <= index <= 17:
        return price * 1.1, 3_000_000.0
    price = max(20.0, price + (rng.random() - 0.5))
    return price, 1_000_000.0 + rng.random() * 500_000.0


def _low_liquidity(rng: np.random.Generator, index: int, price: float) -> tuple[float, float]:
    price = max(20.0, price + (rng.random() - 0.5) * 3.0)
    return price, 10_000.0 + rng.random() * 50_000.0


_SCENARIOS: tuple[_ScenarioShape, ...] = (
    _ScenarioShape(
        "bull_market",
        "Steady uptrend with healthy volume",
        "Positive returns with controlled drawdown",
        "LOW",
        30,
        0.05,
        _bull,
    ),
    _ScenarioShape(
        "volatile_bull",
        "Uptrend with large hourly swings",
        "Positive returns with higher drawdown",
        "MEDIUM",
        30,
        0.08,
        _volatile_bull,
    ),
    _ScenarioShape(
        "bear_market",
        "Persistent downtrend",
        "Capital preservation through exits",
        "HIGH",
        30,
        0.02,
        _bear,
    ),
    _ScenarioShape(
        "market_crash",
        "30% decline over 12 hours followed by slow recovery",
        "Stop-loss exits limit drawdown",
        "HIGH",
        7,
        0.01,
        _crash,
    ),
    _ScenarioShape(
        "sideways_market",
        "Range-bound prices between 90 and 110",
        "Small returns with low drawdown",
        "LOW",
        30,
        0.02,
        _sideways,
    ),
    _ScenarioShape(
        "volatile_sideways",
        "Wide range between 70 and 130",
        "Mean reversion opportunities without trend",
        "MEDIUM",
        30,
        0.05,
        _volatile_sideways,
    ),
    _ScenarioShape(
        "flash_crash_recovery",
        "Sudden 50% drop followed by rapid recovery",
        "Survive the drop without forced liquidation",
        "HIGH",
        3,
        0.03,
        _flash_crash,
    ),
    _ScenarioShape(
        "low_liquidity",
        "Thin volume below the liquidity floor",
        "Entries rejected by the liquidity check",
        "MEDIUM",
        30,
        0.03,
        _low_liquidity,
    ),
)

SCENARIO_NAMES: tuple[str, ...] = tuple(spec.name for spec in _SCENARIOS)


def _series(
    spec: _ScenarioShape,
    symbol: str,
    rng: np.random.Generator,
    start: datetime,
) -> list[MarketObservation]:
    steps = int(round(spec.duration_days * 24))
    prices: list[float] = []
    observations: list[MarketObservation] = []
    price = BASE_PRICE
    for index in range(steps):
        price, volume = spec.step(rng, index, price)
        prices.append(price)
        day_ago = prices[index - 24] if index >= 24 else BASE_PRICE
        hour_ago = prices[index - 1] if index >= 1 else BASE_PRICE
        observations.append(
            MarketObservation(
                symbol=symbol,
                timestamp=start + STEP * index,
                price=price,
                volume=volume,
                change_24h=(price - day_ago) / day_ago * 100.0,
                change_1h=(price - hour_ago) / hour_ago * 100.0,
                high_24h=price * (1.0 + spec.band_pct),
                low_24h=price * (1.0 - spec.band_pct),
            )
        )
    return observations


def _build(
    spec: _ScenarioShape,
    position: int,
    seed: int,
    symbols: Sequence[str],
    start: datetime,
) -> TestScenario:
    per_symbol = [
        _series(spec, symbol, np.random.default_rng([seed, position, offset]), start)
        for offset, symbol in enumerate(symbols)
    ]
    steps = [
        ScenarioStep(timestamp=batch[0].timestamp, observations=list(batch))
        for batch in zip(*per_symbol)
    ]
    return TestScenario(
        name=spec.name,
        description=spec.description,
        steps=steps,
        expected_outcome=spec.expected_outcome,
        risk_level=spec.risk_level,
        duration_days=spec.duration_days,
    )


def generate_test_scenarios(
    *,
    seed: int = 42,
    symbols: Sequence[str] = ("BTC",),
    names: Sequence[str] | None = None,
    start: datetime = DEFAULT_START,
) -> list[TestScenario]:
    """Build the scenario catalog; identical seeds give identical paths."""
    if not symbols:
        raise ValueError("scenario_symbols_empty")
    selected = set(names) if names is not None else set(SCENARIO_NAMES)
    unknown = sorted(selected - set(SCENARIO_NAMES))
    if unknown:
        raise ValueError(f"unknown_scenario:{unknown[0]}")
    return [
        _build(spec, position, seed, symbols, start)
        for position, spec in enumerate(_SCENARIOS)
        if spec.name in selected
    ]


def _tick(
    timestamp: datetime,
    price: float,
    volume: float,
    symbol: str = "BTC",
) -> ScenarioStep:
    observation = MarketObservation(
        symbol=symbol,
        timestamp=timestamp,
        price=price,
        volume=volume,
        high_24h=price * 1.02 if price > 0 else price,
        low_24h=price * 0.98 if price > 0 else price,
    )
    return ScenarioStep(timestamp=timestamp, observations=[observation])


def generate_edge_cases(*, seed: int = 42, start: datetime = DEFAULT_START) -> list[EdgeCaseTest]:
    """Pathological inputs every strategy must survive."""
    rng = np.random.default_rng(seed)

    missing: list[ScenarioStep] = []
    for index in range(18):
        timestamp = start + STEP * index
        if 6 <= index < 12:
            missing.append(ScenarioStep(timestamp=timestamp))
        else:
            missing.append(_tick(timestamp, BASE_PRICE + index * 0.1, 1_000_000.0))

    storm: list[ScenarioStep] = []
    price = BASE_PRICE
    for index in range(100):
        price = max(50.0, price + (rng.random() - 0.5) * 10.0)
        storm.append(_tick(start + timedelta(seconds=index), price, 1_000_000.0))

    return [
        EdgeCaseTest(
            name="zero_volume",
            description="Trading with zero volume",
            market_condition="No liquidity",
            steps=[_tick(start, BASE_PRICE, 0.0)],
            expected_behavior="No signals for a zero-volume tick",
            critical_level="HIGH",
        ),
        EdgeCaseTest(
            name="extreme_price_spike",
            description="Price jumps 1000% in one step",
            market_condition="Data anomaly",
            steps=[
                _tick(start, BASE_PRICE, 1_000_000.0),
                _tick(start + STEP, 1_100.0, 1_000_000.0),
            ],
            expected_behavior="No signals on the anomalous tick",
            critical_level="CRITICAL",
        ),
        EdgeCaseTest(
            name="missing_data",
            description="Ticks that deliver no observations",
            market_condition="Feed outage",
            steps=missing,
            expected_behavior="Empty ticks produce no signals and no errors",
            critical_level="MEDIUM",
        ),
        EdgeCaseTest(
            name="negative_price",
            description="Observation with a negative price",
            market_condition="Invalid data",
            steps=[_tick(start, -100.0, 1_000_000.0)],
            expected_behavior="Invalid observation dropped without errors",
            critical_level="CRITICAL",
        ),
        EdgeCaseTest(
            name="signal_storm",
            description="100 observations one second apart",
            market_condition="High-frequency noise",
            steps=storm,
            expected_behavior="At most 10 signals per strategy",
            critical_level="HIGH",
        ),
    ]
