"""Simulated staking opportunities per symbol and platform.

The catalog stands in for live platform feeds. Every value is a static
table lookup, so the same symbol always yields the same opportunities.
Stake limits are denominated in the quote currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from strategy_engine.schemas import StakingOpportunityModel

Tier = Literal["LOW", "MEDIUM", "HIGH"]
Cadence = Literal["DAILY", "WEEKLY", "MONTHLY"]

MIN_APY = 0.5
MAX_APY = 50.0

_PLATFORMS: dict[str, tuple[str, ...]] = {
    "ETH": ("Lido", "Rocket Pool", "Coinbase", "Kraken"),
    "SOL": ("Marinade", "Jito", "Solana Foundation"),
    "ADA": ("Cardano Pool", "Binance", "Kraken"),
    "DOT": ("Polkadot", "Kraken", "Binance"),
    "AVAX": ("Avalanche", "Binance", "Kraken"),
    "MATIC": ("Polygon", "Binance", "Kraken"),
    "ATOM": ("Cosmos Hub", "Binance", "Kraken"),
    "NEAR": ("NEAR Protocol", "Binance", "Kraken"),
}
_DEFAULT_PLATFORMS = ("Binance", "Kraken", "Coinbase")

_BASE_APY = {
    "ETH": 4.5,
    "SOL": 7.2,
    "ADA": 5.8,
    "DOT": 12.5,
    "AVAX": 8.9,
    "MATIC": 6.2,
    "ATOM": 19.5,
    "NEAR": 11.2,
}

_PLATFORM_MULTIPLIER = {
    "Lido": 1.0,
    "Rocket Pool": 0.95,
    "Coinbase": 0.85,
    "Kraken": 0.90,
    "Binance": 0.88,
    "Marinade": 1.05,
    "Jito": 1.1,
    "Solana Foundation": 1.0,
    "Cardano Pool": 1.0,
    "Polkadot": 1.0,
    "Avalanche": 1.0,
    "Polygon": 1.0,
    "Cosmos Hub": 1.0,
    "NEAR Protocol": 1.0,
}

_PLATFORM_RISK = {
    "Lido": 0.95,
    "Rocket Pool": 0.98,
    "Coinbase": 0.92,
    "Kraken": 0.94,
    "Binance": 0.90,
    "Marinade": 1.02,
    "Jito": 1.05,
    "Solana Foundation": 0.98,
}

_ASSET_RISK = {
    "ETH": 0.95,
    "SOL": 1.05,
    "ADA": 1.0,
    "DOT": 1.1,
    "AVAX": 1.08,
    "MATIC": 1.02,
    "ATOM": 1.15,
    "NEAR": 1.1,
}

_MIN_STAKE = {"ETH": 0.1, "ADA": 10.0}

_MAX_STAKE = {
    ("ETH", "Lido"): 1000.0,
    ("ETH", "Rocket Pool"): 1000.0,
}

_LOCK_DAYS = {
    ("DOT", "Polkadot"): 28,
    ("ATOM", "Cosmos Hub"): 21,
}

# Native-chain platforms carry more risk and less liquidity than exchanges.
_NATIVE_PLATFORMS = {
    ("SOL", "Marinade"),
    ("SOL", "Jito"),
    ("DOT", "Polkadot"),
    ("AVAX", "Avalanche"),
    ("MATIC", "Polygon"),
    ("ATOM", "Cosmos Hub"),
    ("NEAR", "NEAR Protocol"),
}
_LIQUID_NATIVE = {("SOL", "Marinade"), ("SOL", "Jito")}

_COMPOUND: dict[str, Cadence] = {
    "Coinbase": "WEEKLY",
    "Kraken": "WEEKLY",
    "Polkadot": "WEEKLY",
}

_FEES = {
    "Lido": 10.0,
    "Rocket Pool": 15.0,
    "Coinbase": 25.0,
    "Kraken": 20.0,
    "Binance": 5.0,
    "Marinade": 6.0,
    "Jito": 8.0,
}
_ZERO_FEE_PLATFORMS = {
    "Solana Foundation",
    "Cardano Pool",
    "Polkadot",
    "Avalanche",
    "Polygon",
    "Cosmos Hub",
    "NEAR Protocol",
}


@dataclass(slots=True, frozen=True)
class StakingOpportunity:
    symbol: str
    platform: str
    apy: float
    fee_pct: float
    lock_period_days: int
    risk: Tier
    liquidity: Tier
    compound_frequency: Cadence
    min_stake: float
    max_stake: float

    @classmethod
    def from_model(cls, model: StakingOpportunityModel) -> StakingOpportunity:
        return cls(
            symbol=model.symbol,
            platform=model.platform,
            apy=model.apy,
            fee_pct=model.fee_pct,
            lock_period_days=model.lock_period_days,
            risk=model.risk,
            liquidity=model.liquidity,
            compound_frequency=model.compound_frequency,
            min_stake=model.min_stake,
            max_stake=model.max_stake,
        )


def platforms_for(symbol: str) -> tuple[str, ...]:
    return _PLATFORMS.get(symbol, _DEFAULT_PLATFORMS)


def platform_apy(symbol: str, platform: str) -> float:
    """Base APY adjusted for platform and asset risk, clamped to a sane band."""
    apy = (
        _BASE_APY.get(symbol, 5.0)
        * _PLATFORM_MULTIPLIER.get(platform, 0.9)
        * _PLATFORM_RISK.get(platform, 0.95)
        * _ASSET_RISK.get(symbol, 1.0)
    )
    return max(MIN_APY, min(MAX_APY, apy))


def _risk(symbol: str, platform: str) -> Tier:
    if symbol not in _PLATFORMS or (symbol, platform) in _NATIVE_PLATFORMS:
        return "MEDIUM"
    return "LOW"


def _liquidity(symbol: str, platform: str) -> Tier:
    key = (symbol, platform)
    if symbol not in _PLATFORMS or (key in _NATIVE_PLATFORMS and key not in _LIQUID_NATIVE):
        return "MEDIUM"
    return "HIGH"


def _fee(platform: str) -> float:
    if platform in _ZERO_FEE_PLATFORMS:
        return 0.0
    return _FEES.get(platform, 10.0)


def opportunities_for(symbol: str) -> list[StakingOpportunity]:
    """All catalog opportunities for a symbol, one per platform."""
    return [
        StakingOpportunity(
            symbol=symbol,
            platform=platform,
            apy=platform_apy(symbol, platform),
            fee_pct=_fee(platform),
            lock_period_days=_LOCK_DAYS.get((symbol, platform), 0),
            risk=_risk(symbol, platform),
            liquidity=_liquidity(symbol, platform),
            compound_frequency=_COMPOUND.get(platform, "DAILY"),
            min_stake=_MIN_STAKE.get(symbol, 1.0),
            max_stake=_MAX_STAKE.get((symbol, platform), 10_000.0),
        )
        for platform in platforms_for(symbol)
    ]
