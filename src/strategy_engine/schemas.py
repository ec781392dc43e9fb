"""Strategy configuration schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from strategy_engine.types import RiskProfile


class StrategyKind(str, Enum):
    """Strategy variant selector."""

    MOMENTUM = "momentum"
    DCA = "dca"
    STAKING = "staking"
    CHANNEL_INDEX = "cci"


class MomentumParams(BaseModel):
    """Momentum ranking parameters."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["momentum"] = "momentum"
    rebalance_interval_minutes: float = Field(default=15.0, ge=0.0)
    history_cap: int = Field(default=1000, ge=30)
    momentum_threshold: float | None = None


class DCAParams(BaseModel):
    """Dollar-cost averaging schedule."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["dca"] = "dca"
    frequency: Literal["DAILY", "WEEKLY", "MONTHLY", "CUSTOM"] = "DAILY"
    interval_hours: float = Field(default=24.0, gt=0.0)
    amount: float = Field(default=100.0, gt=0.0)
    start_at: datetime | None = None
    end_at: datetime | None = None
    max_purchases: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_window(self) -> "DCAParams":
        if self.start_at is not None and self.end_at is not None and self.end_at < self.start_at:
            raise ValueError("dca_end_before_start")
        return self


class StakingOpportunityModel(BaseModel):
    """Custom staking opportunity injected through configuration."""

    model_config = ConfigDict(extra="forbid")

    symbol: str
    platform: str
    apy: float = Field(ge=0.0)
    fee_pct: float = Field(default=0.0, ge=0.0, lt=100.0)
    lock_period_days: int = Field(default=0, ge=0)
    risk: Literal["LOW", "MEDIUM", "HIGH"] = "MEDIUM"
    liquidity: Literal["HIGH", "MEDIUM", "LOW"] = "MEDIUM"
    compound_frequency: Literal["DAILY", "WEEKLY", "MONTHLY"] = "WEEKLY"
    min_stake: float = Field(default=0.0, ge=0.0)
    max_stake: float = Field(default=1_000_000.0, gt=0.0)


class StakingParams(BaseModel):
    """Staking-yield allocation parameters."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["staking"] = "staking"
    optimization_interval_minutes: float = Field(default=60.0, ge=0.0)
    max_allocation_pct: float = Field(default=30.0, gt=0.0, le=100.0)
    min_apy: float = Field(default=0.0, ge=0.0)
    lock_period_preference: Literal["ANY", "SHORT"] = "ANY"
    opportunities: list[StakingOpportunityModel] | None = None


class ChannelIndexParams(BaseModel):
    """Commodity channel index parameters."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["cci"] = "cci"
    period: int = Field(default=20, ge=2)
    overbought: float = 100.0
    oversold: float = -100.0
    extreme_overbought: float = 200.0
    extreme_oversold: float = -200.0
    ma_period: int = Field(default=5, ge=1)
    volume_threshold: float = Field(default=1.2, ge=0.0)
    trend_confirmation_period: int = Field(default=10, ge=2)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "ChannelIndexParams":
        ordered = (
            self.extreme_oversold <= self.oversold < self.overbought <= self.extreme_overbought
        )
        if not ordered:
            raise ValueError("cci_thresholds_not_ordered")
        return self


StrategyParams = Annotated[
    Union[MomentumParams, DCAParams, StakingParams, ChannelIndexParams],
    Field(discriminator="kind"),
]


class StrategyConfig(BaseModel):
    """Validated strategy configuration."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    kind: StrategyKind
    allocation_capital: float = Field(gt=0.0)
    stop_loss_pct: float = Field(gt=0.0, le=100.0)
    take_profit_pct: float | None = Field(default=None, gt=0.0)
    timeframe: str = "1h"
    max_positions: int = Field(default=5, ge=1)
    risk_profile: RiskProfile = "MODERATE"
    enabled_symbols: list[str] = Field(min_length=1)
    signal_cooldown_seconds: float = Field(default=60.0, ge=0.0)
    anomaly_jump_pct: float = Field(default=300.0, gt=0.0)
    params: StrategyParams

    @model_validator(mode="before")
    @classmethod
    def _default_params(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("params") is None and "kind" in data:
            kind = data["kind"]
            value = kind.value if isinstance(kind, StrategyKind) else kind
            data = {**data, "params": {"kind": value}}
        return data

    @model_validator(mode="after")
    def _check_params_kind(self) -> "StrategyConfig":
        if self.params.kind != self.kind.value:
            raise ValueError("params_kind_mismatch")
        return self
