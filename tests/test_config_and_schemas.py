from __future__ import annotations

import pytest
from pydantic import ValidationError

from strategy_engine.config import Settings
from strategy_engine.errors import ConfigurationError
from strategy_engine.schemas import (
    ChannelIndexParams,
    DCAParams,
    MomentumParams,
    StrategyConfig,
    StrategyKind,
)
from strategy_engine.strategy.channel_index import ChannelIndexStrategy
from strategy_engine.strategy.dca import DCAStrategy
from strategy_engine.strategy.registry import build_strategy


def _payload(kind: str, **overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": f"{kind}-test",
        "name": f"{kind} test",
        "kind": kind,
        "allocation_capital": 10_000.0,
        "stop_loss_pct": 5.0,
        "enabled_symbols": ["BTC"],
    }
    payload.update(overrides)
    return payload


def test_settings_defaults_build_risk_limits() -> None:
    settings = Settings(_env_file=None)
    limits = settings.risk_limits()
    assert settings.initial_capital == 10_000.0
    assert settings.scenario_symbols == ["BTC"]
    assert limits.max_position_size_pct == 20.0
    assert limits.max_total_exposure_pct == 80.0
    assert limits.min_liquidity == 100_000.0
    assert limits.emergency_stop_loss_pct == 15.0


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAX_POSITION_SIZE_PCT", "12.5")
    monkeypatch.setenv("OUTPUT_DIR", "artifacts/run")
    settings = Settings(_env_file=None)
    assert settings.max_position_size_pct == 12.5
    assert settings.output_dir.as_posix() == "artifacts/run"


def test_config_defaults_params_from_kind() -> None:
    config = StrategyConfig.model_validate(_payload("momentum"))
    assert config.kind == StrategyKind.MOMENTUM
    assert isinstance(config.params, MomentumParams)
    assert config.params.rebalance_interval_minutes == 15.0
    assert config.risk_profile == "MODERATE"
    assert config.signal_cooldown_seconds == 60.0


def test_config_rejects_params_of_another_kind() -> None:
    with pytest.raises(ValidationError):
        StrategyConfig.model_validate(_payload("dca", params={"kind": "momentum"}))


def test_build_strategy_maps_validation_errors() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        build_strategy(_payload("dca", stop_loss_pct=-1.0))
    assert str(exc_info.value).startswith("invalid_strategy_config:stop_loss_pct")


def test_channel_index_thresholds_must_be_ordered() -> None:
    with pytest.raises(ValidationError):
        ChannelIndexParams(overbought=-150.0, oversold=-100.0)


def test_dca_window_must_not_end_before_start() -> None:
    with pytest.raises(ValidationError):
        DCAParams(
            start_at="2024-02-01T00:00:00+00:00",
            end_at="2024-01-01T00:00:00+00:00",
        )


def test_build_strategy_selects_variant() -> None:
    strategy = build_strategy(_payload("cci"))
    assert isinstance(strategy, ChannelIndexStrategy)
    assert strategy.name == "cci"


def test_with_params_returns_new_strategy() -> None:
    strategy = build_strategy(_payload("dca"))
    assert isinstance(strategy, DCAStrategy)
    updated = strategy.with_params(amount=250.0, stop_loss_pct=7.0)
    assert isinstance(updated, DCAStrategy)
    assert updated.params.amount == 250.0
    assert updated.config.stop_loss_pct == 7.0
    assert strategy.params.amount == 100.0


def test_with_params_rejects_unknown_key() -> None:
    strategy = build_strategy(_payload("dca"))
    with pytest.raises(ConfigurationError, match="unknown_parameter:leverage"):
        strategy.with_params(leverage=3)


def test_params_dict_includes_risk_knobs() -> None:
    params = build_strategy(_payload("cci")).params_dict()
    assert params["period"] == 20
    assert params["max_positions"] == 5
    assert params["stop_loss_pct"] == 5.0
    assert "kind" not in params
