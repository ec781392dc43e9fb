"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from strategy_engine.types import RiskLimits


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """引擎配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 回测参数 ====================
    initial_capital: float = Field(
        default=10_000.0,
        gt=0,
        description="回测初始资金（USD）",
    )
    scenario_seed: int = Field(default=42, ge=0, description="合成行情随机种子")
    scenario_symbols: list[str] = Field(
        default_factory=lambda: ["BTC"],
        min_length=1,
        description="合成行情交易对",
    )
    max_workers: int = Field(
        default=1,
        ge=1,
        le=32,
        description="回测并行 worker 数（场景 × 策略）",
    )

    # ==================== 风控参数 ====================
    max_position_size_pct: float = Field(
        default=20.0,
        gt=0,
        le=100.0,
        description="单个持仓上限（组合价值百分比）",
    )
    max_total_exposure_pct: float = Field(
        default=80.0,
        gt=0,
        le=100.0,
        description="总敞口限制（组合价值百分比）",
    )
    max_drawdown_pct: float = Field(
        default=20.0,
        gt=0,
        le=100.0,
        description="最大回撤阈值（百分比），超过后拒绝新开仓",
    )
    max_correlation: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="持仓平均相关性上限",
    )
    max_daily_volatility_pct: float = Field(
        default=10.0,
        gt=0,
        description="组合波动率上限（百分比）",
    )
    min_liquidity: float = Field(
        default=100_000.0,
        ge=0,
        description="最低成交量要求",
    )
    emergency_stop_loss_pct: float = Field(
        default=15.0,
        gt=0,
        le=100.0,
        description="紧急止损回撤阈值（百分比）",
    )

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    output_dir: Path = Field(
        default=Path("data/backtest"),
        description="回测产物输出目录",
    )

    @field_validator("output_dir", mode="before")
    @classmethod
    def parse_output_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def risk_limits(self) -> RiskLimits:
        """根据配置构建风控限制。"""
        return RiskLimits(
            max_position_size_pct=self.max_position_size_pct,
            max_total_exposure_pct=self.max_total_exposure_pct,
            max_drawdown_pct=self.max_drawdown_pct,
            max_correlation=self.max_correlation,
            max_daily_volatility_pct=self.max_daily_volatility_pct,
            min_liquidity=self.min_liquidity,
            emergency_stop_loss_pct=self.emergency_stop_loss_pct,
        )


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
