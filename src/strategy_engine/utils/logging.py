"""结构化日志配置模块。

使用 structlog 提供结构化日志支持，支持 JSON 和控制台两种输出格式。
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from strategy_engine.config import LogFormat, get_settings


def setup_logging(level: str | None = None) -> None:
    """配置结构化日志系统。

    根据配置设置日志级别和输出格式；``level`` 可覆盖配置中的级别。
    """
    settings = get_settings()

    # 设置标准库日志级别
    log_level = getattr(logging, level or settings.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # 共享处理器
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == LogFormat.JSON:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器。

    Args:
        name: 日志记录器名称。如果为 None，则使用调用模块名。

    Returns:
        结构化日志记录器实例。
    """
    return structlog.get_logger(name)


# 便捷日志函数
def log_trade_signal(
    logger: structlog.stdlib.BoundLogger,
    *,
    strategy: str,
    symbol: str,
    action: str,
    confidence: float,
    **kwargs: Any,
) -> None:
    """记录策略产生的交易信号。"""
    logger.info(
        "trade_signal",
        strategy=strategy,
        symbol=symbol,
        action=action,
        confidence=round(confidence, 2),
        **kwargs,
    )


def log_trade_applied(
    logger: structlog.stdlib.BoundLogger,
    *,
    symbol: str,
    action: str,
    quantity: float,
    price: float,
    realized_pnl: float = 0.0,
    **kwargs: Any,
) -> None:
    """记录写入持仓账本的成交。"""
    logger.debug(
        "trade_applied",
        symbol=symbol,
        action=action,
        quantity=quantity,
        price=price,
        realized_pnl=round(realized_pnl, 6),
        **kwargs,
    )


def log_risk_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event_type: str,
    action: str,
    **kwargs: Any,
) -> None:
    """记录风控事件。"""
    logger.warning(
        "risk_event",
        event_type=event_type,
        action=action,
        **kwargs,
    )
