"""结构化日志模块。

structlog 建立在标准库 logging 之上，日志写到 stderr（stdout 留给 CLI 的 JSON 输出）。
一次评估内的日志通过 contextvars 自动带上 symbol 等评估上下文。
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import Processor

from confluence_engine.config import LogFormat, Settings, get_settings


def _build_processors(settings: Settings) -> list[Processor]:
    processors: list[Processor] = [
        # 评估上下文（symbol、entry_timeframe 等）
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.log_format == LogFormat.JSON:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def setup_logging(settings: Settings | None = None) -> None:
    """按配置初始化日志级别与输出格式。"""
    settings = settings or get_settings()
    logging.basicConfig(format="%(message)s", stream=sys.stderr)
    logging.getLogger("confluence_engine").setLevel(settings.log_level)

    structlog.configure(
        processors=_build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def evaluation_context(symbol: str, **fields: Any) -> Iterator[None]:
    """在 with 块内为所有日志绑定评估上下文，退出时恢复。"""
    with structlog.contextvars.bound_contextvars(symbol=symbol, **fields):
        yield


def log_trade_signal(
    logger: structlog.stdlib.BoundLogger,
    *,
    direction: str,
    signal_type: str,
    **kwargs: Any,
) -> None:
    """记录已生成执行计划的交易信号。"""
    logger.info("trade_signal", direction=direction, signal_type=signal_type, **kwargs)


def log_risk_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event_type: str,
    action: str,
    **kwargs: Any,
) -> None:
    """记录风控拒绝。"""
    logger.warning("risk_event", event_type=event_type, action=action, **kwargs)
