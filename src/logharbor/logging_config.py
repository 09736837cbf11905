"""日志配置 -- structlog 处理器链与 Worker 上下文

stdlib logging 与 structlog 共用同一条处理器链，aiosqlite / httpx 等第三方库的
日志同样经过渲染。Worker 身份通过 contextvars 绑定，周期内的每条日志自动携带。
"""

import logging
import os
import sys
from typing import TextIO

import structlog

LOG_FORMAT_ENV = "LOGHARBOR_LOG_FORMAT"
LOG_LEVEL_ENV = "LOGHARBOR_LOG_LEVEL"

# 只保留 WARNING 及以上，避免淹没投递日志
QUIET_LOGGERS = ("aiosqlite", "httpx", "httpcore")

_WORKER_CONTEXT_KEYS = ("consumer_id", "stream", "consumer_group")


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """初始化日志

    Args:
        log_format: "json"（生产）或 "dev"（默认），缺省读 LOGHARBOR_LOG_FORMAT
        log_level: 级别名，缺省读 LOGHARBOR_LOG_LEVEL，再缺省为 INFO
        stream: 输出流，默认 stderr（stdout 留给 CLI 输出）
    """
    log_format = (log_format or os.environ.get(LOG_FORMAT_ENV, "dev")).lower()
    log_level = (log_level or os.environ.get(LOG_LEVEL_ENV, "INFO")).upper()
    processors = _shared_processors()

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=processors,
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.getLevelNamesMapping().get(log_level, logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_worker_context(consumer_id: str, stream: str, group: str) -> None:
    """将 Worker 身份绑定到 contextvars，后续所有日志自动携带"""
    structlog.contextvars.bind_contextvars(
        consumer_id=consumer_id,
        stream=stream,
        consumer_group=group,
    )


def unbind_worker_context() -> None:
    """Worker 停止后移除身份字段"""
    structlog.contextvars.unbind_contextvars(*_WORKER_CONTEXT_KEYS)
