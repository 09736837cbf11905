"""LogHarbor -- 日志事件持久缓冲、路由与投递管道

生产方 -> 入站层 -> Intake Buffer -> BatchWorker -> 搜索索引 / 文档存储（失败进入死信）。
公开接口导出。
"""

from .buffer import BufferGroup, SqliteStreamBuffer, StreamDeadLetterSink, open_buffer_group

# 配置
from .config import HarborConfig, load_config

# 异常
from .exceptions import (
    BufferUnavailableError,
    ConsumerGroupNotFoundError,
    DeadLetterError,
    LogHarborError,
    RoutingConfigError,
    SinkUnavailableError,
)
from .fallback import FallbackLogger
from .ingest import IngestResult, IngestService
from .models import DeadLetterEntry, Destination, LogEvent, LogKind, LogLevel, StorageProfile
from .routing import ProfileRegistry, RoutingEngine, build_routing_engine
from .sinks import DocumentStoreSink, SearchIndexSink
from .worker import BatchOutcome, BatchWorker

__version__ = "0.1.0"

__all__ = [
    "LogEvent",
    "LogLevel",
    "LogKind",
    "Destination",
    "StorageProfile",
    "DeadLetterEntry",
    "ProfileRegistry",
    "RoutingEngine",
    "build_routing_engine",
    "BufferGroup",
    "open_buffer_group",
    "SqliteStreamBuffer",
    "StreamDeadLetterSink",
    "SearchIndexSink",
    "DocumentStoreSink",
    "BatchWorker",
    "BatchOutcome",
    "IngestService",
    "IngestResult",
    "FallbackLogger",
    "HarborConfig",
    "load_config",
    "LogHarborError",
    "BufferUnavailableError",
    "ConsumerGroupNotFoundError",
    "SinkUnavailableError",
    "DeadLetterError",
    "RoutingConfigError",
]
