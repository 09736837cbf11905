"""LogHarbor Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .dead_letter import DeadLetterEntry, OriginalMessage
from .enums import (
    VALID_TRANSITIONS,
    Destination,
    FailureReason,
    LogKind,
    LogLevel,
    WorkerState,
    validate_transition,
)
from .event import LogEvent
from .profile import DEFAULT_COLLECTION, StorageProfile
from .results import BufferMessage, ItemFailure, PartialResult, RoutedEvent

__all__ = [
    # 枚举
    "LogLevel",
    "LogKind",
    "Destination",
    "FailureReason",
    "WorkerState",
    # 状态机
    "VALID_TRANSITIONS",
    "validate_transition",
    # 事件
    "LogEvent",
    # Profile
    "StorageProfile",
    "DEFAULT_COLLECTION",
    # 死信
    "DeadLetterEntry",
    "OriginalMessage",
    # 缓冲与写入结果
    "BufferMessage",
    "RoutedEvent",
    "ItemFailure",
    "PartialResult",
]
