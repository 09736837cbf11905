"""枚举定义 -- 日志级别、日志类型、存储目的地、失败原因与 Worker 状态机

包含 WorkerState 状态机、LogLevel、LogKind、Destination、FailureReason 枚举，
以及 VALID_TRANSITIONS 合法流转映射。
"""

from enum import StrEnum


class LogLevel(StrEnum):
    """日志严重级别（TRACE 最低，FATAL 最高）"""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"

    @classmethod
    def _missing_(cls, value):
        # 大小写不敏感 + WARNING 别名
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized == "WARNING":
                normalized = "WARN"
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class LogKind(StrEnum):
    """日志粗粒度分类"""

    BUSINESS = "BUSINESS"
    SYSTEM = "SYSTEM"
    ANALYTICS = "ANALYTICS"
    AUDIT = "AUDIT"
    SECURITY = "SECURITY"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class Destination(StrEnum):
    """存储目的地 -- 路由层只认识 profile 名，只有 profile 声明目的地"""

    SEARCH_INDEX = "search-index"
    DOCUMENT_STORE = "document-store"


class FailureReason(StrEnum):
    """死信原因标签"""

    PARSE_ERROR = "parse_error"
    SINK_WRITE_ERROR = "sink_write_error"
    MAX_DELIVERIES_EXCEEDED = "max_deliveries_exceeded"


class WorkerState(StrEnum):
    """Batch Worker 单周期状态机"""

    IDLE = "IDLE"
    READING = "READING"
    RESOLVING = "RESOLVING"
    WRITING = "WRITING"
    ACKNOWLEDGING = "ACKNOWLEDGING"

    # 收到关闭信号后不再读取新批次
    DRAINING = "DRAINING"
    STOPPED = "STOPPED"


# 合法状态流转；任意周期状态都可以因整批失败回到 IDLE
VALID_TRANSITIONS: dict[WorkerState, set[WorkerState]] = {
    WorkerState.IDLE: {WorkerState.READING, WorkerState.DRAINING},
    WorkerState.READING: {WorkerState.RESOLVING, WorkerState.IDLE},
    WorkerState.RESOLVING: {
        WorkerState.WRITING,
        WorkerState.ACKNOWLEDGING,
        WorkerState.IDLE,
    },
    WorkerState.WRITING: {WorkerState.ACKNOWLEDGING, WorkerState.IDLE},
    WorkerState.ACKNOWLEDGING: {WorkerState.IDLE},
    WorkerState.DRAINING: {WorkerState.STOPPED},
    WorkerState.STOPPED: set(),
}


def validate_transition(from_state: WorkerState, to_state: WorkerState) -> bool:
    """验证状态流转是否合法

    Args:
        from_state: 当前状态
        to_state: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_state, set())
    return to_state in allowed
