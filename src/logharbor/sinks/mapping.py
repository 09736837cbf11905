"""文档映射 -- LogEvent -> 固定文档 schema

支持两种字段布局：
- 当前格式（schema_version == 1）：context / trace / service / environment
- 旧版格式：operation / metadata / accountUID / requestId / serviceName / env

category 与 operation 为必填，缺失时该事件被文档存储拒绝。
"""

from copy import deepcopy
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ..models.event import LogEvent


class LogDocument(BaseModel):
    """文档存储中的日志文档"""

    log_id: str
    timestamp: datetime
    category: str = Field(min_length=1)
    operation: str = Field(min_length=1)

    level: str | None = None
    service: str | None = None
    environment: str | None = None
    kind: str | None = None
    event: str | None = None
    message: str | None = None
    trace: dict[str, Any] | None = None

    # 身份
    user_id: str | None = None
    account_uid: str | None = None

    # 附件原样保存
    metadata: Any = Field(default_factory=dict)
    payload: Any = Field(default_factory=dict)
    host: dict[str, Any] | None = None
    tags: Any = Field(default_factory=list)
    extra: Any = Field(default_factory=dict)
    tenant_id: str | None = None

    # 业务指标（顶层字段，便于聚合）
    amount: float | None = None
    currency: str | None = None
    status: str | None = None

    # 系统上下文
    request_id: str | None = None
    service_name: str | None = None
    env: str | None = None


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def to_document(event: LogEvent) -> LogDocument:
    """将事件映射为文档（不修改原事件）

    Raises:
        pydantic.ValidationError: 缺少必填字段
    """
    if event.is_legacy:
        return _legacy_document(event)
    return _current_document(event)


def _current_document(event: LogEvent) -> LogDocument:
    context = _as_dict(event.context)
    trace = event.trace or {}
    return LogDocument(
        log_id=event.id,
        timestamp=event.timestamp,
        level=event.level.value if event.level else None,
        service=event.service,
        environment=event.environment,
        kind=event.kind.value if event.kind else None,
        category=event.category,
        event=event.event,
        message=event.message,
        trace=event.trace,
        user_id=_str_or_none(_first(context.get("user_id"), context.get("accountUID"))),
        account_uid=_str_or_none(
            _first(context.get("accountUID"), context.get("user_id"))
        ),
        metadata=deepcopy(event.context),
        payload=deepcopy(event.payload),
        host=event.host,
        tags=deepcopy(event.tags),
        extra=deepcopy(event.extra),
        tenant_id=event.tenant_id,
        operation=event.event,
        request_id=_str_or_none(_first(trace.get("span_id"), context.get("requestId"))),
        service_name=event.service,
        env=event.environment,
    )


def _legacy_document(event: LogEvent) -> LogDocument:
    context = _as_dict(event.context)
    trace = event.trace or {}
    metadata = event.legacy_field("metadata") or context or {}
    if not isinstance(metadata, dict):
        raise ValueError("legacy metadata must be an object")
    account_uid = _str_or_none(
        _first(event.legacy_field("accountUID"), context.get("accountUID"))
    )
    return LogDocument(
        log_id=event.id,
        timestamp=event.timestamp,
        level=event.level.value if event.level else None,
        kind=event.kind.value if event.kind else None,
        category=event.category,
        operation=_first(event.legacy_field("operation"), event.event) or "",
        message=event.message or None,
        user_id=account_uid,
        account_uid=account_uid,
        metadata=dict(metadata),
        amount=_first(metadata.get("amount"), context.get("amount")),
        currency=_str_or_none(_first(metadata.get("currency"), context.get("currency"))),
        status=_str_or_none(_first(metadata.get("status"), context.get("status"))),
        request_id=_str_or_none(
            _first(event.legacy_field("requestId"), trace.get("span_id"))
        ),
        service_name=_str_or_none(
            _first(event.legacy_field("serviceName"), event.service)
        ),
        env=_str_or_none(_first(event.legacy_field("env"), event.environment)),
    )


def search_document(event: LogEvent) -> dict[str, Any]:
    """搜索索引文档：事件原样输出（id 以 log_id 键输出）"""
    data = event.model_dump(mode="json")
    data["log_id"] = data.pop("id")
    return data
