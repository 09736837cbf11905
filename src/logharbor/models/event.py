"""LogEvent Domain Model -- 管道处理的基本单元

写入 Intake Buffer 后不可变（frozen）；下游所有转换只产生派生表示，不修改原事件。
id 默认使用 ULID 格式，作为下游幂等键。
"""

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from ulid import ULID

from .enums import LogKind, LogLevel


def _new_event_id() -> str:
    return str(ULID())


class LogEvent(BaseModel):
    """LogEvent 数据模型

    level / kind 大小写不敏感，可缺省（缺省时路由落到 fallback profile）。
    未声明的顶层字段（旧版格式的 operation / metadata / accountUID 等）
    作为 model extra 保留，供文档存储的旧格式映射读取。
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str = Field(
        default_factory=_new_event_id,
        validation_alias=AliasChoices("id", "log_id"),
        description="全局唯一标识，下游幂等键",
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="事件时间，缺省为入站时间",
    )
    level: LogLevel | None = Field(default=None, description="严重级别")
    kind: LogKind | None = Field(default=None, description="粗粒度分类")
    category: str = Field(default="", description="自由分类，如 payments.charge")
    event: str = Field(default="", description="事件名")
    message: str = Field(default="", description="人类可读文本")

    # 不透明附件，管道从不解释，接受任意 JSON 形态
    context: Any = Field(default_factory=dict)
    payload: Any = Field(default_factory=dict)
    tags: Any = Field(default_factory=list)
    extra: Any = Field(default_factory=dict)

    # 生产方元信息
    schema_version: int | None = Field(default=None, description="1 为当前格式，缺省为旧版格式")
    service: str | None = None
    environment: str | None = None
    trace: dict[str, Any] | None = None
    host: dict[str, Any] | None = None
    tenant_id: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if value is None or value == "":
            return _new_event_id()
        return str(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _default_timestamp(cls, value: Any) -> Any:
        if value is None or value == "":
            return datetime.now(UTC)
        return value

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz(cls, value: datetime) -> datetime:
        # 无时区的时间按 UTC 处理，保证按日期命名索引时结果确定
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @field_validator("level", "kind", mode="before")
    @classmethod
    def _normalize_enum(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized == "":
                return None
            if normalized == "WARNING":
                return "WARN"
            return normalized
        return value

    @field_validator("category", "event", "message", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("context", "payload", "extra", mode="before")
    @classmethod
    def _none_to_dict(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("tags", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_legacy(self) -> bool:
        """是否为旧版字段格式（无 schema_version=1）"""
        return self.schema_version != 1

    def legacy_field(self, name: str, default: Any = None) -> Any:
        """读取旧版格式保留下来的额外字段"""
        extras = self.model_extra or {}
        return extras.get(name, default)

    def to_json(self) -> str:
        """序列化为缓冲区存储格式（JSON 文本，id 以 log_id 键输出）"""
        data = self.model_dump(mode="json")
        data["log_id"] = data.pop("id")
        return json.dumps(data, ensure_ascii=False)
