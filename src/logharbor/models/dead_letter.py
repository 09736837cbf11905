"""DeadLetterEntry Domain Model -- 无法处理的消息及其失败信息

死信写入一次；retry_count 为后续重处理任务预留，当前不会自动重投。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from .enums import FailureReason


class OriginalMessage(BaseModel):
    """原始缓冲消息（保留原文，不做解析）"""

    id: str = Field(description="源缓冲区中的 message_id")
    data: str = Field(description="原始 payload 文本")


class DeadLetterEntry(BaseModel):
    """死信条目"""

    original_message: OriginalMessage
    failure_reason: FailureReason
    error: str | None = Field(default=None, description="上游错误文本（sink 原生错误详情）")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    retry_count: int = Field(default=0, ge=0)
    source_stream: str = Field(default="", description="来源 stream 名称")
    delivery_count: int = Field(default=1, ge=1, description="进入死信前的投递次数")
