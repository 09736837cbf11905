"""缓冲消息与写入结果模型

BufferMessage: read_batch 返回的单条消息
RoutedEvent: 已解析 profile 的事件（sink 写入单元）
PartialResult: 批量写入的逐项失败报告
"""

from pydantic import BaseModel, ConfigDict, Field

from .event import LogEvent
from .profile import StorageProfile


class BufferMessage(BaseModel):
    """缓冲区消息 -- payload 保持原始文本，由 Worker 负责反序列化"""

    model_config = ConfigDict(frozen=True)

    message_id: str
    payload: str
    delivery_count: int = Field(default=1, ge=1, description="累计投递次数，首次为 1")


class RoutedEvent(BaseModel):
    """事件 + 解析出的 profile"""

    model_config = ConfigDict(frozen=True)

    event: LogEvent
    profile: StorageProfile


class ItemFailure(BaseModel):
    """批量写入中的单项失败"""

    index: int = Field(ge=0, description="在输入序列中的位置")
    error: str = Field(description="sink 原生错误详情")


class PartialResult(BaseModel):
    """批量写入结果：空 failures 表示全部成功"""

    failures: list[ItemFailure] = Field(default_factory=list)

    @property
    def failed_indexes(self) -> set[int]:
        return {f.index for f in self.failures}

    @property
    def ok(self) -> bool:
        return not self.failures
