"""缓冲区 Protocol 接口定义

Worker 与入站服务只依赖这些接口，测试中可用替身注入。
consumer group 游标由缓冲区实现独占，调用方只发起 read / ack。
"""

from typing import Protocol

from ..models.dead_letter import DeadLetterEntry
from ..models.event import LogEvent
from ..models.results import BufferMessage


class IntakeBuffer(Protocol):
    """持久化 Intake Buffer 接口"""

    async def append(self, entry: LogEvent | str) -> str:
        """追加消息，返回 message_id"""
        ...

    async def ensure_group(self, group: str, from_start: bool = True) -> bool:
        """创建 consumer group（幂等）"""
        ...

    async def read_batch(
        self,
        group: str,
        consumer: str,
        max_count: int,
        block_s: float = 0.0,
    ) -> list[BufferMessage]:
        """读取一批消息，超时返回空列表"""
        ...

    async def ack(self, group: str, message_id: str) -> bool:
        """确认单条消息"""
        ...

    async def ack_many(self, group: str, message_ids: list[str]) -> int:
        """批量确认消息"""
        ...

    async def length(self) -> int:
        """消息总数"""
        ...

    async def pending_count(self, group: str) -> int:
        """已投递未确认的消息数"""
        ...


class DeadLetterSink(Protocol):
    """死信 sink 接口（append-only）"""

    async def write(self, entry: DeadLetterEntry) -> str:
        """写入一条死信"""
        ...

    async def length(self) -> int:
        """死信总数"""
        ...
