"""StreamDeadLetterSink -- 死信写入第二条持久化 stream

append-only；本系统只写不读（由运维或独立重处理任务消费）。
entries() 仅供运维工具查看。
"""

import structlog

from ..exceptions import BufferUnavailableError, DeadLetterError
from ..models.dead_letter import DeadLetterEntry
from .stream import SqliteStreamBuffer

log = structlog.get_logger()


class StreamDeadLetterSink:
    """死信 sink 的 stream 实现"""

    def __init__(self, buffer: SqliteStreamBuffer) -> None:
        self._buffer = buffer

    @property
    def stream(self) -> str:
        return self._buffer.stream

    async def write(self, entry: DeadLetterEntry) -> str:
        """写入一条死信

        Returns:
            死信 stream 中的 message_id

        Raises:
            DeadLetterError: 死信 stream 不可写
        """
        try:
            message_id = await self._buffer.append(entry.model_dump_json())
        except BufferUnavailableError as e:
            log.error(
                "dead_letter_write_failed",
                original_message_id=entry.original_message.id,
                failure_reason=entry.failure_reason.value,
                error=str(e),
            )
            raise DeadLetterError(entry.original_message.id, e) from e

        log.warning(
            "moved_to_dead_letter",
            original_message_id=entry.original_message.id,
            failure_reason=entry.failure_reason.value,
            error=entry.error,
        )
        return message_id

    async def length(self) -> int:
        """死信总数（只读计数器）"""
        return await self._buffer.length()

    async def entries(self, limit: int = 100) -> list[DeadLetterEntry]:
        """按写入顺序读取死信"""
        messages = await self._buffer.entries(limit)
        return [DeadLetterEntry.model_validate_json(m.payload) for m in messages]
