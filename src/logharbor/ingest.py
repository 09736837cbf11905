"""IngestService -- 入站层交给核心的唯一入口

外部入站层负责认证、限流、字段校验以及 id / timestamp 默认值生成，
然后调用 submit()。入站确认的含义是“已持久缓冲”，而非“已写入 sink”。
Intake Buffer 不可达时降级到本地兜底日志，而不是拒绝生产方。
"""

import structlog
from pydantic import BaseModel, Field

from .buffer.protocols import IntakeBuffer
from .exceptions import BufferUnavailableError
from .fallback import FallbackLogger
from .models.event import LogEvent

log = structlog.get_logger()


class IngestResult(BaseModel):
    """单条提交结果"""

    event_id: str
    message_id: str | None = Field(default=None, description="缓冲区 message_id，降级时为 None")
    fallback: bool = Field(default=False, description="是否写入了本地兜底日志")
    persisted: bool = Field(default=True, description="False 表示兜底日志也失败（数据丢失）")


class IngestService:
    """入站服务"""

    def __init__(self, buffer: IntakeBuffer, fallback: FallbackLogger) -> None:
        self._buffer = buffer
        self._fallback = fallback

    async def submit(self, event: LogEvent) -> IngestResult:
        """提交一条已校验的事件"""
        try:
            message_id = await self._buffer.append(event)
        except BufferUnavailableError as e:
            log.error(
                "buffer_append_failed_using_fallback",
                log_id=event.id,
                error=str(e),
            )
            persisted = await self._fallback.write(event)
            return IngestResult(event_id=event.id, fallback=True, persisted=persisted)

        return IngestResult(event_id=event.id, message_id=message_id)

    async def submit_many(self, events: list[LogEvent]) -> list[IngestResult]:
        """按顺序提交多条事件"""
        results = []
        for event in events:
            results.append(await self.submit(event))
        fallback_count = sum(1 for r in results if r.fallback)
        if fallback_count:
            log.warning(
                "batch_submitted_with_fallback",
                total=len(results),
                fallback=fallback_count,
            )
        return results
