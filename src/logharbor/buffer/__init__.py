"""LogHarbor Buffer -- SQLite 持久化缓冲区

提供工厂函数创建共享数据库连接的 intake stream + 死信 stream。
"""

import asyncio
from pathlib import Path

import aiosqlite
import structlog

from ..exceptions import BufferUnavailableError
from .dead_letter import StreamDeadLetterSink
from .protocols import DeadLetterSink, IntakeBuffer
from .sqlite_init import init_db, verify_wal_mode
from .stream import SqliteStreamBuffer

log = structlog.get_logger()


class BufferGroup:
    """缓冲区实例组 -- intake 与死信共享同一个数据库连接"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        stream: str,
        dead_letter_stream: str,
        claim_idle_s: float = 60.0,
        poll_interval_s: float = 0.1,
    ) -> None:
        self.conn = conn
        lock = asyncio.Lock()
        self.intake = SqliteStreamBuffer(
            conn,
            stream,
            claim_idle_s=claim_idle_s,
            poll_interval_s=poll_interval_s,
            lock=lock,
        )
        self.dead_letter = StreamDeadLetterSink(
            SqliteStreamBuffer(conn, dead_letter_stream, lock=lock)
        )

    async def close(self) -> None:
        await self.conn.close()


async def open_buffer_group(
    db_path: str,
    stream: str = "logs:stream",
    dead_letter_stream: str = "logs:failed",
    claim_idle_s: float = 60.0,
    poll_interval_s: float = 0.1,
) -> BufferGroup:
    """打开缓冲区实例组

    Args:
        db_path: SQLite 数据库文件路径
        stream: intake stream 名称
        dead_letter_stream: 死信 stream 名称
        claim_idle_s: pending 消息重投前的空闲时间
        poll_interval_s: 阻塞读取的轮询间隔

    Raises:
        BufferUnavailableError: 数据库无法打开
    """
    try:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(db_path)
        await init_db(conn)
    except (aiosqlite.Error, OSError) as e:
        log.error("buffer_open_failed", db_path=db_path, error=str(e))
        raise BufferUnavailableError(stream, e) from e

    log.info(
        "buffer_opened",
        db_path=db_path,
        stream=stream,
        dead_letter_stream=dead_letter_stream,
    )
    return BufferGroup(
        conn,
        stream,
        dead_letter_stream,
        claim_idle_s=claim_idle_s,
        poll_interval_s=poll_interval_s,
    )


__all__ = [
    "BufferGroup",
    "open_buffer_group",
    "SqliteStreamBuffer",
    "StreamDeadLetterSink",
    "IntakeBuffer",
    "DeadLetterSink",
    "init_db",
    "verify_wal_mode",
]
