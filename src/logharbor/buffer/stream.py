"""SqliteStreamBuffer -- 基于 SQLite 的持久化多 consumer group 有序日志

语义:
- append-only：消息只追加，按 seq 有序
- consumer group：每个 group 一个游标；同一条消息同一时刻只投递给 group 内一个 consumer
- 逐条确认：ack 后从 pending 集合移除
- 至少一次：pending 消息空闲超过 claim_idle_s 后由下一次 read_batch 回收重投
  （崩溃恢复 + 未确认即重试），delivery_count 随之递增

跨进程协调完全依赖 SQLite 写锁（BEGIN IMMEDIATE）。
"""

import asyncio
import time
from datetime import UTC, datetime

import aiosqlite
import structlog
from ulid import ULID

from ..exceptions import BufferUnavailableError, ConsumerGroupNotFoundError
from ..models.event import LogEvent
from ..models.results import BufferMessage

log = structlog.get_logger()

# 数据库不可达类异常（aiosqlite 连接关闭时抛 ValueError）
_UNAVAILABLE_ERRORS = (aiosqlite.Error, OSError, ValueError)


class SqliteStreamBuffer:
    """Intake Buffer 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        stream: str,
        claim_idle_s: float = 60.0,
        poll_interval_s: float = 0.1,
        lock: asyncio.Lock | None = None,
    ) -> None:
        """
        Args:
            conn: aiosqlite 数据库连接（已执行 init_db）
            stream: stream 名称
            claim_idle_s: pending 消息空闲多久后可被重新投递
            poll_interval_s: 阻塞读取时轮询其他进程写入的间隔
            lock: 同一连接上的 buffer 共享的锁，保证事务不交错
        """
        self._conn = conn
        self._stream = stream
        self._claim_idle_s = claim_idle_s
        self._poll_interval_s = poll_interval_s
        self._lock = lock or asyncio.Lock()
        self._appended: asyncio.Event | None = None

    @property
    def stream(self) -> str:
        return self._stream

    def _append_signal(self) -> asyncio.Event:
        if self._appended is None:
            self._appended = asyncio.Event()
        return self._appended

    async def append(self, entry: LogEvent | str) -> str:
        """追加一条消息

        Args:
            entry: LogEvent 或已序列化的 payload 文本

        Returns:
            message_id（ULID，时间有序）

        Raises:
            BufferUnavailableError: 数据库不可写
        """
        payload = entry.to_json() if isinstance(entry, LogEvent) else entry
        message_id = str(ULID())
        try:
            async with self._lock:
                await self._conn.execute(
                    """
                    INSERT INTO stream_entries (stream, message_id, payload, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (self._stream, message_id, payload, datetime.now(UTC).isoformat()),
                )
                await self._conn.commit()
        except _UNAVAILABLE_ERRORS as e:
            log.error(
                "buffer_append_failed",
                stream=self._stream,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise BufferUnavailableError(self._stream, e) from e

        self._append_signal().set()
        return message_id

    async def ensure_group(self, group: str, from_start: bool = True) -> bool:
        """创建 consumer group（幂等）

        Args:
            group: group 名称
            from_start: True 从 stream 开头消费，False 只消费之后追加的消息

        Returns:
            True 如果新建，False 如果已存在
        """
        try:
            async with self._lock:
                start_seq = 0
                if not from_start:
                    cursor = await self._conn.execute(
                        "SELECT COALESCE(MAX(seq), 0) FROM stream_entries WHERE stream = ?",
                        (self._stream,),
                    )
                    row = await cursor.fetchone()
                    start_seq = row[0] if row else 0
                cursor = await self._conn.execute(
                    """
                    INSERT OR IGNORE INTO consumer_groups
                        (stream, group_name, last_delivered_seq, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (self._stream, group, start_seq, datetime.now(UTC).isoformat()),
                )
                created = cursor.rowcount == 1
                await self._conn.commit()
        except _UNAVAILABLE_ERRORS as e:
            raise BufferUnavailableError(self._stream, e) from e

        if created:
            log.info("consumer_group_created", stream=self._stream, group=group)
        else:
            log.info("consumer_group_exists", stream=self._stream, group=group)
        return created

    async def read_batch(
        self,
        group: str,
        consumer: str,
        max_count: int,
        block_s: float = 0.0,
    ) -> list[BufferMessage]:
        """读取一批消息

        先回收空闲超时的 pending 消息，再读取新消息。
        无消息时最多阻塞 block_s 秒，超时返回空列表而非抛错。

        Raises:
            BufferUnavailableError: 数据库不可达
            ConsumerGroupNotFoundError: group 未创建
        """
        if max_count <= 0:
            return []

        loop = asyncio.get_running_loop()
        deadline = loop.time() + block_s
        signal = self._append_signal()

        while True:
            # 先清除信号，读取期间发生的追加会重新置位
            signal.clear()
            messages = await self._claim(group, consumer, max_count)
            if messages:
                return messages

            remaining = deadline - loop.time()
            if remaining <= 0:
                return []
            try:
                await asyncio.wait_for(
                    signal.wait(),
                    timeout=min(remaining, self._poll_interval_s),
                )
            except TimeoutError:
                pass

    async def _claim(
        self,
        group: str,
        consumer: str,
        max_count: int,
    ) -> list[BufferMessage]:
        """单事务内回收空闲消息 + 投递新消息"""
        now = time.time()
        try:
            async with self._lock:
                await self._conn.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await self._conn.execute(
                        """
                        SELECT last_delivered_seq FROM consumer_groups
                        WHERE stream = ? AND group_name = ?
                        """,
                        (self._stream, group),
                    )
                    group_row = await cursor.fetchone()
                    if group_row is None:
                        raise ConsumerGroupNotFoundError(self._stream, group)

                    messages = await self._reclaim_idle(group, consumer, max_count, now)

                    remaining = max_count - len(messages)
                    if remaining > 0:
                        messages.extend(
                            await self._deliver_new(
                                group, consumer, remaining, group_row[0], now
                            )
                        )
                    await self._conn.commit()
                except BaseException:
                    await self._conn.rollback()
                    raise
        except _UNAVAILABLE_ERRORS as e:
            log.error(
                "buffer_read_failed",
                stream=self._stream,
                group=group,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise BufferUnavailableError(self._stream, e) from e
        return messages

    async def _reclaim_idle(
        self,
        group: str,
        consumer: str,
        max_count: int,
        now: float,
    ) -> list[BufferMessage]:
        cursor = await self._conn.execute(
            """
            SELECT p.message_id, p.delivery_count, e.payload
            FROM pending_entries p
            JOIN stream_entries e ON e.message_id = p.message_id
            WHERE p.stream = ? AND p.group_name = ? AND p.delivered_at <= ?
            ORDER BY p.seq ASC
            LIMIT ?
            """,
            (self._stream, group, now - self._claim_idle_s, max_count),
        )
        rows = await cursor.fetchall()
        if not rows:
            return []

        await self._conn.executemany(
            """
            UPDATE pending_entries
            SET consumer = ?, delivered_at = ?, delivery_count = delivery_count + 1
            WHERE stream = ? AND group_name = ? AND message_id = ?
            """,
            [(consumer, now, self._stream, group, row[0]) for row in rows],
        )
        log.info(
            "pending_messages_reclaimed",
            stream=self._stream,
            group=group,
            consumer=consumer,
            count=len(rows),
        )
        return [
            BufferMessage(message_id=row[0], payload=row[2], delivery_count=row[1] + 1)
            for row in rows
        ]

    async def _deliver_new(
        self,
        group: str,
        consumer: str,
        max_count: int,
        last_delivered_seq: int,
        now: float,
    ) -> list[BufferMessage]:
        cursor = await self._conn.execute(
            """
            SELECT seq, message_id, payload FROM stream_entries
            WHERE stream = ? AND seq > ?
            ORDER BY seq ASC
            LIMIT ?
            """,
            (self._stream, last_delivered_seq, max_count),
        )
        rows = await cursor.fetchall()
        if not rows:
            return []

        await self._conn.executemany(
            """
            INSERT INTO pending_entries
                (stream, group_name, message_id, seq, consumer, delivered_at, delivery_count)
            VALUES (?, ?, ?, ?, ?, ?, 1)
            """,
            [(self._stream, group, row[1], row[0], consumer, now) for row in rows],
        )
        await self._conn.execute(
            """
            UPDATE consumer_groups SET last_delivered_seq = ?
            WHERE stream = ? AND group_name = ?
            """,
            (rows[-1][0], self._stream, group),
        )
        return [BufferMessage(message_id=row[1], payload=row[2]) for row in rows]

    async def ack(self, group: str, message_id: str) -> bool:
        """确认单条消息

        Returns:
            True 如果该消息此前处于 pending 状态
        """
        return await self.ack_many(group, [message_id]) == 1

    async def ack_many(self, group: str, message_ids: list[str]) -> int:
        """批量确认消息

        Returns:
            实际从 pending 集合移除的条数
        """
        if not message_ids:
            return 0
        try:
            async with self._lock:
                cursor = await self._conn.executemany(
                    """
                    DELETE FROM pending_entries
                    WHERE stream = ? AND group_name = ? AND message_id = ?
                    """,
                    [(self._stream, group, mid) for mid in message_ids],
                )
                removed = cursor.rowcount
                await self._conn.commit()
        except _UNAVAILABLE_ERRORS as e:
            log.error(
                "buffer_ack_failed",
                stream=self._stream,
                group=group,
                count=len(message_ids),
                error=str(e),
            )
            raise BufferUnavailableError(self._stream, e) from e
        return removed

    async def length(self) -> int:
        """stream 中的消息总数（只读计数器）"""
        return await self._count(
            "SELECT COUNT(*) FROM stream_entries WHERE stream = ?",
            (self._stream,),
        )

    async def pending_count(self, group: str) -> int:
        """group 内已投递未确认的消息数"""
        return await self._count(
            "SELECT COUNT(*) FROM pending_entries WHERE stream = ? AND group_name = ?",
            (self._stream, group),
        )

    async def entries(self, limit: int = 100) -> list[BufferMessage]:
        """按顺序读取消息，不经过 consumer group（运维查看用）"""
        try:
            async with self._lock:
                cursor = await self._conn.execute(
                    """
                    SELECT message_id, payload FROM stream_entries
                    WHERE stream = ?
                    ORDER BY seq ASC
                    LIMIT ?
                    """,
                    (self._stream, limit),
                )
                rows = await cursor.fetchall()
        except _UNAVAILABLE_ERRORS as e:
            raise BufferUnavailableError(self._stream, e) from e
        return [BufferMessage(message_id=row[0], payload=row[1]) for row in rows]

    async def _count(self, sql: str, params: tuple) -> int:
        try:
            async with self._lock:
                cursor = await self._conn.execute(sql, params)
                row = await cursor.fetchone()
        except _UNAVAILABLE_ERRORS as e:
            raise BufferUnavailableError(self._stream, e) from e
        return row[0] if row else 0
