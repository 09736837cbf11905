"""DocumentStoreSink -- 按 profile 集合存储日志文档（SQLite 实现）

文档以 (collection, doc_id) 为键 upsert，重投时覆盖写入（幂等）。
逐事件写入：单条失败（映射校验失败、约束冲突）记为逐项失败，不中止批次；
数据库整体不可用时抛出 SinkUnavailableError。
expires_at = 事件时间 + profile.ttl_days，由 purge_expired() 清理。
"""

import json
import sqlite3
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from ..exceptions import SinkUnavailableError
from ..models.enums import Destination
from ..models.results import ItemFailure, PartialResult, RoutedEvent
from .mapping import to_document

log = structlog.get_logger()

_DOCUMENTS_DDL = """
CREATE TABLE IF NOT EXISTS documents (
    collection  TEXT NOT NULL,
    doc_id      TEXT NOT NULL,
    timestamp   TEXT NOT NULL,
    category    TEXT NOT NULL,
    operation   TEXT NOT NULL,
    user_id     TEXT,
    body        TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    expires_at  TEXT NOT NULL,

    PRIMARY KEY (collection, doc_id)
);
"""

_DOCUMENTS_INDEXES = [
    # 常用查询的复合索引
    (
        "CREATE INDEX IF NOT EXISTS idx_documents_category_ts "
        "ON documents(collection, category, timestamp DESC);"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_documents_user_ts "
        "ON documents(collection, user_id, timestamp DESC);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_documents_expires_at ON documents(expires_at);",
]

# 单条文档被拒绝的异常（aiosqlite 透传 sqlite3 异常，其余视为整体不可用）
_ITEM_ERRORS = (sqlite3.IntegrityError, sqlite3.DataError, sqlite3.InterfaceError)

_UNAVAILABLE_ERRORS = (aiosqlite.Error, OSError, ValueError)


async def init_documents_db(conn: aiosqlite.Connection) -> None:
    """初始化文档存储表"""
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")
    await conn.execute(_DOCUMENTS_DDL)
    for idx_sql in _DOCUMENTS_INDEXES:
        await conn.execute(idx_sql)
    await conn.commit()


class DocumentStoreSink:
    """文档存储 sink"""

    destination = Destination.DOCUMENT_STORE

    def __init__(
        self,
        db_path: str | None = None,
        conn: aiosqlite.Connection | None = None,
    ) -> None:
        """
        Args:
            db_path: SQLite 文件路径（open() 时连接）
            conn: 外部注入的已初始化连接，注入时由调用方负责关闭
        """
        if db_path is None and conn is None:
            raise ValueError("db_path or conn is required")
        self._db_path = db_path
        self._conn = conn
        self._owns_conn = conn is None

    async def open(self) -> None:
        if self._conn is not None:
            return
        try:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self._db_path)
            await init_documents_db(self._conn)
        except (aiosqlite.Error, OSError) as e:
            self._conn = None
            raise SinkUnavailableError(self.destination.value, e) from e
        self._owns_conn = True
        log.info("document_store_opened", db_path=self._db_path)

    async def close(self) -> None:
        if self._conn is not None and self._owns_conn:
            await self._conn.close()
            self._conn = None
            log.info("document_store_closed", db_path=self._db_path)

    async def write_batch(self, routed: Sequence[RoutedEvent]) -> PartialResult:
        """逐事件写入 profile 指定的集合

        Raises:
            SinkUnavailableError: 数据库不可用
        """
        if not routed:
            return PartialResult()
        if self._conn is None:
            await self.open()

        failures: list[ItemFailure] = []
        now = datetime.now(UTC)
        try:
            for position, item in enumerate(routed):
                error = await self._write_one(item, now)
                if error is not None:
                    failures.append(ItemFailure(index=position, error=error))
            await self._conn.commit()
        except _UNAVAILABLE_ERRORS as e:
            await self._safe_rollback()
            log.error(
                "document_store_write_failed",
                count=len(routed),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise SinkUnavailableError(self.destination.value, e) from e

        if failures:
            log.warning(
                "document_store_partial_failure",
                count=len(routed),
                failed=len(failures),
            )
        return PartialResult(failures=failures)

    async def _write_one(self, item: RoutedEvent, now: datetime) -> str | None:
        """写入单个文档，返回错误详情或 None"""
        collection = item.profile.collection_name()
        try:
            document = to_document(item.event)
        except ValueError as e:
            log.warning(
                "document_mapping_rejected",
                log_id=item.event.id,
                collection=collection,
                error=str(e),
            )
            return f"document mapping failed: {e}"

        expires_at = document.timestamp + timedelta(days=item.profile.ttl_days)
        await self._conn.execute("SAVEPOINT doc_write")
        try:
            await self._conn.execute(
                """
                INSERT OR REPLACE INTO documents (collection, doc_id, timestamp, category,
                                                  operation, user_id, body, created_at,
                                                  expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    collection,
                    document.log_id,
                    document.timestamp.isoformat(),
                    document.category,
                    document.operation,
                    document.user_id,
                    document.model_dump_json(),
                    now.isoformat(),
                    expires_at.astimezone(UTC).isoformat(),
                ),
            )
        except _ITEM_ERRORS as e:
            await self._conn.execute("ROLLBACK TO SAVEPOINT doc_write")
            await self._conn.execute("RELEASE SAVEPOINT doc_write")
            log.warning(
                "document_write_rejected",
                log_id=document.log_id,
                collection=collection,
                error=str(e),
            )
            return f"{type(e).__name__}: {e}"
        await self._conn.execute("RELEASE SAVEPOINT doc_write")
        return None

    async def _safe_rollback(self) -> None:
        try:
            await self._conn.rollback()
        except _UNAVAILABLE_ERRORS as e:
            log.debug("document_store_rollback_failed", error=str(e))

    async def find(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """按集合与文档 ID 查询"""
        if self._conn is None:
            await self.open()
        cursor = await self._conn.execute(
            "SELECT body FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
        row = await cursor.fetchone()
        return json.loads(row[0]) if row else None

    async def count(self, collection: str | None = None) -> int:
        """文档数量，collection 为 None 时统计全部"""
        if self._conn is None:
            await self.open()
        if collection is None:
            cursor = await self._conn.execute("SELECT COUNT(*) FROM documents")
        else:
            cursor = await self._conn.execute(
                "SELECT COUNT(*) FROM documents WHERE collection = ?",
                (collection,),
            )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def purge_expired(self, now: datetime | None = None) -> int:
        """删除已过保留期的文档

        Returns:
            删除条数
        """
        if self._conn is None:
            await self.open()
        cutoff = (now or datetime.now(UTC)).astimezone(UTC).isoformat()
        cursor = await self._conn.execute(
            "DELETE FROM documents WHERE expires_at <= ?",
            (cutoff,),
        )
        await self._conn.commit()
        deleted = cursor.rowcount
        log.info("expired_documents_purged", deleted=deleted, cutoff=cutoff)
        return deleted
