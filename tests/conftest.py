"""全局 pytest 配置 -- 临时 SQLite 数据库 + 事件构造 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from logharbor.buffer import BufferGroup, open_buffer_group
from logharbor.models import LogEvent


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时缓冲区数据库路径"""
    return tmp_path / "buffer.db"


@pytest_asyncio.fixture
async def buffer_group(tmp_db_path: Path) -> AsyncGenerator[BufferGroup, None]:
    """提供已初始化的缓冲区实例组（claim_idle_s=60，测试内不会自动重投）"""
    group = await open_buffer_group(str(tmp_db_path), poll_interval_s=0.01)
    yield group
    await group.close()


@pytest_asyncio.fixture
async def docs_conn(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的文档存储连接"""
    from logharbor.sinks import init_documents_db

    conn = await aiosqlite.connect(str(tmp_path / "documents.db"))
    await init_documents_db(conn)
    yield conn
    await conn.close()


@pytest.fixture
def make_event():
    """事件工厂"""

    def _make(**overrides) -> LogEvent:
        data = {
            "schema_version": 1,
            "service": "checkout",
            "environment": "test",
            "kind": "SYSTEM",
            "level": "INFO",
            "category": "payments.gateway",
            "event": "charge_completed",
            "message": "charge ok",
        }
        data.update(overrides)
        return LogEvent.model_validate(data)

    return _make
