"""缓冲区 SQLite 初始化

PRAGMA 配置 + stream / consumer group / pending 三张表 DDL + 索引创建。
多个 stream（intake、死信）共享同一组表，以 stream 列区分。
"""

import aiosqlite

# stream_entries 表 DDL（append-only，seq 全局单调递增）
_STREAM_ENTRIES_DDL = """
CREATE TABLE IF NOT EXISTS stream_entries (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    stream      TEXT NOT NULL,
    message_id  TEXT NOT NULL UNIQUE,
    payload     TEXT NOT NULL,
    created_at  TEXT NOT NULL
);
"""

# consumer_groups 表 DDL：每个 group 一个游标
_CONSUMER_GROUPS_DDL = """
CREATE TABLE IF NOT EXISTS consumer_groups (
    stream              TEXT NOT NULL,
    group_name          TEXT NOT NULL,
    last_delivered_seq  INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL,

    PRIMARY KEY (stream, group_name)
);
"""

# pending_entries 表 DDL：已投递、未确认的消息
_PENDING_ENTRIES_DDL = """
CREATE TABLE IF NOT EXISTS pending_entries (
    stream          TEXT NOT NULL,
    group_name      TEXT NOT NULL,
    message_id      TEXT NOT NULL,
    seq             INTEGER NOT NULL,
    consumer        TEXT NOT NULL,
    delivered_at    REAL NOT NULL,
    delivery_count  INTEGER NOT NULL DEFAULT 1,

    PRIMARY KEY (stream, group_name, message_id)
);
"""

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_stream_entries_stream_seq ON stream_entries(stream, seq);",
    # 空闲消息回收按投递时间扫描
    (
        "CREATE INDEX IF NOT EXISTS idx_pending_delivered_at "
        "ON pending_entries(stream, group_name, delivered_at);"
    ),
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA synchronous = NORMAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_STREAM_ENTRIES_DDL)
    await conn.execute(_CONSUMER_GROUPS_DDL)
    await conn.execute(_PENDING_ENTRIES_DDL)

    for idx_sql in _INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效"""
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
