"""SQLite 数据库初始化

PRAGMA 配置 + 账本三张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# wallets 表 DDL：每个 (wallet_type, owner_id) 最多一个钱包
_WALLETS_DDL = """
CREATE TABLE IF NOT EXISTS wallets (
    wallet_id        TEXT PRIMARY KEY,
    wallet_type      TEXT NOT NULL,
    owner_id         TEXT NOT NULL,
    plan             TEXT NOT NULL,
    balance          REAL NOT NULL DEFAULT 0,
    monthly_used     REAL NOT NULL DEFAULT 0,
    pending_credits  REAL NOT NULL DEFAULT 0,
    period           TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);
"""

_WALLETS_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_wallets_owner ON wallets(wallet_type, owner_id);",
]

# credit_transactions 表 DDL（append-only）
_TRANSACTIONS_DDL = """
CREATE TABLE IF NOT EXISTS credit_transactions (
    transaction_id  TEXT PRIMARY KEY,
    wallet_id       TEXT NOT NULL,
    type            TEXT NOT NULL,
    amount          REAL NOT NULL,
    balance_after   REAL NOT NULL,
    description     TEXT NOT NULL DEFAULT '',
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      TEXT NOT NULL,

    FOREIGN KEY (wallet_id) REFERENCES wallets(wallet_id)
);
"""

_TRANSACTIONS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_transactions_wallet ON credit_transactions(wallet_id, created_at);",
]

# usage_records 表 DDL（append-only）
_USAGE_DDL = """
CREATE TABLE IF NOT EXISTS usage_records (
    usage_id         TEXT PRIMARY KEY,
    wallet_id        TEXT NOT NULL,
    transaction_id   TEXT NOT NULL,
    user_id          TEXT NOT NULL,
    organization_id  TEXT,
    capability       TEXT NOT NULL,
    model            TEXT NOT NULL,
    request_id       TEXT,
    input_tokens     INTEGER NOT NULL DEFAULT 0,
    output_tokens    INTEGER NOT NULL DEFAULT 0,
    image_count      INTEGER NOT NULL DEFAULT 0,
    character_count  INTEGER NOT NULL DEFAULT 0,
    audio_seconds    REAL NOT NULL DEFAULT 0,
    credits          REAL NOT NULL,
    created_at       TEXT NOT NULL,

    FOREIGN KEY (wallet_id) REFERENCES wallets(wallet_id),
    FOREIGN KEY (transaction_id) REFERENCES credit_transactions(transaction_id)
);
"""

_USAGE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_usage_wallet ON usage_records(wallet_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_usage_user ON usage_records(user_id);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_WALLETS_DDL)
    await conn.execute(_TRANSACTIONS_DDL)
    await conn.execute(_USAGE_DDL)

    # 创建索引
    for idx_sql in _WALLETS_INDEXES + _TRANSACTIONS_INDEXES + _USAGE_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
