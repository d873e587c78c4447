"""AI Gateway Core Store -- 账本与键值存储实现

提供工厂函数创建共享数据库连接的 Store 实例组，以及按配置创建 KVStore。
"""

from pathlib import Path

import aiosqlite

from .kv_store import MemoryKVStore, RedisKVStore
from .ledger_store import SqliteLedgerStore
from .protocols import KVStore, LedgerStore
from .sqlite_init import init_db, verify_wal_mode


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.ledger_store = SqliteLedgerStore(conn)


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    return StoreGroup(conn=conn)


def create_kv_store(backend: str, redis_url: str) -> KVStore:
    """按后端名称创建 KVStore

    Args:
        backend: memory / redis
        redis_url: redis 后端使用的连接地址
    """
    if backend == "redis":
        return RedisKVStore.from_url(redis_url)
    return MemoryKVStore()


__all__ = [
    "StoreGroup",
    "create_store_group",
    "create_kv_store",
    "LedgerStore",
    "KVStore",
    "SqliteLedgerStore",
    "MemoryKVStore",
    "RedisKVStore",
    "init_db",
    "verify_wal_mode",
]
