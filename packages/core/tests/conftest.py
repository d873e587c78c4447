"""packages/core 测试配置 -- 账本 fixture"""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from aigateway.core.store.ledger_store import SqliteLedgerStore


class LedgerClock:
    """可手动推进的 UTC 时钟"""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def ledger_clock() -> LedgerClock:
    return LedgerClock(datetime(2026, 1, 15, 12, 0, tzinfo=UTC))


@pytest_asyncio.fixture
async def ledger(db_conn, ledger_clock) -> SqliteLedgerStore:
    """注入时钟的账本实例"""
    return SqliteLedgerStore(db_conn, clock=ledger_clock)
