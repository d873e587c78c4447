"""apps/gateway 测试配置 -- 编排组件 fixture + FastAPI AsyncClient"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from aigateway.core.store import MemoryKVStore, SqliteLedgerStore
from aigateway.gateway.services.admission import AdmissionController
from aigateway.gateway.services.orchestrator import GatewayOrchestrator
from aigateway.gateway.services.semantic_cache import SemanticCache
from aigateway.provider import (
    CreditCalculator,
    ProviderConfig,
    ProviderRegistry,
    SmartRouter,
    Tenant,
)
from httpx import ASGITransport, AsyncClient
from sse_starlette.sse import AppStatus

_GATEWAY_ENV_VARS = [
    "AIGW_OPENAI_API_KEY",
    "AIGW_ANTHROPIC_API_KEY",
    "AIGW_CACHE_TTL_SECONDS",
    "AIGW_CACHE_PREFIX",
    "AIGW_BREAKER_FAILURE_THRESHOLD",
    "AIGW_VALIDATE_PROVIDERS",
]


# ---- 组件级 fixture（不经过 HTTP）----


@pytest.fixture
def tenant() -> Tenant:
    return Tenant(user_id="user-1")


@pytest.fixture
def registry() -> ProviderRegistry:
    """echo 模式注册表"""
    return ProviderRegistry.from_config(ProviderConfig(llm_mode="echo"))


@pytest.fixture
def kv_store() -> MemoryKVStore:
    return MemoryKVStore()


@pytest.fixture
def cache(kv_store) -> SemanticCache:
    return SemanticCache(kv_store, ttl_seconds=60, prefix="test")


@pytest_asyncio.fixture
async def ledger(db_conn) -> SqliteLedgerStore:
    return SqliteLedgerStore(db_conn)


@pytest.fixture
def admission(ledger, registry) -> AdmissionController:
    return AdmissionController(ledger, CreditCalculator(registry.catalog))


@pytest.fixture
def orchestrator(registry, cache, admission) -> GatewayOrchestrator:
    return GatewayOrchestrator(
        registry=registry,
        router=SmartRouter(registry.catalog),
        cache=cache,
        admission=admission,
    )


# ---- HTTP 级 fixture ----


@pytest.fixture(autouse=True)
def reset_sse_exit_event():
    """AppStatus 的退出事件是类级别的，每个测试的事件循环不同，需要重置"""
    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None


@pytest.fixture
def gateway_env(tmp_path: Path, monkeypatch) -> Path:
    """echo 模式 + 内存缓存 + 临时账本"""
    db_path = tmp_path / "sqlite" / "gateway.db"
    for name in _GATEWAY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AIGW_DB_PATH", str(db_path))
    monkeypatch.setenv("AIGW_LLM_MODE", "echo")
    monkeypatch.setenv("AIGW_CACHE_BACKEND", "memory")
    monkeypatch.setenv("AIGW_CACHE_ENABLED", "true")
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return db_path


@pytest_asyncio.fixture
async def app(gateway_env: Path):
    """已执行 lifespan 启动流程的 app（ASGITransport 不触发 lifespan）"""
    from aigateway.gateway.main import create_app, lifespan

    application = create_app()
    async with lifespan(application):
        yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
