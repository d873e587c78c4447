"""集成测试共享 fixture -- 完整 lifespan 装配的 echo 模式网关"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sse_starlette.sse import AppStatus


@pytest.fixture(autouse=True)
def reset_sse_exit_event():
    AppStatus.should_exit_event = None
    yield
    AppStatus.should_exit_event = None


@pytest.fixture
def integration_env(tmp_path: Path, monkeypatch) -> Path:
    """echo 模式网关环境，返回账本路径"""
    db_path = tmp_path / "integration.db"
    monkeypatch.delenv("AIGW_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("AIGW_ANTHROPIC_API_KEY", raising=False)
    monkeypatch.setenv("AIGW_DB_PATH", str(db_path))
    monkeypatch.setenv("AIGW_LLM_MODE", "echo")
    monkeypatch.setenv("AIGW_CACHE_BACKEND", "memory")
    monkeypatch.setenv("AIGW_CACHE_ENABLED", "true")
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    return db_path


@pytest_asyncio.fixture
async def integration_app(integration_env: Path):
    from aigateway.gateway.main import create_app, lifespan

    app = create_app()
    async with lifespan(app):
        yield app


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
