"""FastAPI 应用主文件

app 创建 + lifespan 管理：账本 DB 初始化/关闭、缓存存储、provider 注册表
与编排器的装配、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from aigateway.core.store import create_kv_store, create_store_group
from aigateway.provider import (
    CreditCalculator,
    ProviderRegistry,
    SmartRouter,
    load_provider_config,
)
from fastapi import FastAPI

from .config import load_gateway_settings
from .errors import register_error_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .routes import cache, chat, health, images, models, speech, transcriptions
from .services.admission import AdmissionController
from .services.orchestrator import GatewayOrchestrator
from .services.semantic_cache import SemanticCache

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时装配组件，关闭时清理连接"""
    settings = load_gateway_settings()
    app.state.settings = settings

    # 账本
    store_group = await create_store_group(settings.db_path)
    app.state.store_group = store_group

    # 缓存存储
    kv_store = create_kv_store(settings.cache_backend, settings.redis_url)
    app.state.kv_store = kv_store
    semantic_cache = SemanticCache(
        kv_store,
        enabled=settings.cache_enabled,
        ttl_seconds=settings.cache_ttl_seconds,
        prefix=settings.cache_prefix,
    )
    app.state.cache = semantic_cache

    # Provider 注册表（每个 provider 一个熔断器）
    provider_config = load_provider_config()
    app.state.provider_config = provider_config
    registry = ProviderRegistry.from_config(provider_config)
    app.state.registry = registry
    if provider_config.validate_on_startup:
        await registry.validate_providers()

    admission = AdmissionController(store_group.ledger_store, CreditCalculator(registry.catalog))
    app.state.orchestrator = GatewayOrchestrator(
        registry=registry,
        router=SmartRouter(registry.catalog),
        cache=semantic_cache,
        admission=admission,
    )

    log.info(
        "gateway_initialized",
        llm_mode=provider_config.llm_mode,
        providers=provider_config.configured_providers(),
        cache_enabled=settings.cache_enabled,
        cache_backend=settings.cache_backend,
    )

    yield

    # 关闭：清理连接
    await kv_store.close()
    if getattr(app.state, "store_group", None):
        await app.state.store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="AI Gateway",
        version="0.1.0",
        description="多 provider AI 请求网关：智能路由、语义缓存、熔断与额度计费",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)
    register_error_handlers(app)

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    # 注册路由
    app.include_router(chat.router, tags=["chat"])
    app.include_router(images.router, tags=["images"])
    app.include_router(speech.router, tags=["speech"])
    app.include_router(transcriptions.router, tags=["transcriptions"])
    app.include_router(models.router, tags=["models"])
    app.include_router(cache.router, tags=["cache"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
