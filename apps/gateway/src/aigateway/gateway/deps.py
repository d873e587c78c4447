"""依赖注入模块 -- 通过 FastAPI Depends 注入网关组件

组件实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from aigateway.provider import ProviderRegistry
from fastapi import Request

from .services.orchestrator import GatewayOrchestrator
from .services.semantic_cache import SemanticCache


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_cache(request: Request) -> SemanticCache:
    return request.app.state.cache


def get_orchestrator(request: Request) -> GatewayOrchestrator:
    return request.app.state.orchestrator
