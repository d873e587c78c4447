"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含账本 SQLite 连通性、缓存存储、provider 状态。
         profile=full 时附带每个熔断器的统计。
"""

import structlog
from aigateway.provider import ProviderStatus
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


def _provider_check(status: ProviderStatus) -> str:
    if not status.configured:
        return "not_configured"
    if status.validated is False:
        return "invalid_credentials"
    return status.circuit_state.value if status.circuit_state else "unknown"


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="core（默认）仅核心检查；full 附带熔断器统计",
    ),
):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 账本数据库连通性（不可用时 not_ready）
    2. cache_store: 缓存存储连通性（缓存失败只会降级为未命中，仅报告）
    3. providers: 每个 provider 的配置、密钥校验与熔断状态（至少一个可用）
    """
    effective_profile = profile or "core"

    checks: dict = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. 缓存存储
    cache = request.app.state.cache
    if not cache.enabled:
        checks["cache_store"] = "disabled"
    else:
        try:
            await cache.store.ping()
            checks["cache_store"] = "ok"
        except Exception as e:
            log.warning("health_check_error", check="cache_store", error=str(e))
            checks["cache_store"] = "degraded"

    # 3. Provider 与熔断器
    registry = request.app.state.registry
    statuses = registry.providers_status()
    checks["providers"] = {s.name: _provider_check(s) for s in statuses}
    if not any(s.configured and s.validated is not False for s in statuses):
        all_ok = False

    content = {
        "status": "ready" if all_ok else "not_ready",
        "profile": effective_profile,
        "checks": checks,
    }
    if effective_profile == "full":
        content["breakers"] = {
            name: stats.model_dump(mode="json")
            for name, stats in registry.breakers.all_stats().items()
        }

    return JSONResponse(status_code=200 if all_ok else 503, content=content)
