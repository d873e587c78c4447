"""模型目录路由 -- GET /v1/models"""

from aigateway.provider import Capability, ProviderRegistry
from fastapi import APIRouter, Depends, Query

from ..deps import get_registry

router = APIRouter()


@router.get("/v1/models")
async def list_models(
    capability: Capability | None = Query(default=None, description="按能力过滤"),
    registry: ProviderRegistry = Depends(get_registry),
):
    """列出已配置 provider 的可用模型"""
    models = registry.available_models(capability)
    return {
        "models": [m.model_dump(mode="json") for m in models],
        "count": len(models),
    }
