"""缓存管理路由 -- 按模型 / 会话失效，以及统计信息"""

from fastapi import APIRouter, Depends

from ..deps import get_cache
from ..services.semantic_cache import SemanticCache

router = APIRouter()


@router.delete("/v1/cache/models/{model}")
async def invalidate_model(model: str, cache: SemanticCache = Depends(get_cache)):
    removed = await cache.invalidate_by_model(model)
    return {"model": model, "removed": removed}


@router.delete("/v1/cache/conversations/{conversation_id}")
async def invalidate_conversation(
    conversation_id: str,
    cache: SemanticCache = Depends(get_cache),
):
    removed = await cache.invalidate_by_conversation(conversation_id)
    return {"conversation_id": conversation_id, "removed": removed}


@router.get("/v1/cache/stats")
async def cache_stats(cache: SemanticCache = Depends(get_cache)):
    return await cache.stats()
