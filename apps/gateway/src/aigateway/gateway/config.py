"""Gateway 运行配置 -- 数据库、缓存相关设置汇总为 pydantic 模型"""

from typing import Literal

from aigateway.core.config import (
    DEFAULT_CACHE_PREFIX,
    DEFAULT_CACHE_TTL_SECONDS,
    get_cache_backend,
    get_cache_prefix,
    get_cache_ttl_seconds,
    get_db_path,
    get_redis_url,
    is_cache_enabled,
)
from pydantic import BaseModel, Field


class GatewaySettings(BaseModel):
    db_path: str
    cache_enabled: bool = True
    cache_ttl_seconds: int = Field(default=DEFAULT_CACHE_TTL_SECONDS, ge=1)
    cache_prefix: str = DEFAULT_CACHE_PREFIX
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"


def load_gateway_settings() -> GatewaySettings:
    """从环境变量加载 Gateway 配置"""
    return GatewaySettings(
        db_path=get_db_path(),
        cache_enabled=is_cache_enabled(),
        cache_ttl_seconds=get_cache_ttl_seconds(),
        cache_prefix=get_cache_prefix(),
        cache_backend=get_cache_backend(),
        redis_url=get_redis_url(),
    )
