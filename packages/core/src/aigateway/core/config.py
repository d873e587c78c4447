"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、缓存开关 / TTL / 后端等可配置项。
"""

import os
from pathlib import Path

import structlog

log = structlog.get_logger()

DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_CACHE_PREFIX = "aigw:cache"


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("AIGW_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 账本数据库路径"""
    return os.environ.get(
        "AIGW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "aigateway.db"),
    )


def is_cache_enabled() -> bool:
    """全局缓存开关，仅当 AIGW_CACHE_ENABLED=false 时关闭"""
    return os.environ.get("AIGW_CACHE_ENABLED", "true").strip().lower() != "false"


def get_cache_ttl_seconds() -> int:
    val = os.environ.get("AIGW_CACHE_TTL_SECONDS")
    if not val:
        return DEFAULT_CACHE_TTL_SECONDS
    try:
        return max(int(val), 1)
    except ValueError:
        log.warning(
            "invalid_cache_ttl_config",
            env_var="AIGW_CACHE_TTL_SECONDS",
            value=val,
            fallback=DEFAULT_CACHE_TTL_SECONDS,
        )
        return DEFAULT_CACHE_TTL_SECONDS


def get_cache_prefix() -> str:
    return os.environ.get("AIGW_CACHE_PREFIX", DEFAULT_CACHE_PREFIX)


def get_cache_backend() -> str:
    """缓存后端：memory（默认）/ redis"""
    return os.environ.get("AIGW_CACHE_BACKEND", "memory").strip().lower()


def get_redis_url() -> str:
    return os.environ.get("AIGW_REDIS_URL", "redis://localhost:6379/0")
