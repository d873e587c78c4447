"""SemanticCache -- 基于规范化对话指纹的响应缓存

key 形如:
    {prefix}:shared:{model}:{digest}              同模型同问题跨租户共享
    {prefix}:conv:{conversation_id}:{model}:{digest}  按会话隔离

digest = sha256(最近 5 条消息规范化后拼接)[:16]。
缓存永远不是单点故障：存储的任何异常都记录日志后按未命中 / 空操作处理。
"""

import hashlib
import json
import re
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog
from aigateway.core.config import DEFAULT_CACHE_PREFIX, DEFAULT_CACHE_TTL_SECONDS
from aigateway.core.store import KVStore
from aigateway.provider import ConversationMessage

log = structlog.get_logger()

# 参与指纹计算的最大消息数
MAX_HISTORY_MESSAGES = 5
# 可缓存的最后一条消息长度范围（含边界）
MIN_CACHEABLE_LENGTH = 3
MAX_CACHEABLE_LENGTH = 500
DIGEST_LENGTH = 16

# fnmatch 与 Redis MATCH 共有的 glob 元字符；"]" 在集合之外本身就是字面量
_GLOB_SPECIAL = re.compile(r"([*?\[])")

# 时效性词汇：答案随时间变化，不可缓存
TIME_SENSITIVE_KEYWORDS = (
    "now",
    "today",
    "current",
    "latest",
    "время",
    "сегодня",
    "hozir",
    "bugun",
)
# 依赖上下文的表述：跨租户共享不安全
CONTEXT_DEPENDENT_PHRASES = ("my code", "this code")

_TRAILING_PUNCTUATION = ".,!?"


def _glob_escape(value: str) -> str:
    """把元字符包进单字符集合，使其按字面匹配"""
    return _GLOB_SPECIAL.sub(r"[\1]", value)


def normalize_messages(messages: Sequence[ConversationMessage]) -> str:
    """规范化：取最近 5 条，小写、去首尾空白、去尾部标点，拼成 role:content|..."""
    recent = list(messages)[-MAX_HISTORY_MESSAGES:]
    normalized = []
    for msg in recent:
        content = msg.text.lower().strip().rstrip(_TRAILING_PUNCTUATION)
        normalized.append(f"{msg.role.value}:{content}")
    return "|".join(normalized)


def fingerprint(messages: Sequence[ConversationMessage]) -> str:
    """规范化对话的定长摘要"""
    digest = hashlib.sha256(normalize_messages(messages).encode("utf-8")).hexdigest()
    return digest[:DIGEST_LENGTH]


def is_cacheable(messages: Sequence[ConversationMessage]) -> bool:
    """判断请求是否可缓存（只看最后一条消息）"""
    if not messages:
        return False
    last = messages[-1]
    if last.has_images:
        return False

    content = last.text.lower()
    if len(content) < MIN_CACHEABLE_LENGTH or len(content) > MAX_CACHEABLE_LENGTH:
        return False
    if any(keyword in content for keyword in TIME_SENSITIVE_KEYWORDS):
        return False
    return not any(phrase in content for phrase in CONTEXT_DEPENDENT_PHRASES)


class SemanticCache:
    """语义缓存"""

    def __init__(
        self,
        store: KVStore,
        enabled: bool = True,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        prefix: str = DEFAULT_CACHE_PREFIX,
    ) -> None:
        """
        Args:
            store: 键值存储
            enabled: 全局开关，关闭时所有读写都是空操作
            ttl_seconds: 默认 TTL
            prefix: key 前缀
        """
        self._store = store
        self._enabled = enabled
        self._ttl_seconds = ttl_seconds
        self._prefix = prefix

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def store(self) -> KVStore:
        return self._store

    def cache_key(
        self,
        model: str,
        messages: Sequence[ConversationMessage],
        conversation_id: str | None = None,
    ) -> str:
        digest = fingerprint(messages)
        if conversation_id:
            return f"{self._prefix}:conv:{conversation_id}:{model}:{digest}"
        return f"{self._prefix}:shared:{model}:{digest}"

    async def get(
        self,
        model: str,
        messages: Sequence[ConversationMessage],
        conversation_id: str | None = None,
    ) -> str | None:
        """查询缓存，未命中 / 不可缓存 / 存储异常都返回 None"""
        if not self._enabled or not is_cacheable(messages):
            return None

        key = self.cache_key(model, messages, conversation_id)
        try:
            raw = await self._store.get(key)
        except Exception as e:
            log.warning("cache_get_failed", key=key, error=str(e), error_type=type(e).__name__)
            return None

        if raw is None:
            log.debug("cache_miss", model=model, key=key)
            return None

        try:
            content = json.loads(raw)["content"]
        except (ValueError, KeyError, TypeError) as e:
            log.warning("cache_entry_corrupt", key=key, error=str(e))
            return None

        log.info("cache_hit", model=model, key=key)
        return content

    async def set(
        self,
        model: str,
        messages: Sequence[ConversationMessage],
        content: str,
        ttl: int | None = None,
        conversation_id: str | None = None,
    ) -> bool:
        """写入缓存

        Returns:
            True 如果已写入；不可缓存、已关闭或存储异常时返回 False
        """
        if not self._enabled or not content or not is_cacheable(messages):
            return False

        key = self.cache_key(model, messages, conversation_id)
        entry = json.dumps(
            {"content": content, "cached_at": datetime.now(UTC).isoformat()},
            ensure_ascii=False,
        )
        try:
            await self._store.set(key, entry, ttl_seconds=ttl or self._ttl_seconds)
        except Exception as e:
            log.warning("cache_set_failed", key=key, error=str(e), error_type=type(e).__name__)
            return False

        log.debug("cache_stored", model=model, key=key)
        return True

    async def invalidate_by_model(self, model: str) -> int:
        """删除某模型的全部缓存（共享与会话范围）"""
        return await self._delete_patterns(
            f"{_glob_escape(self._prefix)}:shared:{_glob_escape(model)}:*",
            f"{_glob_escape(self._prefix)}:conv:*:{_glob_escape(model)}:*",
        )

    async def invalidate_by_conversation(self, conversation_id: str) -> int:
        """删除某会话的全部缓存"""
        return await self._delete_patterns(
            f"{_glob_escape(self._prefix)}:conv:{_glob_escape(conversation_id)}:*"
        )

    async def stats(self) -> dict:
        """缓存统计：开关状态与 key 数量"""
        keys = 0
        if self._enabled:
            try:
                keys = len(await self._store.keys(f"{_glob_escape(self._prefix)}:*"))
            except Exception as e:
                log.warning("cache_stats_failed", error=str(e), error_type=type(e).__name__)
        return {"enabled": self._enabled, "keys": keys, "ttl_seconds": self._ttl_seconds}

    async def _delete_patterns(self, *patterns: str) -> int:
        removed = 0
        try:
            for pattern in patterns:
                keys = await self._store.keys(pattern)
                if keys:
                    removed += await self._store.delete(*keys)
        except Exception as e:
            log.warning(
                "cache_invalidate_failed",
                patterns=list(patterns),
                error=str(e),
                error_type=type(e).__name__,
            )
            return removed
        log.info("cache_invalidated", patterns=list(patterns), removed=removed)
        return removed
