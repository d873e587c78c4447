"""CircuitBreaker -- 按 provider 隔离故障的熔断器

状态机:
    CLOSED    --窗口内失败数达到阈值-->      OPEN
    OPEN      --reset timeout 到期后的下一次调用--> HALF_OPEN
    HALF_OPEN --连续成功 half_open_max_attempts 次--> CLOSED
    HALF_OPEN --任意一次失败-->              OPEN

状态只存在于进程内存，重启后默认 provider 健康。
计数更新在同一把锁内完成，可被多个协程 / 线程并发调用。
"""

import threading
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from enum import StrEnum
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, Field

from .exceptions import CircuitOpenError, ErrorKind, GatewayError

log = structlog.get_logger()

T = TypeVar("T")


class CircuitState(StrEnum):
    """熔断器状态"""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class BreakerConfig(BaseModel):
    """单个熔断器配置"""

    name: str = Field(default="default", description="熔断器名称（通常为 provider 名）")
    failure_threshold: int = Field(default=5, ge=1, description="窗口内触发 OPEN 的失败次数")
    reset_timeout_ms: int = Field(default=30_000, ge=0, description="OPEN 持续多久后允许试探")
    monitor_window_ms: int = Field(default=60_000, ge=1, description="失败计数的滑动窗口")
    half_open_max_attempts: int = Field(
        default=3,
        ge=1,
        description="HALF_OPEN 下恢复 CLOSED 所需的连续成功次数",
    )


class CircuitStats(BaseModel):
    """熔断器运行统计（用于 /ready 与调试）"""

    name: str
    state: CircuitState
    failures: int = Field(description="滑动窗口内的失败数")
    successes: int = Field(description="HALF_OPEN 下已累计的成功数")
    last_failure_ms: float | None = None
    last_state_change_ms: float
    total_requests: int
    total_failures: int


def counts_as_failure(error: BaseException) -> bool:
    """默认失败判定：调用方自身的错误（INVALID_REQUEST）不计入 provider 健康度"""
    if isinstance(error, GatewayError):
        return error.kind not in (ErrorKind.INVALID_REQUEST, ErrorKind.CIRCUIT_OPEN)
    return True


class CircuitBreaker:
    """熔断器

    execute() 包装一次异步调用；guard() 用于流式调用这类跨越多次 await 的场景。
    被包装调用的结果与异常总是原样返回给调用方。
    """

    def __init__(
        self,
        config: BreakerConfig,
        clock: Callable[[], float] = time.monotonic,
        is_failure: Callable[[BaseException], bool] = counts_as_failure,
    ) -> None:
        """
        Args:
            config: 熔断器配置
            clock: 返回秒数的单调时钟（测试时注入）
            is_failure: 判定异常是否计为失败
        """
        self._config = config
        self._clock = clock
        self._is_failure = is_failure
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._successes = 0
        self._last_failure_ms: float | None = None
        self._last_state_change_ms = self._now_ms()
        self._total_requests = 0
        self._total_failures = 0

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> BreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        return self._state

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """通过熔断器执行一次调用

        Raises:
            CircuitOpenError: 熔断器 OPEN 且 reset timeout 未到（fn 不会被调用）
        """
        self._before_call()
        try:
            result = await fn()
        except Exception as e:
            self._record_error(e)
            raise
        self._record_success()
        return result

    @asynccontextmanager
    async def guard(self) -> AsyncIterator[None]:
        """上下文形式的 execute()，块内正常退出计为成功、抛出 Exception 计为失败

        取消（CancelledError / GeneratorExit）既不计成功也不计失败。
        """
        self._before_call()
        try:
            yield
        except Exception as e:
            self._record_error(e)
            raise
        self._record_success()

    def is_available(self) -> bool:
        """当前是否允许调用（OPEN 且未到 reset timeout 时为 False）"""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return True
            return self._now_ms() - self._last_state_change_ms >= self._config.reset_timeout_ms

    def stats(self) -> CircuitStats:
        with self._lock:
            self._prune(self._now_ms())
            return CircuitStats(
                name=self._config.name,
                state=self._state,
                failures=len(self._failures),
                successes=self._successes,
                last_failure_ms=self._last_failure_ms,
                last_state_change_ms=self._last_state_change_ms,
                total_requests=self._total_requests,
                total_failures=self._total_failures,
            )

    def force_open(self) -> None:
        """人工熔断（运维用）"""
        with self._lock:
            self._transition(CircuitState.OPEN)

    def force_close(self) -> None:
        """人工恢复，清空计数"""
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self._failures.clear()
            self._successes = 0

    # ---- 内部状态机 ----

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _before_call(self) -> None:
        with self._lock:
            self._total_requests += 1
            if self._state != CircuitState.OPEN:
                return
            elapsed = self._now_ms() - self._last_state_change_ms
            if elapsed >= self._config.reset_timeout_ms:
                self._transition(CircuitState.HALF_OPEN)
                return
            retry_after_ms = int(self._config.reset_timeout_ms - elapsed)

        log.info(
            "breaker_rejected",
            circuit=self._config.name,
            retry_after_ms=retry_after_ms,
        )
        raise CircuitOpenError(self._config.name, retry_after_ms=retry_after_ms)

    def _record_error(self, error: BaseException) -> None:
        if self._is_failure(error):
            self._record_failure()

    def _record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self._config.half_open_max_attempts:
                    self._transition(CircuitState.CLOSED)
            else:
                self._prune(self._now_ms())

    def _record_failure(self) -> None:
        with self._lock:
            now = self._now_ms()
            self._total_failures += 1
            self._last_failure_ms = now
            self._failures.append(now)
            self._prune(now)

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and len(self._failures) >= self._config.failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def _prune(self, now: float) -> None:
        window = self._config.monitor_window_ms
        while self._failures and now - self._failures[0] >= window:
            self._failures.popleft()

    def _transition(self, new_state: CircuitState) -> None:
        """切换状态（调用方需持有锁）"""
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._last_state_change_ms = self._now_ms()

        if new_state == CircuitState.HALF_OPEN:
            self._successes = 0
        elif new_state == CircuitState.CLOSED:
            self._failures.clear()
            self._successes = 0

        log.warning(
            "breaker_state_changed",
            circuit=self._config.name,
            from_state=old_state.value,
            to_state=new_state.value,
            recent_failures=len(self._failures),
        )


class BreakerRegistry:
    """熔断器注册表 -- 按名称惰性创建并复用熔断器

    由 ProviderRegistry 在进程启动时构造一次并显式传递，不使用模块级单例。
    """

    def __init__(
        self,
        defaults: BreakerConfig | None = None,
        overrides: dict[str, dict[str, Any]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            defaults: 所有熔断器的默认配置
            overrides: 按名称覆盖的配置字段，如 {"openai": {"failure_threshold": 3}}
            clock: 注入给每个熔断器的时钟
        """
        self._defaults = defaults or BreakerConfig()
        self._overrides = overrides or {}
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str, config: BreakerConfig | None = None) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                if config is None:
                    config = self._defaults.model_copy(
                        update={"name": name, **self._overrides.get(name, {})}
                    )
                breaker = CircuitBreaker(config, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def get(self, name: str) -> CircuitBreaker | None:
        return self._breakers.get(name)

    def has(self, name: str) -> bool:
        return name in self._breakers

    def remove(self, name: str) -> bool:
        with self._lock:
            return self._breakers.pop(name, None) is not None

    def all(self) -> dict[str, CircuitBreaker]:
        return dict(self._breakers)

    def all_stats(self) -> dict[str, CircuitStats]:
        return {name: breaker.stats() for name, breaker in self.all().items()}

    def clear(self) -> None:
        with self._lock:
            self._breakers.clear()
