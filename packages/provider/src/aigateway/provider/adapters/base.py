"""ProviderAdapter -- provider 适配器基类

统一四种能力的调用入口（generate / generate_stream / generate_image /
synthesize_speech / transcribe），负责:
    1. 通过该 provider 的 CircuitBreaker 执行调用
    2. 为每次调用施加超时
    3. 把 provider SDK 的异常归一为 GatewayError（classify_error）

子类只实现 _generate / _stream / _image / _speech / _transcribe。
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

import httpx
import structlog

from ..breaker import CircuitBreaker
from ..exceptions import ErrorKind, GatewayError
from ..models import (
    Capability,
    GenerationRequest,
    ImageRequest,
    ImageResult,
    SpeechRequest,
    SpeechResult,
    StreamChunk,
    TextResult,
    TokenUsage,
    TranscriptionRequest,
    TranscriptionResult,
)

log = structlog.get_logger()

T = TypeVar("T")

# 连接类异常类型集合（上游暂时不可达）
_CONNECTION_ERROR_TYPES = (
    ConnectionError,
    httpx.ConnectError,
    httpx.ConnectTimeout,
)

_TIMEOUT_ERROR_TYPES = (
    TimeoutError,
    httpx.TimeoutException,
)


def _status_code(e: Exception) -> int | None:
    for attr in ("status_code", "status"):
        val = getattr(e, attr, None)
        if isinstance(val, int):
            return val
    return None


def classify_error(e: Exception, provider: str) -> GatewayError:
    """把任意 provider 异常映射为 GatewayError

    映射规则:
        超时 / 取消截止 (408)          -> TIMEOUT
        429                            -> RATE_LIMITED
        content policy / 400 / 422     -> INVALID_REQUEST
        503 / 529 / 404 / 连接失败      -> MODEL_UNAVAILABLE
        其他                           -> PROVIDER_ERROR
    """
    if isinstance(e, GatewayError):
        return e

    status = _status_code(e)
    error_name = type(e).__name__
    message = str(e)
    details = {"provider": provider, "error_type": error_name}

    if (
        isinstance(e, _TIMEOUT_ERROR_TYPES)
        or error_name in ("Timeout", "APITimeoutError")
        or status == 408
    ):
        return GatewayError("Request timed out", kind=ErrorKind.TIMEOUT, details=details)

    if status == 429 or error_name == "RateLimitError":
        return GatewayError(
            "Rate limit exceeded. Please try again later.",
            kind=ErrorKind.RATE_LIMITED,
            details=details,
        )

    if error_name == "ContentPolicyViolationError" or "content_policy" in message:
        return GatewayError(
            "Request rejected by the provider content policy",
            kind=ErrorKind.INVALID_REQUEST,
            details={**details, "reason": "content_policy"},
        )

    if status in (400, 422) or error_name in ("BadRequestError", "UnprocessableEntityError"):
        return GatewayError(
            f"Invalid request: {message}",
            kind=ErrorKind.INVALID_REQUEST,
            details=details,
        )

    if (
        status in (404, 503, 529)
        or error_name in ("ServiceUnavailableError", "NotFoundError", "APIConnectionError")
        or isinstance(e, _CONNECTION_ERROR_TYPES)
    ):
        return GatewayError(
            "Model temporarily unavailable",
            kind=ErrorKind.MODEL_UNAVAILABLE,
            details=details,
        )

    return GatewayError(
        f"AI provider error: {message}",
        kind=ErrorKind.PROVIDER_ERROR,
        details=details,
    )


def parse_usage(response) -> TokenUsage:
    """从 litellm 响应（或流式分片）解析 token 使用数据，失败时返回全零"""
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
    completion_tokens = getattr(usage, "completion_tokens", 0) or 0
    total_tokens = getattr(usage, "total_tokens", 0) or prompt_tokens + completion_tokens
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
    )


class ProviderStream:
    """流式调用句柄

    async 迭代得到按发出顺序排列的 StreamChunk；迭代结束后 usage 携带
    provider 报告的汇总用量（未报告时为 None）。整个流在熔断器 guard 内执行，
    中途失败计为一次失败，调用方 aclose() 取消时不计数。
    """

    def __init__(
        self,
        adapter: "ProviderAdapter",
        model: str,
        source: Callable[["ProviderStream"], AsyncIterator[StreamChunk]],
    ) -> None:
        self.model = model
        self.usage: TokenUsage | None = None
        self.finished = False
        self._adapter = adapter
        self._iterator = self._run(source)

    def report_usage(self, usage: TokenUsage) -> None:
        """由适配器在收到 usage 时调用，可多次调用（以最后一次为准）"""
        self.usage = usage

    def __aiter__(self) -> "ProviderStream":
        return self

    async def __anext__(self) -> StreamChunk:
        return await self._iterator.__anext__()

    async def aclose(self) -> None:
        await self._iterator.aclose()

    async def _run(
        self,
        source: Callable[["ProviderStream"], AsyncIterator[StreamChunk]],
    ) -> AsyncIterator[StreamChunk]:
        adapter = self._adapter
        start_time = time.monotonic()
        upstream = source(self)
        try:
            async with adapter.breaker.guard():
                try:
                    async for chunk in upstream:
                        yield chunk
                except GatewayError:
                    raise
                except Exception as e:
                    raise classify_error(e, adapter.name) from e
        except GatewayError as e:
            log.warning(
                "provider_stream_failed",
                provider=adapter.name,
                model=self.model,
                kind=e.kind.value,
                error=e.message,
            )
            raise
        finally:
            await upstream.aclose()

        self.finished = True
        log.info(
            "provider_stream_completed",
            provider=adapter.name,
            model=self.model,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )


class ProviderAdapter:
    """provider 适配器基类"""

    name: str = ""
    capabilities: frozenset[Capability] = frozenset({Capability.TEXT_GENERATION})
    # 对外别名 -> 目录中的模型 id
    model_aliases: dict[str, str] = {}

    def __init__(self, breaker: CircuitBreaker, timeout_s: float = 60) -> None:
        """
        Args:
            breaker: 该 provider 专属的熔断器
            timeout_s: 单次调用超时（秒）
        """
        self.breaker = breaker
        self._timeout_s = timeout_s

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def resolve_alias(self, model: str) -> str:
        return self.model_aliases.get(model, model)

    async def check_credentials(self) -> None:
        """用一次最小的真实调用确认凭证可用，失败时抛出 SDK 原始异常

        不经过熔断器，启动校验的失败不计入熔断统计。无凭证的 provider 直接通过。
        """

    # ---- 对外接口 ----

    async def generate(self, request: GenerationRequest) -> TextResult:
        self._require(Capability.TEXT_GENERATION)
        return await self._call("generate", request.model, lambda: self._generate(request))

    def generate_stream(self, request: GenerationRequest) -> ProviderStream:
        self._require(Capability.TEXT_GENERATION)
        return ProviderStream(self, request.model, lambda stream: self._stream(request, stream))

    async def generate_image(self, request: ImageRequest, model: str) -> ImageResult:
        self._require(Capability.IMAGE_GENERATION)
        return await self._call("generate_image", model, lambda: self._image(request, model))

    async def synthesize_speech(self, request: SpeechRequest, model: str) -> SpeechResult:
        self._require(Capability.SPEECH_SYNTHESIS)
        return await self._call("synthesize_speech", model, lambda: self._speech(request, model))

    async def transcribe(self, request: TranscriptionRequest, model: str) -> TranscriptionResult:
        self._require(Capability.SPEECH_RECOGNITION)
        return await self._call("transcribe", model, lambda: self._transcribe(request, model))

    # ---- 子类实现 ----

    async def _generate(self, request: GenerationRequest) -> TextResult:
        raise NotImplementedError

    def _stream(
        self,
        request: GenerationRequest,
        stream: ProviderStream,
    ) -> AsyncIterator[StreamChunk]:
        raise NotImplementedError

    async def _image(self, request: ImageRequest, model: str) -> ImageResult:
        raise NotImplementedError

    async def _speech(self, request: SpeechRequest, model: str) -> SpeechResult:
        raise NotImplementedError

    async def _transcribe(self, request: TranscriptionRequest, model: str) -> TranscriptionResult:
        raise NotImplementedError

    # ---- 内部 ----

    def _require(self, capability: Capability) -> None:
        if not self.supports(capability):
            raise GatewayError(
                f"Provider '{self.name}' does not support {capability.value}",
                kind=ErrorKind.MODEL_UNAVAILABLE,
                details={"provider": self.name, "capability": capability.value},
            )

    async def _call(self, operation: str, model: str, fn: Callable[[], Awaitable[T]]) -> T:
        """超时 + 异常归一 + 熔断器包装"""
        start_time = time.monotonic()

        async def attempt() -> T:
            try:
                async with asyncio.timeout(self._timeout_s):
                    return await fn()
            except GatewayError:
                raise
            except Exception as e:
                raise classify_error(e, self.name) from e

        log.debug("provider_call_start", provider=self.name, operation=operation, model=model)
        try:
            result = await self.breaker.execute(attempt)
        except GatewayError as e:
            log.warning(
                "provider_call_failed",
                provider=self.name,
                operation=operation,
                model=model,
                kind=e.kind.value,
                error=e.message,
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
            raise

        log.info(
            "provider_call_completed",
            provider=self.name,
            operation=operation,
            model=model,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return result
