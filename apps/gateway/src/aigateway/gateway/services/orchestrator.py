"""GatewayOrchestrator -- 单次 AI 请求的完整流水线

文本生成:
    1. 别名归一 + 模型可用性校验
    2. SmartRouter 选择实际模型（仅在请求开启 smart_routing 时）
    3. SemanticCache 查询，命中则直接返回（不扣费）
    4. AdmissionController 按预估用量预检
    5. 经 ProviderAdapter（熔断器内）调用
    6. 写缓存 -> 按实际用量最终扣费

预检失败 / provider 失败都不会扣费；扣费只在调用成功后发生一次。
流式请求在消费方取消时关闭上游，只按 provider 已报告的用量扣费，
部分内容不写缓存。
"""

import asyncio
import math
from collections.abc import AsyncIterator, Awaitable
from typing import TypeVar

import structlog
from aigateway.provider import (
    Capability,
    ErrorKind,
    GatewayError,
    GenerationRequest,
    ImageRequest,
    ProviderAdapter,
    ProviderStream,
    ProviderRegistry,
    RoutingDecision,
    SmartRouter,
    SpeechRequest,
    StreamChunk,
    TokenUsage,
    TranscriptionRequest,
    estimate_tokens,
)
from structlog.contextvars import get_contextvars
from ulid import ULID

from ..models import (
    BillableUsage,
    CreditCharge,
    ImageResponse,
    SpeechResponse,
    StreamResult,
    TextResponse,
    TranscriptionResponse,
)
from .admission import MIN_AUDIO_SECONDS, AdmissionController, estimate_text_usage
from .semantic_cache import SemanticCache

log = structlog.get_logger()

T = TypeVar("T")


def _request_id() -> str | None:
    return get_contextvars().get("request_id")


async def _run_to_completion(coro: Awaitable[T]) -> T:
    """在独立任务中执行 coro；调用方被取消时先等它结束再传播取消"""
    task = asyncio.ensure_future(coro)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            log.error(
                "settlement_failed_after_cancel",
                error=str(task.exception()),
                error_type=type(task.exception()).__name__,
            )
        raise


class GatewayOrchestrator:
    """请求编排"""

    def __init__(
        self,
        registry: ProviderRegistry,
        router: SmartRouter,
        cache: SemanticCache,
        admission: AdmissionController,
    ) -> None:
        self._registry = registry
        self._router = router
        self._cache = cache
        self._admission = admission

    # ---- 文本 ----

    async def generate_text(self, request: GenerationRequest) -> TextResponse:
        request, decision, adapter = self._prepare_text(request)

        cached = await self._cache.get(request.model, request.messages, request.conversation_id)
        if cached is not None:
            return TextResponse(
                id=f"cached_{ULID()}",
                model=request.model,
                content=cached,
                usage=TokenUsage(),
                credits_used=0.0,
                new_balance=await self._admission.current_balance(request.tenant),
                cached=True,
                routing=decision,
            )

        estimated = self._admission.estimate_cost(
            Capability.TEXT_GENERATION, request.model, estimate_text_usage(request.messages)
        )
        await self._admission.admit(request.tenant, estimated)

        result = await adapter.generate(request)

        charge = await _run_to_completion(
            self._settle_text(request, result.content, result.usage, estimated)
        )
        return TextResponse(
            id=result.id,
            model=request.model,
            content=result.content,
            usage=result.usage,
            finish_reason=result.finish_reason,
            credits_used=charge.credits_used,
            new_balance=charge.new_balance,
            routing=decision,
        )

    async def stream_text(
        self,
        request: GenerationRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamChunk | StreamResult]:
        """流式生成：依次产出 StreamChunk，最后恰好一个 StreamResult

        cancel_event 被设置时停止转发，关闭上游并以 cancelled=True 的
        StreamResult 结束；消费方直接 aclose() / 任务被取消时同样关闭上游
        并按已报告用量扣费，但不再产出终止帧。
        """
        request, decision, adapter = self._prepare_text(request)

        cached = await self._cache.get(request.model, request.messages, request.conversation_id)
        if cached is not None:
            response_id = f"cached_{ULID()}"
            yield StreamChunk(id=response_id, delta=cached, finish_reason="stop")
            yield StreamResult(
                id=response_id,
                model=request.model,
                content=cached,
                usage=TokenUsage(),
                credits_used=0.0,
                new_balance=await self._admission.current_balance(request.tenant),
                cached=True,
                routing=decision,
            )
            return

        estimated = self._admission.estimate_cost(
            Capability.TEXT_GENERATION, request.model, estimate_text_usage(request.messages)
        )
        await self._admission.admit(request.tenant, estimated)

        stream = adapter.generate_stream(request)
        response_id = f"gen_{ULID()}"
        parts: list[str] = []
        cancelled = False

        try:
            async for chunk in stream:
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    break
                response_id = chunk.id or response_id
                if chunk.delta:
                    parts.append(chunk.delta)
                yield chunk
        except (GeneratorExit, asyncio.CancelledError):
            await _run_to_completion(
                self._close_cancelled(stream, request, estimated, len(parts))
            )
            raise

        content = "".join(parts)
        if cancelled:
            charge = await self._close_cancelled(stream, request, estimated, len(parts))
            yield StreamResult(
                id=response_id,
                model=request.model,
                content=content,
                usage=stream.usage or TokenUsage(),
                credits_used=charge.credits_used if charge else 0.0,
                new_balance=(
                    charge.new_balance
                    if charge
                    else await self._admission.current_balance(request.tenant)
                ),
                cancelled=True,
                routing=decision,
            )
            return

        usage = stream.usage
        if usage is None:
            log.warning("stream_usage_missing", model=request.model)
            prompt = estimate_text_usage(request.messages).tokens.prompt_tokens
            completion = estimate_tokens(content)
            usage = TokenUsage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=prompt + completion,
            )

        # 全部分片已送达：写缓存与扣费作为一个整体完成，消费方此时断开也照常扣费
        charge = await _run_to_completion(self._settle_text(request, content, usage, estimated))
        yield StreamResult(
            id=response_id,
            model=request.model,
            content=content,
            usage=usage,
            credits_used=charge.credits_used,
            new_balance=charge.new_balance,
            routing=decision,
        )

    # ---- 图片 / 语音 ----

    async def generate_image(self, request: ImageRequest) -> ImageResponse:
        model, adapter = self._resolve(request.model, Capability.IMAGE_GENERATION)
        estimated = self._admission.estimate_cost(
            Capability.IMAGE_GENERATION, model, BillableUsage(image_count=request.n)
        )
        await self._admission.admit(request.tenant, estimated)

        result = await adapter.generate_image(request, model)

        charge = await _run_to_completion(
            self._admission.charge_final(
                request.tenant,
                Capability.IMAGE_GENERATION,
                model,
                BillableUsage(image_count=len(result.images)),
                estimated=estimated,
                request_id=_request_id(),
            )
        )
        return ImageResponse(
            id=result.id,
            model=model,
            images=result.images,
            credits_used=charge.credits_used,
            new_balance=charge.new_balance,
        )

    async def synthesize_speech(self, request: SpeechRequest) -> SpeechResponse:
        model, adapter = self._resolve(request.model, Capability.SPEECH_SYNTHESIS)
        estimated = self._admission.estimate_cost(
            Capability.SPEECH_SYNTHESIS, model, BillableUsage(character_count=len(request.text))
        )
        await self._admission.admit(request.tenant, estimated)

        result = await adapter.synthesize_speech(request, model)

        charge = await _run_to_completion(
            self._admission.charge_final(
                request.tenant,
                Capability.SPEECH_SYNTHESIS,
                model,
                BillableUsage(character_count=result.character_count),
                estimated=estimated,
                request_id=_request_id(),
            )
        )
        return SpeechResponse(
            id=result.id,
            model=model,
            audio_base64=result.audio_base64,
            format=result.format,
            character_count=result.character_count,
            credits_used=charge.credits_used,
            new_balance=charge.new_balance,
        )

    async def transcribe(self, request: TranscriptionRequest) -> TranscriptionResponse:
        model, adapter = self._resolve(request.model, Capability.SPEECH_RECOGNITION)
        estimated = self._admission.estimate_cost(
            Capability.SPEECH_RECOGNITION, model, BillableUsage(audio_seconds=MIN_AUDIO_SECONDS)
        )
        await self._admission.admit(request.tenant, estimated)

        result = await adapter.transcribe(request, model)

        seconds = (
            math.ceil(result.duration_seconds)
            if result.duration_seconds is not None
            else MIN_AUDIO_SECONDS
        )
        charge = await _run_to_completion(
            self._admission.charge_final(
                request.tenant,
                Capability.SPEECH_RECOGNITION,
                model,
                BillableUsage(audio_seconds=seconds),
                estimated=estimated,
                request_id=_request_id(),
            )
        )
        return TranscriptionResponse(
            id=result.id,
            model=model,
            text=result.text,
            language=result.language,
            duration_seconds=result.duration_seconds,
            credits_used=charge.credits_used,
            new_balance=charge.new_balance,
        )

    # ---- 内部 ----

    def _prepare_text(
        self,
        request: GenerationRequest,
    ) -> tuple[GenerationRequest, RoutingDecision, ProviderAdapter]:
        """别名归一、校验、路由，返回实际执行的请求"""
        model = self._registry.canonical_model(request.model)
        self._registry.require(model, Capability.TEXT_GENERATION)

        decision = self._router.route(
            model, request.messages, request.smart_routing, max_tokens=request.max_tokens
        )
        if decision.was_routed and not self._registry.is_model_available(
            decision.model, Capability.TEXT_GENERATION
        ):
            log.info("routing_target_unavailable", model=decision.model, fallback=model)
            decision = decision.model_copy(
                update={
                    "model": model,
                    "was_routed": False,
                    "reason": "Routed model unavailable - using requested model",
                    "estimated_savings": None,
                }
            )

        _, adapter = self._registry.require(decision.model, Capability.TEXT_GENERATION)
        if decision.model != request.model:
            request = request.model_copy(update={"model": decision.model})
        return request, decision, adapter

    async def _settle_text(
        self,
        request: GenerationRequest,
        content: str,
        usage: TokenUsage,
        estimated: float,
    ) -> CreditCharge:
        """完成的文本调用：写缓存 -> 最终扣费"""
        await self._cache.set(
            request.model,
            request.messages,
            content,
            conversation_id=request.conversation_id,
        )
        return await self._admission.charge_final(
            request.tenant,
            Capability.TEXT_GENERATION,
            request.model,
            BillableUsage(tokens=usage),
            estimated=estimated,
            request_id=_request_id(),
        )

    def _resolve(self, model: str | None, capability: Capability) -> tuple[str, ProviderAdapter]:
        """非文本能力：未指定模型时选最便宜的可用模型"""
        if model is None:
            cheapest = self._registry.cheapest_model(capability)
            if cheapest is None:
                raise GatewayError(
                    f"No model available for {capability.value}",
                    kind=ErrorKind.MODEL_UNAVAILABLE,
                    details={"capability": capability.value},
                )
            model = cheapest.id
        model = self._registry.canonical_model(model)
        _, adapter = self._registry.require(model, capability)
        return model, adapter

    async def _close_cancelled(
        self,
        stream: ProviderStream,
        request: GenerationRequest,
        estimated: float,
        chunks: int,
    ) -> CreditCharge | None:
        """关闭上游并按已报告用量扣费；provider 未报告用量时不扣费"""
        await stream.aclose()
        usage = stream.usage
        log.info(
            "stream_cancelled",
            model=request.model,
            chunks_relayed=chunks,
            usage_reported=usage is not None,
        )
        if usage is None:
            return None
        return await self._admission.charge_final(
            request.tenant,
            Capability.TEXT_GENERATION,
            request.model,
            BillableUsage(tokens=usage),
            estimated=estimated,
            request_id=_request_id(),
        )
