"""LiteLLMChatAdapter -- 基于 litellm.acompletion() 的文本生成

OpenAI 与 Anthropic 的文本 / 流式生成共用此实现，差异只在模型名映射。
"""

from collections.abc import AsyncIterator

import structlog
from litellm import acompletion
from ulid import ULID

from ..breaker import CircuitBreaker
from ..models import GenerationRequest, StreamChunk, TextResult
from .base import ProviderAdapter, ProviderStream, parse_usage

log = structlog.get_logger()

# 凭证校验的超时上限（秒）
_VALIDATION_TIMEOUT_S = 10


class LiteLLMChatAdapter(ProviderAdapter):
    """litellm 文本适配器"""

    # 凭证校验使用的最便宜文本模型
    validation_model: str = ""

    def __init__(
        self,
        breaker: CircuitBreaker,
        api_key: str,
        timeout_s: float = 60,
        max_retries: int = 0,
    ) -> None:
        """
        Args:
            breaker: 该 provider 的熔断器
            api_key: provider API key
            timeout_s: 单次调用超时（秒）
            max_retries: litellm 内部重试次数
        """
        super().__init__(breaker, timeout_s=timeout_s)
        self._api_key = api_key
        self._max_retries = max_retries

    def litellm_model(self, model: str) -> str:
        """目录模型 id -> litellm 模型名"""
        return model

    async def check_credentials(self) -> None:
        await acompletion(
            model=self.litellm_model(self.validation_model),
            messages=[{"role": "user", "content": "Hi"}],
            max_tokens=1,
            api_key=self._api_key,
            timeout=min(self._timeout_s, _VALIDATION_TIMEOUT_S),
        )

    def _completion_kwargs(self, request: GenerationRequest) -> dict:
        return {
            "model": self.litellm_model(request.model),
            "messages": [m.to_openai() for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "api_key": self._api_key,
            "timeout": self._timeout_s,
            "num_retries": self._max_retries,
        }

    async def _generate(self, request: GenerationRequest) -> TextResult:
        response = await acompletion(**self._completion_kwargs(request))
        choice = response.choices[0]
        return TextResult(
            id=getattr(response, "id", None) or f"{self.name}_{ULID()}",
            model=request.model,
            content=choice.message.content or "",
            usage=parse_usage(response),
            finish_reason=choice.finish_reason or "stop",
        )

    async def _stream(
        self,
        request: GenerationRequest,
        stream: ProviderStream,
    ) -> AsyncIterator[StreamChunk]:
        response = await acompletion(
            **self._completion_kwargs(request),
            stream=True,
            stream_options={"include_usage": True},
        )
        fallback_id = f"{self.name}_{ULID()}"
        async for part in response:
            # include_usage 时最后一个分片携带汇总用量
            if getattr(part, "usage", None) is not None:
                stream.report_usage(parse_usage(part))
            if not part.choices:
                continue
            choice = part.choices[0]
            delta = getattr(choice.delta, "content", None) or ""
            finish_reason = choice.finish_reason
            if delta or finish_reason:
                yield StreamChunk(
                    id=getattr(part, "id", None) or fallback_id,
                    delta=delta,
                    finish_reason=finish_reason,
                )
