"""EchoAdapter -- 离线 Echo provider

开发与测试用：文本返回 "Echo: {最后一条 user 消息}"，token 按单词数估算；
图片 / 语音返回确定性的占位结果。走与真实 provider 相同的熔断器与异常归一路径。
"""

import asyncio
import base64
from collections.abc import AsyncIterator, Sequence

from ulid import ULID

from ..models import (
    Capability,
    ConversationMessage,
    GeneratedImage,
    GenerationRequest,
    ImageRequest,
    ImageResult,
    MessageRole,
    SpeechRequest,
    SpeechResult,
    StreamChunk,
    TextResult,
    TokenUsage,
    TranscriptionRequest,
    TranscriptionResult,
)
from .base import ProviderAdapter, ProviderStream

# 假定的音频码率（字节/秒），用于估算时长
ECHO_AUDIO_BYTES_PER_SECOND = 16_000


def _last_user_content(messages: Sequence[ConversationMessage]) -> str:
    """提取最后一条 user 消息的文本，无 user 消息时返回 "(empty)" """
    for msg in reversed(messages):
        if msg.role == MessageRole.USER:
            return msg.text
    if messages:
        return messages[-1].content or "(empty)"
    return "(empty)"


def _usage(prompt: str, completion: str) -> TokenUsage:
    prompt_tokens = max(len(prompt.split()), 1)
    completion_tokens = max(len(completion.split()), 1)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


class EchoAdapter(ProviderAdapter):
    """Echo provider"""

    name = "echo"
    capabilities = frozenset(Capability)

    async def _generate(self, request: GenerationRequest) -> TextResult:
        user_content = _last_user_content(request.messages)
        # 模拟少量延迟
        await asyncio.sleep(0.01)
        response_text = f"Echo: {user_content}"
        return TextResult(
            id=f"echo_{ULID()}",
            model=request.model,
            content=response_text,
            usage=_usage(user_content, response_text),
        )

    async def _stream(
        self,
        request: GenerationRequest,
        stream: ProviderStream,
    ) -> AsyncIterator[StreamChunk]:
        user_content = _last_user_content(request.messages)
        response_text = f"Echo: {user_content}"
        message_id = f"echo_{ULID()}"
        words = response_text.split(" ")
        for i, word in enumerate(words):
            await asyncio.sleep(0)
            yield StreamChunk(id=message_id, delta=word if i == 0 else f" {word}")
        stream.report_usage(_usage(user_content, response_text))
        yield StreamChunk(id=message_id, delta="", finish_reason="stop")

    async def _image(self, request: ImageRequest, model: str) -> ImageResult:
        image_id = str(ULID())
        images = [
            GeneratedImage(
                url=f"https://echo.invalid/images/{image_id}-{i}.png",
                revised_prompt=request.prompt,
            )
            for i in range(request.n)
        ]
        return ImageResult(id=f"img_{image_id}", model=model, images=images)

    async def _speech(self, request: SpeechRequest, model: str) -> SpeechResult:
        return SpeechResult(
            id=f"tts_{ULID()}",
            model=model,
            audio_base64=base64.b64encode(request.text.encode("utf-8")).decode("ascii"),
            format=request.response_format,
            character_count=len(request.text),
        )

    async def _transcribe(self, request: TranscriptionRequest, model: str) -> TranscriptionResult:
        return TranscriptionResult(
            id=f"stt_{ULID()}",
            model=model,
            text=f"Echo transcription of {request.filename}",
            language=request.language,
            duration_seconds=len(request.audio) / ECHO_AUDIO_BYTES_PER_SECOND,
        )
