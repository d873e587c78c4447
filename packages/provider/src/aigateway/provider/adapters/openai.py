"""OpenAIAdapter -- OpenAI 全能力适配

文本 / 流式走 LiteLLMChatAdapter，图片 / 语音合成 / 语音识别分别走
litellm.aimage_generation / aspeech / atranscription。
"""

import base64

from litellm import aimage_generation, aspeech, atranscription
from ulid import ULID

from ..models import (
    Capability,
    GeneratedImage,
    ImageRequest,
    ImageResult,
    SpeechRequest,
    SpeechResult,
    TranscriptionRequest,
    TranscriptionResult,
)
from .chat import LiteLLMChatAdapter

# -hd 后缀表示同一图片模型的高质量档
HD_SUFFIX = "-hd"


class OpenAIAdapter(LiteLLMChatAdapter):
    """OpenAI provider"""

    name = "openai"
    capabilities = frozenset(Capability)
    validation_model = "gpt-4o-mini"

    async def _image(self, request: ImageRequest, model: str) -> ImageResult:
        quality = request.quality
        upstream_model = model
        if model.endswith(HD_SUFFIX):
            upstream_model = model.removesuffix(HD_SUFFIX)
            quality = "hd"

        response = await aimage_generation(
            model=upstream_model,
            prompt=request.prompt,
            n=request.n,
            size=request.size,
            quality=quality,
            style=request.style,
            api_key=self._api_key,
            timeout=self._timeout_s,
        )
        images = [
            GeneratedImage(
                url=getattr(item, "url", None),
                b64_json=getattr(item, "b64_json", None),
                revised_prompt=getattr(item, "revised_prompt", None),
            )
            for item in response.data or []
        ]
        return ImageResult(id=f"img_{ULID()}", model=model, images=images)

    async def _speech(self, request: SpeechRequest, model: str) -> SpeechResult:
        response = await aspeech(
            model=model,
            input=request.text,
            voice=request.voice,
            response_format=request.response_format,
            speed=request.speed,
            api_key=self._api_key,
            timeout=self._timeout_s,
        )
        return SpeechResult(
            id=f"tts_{ULID()}",
            model=model,
            audio_base64=base64.b64encode(response.content).decode("ascii"),
            format=request.response_format,
            character_count=len(request.text),
        )

    async def _transcribe(self, request: TranscriptionRequest, model: str) -> TranscriptionResult:
        kwargs = {}
        if request.language:
            kwargs["language"] = request.language
        if request.prompt:
            kwargs["prompt"] = request.prompt

        response = await atranscription(
            model=model,
            file=(request.filename, request.audio),
            response_format="verbose_json",
            api_key=self._api_key,
            timeout=self._timeout_s,
            **kwargs,
        )
        duration = getattr(response, "duration", None)
        return TranscriptionResult(
            id=f"stt_{ULID()}",
            model=model,
            text=response.text or "",
            language=getattr(response, "language", None) or request.language,
            duration_seconds=float(duration) if duration is not None else None,
        )
