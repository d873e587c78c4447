"""数据模型 -- 归一化请求 / 结果 / 流式分片

所有 provider（OpenAI、Anthropic、Echo）共享同一套请求和返回类型，
Orchestrator 只与这些类型打交道。
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class Capability(StrEnum):
    """模型能力"""

    TEXT_GENERATION = "text-generation"
    IMAGE_GENERATION = "image-generation"
    SPEECH_SYNTHESIS = "speech-synthesis"
    SPEECH_RECOGNITION = "speech-recognition"


class MessageRole(StrEnum):
    """消息角色"""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class PartType(StrEnum):
    """消息分片类型"""

    TEXT = "text"
    IMAGE_URL = "image_url"


class MessagePart(BaseModel):
    """多模态消息分片（文本或图片引用）"""

    model_config = ConfigDict(frozen=True)

    type: PartType = Field(default=PartType.TEXT)
    text: str | None = Field(default=None)
    image_url: str | None = Field(default=None, description="图片 URL 或 data URI")


class ConversationMessage(BaseModel):
    """对话消息 -- 构造后不可变"""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = Field(default="")
    parts: tuple[MessagePart, ...] | None = Field(
        default=None,
        description="有序分片列表，存在时优先于 content",
    )

    @property
    def has_images(self) -> bool:
        return bool(self.parts) and any(p.type == PartType.IMAGE_URL for p in self.parts)

    @property
    def text(self) -> str:
        """纯文本内容；有分片时拼接文本分片"""
        if self.parts:
            return " ".join(p.text for p in self.parts if p.text)
        return self.content

    def to_openai(self) -> dict:
        """转换为 OpenAI 兼容格式（litellm 通用输入）"""
        if not self.parts:
            return {"role": self.role.value, "content": self.content}
        content: list[dict] = []
        for part in self.parts:
            if part.type == PartType.IMAGE_URL:
                content.append({"type": "image_url", "image_url": {"url": part.image_url}})
            else:
                content.append({"type": "text", "text": part.text or ""})
        return {"role": self.role.value, "content": content}


class Tenant(BaseModel):
    """计费主体 -- 个人或组织，二者互斥"""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1, description="发起请求的用户")
    organization_id: str | None = Field(
        default=None,
        description="组织上下文；存在时只允许使用组织钱包",
    )

    @property
    def is_organization(self) -> bool:
        return self.organization_id is not None


class GenerationRequest(BaseModel):
    """文本生成请求

    只会通过 model_copy() 派生新请求（智能路由替换 model），从不原地修改。
    """

    model_config = ConfigDict(frozen=True)

    tenant: Tenant
    model: str = Field(min_length=1)
    messages: tuple[ConversationMessage, ...] = Field(min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    capability: Capability = Field(default=Capability.TEXT_GENERATION)
    smart_routing: bool = Field(default=False)
    stream: bool = Field(default=False)
    conversation_id: str | None = Field(
        default=None,
        description="缓存隔离范围；为空时缓存在同模型下跨租户共享",
    )


class ImageRequest(BaseModel):
    """图片生成请求"""

    model_config = ConfigDict(frozen=True)

    tenant: Tenant
    model: str | None = Field(default=None, description="为空时使用最便宜的可用图片模型")
    prompt: str = Field(min_length=1, max_length=4000)
    n: int = Field(default=1, ge=1, le=4)
    size: str = Field(default="1024x1024")
    quality: str = Field(default="standard")
    style: str = Field(default="vivid")


class SpeechRequest(BaseModel):
    """语音合成（TTS）请求"""

    model_config = ConfigDict(frozen=True)

    tenant: Tenant
    model: str | None = Field(default=None)
    text: str = Field(min_length=1, max_length=4096)
    voice: str = Field(default="alloy")
    response_format: str = Field(default="mp3")
    speed: float = Field(default=1.0, ge=0.25, le=4.0)


class TranscriptionRequest(BaseModel):
    """语音识别（STT）请求"""

    model_config = ConfigDict(frozen=True)

    tenant: Tenant
    model: str | None = Field(default=None)
    audio: bytes = Field(min_length=1)
    filename: str = Field(default="audio.mp3")
    language: str | None = Field(default=None)
    prompt: str | None = Field(default=None)


class TokenUsage(BaseModel):
    """Token 使用统计

    key 命名对齐 OpenAI/LiteLLM 行业标准：
    prompt_tokens / completion_tokens / total_tokens
    """

    prompt_tokens: int = Field(default=0, ge=0, description="输入 token 数")
    completion_tokens: int = Field(default=0, ge=0, description="输出 token 数")
    total_tokens: int = Field(default=0, ge=0, description="总 token 数")


class StreamChunk(BaseModel):
    """流式增量分片，按 provider 发出顺序交付"""

    id: str
    delta: str = ""
    finish_reason: str | None = None


class TextResult(BaseModel):
    """文本生成结果（provider 侧）"""

    id: str
    model: str
    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str = "stop"


class GeneratedImage(BaseModel):
    url: str | None = None
    b64_json: str | None = None
    revised_prompt: str | None = None


class ImageResult(BaseModel):
    """图片生成结果（provider 侧）"""

    id: str
    model: str
    images: list[GeneratedImage]


class SpeechResult(BaseModel):
    """语音合成结果（provider 侧）"""

    id: str
    model: str
    audio_base64: str
    format: str
    character_count: int = Field(ge=0)


class TranscriptionResult(BaseModel):
    """语音识别结果（provider 侧）"""

    id: str
    model: str
    text: str
    language: str | None = None
    duration_seconds: float | None = Field(default=None, ge=0.0, description="provider 报告的音频时长")
