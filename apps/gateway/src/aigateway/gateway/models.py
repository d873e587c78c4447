"""Gateway 响应模型 -- 带计费信息的对外结果

所有响应都携带 credits_used 与 new_balance；缓存命中时 credits_used 为 0。
"""

from aigateway.core.models import WalletType
from aigateway.provider import GeneratedImage, RoutingDecision, TokenUsage
from pydantic import BaseModel, Field


class BillableUsage(BaseModel):
    """计费用量 -- 预估与最终扣费共用（按能力填写对应字段）"""

    tokens: TokenUsage | None = None
    image_count: int = Field(default=0, ge=0)
    character_count: int = Field(default=0, ge=0)
    audio_seconds: float = Field(default=0.0, ge=0.0)


class CreditCharge(BaseModel):
    """最终扣费结果"""

    credits_used: float = Field(ge=0.0)
    new_balance: float
    wallet_type: WalletType


class TextResponse(BaseModel):
    id: str
    model: str
    content: str
    usage: TokenUsage
    finish_reason: str = "stop"
    credits_used: float
    new_balance: float | None
    cached: bool = False
    routing: RoutingDecision | None = None


class StreamResult(BaseModel):
    """流式响应的终止帧（每个流恰好一个）"""

    id: str
    model: str
    content: str
    usage: TokenUsage
    credits_used: float
    new_balance: float | None
    cached: bool = False
    cancelled: bool = False
    routing: RoutingDecision | None = None


class ImageResponse(BaseModel):
    id: str
    model: str
    images: list[GeneratedImage]
    credits_used: float
    new_balance: float


class SpeechResponse(BaseModel):
    id: str
    model: str
    audio_base64: str
    format: str
    character_count: int
    credits_used: float
    new_balance: float


class TranscriptionResponse(BaseModel):
    id: str
    model: str
    text: str
    language: str | None = None
    duration_seconds: float | None = None
    credits_used: float
    new_balance: float
