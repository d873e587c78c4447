"""ModelCatalog -- 静态模型目录

每个模型的 provider、能力、档位（tier 1 最便宜 / 3 最强）与计价。
计价单位为内部 credit（1 credit ≈ $0.001），是扣费的唯一数据源。
"""

from pydantic import BaseModel, Field

from .models import Capability

TOP_TIER = 3


class ModelPricing(BaseModel):
    """按能力计价，只有与模型能力对应的字段有意义"""

    credits_per_input_token: float = Field(default=0.0, ge=0.0)
    credits_per_output_token: float = Field(default=0.0, ge=0.0)
    credits_per_image: float = Field(default=0.0, ge=0.0)
    credits_per_char: float = Field(default=0.0, ge=0.0)
    credits_per_minute: float = Field(default=0.0, ge=0.0)

    @property
    def per_token_total(self) -> float:
        """输入 + 输出单价之和，用于比较文本模型的相对成本"""
        return self.credits_per_input_token + self.credits_per_output_token


class ModelInfo(BaseModel):
    """单个模型的目录条目"""

    id: str = Field(description="对外暴露的模型标识")
    name: str = Field(default="", description="展示名称")
    provider: str = Field(description="provider 名称：openai / anthropic / echo")
    capability: Capability
    tier: int = Field(default=1, ge=1, le=TOP_TIER)
    vision: bool = Field(default=False, description="是否接受图片输入")
    max_output_tokens: int | None = Field(default=None)
    pricing: ModelPricing = Field(default_factory=ModelPricing)


def _text(
    model_id: str,
    name: str,
    provider: str,
    tier: int,
    input_price: float,
    output_price: float,
    max_output_tokens: int,
    vision: bool = False,
) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        provider=provider,
        capability=Capability.TEXT_GENERATION,
        tier=tier,
        vision=vision,
        max_output_tokens=max_output_tokens,
        pricing=ModelPricing(
            credits_per_input_token=input_price,
            credits_per_output_token=output_price,
        ),
    )


def _get_default_models() -> list[ModelInfo]:
    """内置模型目录"""
    return [
        # OpenAI 文本
        _text("gpt-4o-mini", "GPT-4o Mini", "openai", 1, 0.0000015, 0.000006, 16384, vision=True),
        _text("gpt-4o", "GPT-4o", "openai", 2, 0.000025, 0.0001, 16384, vision=True),
        _text("o3-mini", "o3 Mini", "openai", 2, 0.000011, 0.000044, 100000),
        _text("o1-mini", "o1 Mini", "openai", 2, 0.00003, 0.00012, 65536),
        _text("gpt-4-turbo", "GPT-4 Turbo", "openai", 3, 0.0001, 0.0003, 4096, vision=True),
        # OpenAI 图片 / 语音
        ModelInfo(
            id="dall-e-3",
            name="DALL-E 3",
            provider="openai",
            capability=Capability.IMAGE_GENERATION,
            tier=1,
            pricing=ModelPricing(credits_per_image=40),
        ),
        ModelInfo(
            id="dall-e-3-hd",
            name="DALL-E 3 HD",
            provider="openai",
            capability=Capability.IMAGE_GENERATION,
            tier=2,
            pricing=ModelPricing(credits_per_image=80),
        ),
        ModelInfo(
            id="tts-1",
            name="TTS Standard",
            provider="openai",
            capability=Capability.SPEECH_SYNTHESIS,
            tier=1,
            pricing=ModelPricing(credits_per_char=0.015),
        ),
        ModelInfo(
            id="tts-1-hd",
            name="TTS HD",
            provider="openai",
            capability=Capability.SPEECH_SYNTHESIS,
            tier=2,
            pricing=ModelPricing(credits_per_char=0.03),
        ),
        ModelInfo(
            id="whisper-1",
            name="Whisper",
            provider="openai",
            capability=Capability.SPEECH_RECOGNITION,
            tier=1,
            pricing=ModelPricing(credits_per_minute=6),
        ),
        # Anthropic 文本
        _text(
            "claude-3-5-haiku-20241022", "Claude 3.5 Haiku", "anthropic",
            1, 0.000008, 0.00004, 8192, vision=True,
        ),
        _text(
            "claude-3-haiku-20240307", "Claude 3 Haiku", "anthropic",
            1, 0.0000025, 0.0000125, 4096,
        ),
        _text(
            "claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", "anthropic",
            2, 0.00003, 0.00015, 8192, vision=True,
        ),
        _text(
            "claude-sonnet-4-20250514", "Claude Sonnet 4", "anthropic",
            3, 0.00003, 0.00015, 8192, vision=True,
        ),
        _text(
            "claude-opus-4-20250514", "Claude Opus 4", "anthropic",
            3, 0.00015, 0.00075, 8192, vision=True,
        ),
        # Echo（离线开发 / 测试）
        _text("echo-mini", "Echo Mini", "echo", 1, 0.000001, 0.000004, 4096),
        _text("echo-plus", "Echo Plus", "echo", 2, 0.00001, 0.00004, 4096),
        _text("echo-pro", "Echo Pro", "echo", 3, 0.0001, 0.0004, 4096, vision=True),
        ModelInfo(
            id="echo-image",
            name="Echo Image",
            provider="echo",
            capability=Capability.IMAGE_GENERATION,
            pricing=ModelPricing(credits_per_image=10),
        ),
        ModelInfo(
            id="echo-tts",
            name="Echo TTS",
            provider="echo",
            capability=Capability.SPEECH_SYNTHESIS,
            pricing=ModelPricing(credits_per_char=0.01),
        ),
        ModelInfo(
            id="echo-stt",
            name="Echo STT",
            provider="echo",
            capability=Capability.SPEECH_RECOGNITION,
            pricing=ModelPricing(credits_per_minute=5),
        ),
    ]


def _cost_key(model: ModelInfo) -> tuple[int, float, str]:
    """排序键：先档位，再单价，最后 id（保证确定性）"""
    p = model.pricing
    price = (
        p.per_token_total
        + p.credits_per_image
        + p.credits_per_char
        + p.credits_per_minute
    )
    return model.tier, price, model.id


class ModelCatalog:
    """模型目录 -- 启动时加载，运行期间不变"""

    def __init__(self, models: list[ModelInfo] | None = None) -> None:
        """
        Args:
            models: 模型列表，None 时使用内置目录
        """
        model_list = models if models is not None else _get_default_models()
        self._models: dict[str, ModelInfo] = {}
        for model in model_list:
            self._models[model.id] = model

    def get(self, model_id: str) -> ModelInfo | None:
        return self._models.get(model_id)

    def models(
        self,
        capability: Capability | None = None,
        provider: str | None = None,
    ) -> list[ModelInfo]:
        """按能力 / provider 过滤，结果按成本从低到高排序"""
        found = [
            m
            for m in self._models.values()
            if (capability is None or m.capability == capability)
            and (provider is None or m.provider == provider)
        ]
        return sorted(found, key=_cost_key)

    def cheapest(
        self,
        provider: str,
        capability: Capability,
        vision: bool = False,
        min_output_tokens: int | None = None,
    ) -> ModelInfo | None:
        """同 provider、同能力下最便宜的模型

        Args:
            vision: 为 True 时只考虑支持图片输入的模型
            min_output_tokens: 只考虑输出上限不低于该值的模型（未声明上限视为满足）
        """
        for model in self.models(capability=capability, provider=provider):
            if vision and not model.vision:
                continue
            if (
                min_output_tokens is not None
                and model.max_output_tokens is not None
                and model.max_output_tokens < min_output_tokens
            ):
                continue
            return model
        return None

    def min_tier(self, provider: str, capability: Capability) -> int | None:
        candidates = self.models(capability=capability, provider=provider)
        return candidates[0].tier if candidates else None

    def top_tier(self, provider: str, capability: Capability) -> int | None:
        """同 provider、同能力下的最高档位"""
        candidates = self.models(capability=capability, provider=provider)
        return max(m.tier for m in candidates) if candidates else None

    def providers(self) -> list[str]:
        return sorted({m.provider for m in self._models.values()})
