"""CreditCalculator -- 用量到 credit 的换算

计价全部来自 ModelCatalog；结果保留小数，由账本做小数累计。
目录中不存在的模型按能力兜底计价，并记录 warning。
"""

import math

import structlog

from .catalog import ModelCatalog, ModelPricing
from .models import Capability, TokenUsage

log = structlog.get_logger()

# 目录外模型的兜底计价
FALLBACK_PRICING: dict[Capability, ModelPricing] = {
    Capability.TEXT_GENERATION: ModelPricing(
        credits_per_input_token=0.00002,
        credits_per_output_token=0.00006,
    ),
    Capability.IMAGE_GENERATION: ModelPricing(credits_per_image=50),
    Capability.SPEECH_SYNTHESIS: ModelPricing(credits_per_char=0.015),
    Capability.SPEECH_RECOGNITION: ModelPricing(credits_per_minute=6),
}

# 文本粗估：约 4 个字符 1 个 token
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """按字符数粗估 token 数"""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class CreditCalculator:
    """credit 计算器"""

    def __init__(self, catalog: ModelCatalog) -> None:
        self._catalog = catalog

    def pricing_for(self, model: str, capability: Capability) -> ModelPricing:
        info = self._catalog.get(model)
        if info is not None and info.capability == capability:
            return info.pricing
        log.warning("pricing_fallback", model=model, capability=capability.value)
        return FALLBACK_PRICING[capability]

    def credits_for_text(self, model: str, input_tokens: int, output_tokens: int) -> float:
        p = self.pricing_for(model, Capability.TEXT_GENERATION)
        return input_tokens * p.credits_per_input_token + output_tokens * p.credits_per_output_token

    def credits_for_usage(self, model: str, usage: TokenUsage) -> float:
        """provider 报告的 TokenUsage 直接换算"""
        return self.credits_for_text(model, usage.prompt_tokens, usage.completion_tokens)

    def credits_for_images(self, model: str, image_count: int) -> float:
        p = self.pricing_for(model, Capability.IMAGE_GENERATION)
        return image_count * p.credits_per_image

    def credits_for_speech(self, model: str, character_count: int) -> float:
        p = self.pricing_for(model, Capability.SPEECH_SYNTHESIS)
        return character_count * p.credits_per_char

    def credits_for_transcription(self, model: str, audio_seconds: float) -> float:
        """按分钟计价，秒数向上取整"""
        p = self.pricing_for(model, Capability.SPEECH_RECOGNITION)
        return math.ceil(audio_seconds) / 60 * p.credits_per_minute
