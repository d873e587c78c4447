"""AI Gateway Provider -- 模型目录、智能路由、熔断器与 provider 适配层

公共类型从此入口导入。
"""

from .adapters import (
    AnthropicAdapter,
    EchoAdapter,
    OpenAIAdapter,
    ProviderAdapter,
    ProviderStream,
    classify_error,
)
from .breaker import (
    BreakerConfig,
    BreakerRegistry,
    CircuitBreaker,
    CircuitState,
    CircuitStats,
)
from .catalog import ModelCatalog, ModelInfo, ModelPricing
from .config import ProviderConfig, load_provider_config
from .cost import CreditCalculator, estimate_tokens
from .exceptions import CircuitOpenError, ErrorKind, GatewayError
from .models import (
    Capability,
    ConversationMessage,
    GeneratedImage,
    GenerationRequest,
    ImageRequest,
    ImageResult,
    MessagePart,
    MessageRole,
    PartType,
    SpeechRequest,
    SpeechResult,
    StreamChunk,
    Tenant,
    TextResult,
    TokenUsage,
    TranscriptionRequest,
    TranscriptionResult,
)
from .registry import ProviderRegistry, ProviderStatus, ProviderValidation
from .router import Complexity, RoutingDecision, SmartRouter, classify_complexity

__all__ = [
    # 数据模型
    "Capability",
    "MessageRole",
    "PartType",
    "MessagePart",
    "ConversationMessage",
    "Tenant",
    "GenerationRequest",
    "ImageRequest",
    "SpeechRequest",
    "TranscriptionRequest",
    "TokenUsage",
    "StreamChunk",
    "TextResult",
    "GeneratedImage",
    "ImageResult",
    "SpeechResult",
    "TranscriptionResult",
    # 异常
    "ErrorKind",
    "GatewayError",
    "CircuitOpenError",
    # 熔断器
    "CircuitState",
    "CircuitStats",
    "BreakerConfig",
    "CircuitBreaker",
    "BreakerRegistry",
    # 目录 / 计价 / 路由
    "ModelCatalog",
    "ModelInfo",
    "ModelPricing",
    "CreditCalculator",
    "estimate_tokens",
    "Complexity",
    "RoutingDecision",
    "SmartRouter",
    "classify_complexity",
    # 适配器
    "ProviderAdapter",
    "ProviderStream",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "EchoAdapter",
    "classify_error",
    # 注册表 / 配置
    "ProviderRegistry",
    "ProviderStatus",
    "ProviderValidation",
    "ProviderConfig",
    "load_provider_config",
]
