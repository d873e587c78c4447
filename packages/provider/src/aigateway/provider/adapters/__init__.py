"""Provider 适配器 -- 每个 provider 一个实现，共享 ProviderAdapter 能力接口"""

from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, ProviderStream, classify_error, parse_usage
from .chat import LiteLLMChatAdapter
from .echo import EchoAdapter
from .openai import OpenAIAdapter

__all__ = [
    "ProviderAdapter",
    "ProviderStream",
    "LiteLLMChatAdapter",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "EchoAdapter",
    "classify_error",
    "parse_usage",
]
