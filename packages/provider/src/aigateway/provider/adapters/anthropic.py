"""AnthropicAdapter -- Anthropic 文本适配

只支持文本生成（含流式）。system 消息拆分与 stop_reason 归一由 litellm 完成，
这里负责别名映射和 litellm 的 provider 前缀。
"""

from .chat import LiteLLMChatAdapter


class AnthropicAdapter(LiteLLMChatAdapter):
    """Anthropic provider"""

    name = "anthropic"
    validation_model = "claude-3-haiku-20240307"
    model_aliases = {
        "claude-4-opus": "claude-opus-4-20250514",
        "claude-4-sonnet": "claude-sonnet-4-20250514",
        "claude-3.5-sonnet": "claude-3-5-sonnet-20241022",
        "claude-3.5-haiku": "claude-3-5-haiku-20241022",
        "claude-3-haiku": "claude-3-haiku-20240307",
    }

    def litellm_model(self, model: str) -> str:
        return f"anthropic/{self.resolve_alias(model)}"
