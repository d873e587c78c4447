"""ProviderConfig -- Provider 配置加载

从环境变量加载 provider 凭证、调用超时与熔断器参数，不在调用点硬编码。
"""

import os
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

from .breaker import BreakerConfig

log = structlog.get_logger()

KNOWN_PROVIDERS = ("openai", "anthropic", "echo")

# 熔断器字段 -> 环境变量后缀
_BREAKER_ENV_FIELDS = {
    "failure_threshold": "FAILURE_THRESHOLD",
    "reset_timeout_ms": "RESET_TIMEOUT_MS",
    "monitor_window_ms": "MONITOR_WINDOW_MS",
    "half_open_max_attempts": "HALF_OPEN_MAX_ATTEMPTS",
}


class ProviderConfig(BaseModel):
    """Provider 包配置 -- 从环境变量加载

    环境变量:
        AIGW_LLM_MODE: 运行模式（live / echo）
        AIGW_OPENAI_API_KEY: OpenAI 密钥
        AIGW_ANTHROPIC_API_KEY: Anthropic 密钥
        AIGW_PROVIDER_TIMEOUT_S: 单次调用超时（秒，默认 60）
        AIGW_PROVIDER_MAX_RETRIES: litellm 重试次数（默认 0）
        AIGW_VALIDATE_PROVIDERS: 启动时是否用真实调用校验密钥（默认 true）
        AIGW_BREAKER_<FIELD>: 熔断器默认参数
        AIGW_BREAKER_<PROVIDER>_<FIELD>: 单个 provider 的熔断器参数
    """

    llm_mode: Literal["live", "echo"] = Field(
        default="live",
        description="live 调用真实 provider；echo 仅启用离线 Echo provider",
    )
    openai_api_key: SecretStr = Field(default=SecretStr(""))
    anthropic_api_key: SecretStr = Field(default=SecretStr(""))
    timeout_s: int = Field(default=60, ge=1, description="provider 调用超时（秒）")
    max_retries: int = Field(default=0, ge=0, description="litellm num_retries")
    validate_on_startup: bool = Field(default=True, description="启动时校验 provider 密钥")
    breaker_defaults: BreakerConfig = Field(default_factory=BreakerConfig)
    breaker_overrides: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="按 provider 覆盖的熔断器字段",
    )

    def is_openai_configured(self) -> bool:
        key = self.openai_api_key.get_secret_value()
        return key.startswith("sk-") and len(key) > 20

    def is_anthropic_configured(self) -> bool:
        key = self.anthropic_api_key.get_secret_value()
        return key.startswith("sk-ant-") and len(key) > 20

    def configured_providers(self) -> list[str]:
        """已配置的 provider（echo 模式下只有 echo）"""
        if self.llm_mode == "echo":
            return ["echo"]
        providers = []
        if self.is_openai_configured():
            providers.append("openai")
        if self.is_anthropic_configured():
            providers.append("anthropic")
        return providers


def _int_env(name: str) -> int | None:
    val = os.environ.get(name)
    if not val:
        return None
    try:
        return int(val)
    except ValueError:
        log.warning("invalid_int_config", env_var=name, value=val)
        # 使用默认值，不阻塞启动
        return None


def load_provider_config() -> ProviderConfig:
    """从环境变量加载 Provider 配置

    Returns:
        ProviderConfig 实例
    """
    kwargs: dict[str, Any] = {}

    if val := os.environ.get("AIGW_LLM_MODE"):
        kwargs["llm_mode"] = val

    if val := os.environ.get("AIGW_OPENAI_API_KEY"):
        kwargs["openai_api_key"] = SecretStr(val)

    if val := os.environ.get("AIGW_ANTHROPIC_API_KEY"):
        kwargs["anthropic_api_key"] = SecretStr(val)

    if (val := _int_env("AIGW_PROVIDER_TIMEOUT_S")) is not None:
        kwargs["timeout_s"] = val

    if (val := _int_env("AIGW_PROVIDER_MAX_RETRIES")) is not None:
        kwargs["max_retries"] = val

    if val := os.environ.get("AIGW_VALIDATE_PROVIDERS"):
        kwargs["validate_on_startup"] = val.lower() in ("1", "true", "yes")

    breaker_fields: dict[str, int] = {}
    for field, suffix in _BREAKER_ENV_FIELDS.items():
        if (val := _int_env(f"AIGW_BREAKER_{suffix}")) is not None:
            breaker_fields[field] = val
    if breaker_fields:
        kwargs["breaker_defaults"] = BreakerConfig().model_copy(update=breaker_fields)

    overrides: dict[str, dict[str, Any]] = {}
    for provider in KNOWN_PROVIDERS:
        for field, suffix in _BREAKER_ENV_FIELDS.items():
            env_var = f"AIGW_BREAKER_{provider.upper()}_{suffix}"
            if (val := _int_env(env_var)) is not None:
                overrides.setdefault(provider, {})[field] = val
    if overrides:
        kwargs["breaker_overrides"] = overrides

    return ProviderConfig(**kwargs)
