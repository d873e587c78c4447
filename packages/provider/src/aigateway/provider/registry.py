"""ProviderRegistry -- 进程启动时构造一次的 provider 注册表

持有已配置的 adapter、模型目录与熔断器注册表，按引用传入 Orchestrator。
Orchestrator 只通过这里按模型选出 adapter，从不按 provider 名分支。

启动时 validate_providers() 对每个已配置 provider 发起一次最小调用确认密钥有效，
结果按 provider 记录。校验失败的 provider 视为不可用；尚未校验的 provider 视为可用。
"""

import asyncio
import time

import structlog
from pydantic import BaseModel, Field

from .adapters import (
    AnthropicAdapter,
    EchoAdapter,
    OpenAIAdapter,
    ProviderAdapter,
    classify_error,
)
from .breaker import BreakerRegistry, CircuitState
from .catalog import ModelCatalog, ModelInfo
from .config import ProviderConfig
from .exceptions import ErrorKind, GatewayError
from .models import Capability

log = structlog.get_logger()

# 校验调用以这些错误结束时，密钥本身仍视为有效（限流 / 校验模型被拒）
_KEY_VALID_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.INVALID_REQUEST})


class ProviderStatus(BaseModel):
    """单个 provider 的状态摘要"""

    name: str
    configured: bool
    validated: bool | None = Field(default=None, description="None 表示尚未校验")
    circuit_state: CircuitState | None = None
    models: list[str]


class ProviderValidation(BaseModel):
    """单个 provider 的凭证校验结果"""

    name: str
    valid: bool
    error: str | None = None
    latency_ms: int = 0


class ProviderRegistry:
    """Provider 注册表"""

    def __init__(
        self,
        catalog: ModelCatalog,
        breakers: BreakerRegistry,
        adapters: dict[str, ProviderAdapter],
    ) -> None:
        """
        Args:
            catalog: 模型目录
            breakers: 熔断器注册表（adapter 的熔断器来自这里）
            adapters: provider 名 -> 已配置的 adapter
        """
        self.catalog = catalog
        self.breakers = breakers
        self._adapters = adapters
        self._validated: dict[str, bool] = {}

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        catalog: ModelCatalog | None = None,
    ) -> "ProviderRegistry":
        """按配置构造 adapter；未配置凭证的 provider 不注册"""
        catalog = catalog or ModelCatalog()
        breakers = BreakerRegistry(
            defaults=config.breaker_defaults,
            overrides=config.breaker_overrides,
        )
        adapters: dict[str, ProviderAdapter] = {}

        for name in config.configured_providers():
            breaker = breakers.get_or_create(name)
            if name == "echo":
                adapters[name] = EchoAdapter(breaker, timeout_s=config.timeout_s)
            elif name == "openai":
                adapters[name] = OpenAIAdapter(
                    breaker,
                    api_key=config.openai_api_key.get_secret_value(),
                    timeout_s=config.timeout_s,
                    max_retries=config.max_retries,
                )
            elif name == "anthropic":
                adapters[name] = AnthropicAdapter(
                    breaker,
                    api_key=config.anthropic_api_key.get_secret_value(),
                    timeout_s=config.timeout_s,
                    max_retries=config.max_retries,
                )

        log.info(
            "provider_registry_built",
            llm_mode=config.llm_mode,
            providers=sorted(adapters),
        )
        return cls(catalog, breakers, adapters)

    def adapter(self, provider: str) -> ProviderAdapter | None:
        return self._adapters.get(provider)

    def canonical_model(self, model: str) -> str:
        """把 provider 别名解析为目录中的模型 id"""
        for adapter in self._adapters.values():
            resolved = adapter.resolve_alias(model)
            if resolved != model:
                return resolved
        return model

    def is_model_available(self, model: str, capability: Capability | None = None) -> bool:
        info = self.catalog.get(model)
        if info is None:
            return False
        if capability is not None and info.capability != capability:
            return False
        adapter = self._adapters.get(info.provider)
        if adapter is None or not adapter.supports(info.capability):
            return False
        return self._validated.get(info.provider, True)

    def require(self, model: str, capability: Capability) -> tuple[ModelInfo, ProviderAdapter]:
        """返回模型条目与对应 adapter

        Raises:
            GatewayError(MODEL_UNAVAILABLE): 模型不存在、能力不符或 provider 未配置
        """
        if not self.is_model_available(model, capability):
            raise GatewayError(
                f"Model '{model}' is not available",
                kind=ErrorKind.MODEL_UNAVAILABLE,
                details={"model": model, "capability": capability.value},
            )
        info = self.catalog.get(model)
        return info, self._adapters[info.provider]

    def available_models(self, capability: Capability | None = None) -> list[ModelInfo]:
        return [
            m for m in self.catalog.models(capability=capability)
            if self.is_model_available(m.id)
        ]

    def cheapest_model(self, capability: Capability) -> ModelInfo | None:
        """所有已配置 provider 中该能力最便宜的模型"""
        available = self.available_models(capability)
        return available[0] if available else None

    def providers_status(self) -> list[ProviderStatus]:
        statuses = []
        for name in self.catalog.providers():
            breaker = self.breakers.get(name)
            statuses.append(
                ProviderStatus(
                    name=name,
                    configured=name in self._adapters,
                    validated=self._validated.get(name),
                    circuit_state=breaker.state if breaker else None,
                    models=[m.id for m in self.catalog.models(provider=name)],
                )
            )
        return statuses

    # ---- 凭证校验 ----

    async def validate_providers(self) -> dict[str, ProviderValidation]:
        """并发校验所有已配置 provider 的凭证并记录结果"""
        results = await asyncio.gather(
            *(self._validate(name, adapter) for name, adapter in self._adapters.items())
        )
        return {r.name: r for r in results}

    def is_validated(self, provider: str) -> bool | None:
        return self._validated.get(provider)

    async def _validate(self, name: str, adapter: ProviderAdapter) -> ProviderValidation:
        start_time = time.monotonic()
        error: str | None = None
        try:
            await adapter.check_credentials()
            valid = True
        except Exception as e:
            classified = classify_error(e, name)
            valid = classified.kind in _KEY_VALID_KINDS
            error = None if valid else classified.message
        latency_ms = int((time.monotonic() - start_time) * 1000)

        self._validated[name] = valid
        if valid:
            log.info("provider_validated", provider=name, latency_ms=latency_ms)
        else:
            log.error(
                "provider_validation_failed",
                provider=name,
                error=error,
                latency_ms=latency_ms,
            )
        return ProviderValidation(name=name, valid=valid, error=error, latency_ms=latency_ms)
