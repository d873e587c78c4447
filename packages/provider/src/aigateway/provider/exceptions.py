"""Gateway 异常体系

所有 provider / breaker / 计费失败都归一为 GatewayError，
调用方只按 kind 分支（升级套餐 / 稍后重试 / 充值），不感知具体 provider。
"""

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """错误类型 -- 封闭集合，HTTP 状态见 HTTP_STATUS"""

    PROVIDER_ERROR = "PROVIDER_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_REQUEST = "INVALID_REQUEST"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    PLAN_LIMIT_EXCEEDED = "PLAN_LIMIT_EXCEEDED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.PROVIDER_ERROR: 502,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.MODEL_UNAVAILABLE: 503,
    ErrorKind.TIMEOUT: 408,
    ErrorKind.WALLET_NOT_FOUND: 404,
    ErrorKind.INSUFFICIENT_CREDITS: 402,
    ErrorKind.PLAN_LIMIT_EXCEEDED: 402,
    ErrorKind.CIRCUIT_OPEN: 503,
    ErrorKind.LEDGER_UNAVAILABLE: 503,
}

# 可通过重试或等待恢复的错误类型
RECOVERABLE_KINDS = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.TIMEOUT,
        ErrorKind.CIRCUIT_OPEN,
        ErrorKind.MODEL_UNAVAILABLE,
    }
)


class GatewayError(Exception):
    """Gateway 基础异常"""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.PROVIDER_ERROR,
        details: dict[str, Any] | None = None,
        retry_after_ms: int | None = None,
    ) -> None:
        """
        Args:
            message: 面向用户的错误描述
            kind: 错误类型
            details: 附加结构化信息（如 required / available）
            retry_after_ms: 建议的重试等待时间（毫秒）
        """
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.details = details or {}
        self.retry_after_ms = retry_after_ms

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.kind]

    @property
    def recoverable(self) -> bool:
        """是否可通过重试或降级恢复"""
        return self.kind in RECOVERABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        """序列化为 HTTP / SSE 错误体"""
        details = dict(self.details)
        if self.retry_after_ms is not None:
            details.setdefault("retry_after_ms", self.retry_after_ms)
        return {
            "kind": self.kind.value,
            "message": self.message,
            "http_status": self.http_status,
            "details": details,
        }


class CircuitOpenError(GatewayError):
    """熔断器处于 OPEN 状态，调用被直接拒绝（被包装函数不会执行）"""

    def __init__(self, circuit: str, retry_after_ms: int) -> None:
        """
        Args:
            circuit: 熔断器名称（通常为 provider 名）
            retry_after_ms: 距离允许试探调用的剩余时间
        """
        super().__init__(
            f"Service '{circuit}' is temporarily unavailable, retry in "
            f"{max(retry_after_ms, 0) // 1000 + 1}s",
            kind=ErrorKind.CIRCUIT_OPEN,
            details={"circuit": circuit},
            retry_after_ms=max(retry_after_ms, 0),
        )
        self.circuit = circuit
