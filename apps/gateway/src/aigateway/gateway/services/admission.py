"""AdmissionController -- 调用前额度预检 + 调用后最终扣费

钱包归属（互斥）：
    tenant 带 organization_id -> 只使用组织钱包
    否则                     -> 只使用个人钱包（首次使用时自动开通）

预估与最终扣费都使用同一个 CreditCalculator，两者的差异只来自用量：
预估基于请求（文本按 ceil(字符数/4) 估算输入 token，输出按与输入等量估算），
最终扣费基于 provider 报告的实际用量。
"""

import math

import structlog
from aigateway.core.models import CreditCheck, UsageRecord, WalletType
from aigateway.core.store import LedgerStore
from aigateway.provider import (
    Capability,
    ConversationMessage,
    CreditCalculator,
    ErrorKind,
    GatewayError,
    Tenant,
    TokenUsage,
    estimate_tokens,
)

from ..models import BillableUsage, CreditCharge

log = structlog.get_logger()

# 语音识别预估 / provider 未报告时长时的计费基数（秒）
MIN_AUDIO_SECONDS = 60.0


def wallet_of(tenant: Tenant) -> tuple[WalletType, str]:
    """tenant -> (钱包类型, 所有者 id)"""
    if tenant.is_organization:
        return WalletType.ORGANIZATION, tenant.organization_id
    return WalletType.PERSONAL, tenant.user_id


def estimate_text_usage(messages: list[ConversationMessage] | tuple) -> BillableUsage:
    """按消息字符数估算 token 用量"""
    tokens = max(estimate_tokens("".join(m.text for m in messages)), 1)
    return BillableUsage(
        tokens=TokenUsage(prompt_tokens=tokens, completion_tokens=tokens, total_tokens=tokens * 2)
    )


class AdmissionController:
    """额度准入控制"""

    def __init__(self, ledger: LedgerStore, calculator: CreditCalculator) -> None:
        self._ledger = ledger
        self._calculator = calculator

    @property
    def calculator(self) -> CreditCalculator:
        return self._calculator

    def estimate_cost(self, capability: Capability, model: str, usage: BillableUsage) -> float:
        """按能力计算用量对应的 credit"""
        match capability:
            case Capability.TEXT_GENERATION:
                return self._calculator.credits_for_usage(model, usage.tokens or TokenUsage())
            case Capability.IMAGE_GENERATION:
                return self._calculator.credits_for_images(model, usage.image_count)
            case Capability.SPEECH_SYNTHESIS:
                return self._calculator.credits_for_speech(model, usage.character_count)
            case Capability.SPEECH_RECOGNITION:
                return self._calculator.credits_for_transcription(model, usage.audio_seconds)
        raise ValueError(f"unsupported capability: {capability}")

    async def check_credits(self, tenant: Tenant, estimated_cost: float) -> CreditCheck:
        """查询 tenant 钱包能否支付 estimated_cost（只读，不拒绝）

        Raises:
            GatewayError: WALLET_NOT_FOUND / LEDGER_UNAVAILABLE
        """
        wallet_type, owner_id = wallet_of(tenant)
        try:
            check = await self._ledger.check_credits(wallet_type, owner_id, estimated_cost)
        except Exception as e:
            raise self._ledger_error("check_credits", e) from e

        if check is None:
            raise GatewayError(
                "Organization wallet not found",
                kind=ErrorKind.WALLET_NOT_FOUND,
                details={"organization_id": owner_id},
            )
        return check

    async def admit(self, tenant: Tenant, estimated: float) -> CreditCheck:
        """预检额度，不通过时抛出

        Raises:
            GatewayError: WALLET_NOT_FOUND / PLAN_LIMIT_EXCEEDED /
                INSUFFICIENT_CREDITS / LEDGER_UNAVAILABLE
        """
        wallet_type, owner_id = wallet_of(tenant)
        check = await self.check_credits(tenant, estimated)
        if not check.within_plan_limit:
            log.info(
                "admission_rejected",
                reason="plan_limit",
                wallet_type=wallet_type.value,
                owner_id=owner_id,
            )
            raise GatewayError(
                "Monthly plan limit reached. Upgrade your plan to continue.",
                kind=ErrorKind.PLAN_LIMIT_EXCEEDED,
                details={"limit": check.plan_limit, "used": check.monthly_used},
            )
        if not check.has_credits:
            log.info(
                "admission_rejected",
                reason="insufficient_credits",
                wallet_type=wallet_type.value,
                owner_id=owner_id,
            )
            raise GatewayError(
                f"Insufficient credits. Required: {math.ceil(estimated)}, "
                f"available: {math.floor(check.balance)}",
                kind=ErrorKind.INSUFFICIENT_CREDITS,
                details={"required": estimated, "available": check.balance},
            )

        log.debug(
            "admission_granted",
            wallet_type=wallet_type.value,
            owner_id=owner_id,
            estimated=estimated,
        )
        return check

    async def charge_final(
        self,
        tenant: Tenant,
        capability: Capability,
        model: str,
        usage: BillableUsage,
        estimated: float | None = None,
        request_id: str | None = None,
    ) -> CreditCharge:
        """按实际用量扣费（调用已成功，不再检查余额）"""
        credits = self.estimate_cost(capability, model, usage)
        wallet_type, owner_id = wallet_of(tenant)
        tokens = usage.tokens or TokenUsage()
        record = UsageRecord(
            user_id=tenant.user_id,
            organization_id=tenant.organization_id,
            capability=capability.value,
            model=model,
            request_id=request_id,
            input_tokens=tokens.prompt_tokens,
            output_tokens=tokens.completion_tokens,
            image_count=usage.image_count,
            character_count=usage.character_count,
            audio_seconds=usage.audio_seconds,
            credits=credits,
        )

        try:
            deduction = await self._ledger.deduct_credits(wallet_type, owner_id, record)
        except Exception as e:
            raise self._ledger_error("deduct_credits", e) from e

        if deduction is None:
            raise GatewayError(
                "Organization wallet not found",
                kind=ErrorKind.WALLET_NOT_FOUND,
                details={"organization_id": owner_id},
            )

        if estimated is not None and credits > estimated:
            log.warning(
                "charge_exceeded_estimate",
                model=model,
                estimated=estimated,
                actual=credits,
            )
        log.info(
            "credits_charged",
            wallet_type=wallet_type.value,
            owner_id=owner_id,
            capability=capability.value,
            model=model,
            credits=credits,
            new_balance=deduction.new_balance,
        )
        return CreditCharge(
            credits_used=credits,
            new_balance=deduction.new_balance,
            wallet_type=wallet_type,
        )

    async def current_balance(self, tenant: Tenant) -> float | None:
        """当前余额，读取失败返回 None（仅用于展示）"""
        wallet_type, owner_id = wallet_of(tenant)
        try:
            return await self._ledger.get_balance(wallet_type, owner_id)
        except Exception as e:
            log.warning("balance_read_failed", owner_id=owner_id, error=str(e))
            return None

    @staticmethod
    def _ledger_error(operation: str, e: Exception) -> GatewayError:
        log.error(
            "ledger_unavailable",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        return GatewayError(
            "Credit ledger is temporarily unavailable",
            kind=ErrorKind.LEDGER_UNAVAILABLE,
            details={"operation": operation},
        )
