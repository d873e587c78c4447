"""AdmissionController 单元测试

覆盖：钱包归属互斥、用量预估、预检拒绝原因、最终扣费、账本故障。
"""

import sqlite3
from unittest.mock import AsyncMock

import pytest
from aigateway.core.models import WalletType
from aigateway.gateway.models import BillableUsage
from aigateway.gateway.services.admission import (
    AdmissionController,
    estimate_text_usage,
    wallet_of,
)
from aigateway.provider import (
    Capability,
    ConversationMessage,
    CreditCalculator,
    ErrorKind,
    GatewayError,
    MessageRole,
    ModelCatalog,
    Tenant,
    TokenUsage,
)

ORG_TENANT = Tenant(user_id="user-1", organization_id="org-1")


class TestWalletOf:
    def test_personal(self, tenant):
        assert wallet_of(tenant) == (WalletType.PERSONAL, "user-1")

    def test_organization_only(self):
        """带组织上下文时只用组织钱包"""
        assert wallet_of(ORG_TENANT) == (WalletType.ORGANIZATION, "org-1")


class TestEstimate:
    """用量 / 费用预估"""

    def test_text_usage_from_chars(self):
        messages = (
            ConversationMessage(role=MessageRole.SYSTEM, content="Be brief."),
            ConversationMessage(role=MessageRole.USER, content="What is Python?"),
        )
        usage = estimate_text_usage(messages)
        # "Be brief." + "What is Python?" = 24 字符 -> 6 token
        assert usage.tokens.prompt_tokens == 6
        assert usage.tokens.completion_tokens == 6
        assert usage.tokens.total_tokens == 12

    def test_text_usage_minimum_one(self):
        usage = estimate_text_usage((ConversationMessage(role=MessageRole.USER, content=""),))
        assert usage.tokens.prompt_tokens == 1

    def test_estimate_cost_per_capability(self, admission):
        tokens = TokenUsage(prompt_tokens=100, completion_tokens=100, total_tokens=200)
        text = admission.estimate_cost(
            Capability.TEXT_GENERATION, "echo-pro", BillableUsage(tokens=tokens)
        )
        assert text == pytest.approx(100 * 0.0001 + 100 * 0.0004)
        assert admission.estimate_cost(
            Capability.IMAGE_GENERATION, "echo-image", BillableUsage(image_count=2)
        ) == 20
        assert admission.estimate_cost(
            Capability.SPEECH_SYNTHESIS, "echo-tts", BillableUsage(character_count=100)
        ) == pytest.approx(1)
        assert admission.estimate_cost(
            Capability.SPEECH_RECOGNITION, "echo-stt", BillableUsage(audio_seconds=60)
        ) == pytest.approx(5)


class TestCheckCredits:
    """只读额度查询"""

    async def test_reports_shortfall_without_raising(self, admission, ledger, tenant):
        await ledger.create_wallet(WalletType.PERSONAL, "user-1", balance=3)

        check = await admission.check_credits(tenant, 10)

        assert check.has_credits is False
        assert check.within_plan_limit is True
        assert check.balance == 3
        assert check.plan_limit == 100

    async def test_org_wallet_used_for_org_tenant(self, admission, ledger):
        await ledger.create_wallet(WalletType.ORGANIZATION, "org-1")

        check = await admission.check_credits(ORG_TENANT, 1)

        assert check.wallet_type == WalletType.ORGANIZATION
        assert check.balance == 500
        assert await ledger.get_wallet(WalletType.PERSONAL, "user-1") is None

    async def test_missing_org_wallet(self, admission):
        with pytest.raises(GatewayError) as exc_info:
            await admission.check_credits(ORG_TENANT, 1)
        assert exc_info.value.kind == ErrorKind.WALLET_NOT_FOUND

    async def test_ledger_failure_is_unavailable(self, tenant):
        ledger = AsyncMock()
        ledger.check_credits.side_effect = sqlite3.OperationalError("disk I/O error")
        admission = AdmissionController(ledger, CreditCalculator(ModelCatalog()))

        with pytest.raises(GatewayError) as exc_info:
            await admission.check_credits(tenant, 1)
        assert exc_info.value.kind == ErrorKind.LEDGER_UNAVAILABLE


class TestAdmit:
    """预检"""

    async def test_personal_admitted(self, admission, tenant):
        check = await admission.admit(tenant, 5)

        assert check.has_credits is True
        assert check.wallet_type == WalletType.PERSONAL
        assert check.required == 5
        assert check.balance == 100

    async def test_missing_org_wallet(self, admission, ledger):
        with pytest.raises(GatewayError) as exc_info:
            await admission.admit(ORG_TENANT, 1)

        assert exc_info.value.kind == ErrorKind.WALLET_NOT_FOUND
        assert exc_info.value.http_status == 404
        assert exc_info.value.details["organization_id"] == "org-1"
        # 不回落到个人钱包
        assert await ledger.get_wallet(WalletType.PERSONAL, "user-1") is None

    async def test_insufficient_credits(self, admission, ledger, tenant):
        await ledger.create_wallet(WalletType.PERSONAL, "user-1", balance=3)

        with pytest.raises(GatewayError) as exc_info:
            await admission.admit(tenant, 10)

        error = exc_info.value
        assert error.kind == ErrorKind.INSUFFICIENT_CREDITS
        assert error.http_status == 402
        assert error.details == {"required": 10, "available": 3}
        assert error.message == "Insufficient credits. Required: 10, available: 3"

    async def test_plan_limit_reported_before_balance(self, admission, ledger, tenant):
        """月度额度用尽时报 PLAN_LIMIT_EXCEEDED"""
        await ledger.create_wallet(WalletType.PERSONAL, "user-1", balance=100)
        await admission.charge_final(
            tenant,
            Capability.IMAGE_GENERATION,
            "echo-image",
            BillableUsage(image_count=10),
        )

        with pytest.raises(GatewayError) as exc_info:
            await admission.admit(tenant, 1)

        assert exc_info.value.kind == ErrorKind.PLAN_LIMIT_EXCEEDED
        assert exc_info.value.details == {"limit": 100, "used": 100}
        assert exc_info.value.message == (
            "Monthly plan limit reached. Upgrade your plan to continue."
        )

    async def test_ledger_failure_is_unavailable(self, tenant):
        ledger = AsyncMock()
        ledger.check_credits.side_effect = sqlite3.OperationalError("database is locked")
        admission = AdmissionController(ledger, CreditCalculator(ModelCatalog()))

        with pytest.raises(GatewayError) as exc_info:
            await admission.admit(tenant, 1)

        assert exc_info.value.kind == ErrorKind.LEDGER_UNAVAILABLE
        assert exc_info.value.http_status == 503
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)


class TestChargeFinal:
    """最终扣费"""

    async def test_charge_records_usage(self, admission, ledger, tenant, db_conn):
        tokens = TokenUsage(prompt_tokens=1000, completion_tokens=2000, total_tokens=3000)
        charge = await admission.charge_final(
            tenant,
            Capability.TEXT_GENERATION,
            "echo-pro",
            BillableUsage(tokens=tokens),
            request_id="req-1",
        )

        assert charge.credits_used == pytest.approx(0.1 + 0.8)
        assert charge.new_balance == pytest.approx(100 - 0.9)
        assert charge.wallet_type == WalletType.PERSONAL

        cursor = await db_conn.execute(
            "SELECT model, capability, request_id, input_tokens, output_tokens FROM usage_records"
        )
        assert tuple(await cursor.fetchone()) == (
            "echo-pro",
            "text-generation",
            "req-1",
            1000,
            2000,
        )

    async def test_charge_exceeding_estimate_still_succeeds(self, admission, ledger, tenant):
        """实际费用超过预估与余额时照常扣费，余额可为负"""
        await ledger.create_wallet(WalletType.PERSONAL, "user-1", balance=5)
        charge = await admission.charge_final(
            tenant,
            Capability.IMAGE_GENERATION,
            "echo-image",
            BillableUsage(image_count=1),
            estimated=1,
        )
        assert charge.credits_used == 10
        assert charge.new_balance == pytest.approx(-5)

    async def test_charge_goes_to_org_wallet(self, admission, ledger):
        await ledger.create_wallet(WalletType.ORGANIZATION, "org-1")
        charge = await admission.charge_final(
            ORG_TENANT, Capability.IMAGE_GENERATION, "echo-image", BillableUsage(image_count=1)
        )

        assert charge.wallet_type == WalletType.ORGANIZATION
        assert await ledger.get_balance(WalletType.ORGANIZATION, "org-1") == 490
        assert await ledger.get_wallet(WalletType.PERSONAL, "user-1") is None

    async def test_ledger_failure_on_charge(self, tenant):
        ledger = AsyncMock()
        ledger.deduct_credits.side_effect = sqlite3.OperationalError("disk I/O error")
        admission = AdmissionController(ledger, CreditCalculator(ModelCatalog()))

        with pytest.raises(GatewayError) as exc_info:
            await admission.charge_final(
                tenant, Capability.IMAGE_GENERATION, "echo-image", BillableUsage(image_count=1)
            )
        assert exc_info.value.kind == ErrorKind.LEDGER_UNAVAILABLE


class TestCurrentBalance:
    async def test_balance(self, admission, tenant):
        assert await admission.current_balance(tenant) == 100

    async def test_missing_org_is_none(self, admission):
        assert await admission.current_balance(ORG_TENANT) is None

    async def test_read_failure_is_none(self, tenant):
        ledger = AsyncMock()
        ledger.get_balance.side_effect = sqlite3.OperationalError("locked")
        admission = AdmissionController(ledger, CreditCalculator(ModelCatalog()))
        assert await admission.current_balance(tenant) is None
