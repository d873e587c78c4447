"""Wallet Domain Model -- 钱包、额度检查、扣费结果、用量记录

credit 扣费采用小数累计：每次精确金额先进入 pending_credits，
只有累计满整数部分才从 balance 扣除并计入 monthly_used。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import PLAN_LIMITS, UNLIMITED, Plan, TransactionType, WalletType


class Wallet(BaseModel):
    """钱包"""

    wallet_id: str = Field(description="唯一标识，ULID 格式")
    wallet_type: WalletType
    owner_id: str = Field(description="user_id 或 organization_id")
    plan: Plan
    balance: float = Field(description="已按整数扣除后的余额")
    monthly_used: float = Field(default=0.0, ge=0.0, description="本月已扣除 credit")
    pending_credits: float = Field(default=0.0, ge=0.0, description="尚未凑满整数的小数扣费")
    period: str = Field(description="计费周期 YYYY-MM")
    created_at: datetime
    updated_at: datetime

    @property
    def plan_limit(self) -> int:
        return PLAN_LIMITS.get(self.plan, UNLIMITED)

    @property
    def available(self) -> float:
        """可用余额（扣除待结算小数部分）"""
        return self.balance - self.pending_credits


class CreditCheck(BaseModel):
    """额度预检结果"""

    wallet_type: WalletType
    required: float
    balance: float
    plan_limit: int = Field(description="-1 表示不限额")
    monthly_used: float
    within_plan_limit: bool
    has_credits: bool


class CreditDeduction(BaseModel):
    """扣费结果"""

    transaction_id: str
    wallet_type: WalletType
    credits_used: float = Field(ge=0.0, description="本次精确扣费金额（含小数）")
    whole_credits_deducted: int = Field(ge=0, description="本次实际从余额扣除的整数 credit")
    new_balance: float


class UsageRecord(BaseModel):
    """一次付费调用的用量记录"""

    user_id: str
    organization_id: str | None = None
    capability: str
    model: str
    request_id: str | None = None
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    image_count: int = Field(default=0, ge=0)
    character_count: int = Field(default=0, ge=0)
    audio_seconds: float = Field(default=0.0, ge=0.0)
    credits: float = Field(ge=0.0)


class CreditTransaction(BaseModel):
    """credit 流水（append-only）"""

    transaction_id: str
    wallet_id: str
    type: TransactionType
    amount: float = Field(description="正数为入账，负数为扣费")
    balance_after: float
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
