"""AI Gateway Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    DEFAULT_PLANS,
    PLAN_LIMITS,
    UNLIMITED,
    Plan,
    TransactionType,
    WalletType,
)
from .wallet import CreditCheck, CreditDeduction, CreditTransaction, UsageRecord, Wallet

__all__ = [
    # 枚举
    "WalletType",
    "Plan",
    "TransactionType",
    # 套餐
    "PLAN_LIMITS",
    "DEFAULT_PLANS",
    "UNLIMITED",
    # 钱包
    "Wallet",
    "CreditCheck",
    "CreditDeduction",
    "CreditTransaction",
    "UsageRecord",
]
