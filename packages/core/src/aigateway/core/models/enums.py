"""枚举定义 -- 钱包类型、套餐、流水类型

包含 PLAN_LIMITS 套餐月度额度映射（-1 表示不限额）。
"""

from enum import StrEnum


class WalletType(StrEnum):
    """钱包类型 -- 个人与组织互斥，不相互兜底"""

    PERSONAL = "personal"
    ORGANIZATION = "organization"


class Plan(StrEnum):
    """套餐"""

    # 个人
    FREE = "FREE"
    STARTER = "STARTER"
    PRO = "PRO"
    BUSINESS = "BUSINESS"
    ENTERPRISE = "ENTERPRISE"

    # 组织
    ORG_FREE = "ORG_FREE"
    ORG_STARTER = "ORG_STARTER"
    ORG_GROWTH = "ORG_GROWTH"
    ORG_PRO = "ORG_PRO"
    ORG_BUSINESS = "ORG_BUSINESS"
    ORG_ENTERPRISE = "ORG_ENTERPRISE"


UNLIMITED = -1

# 每月 credit 额度
PLAN_LIMITS: dict[Plan, int] = {
    Plan.FREE: 100,
    Plan.STARTER: 1_000,
    Plan.PRO: 5_000,
    Plan.BUSINESS: 20_000,
    Plan.ENTERPRISE: UNLIMITED,
    Plan.ORG_FREE: 500,
    Plan.ORG_STARTER: 5_000,
    Plan.ORG_GROWTH: 20_000,
    Plan.ORG_PRO: 100_000,
    Plan.ORG_BUSINESS: 500_000,
    Plan.ORG_ENTERPRISE: UNLIMITED,
}

# 新建钱包的默认套餐
DEFAULT_PLANS: dict[WalletType, Plan] = {
    WalletType.PERSONAL: Plan.FREE,
    WalletType.ORGANIZATION: Plan.ORG_FREE,
}


class TransactionType(StrEnum):
    """credit 流水类型"""

    USAGE = "USAGE"
    GRANT = "GRANT"
