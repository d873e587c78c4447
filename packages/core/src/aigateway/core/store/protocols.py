"""Store Protocol 接口定义

定义 LedgerStore、KVStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
Gateway 只依赖这些接口，测试可直接替换为内存实现。
"""

from typing import Protocol

from ..models.enums import WalletType
from ..models.wallet import CreditCheck, CreditDeduction, UsageRecord, Wallet


class LedgerStore(Protocol):
    """账本接口 -- 每个方法都按钱包类型寻址

    组织钱包不存在时返回 None；个人钱包按需开通。
    """

    async def get_wallet(self, wallet_type: WalletType, owner_id: str) -> Wallet | None:
        """查询钱包（不开通）"""
        ...

    async def get_balance(self, wallet_type: WalletType, owner_id: str) -> float | None:
        """可用余额"""
        ...

    async def check_credits(
        self,
        wallet_type: WalletType,
        owner_id: str,
        required: float,
    ) -> CreditCheck | None:
        """额度预检"""
        ...

    async def deduct_credits(
        self,
        wallet_type: WalletType,
        owner_id: str,
        usage: UsageRecord,
        description: str = "",
    ) -> CreditDeduction | None:
        """按用量扣费"""
        ...


class KVStore(Protocol):
    """带 TTL 的键值存储接口"""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ...

    async def keys(self, pattern: str) -> list[str]:
        """glob 风格匹配"""
        ...

    async def delete(self, *keys: str) -> int:
        """返回实际删除的数量"""
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...
