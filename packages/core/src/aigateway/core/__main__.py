"""CLI 入口模块 -- python -m aigateway.core <command>

支持的命令：
  init-db                                   初始化账本数据库
  create-wallet <personal|organization> <owner_id> [plan]
                                            开通钱包
  grant <personal|organization> <owner_id> <amount>
                                            充值
  balance <personal|organization> <owner_id>
                                            查询余额
"""

import asyncio
import sys

from .config import get_db_path
from .models import Plan, WalletType

USAGE = """用法: python -m aigateway.core <command>
命令:
  init-db                                               初始化账本数据库
  create-wallet <personal|organization> <owner_id> [plan]  开通钱包
  grant <personal|organization> <owner_id> <amount>        充值
  balance <personal|organization> <owner_id>               查询余额"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    command, args = sys.argv[1], sys.argv[2:]

    try:
        if command == "init-db" and not args:
            asyncio.run(init_database())
        elif command == "create-wallet" and len(args) in (2, 3):
            plan = Plan(args[2]) if len(args) == 3 else None
            asyncio.run(create_wallet(WalletType(args[0]), args[1], plan))
        elif command == "grant" and len(args) == 3:
            asyncio.run(grant(WalletType(args[0]), args[1], float(args[2])))
        elif command == "balance" and len(args) == 2:
            asyncio.run(show_balance(WalletType(args[0]), args[1]))
        else:
            print(f"未知命令或参数错误: {command}")
            print(USAGE)
            sys.exit(1)
    except ValueError as e:
        print(f"参数错误: {e}")
        sys.exit(1)


async def init_database() -> None:
    """创建数据库与表结构"""
    from .store import create_store_group

    db_path = get_db_path()
    store_group = await create_store_group(db_path)
    await store_group.conn.close()
    print(f"数据库已初始化: {db_path}")


async def create_wallet(wallet_type: WalletType, owner_id: str, plan: Plan | None) -> None:
    """开通钱包"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        existing = await store_group.ledger_store.get_wallet(wallet_type, owner_id)
        if existing is not None:
            print(f"钱包已存在: {existing.wallet_id} (plan={existing.plan.value})")
            return
        wallet = await store_group.ledger_store.create_wallet(wallet_type, owner_id, plan=plan)
        print(f"钱包已开通: {wallet.wallet_id} plan={wallet.plan.value} balance={wallet.balance}")
    finally:
        await store_group.conn.close()


async def grant(wallet_type: WalletType, owner_id: str, amount: float) -> None:
    """充值"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        wallet = await store_group.ledger_store.grant_credits(wallet_type, owner_id, amount)
        if wallet is None:
            print(f"钱包不存在: {wallet_type.value}/{owner_id}")
            sys.exit(1)
        print(f"充值完成，余额 {wallet.available:.4f}")
    finally:
        await store_group.conn.close()


async def show_balance(wallet_type: WalletType, owner_id: str) -> None:
    """查询余额（不自动开通钱包）"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        wallet = await store_group.ledger_store.get_wallet(wallet_type, owner_id)
        if wallet is None:
            print(f"钱包不存在: {wallet_type.value}/{owner_id}")
            sys.exit(1)
        limit = "unlimited" if wallet.plan_limit < 0 else str(wallet.plan_limit)
        print(
            f"{wallet.wallet_type.value}/{wallet.owner_id} plan={wallet.plan.value} "
            f"balance={wallet.available:.4f} monthly_used={wallet.monthly_used} limit={limit}"
        )
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
