"""LedgerStore SQLite 实现 -- 钱包余额、额度检查与扣费

个人钱包在首次使用时按 FREE 套餐自动开通；组织钱包必须预先存在，
不存在时返回 None，由调用方决定如何报错（绝不回落到个人钱包）。

扣费在同一 SQLite 事务内完成：钱包更新 + credit 流水 + 用量记录。
同一连接上的读改写由 asyncio.Lock 串行化。任何异常（包括任务取消）都会先回滚
再释放锁，未提交的语句不会被下一个写入者的 commit 带上。
"""

import asyncio
import json
import math
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import aiosqlite
import structlog
from ulid import ULID

from ..models.enums import (
    DEFAULT_PLANS,
    PLAN_LIMITS,
    UNLIMITED,
    Plan,
    TransactionType,
    WalletType,
)
from ..models.wallet import (
    CreditCheck,
    CreditDeduction,
    CreditTransaction,
    UsageRecord,
    Wallet,
)

log = structlog.get_logger()

_WALLET_COLUMNS = (
    "wallet_id, wallet_type, owner_id, plan, balance, monthly_used, "
    "pending_credits, period, created_at, updated_at"
)

# pending_credits 的小数精度，避免浮点误差累积
_PENDING_PRECISION = 10


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _period_of(ts: datetime) -> str:
    return ts.strftime("%Y-%m")


class SqliteLedgerStore:
    """LedgerStore 的 SQLite 实现"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Args:
            conn: 已初始化的数据库连接
            clock: 当前时间（决定月度计费周期，测试时注入）
        """
        self._conn = conn
        self._clock = clock
        self._lock = asyncio.Lock()

    # ---- 查询 ----

    async def get_wallet(self, wallet_type: WalletType, owner_id: str) -> Wallet | None:
        """按钱包类型与所有者查询钱包（不自动开通）"""
        cursor = await self._conn.execute(
            f"SELECT {_WALLET_COLUMNS} FROM wallets WHERE wallet_type = ? AND owner_id = ?",
            (wallet_type.value, owner_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_wallet(row)

    async def get_balance(self, wallet_type: WalletType, owner_id: str) -> float | None:
        """可用余额；组织钱包不存在时返回 None"""
        async with self._lock:
            wallet = await self._resolve(wallet_type, owner_id)
        return wallet.available if wallet else None

    async def list_transactions(self, wallet_id: str) -> list[CreditTransaction]:
        """按时间顺序列出钱包流水"""
        cursor = await self._conn.execute(
            """
            SELECT transaction_id, wallet_id, type, amount, balance_after,
                   description, metadata, created_at
            FROM credit_transactions WHERE wallet_id = ?
            ORDER BY created_at, transaction_id
            """,
            (wallet_id,),
        )
        rows = await cursor.fetchall()
        return [
            CreditTransaction(
                transaction_id=row[0],
                wallet_id=row[1],
                type=row[2],
                amount=row[3],
                balance_after=row[4],
                description=row[5],
                metadata=json.loads(row[6]),
                created_at=datetime.fromisoformat(row[7]),
            )
            for row in rows
        ]

    # ---- 开通 / 充值 ----

    async def create_wallet(
        self,
        wallet_type: WalletType,
        owner_id: str,
        plan: Plan | None = None,
        balance: float | None = None,
    ) -> Wallet:
        """开通钱包

        Args:
            wallet_type: 钱包类型
            owner_id: user_id 或 organization_id
            plan: 套餐，默认按钱包类型取 FREE / ORG_FREE
            balance: 初始余额，默认等于套餐月度额度（不限额套餐为 0）
        """
        async with self._lock:
            return await self._insert_wallet(wallet_type, owner_id, plan, balance)

    async def grant_credits(
        self,
        wallet_type: WalletType,
        owner_id: str,
        amount: float,
        description: str = "Credit grant",
    ) -> Wallet | None:
        """充值；组织钱包不存在时返回 None"""
        async with self._lock:
            wallet = await self._resolve(wallet_type, owner_id)
            if wallet is None:
                return None
            now = self._clock()
            new_balance = wallet.balance + amount
            async with self._transaction():
                await self._conn.execute(
                    "UPDATE wallets SET balance = ?, updated_at = ? WHERE wallet_id = ?",
                    (new_balance, now.isoformat(), wallet.wallet_id),
                )
                await self._insert_transaction(
                    str(ULID()),
                    wallet.wallet_id,
                    TransactionType.GRANT,
                    amount,
                    new_balance - wallet.pending_credits,
                    description,
                    {},
                    now,
                )
            return wallet.model_copy(update={"balance": new_balance, "updated_at": now})

    # ---- 额度检查 / 扣费 ----

    async def check_credits(
        self,
        wallet_type: WalletType,
        owner_id: str,
        required: float,
    ) -> CreditCheck | None:
        """检查钱包是否足以支付 required credit

        Returns:
            CreditCheck；组织钱包不存在时返回 None
        """
        async with self._lock:
            wallet = await self._resolve(wallet_type, owner_id)
        if wallet is None:
            return None

        limit = wallet.plan_limit
        within_plan_limit = limit == UNLIMITED or wallet.monthly_used + required <= limit
        available = wallet.available
        return CreditCheck(
            wallet_type=wallet_type,
            required=required,
            balance=available,
            plan_limit=limit,
            monthly_used=wallet.monthly_used,
            within_plan_limit=within_plan_limit,
            has_credits=available >= required and within_plan_limit,
        )

    async def deduct_credits(
        self,
        wallet_type: WalletType,
        owner_id: str,
        usage: UsageRecord,
        description: str = "",
    ) -> CreditDeduction | None:
        """按用量扣费（小数累计），并写入流水与用量记录

        扣费不再检查余额：调用已成功完成，费用必须入账，余额可以为负。

        Returns:
            CreditDeduction；组织钱包不存在时返回 None
        """
        async with self._lock:
            wallet = await self._resolve(wallet_type, owner_id)
            if wallet is None:
                return None

            pending = wallet.pending_credits + usage.credits
            whole = math.floor(pending)
            pending = round(pending - whole, _PENDING_PRECISION)
            balance = wallet.balance - whole
            monthly_used = wallet.monthly_used + whole
            now = self._clock()
            transaction_id = str(ULID())

            async with self._transaction():
                await self._conn.execute(
                    """
                    UPDATE wallets
                    SET balance = ?, monthly_used = ?, pending_credits = ?, updated_at = ?
                    WHERE wallet_id = ?
                    """,
                    (balance, monthly_used, pending, now.isoformat(), wallet.wallet_id),
                )
                await self._insert_transaction(
                    transaction_id,
                    wallet.wallet_id,
                    TransactionType.USAGE,
                    -usage.credits,
                    balance - pending,
                    description or f"{usage.capability} {usage.model}",
                    {"model": usage.model, "capability": usage.capability, "whole_credits": whole},
                    now,
                )
                await self._conn.execute(
                    """
                    INSERT INTO usage_records (
                        usage_id, wallet_id, transaction_id, user_id, organization_id,
                        capability, model, request_id, input_tokens, output_tokens,
                        image_count, character_count, audio_seconds, credits, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(ULID()),
                        wallet.wallet_id,
                        transaction_id,
                        usage.user_id,
                        usage.organization_id,
                        usage.capability,
                        usage.model,
                        usage.request_id,
                        usage.input_tokens,
                        usage.output_tokens,
                        usage.image_count,
                        usage.character_count,
                        usage.audio_seconds,
                        usage.credits,
                        now.isoformat(),
                    ),
                )

        if balance < 0:
            log.warning(
                "wallet_balance_negative",
                wallet_type=wallet_type.value,
                owner_id=owner_id,
                balance=balance,
            )

        return CreditDeduction(
            transaction_id=transaction_id,
            wallet_type=wallet_type,
            credits_used=usage.credits,
            whole_credits_deducted=whole,
            new_balance=balance - pending,
        )

    # ---- 内部（调用方需持有锁）----

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        """提交块内语句；异常或取消时回滚"""
        try:
            yield
            await self._conn.commit()
        except BaseException:
            # 回滚本身不可被再次取消打断
            await asyncio.shield(self._conn.rollback())
            raise

    async def _resolve(self, wallet_type: WalletType, owner_id: str) -> Wallet | None:
        """取钱包：个人钱包按需开通，组织钱包不存在返回 None；跨月时重置月度用量"""
        wallet = await self.get_wallet(wallet_type, owner_id)
        if wallet is None:
            if wallet_type != WalletType.PERSONAL:
                return None
            wallet = await self._insert_wallet(wallet_type, owner_id, None, None)
            log.info("personal_wallet_provisioned", owner_id=owner_id, plan=wallet.plan.value)
        return await self._roll_period(wallet)

    async def _roll_period(self, wallet: Wallet) -> Wallet:
        now = self._clock()
        period = _period_of(now)
        if wallet.period == period:
            return wallet
        async with self._transaction():
            await self._conn.execute(
                "UPDATE wallets SET monthly_used = 0, period = ?, updated_at = ? WHERE wallet_id = ?",
                (period, now.isoformat(), wallet.wallet_id),
            )
        log.info("wallet_period_rolled", wallet_id=wallet.wallet_id, period=period)
        return wallet.model_copy(update={"monthly_used": 0.0, "period": period, "updated_at": now})

    async def _insert_wallet(
        self,
        wallet_type: WalletType,
        owner_id: str,
        plan: Plan | None,
        balance: float | None,
    ) -> Wallet:
        plan = plan or DEFAULT_PLANS[wallet_type]
        if balance is None:
            balance = float(max(PLAN_LIMITS[plan], 0))
        now = self._clock()
        wallet = Wallet(
            wallet_id=str(ULID()),
            wallet_type=wallet_type,
            owner_id=owner_id,
            plan=plan,
            balance=balance,
            period=_period_of(now),
            created_at=now,
            updated_at=now,
        )
        async with self._transaction():
            await self._conn.execute(
                f"INSERT INTO wallets ({_WALLET_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    wallet.wallet_id,
                    wallet.wallet_type.value,
                    wallet.owner_id,
                    wallet.plan.value,
                    wallet.balance,
                    wallet.monthly_used,
                    wallet.pending_credits,
                    wallet.period,
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        return wallet

    async def _insert_transaction(
        self,
        transaction_id: str,
        wallet_id: str,
        tx_type: TransactionType,
        amount: float,
        balance_after: float,
        description: str,
        metadata: dict,
        now: datetime,
    ) -> None:
        await self._conn.execute(
            """
            INSERT INTO credit_transactions (
                transaction_id, wallet_id, type, amount, balance_after,
                description, metadata, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                transaction_id,
                wallet_id,
                tx_type.value,
                amount,
                balance_after,
                description,
                json.dumps(metadata, ensure_ascii=False),
                now.isoformat(),
            ),
        )

    @staticmethod
    def _row_to_wallet(row: aiosqlite.Row) -> Wallet:
        """将数据库行转换为 Wallet 模型"""
        return Wallet(
            wallet_id=row[0],
            wallet_type=row[1],
            owner_id=row[2],
            plan=row[3],
            balance=row[4],
            monthly_used=row[5],
            pending_credits=row[6],
            period=row[7],
            created_at=datetime.fromisoformat(row[8]),
            updated_at=datetime.fromisoformat(row[9]),
        )
