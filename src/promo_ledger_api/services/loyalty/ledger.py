"""Per-(customer, business) points balances and their append-only log."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime
from typing import Tuple
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from promo_ledger_api.db.guarded import insert_if_absent, reload, update_where
from promo_ledger_api.domain.errors import InsufficientPointsError, LedgerValidationError
from promo_ledger_api.models.loyalty import (
    LoyaltyPoints,
    LoyaltyTransaction,
    LoyaltyTransactionTypeEnum,
)


@dataclass(frozen=True, slots=True)
class LoyaltyBalance:
    """Serializable balance snapshot; zeros when no ledger exists yet."""

    customer_id: UUID
    business_id: UUID
    points_balance: int
    total_earned: int
    total_spent: int
    loyalty_id: UUID | None = None

    @classmethod
    def from_row(cls, row: LoyaltyPoints) -> "LoyaltyBalance":
        return cls(
            customer_id=row.customer_id,
            business_id=row.business_id,
            points_balance=row.points_balance,
            total_earned=row.total_earned,
            total_spent=row.total_spent,
            loyalty_id=row.id,
        )


@dataclass(frozen=True, slots=True)
class LedgerReconciliation:
    customer_id: UUID
    business_id: UUID
    points_balance: int
    earned_minus_spent: int
    transaction_sum: int

    @property
    def consistent(self) -> bool:
        return self.points_balance == self.earned_minus_spent == self.transaction_sum


class LoyaltyLedger:
    """Atomic credit/debit against a single ledger row.

    Balance changes are in-SQL increments; debits re-check the persisted
    balance inside the UPDATE so concurrent spends cannot overdraw.
    Passing a ``reference_id`` makes a call idempotent per transaction type.
    """

    _CREDIT_TYPES = {LoyaltyTransactionTypeEnum.EARN, LoyaltyTransactionTypeEnum.ADJUST}
    _DEBIT_TYPES = {LoyaltyTransactionTypeEnum.SPEND, LoyaltyTransactionTypeEnum.EXPIRE}

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_balance(self, customer_id: UUID, business_id: UUID) -> LoyaltyBalance:
        row = await self._find_ledger(customer_id, business_id)
        if row is None:
            return LoyaltyBalance(
                customer_id=customer_id,
                business_id=business_id,
                points_balance=0,
                total_earned=0,
                total_spent=0,
            )
        return LoyaltyBalance.from_row(row)

    async def credit(
        self,
        customer_id: UUID,
        business_id: UUID,
        amount: int,
        reason: str,
        reference_id: str | None = None,
        transaction_type: LoyaltyTransactionTypeEnum = LoyaltyTransactionTypeEnum.EARN,
    ) -> LoyaltyBalance:
        if amount <= 0:
            raise LedgerValidationError("Ledger credits require a positive amount")
        if transaction_type not in self._CREDIT_TYPES:
            raise LedgerValidationError(f"{transaction_type.value} is not a credit transaction")

        ledger = await self._ensure_ledger(customer_id, business_id)
        if reference_id and await self._has_reference(ledger.id, transaction_type, reference_id):
            logger.info(
                "Skipped duplicate loyalty credit",
                loyalty_id=str(ledger.id),
                reference_id=reference_id,
            )
            return LoyaltyBalance.from_row(ledger)

        self._session.add(
            LoyaltyTransaction(
                loyalty_id=ledger.id,
                transaction_type=transaction_type,
                points_amount=amount,
                description=reason,
                reference_id=reference_id,
            )
        )
        await self._session.flush()
        await update_where(
            self._session,
            LoyaltyPoints,
            criteria=[LoyaltyPoints.id == ledger.id],
            values={
                "points_balance": LoyaltyPoints.points_balance + amount,
                "total_earned": LoyaltyPoints.total_earned + amount,
            },
        )
        refreshed = await reload(self._session, LoyaltyPoints, ledger.id)
        logger.info(
            "Credited loyalty points",
            loyalty_id=str(ledger.id),
            amount=amount,
            transaction_type=transaction_type.value,
            balance=refreshed.points_balance,
        )
        return LoyaltyBalance.from_row(refreshed)

    async def debit(
        self,
        customer_id: UUID,
        business_id: UUID,
        amount: int,
        reason: str,
        reference_id: str | None = None,
        transaction_type: LoyaltyTransactionTypeEnum = LoyaltyTransactionTypeEnum.SPEND,
    ) -> LoyaltyBalance:
        if amount <= 0:
            raise LedgerValidationError("Ledger debits require a positive amount")
        if transaction_type not in self._DEBIT_TYPES:
            raise LedgerValidationError(f"{transaction_type.value} is not a debit transaction")

        ledger = await self._find_ledger(customer_id, business_id)
        if ledger is None:
            raise InsufficientPointsError(required=amount, available=0)
        if reference_id and await self._has_reference(ledger.id, transaction_type, reference_id):
            logger.info(
                "Skipped duplicate loyalty debit",
                loyalty_id=str(ledger.id),
                reference_id=reference_id,
            )
            return LoyaltyBalance.from_row(ledger)

        rows = await update_where(
            self._session,
            LoyaltyPoints,
            criteria=[LoyaltyPoints.id == ledger.id, LoyaltyPoints.points_balance >= amount],
            values={
                "points_balance": LoyaltyPoints.points_balance - amount,
                "total_spent": LoyaltyPoints.total_spent + amount,
            },
        )
        refreshed = await reload(self._session, LoyaltyPoints, ledger.id)
        if rows == 0:
            raise InsufficientPointsError(required=amount, available=refreshed.points_balance)

        self._session.add(
            LoyaltyTransaction(
                loyalty_id=ledger.id,
                transaction_type=transaction_type,
                points_amount=-amount,
                description=reason,
                reference_id=reference_id,
            )
        )
        await self._session.flush()
        logger.info(
            "Debited loyalty points",
            loyalty_id=str(ledger.id),
            amount=amount,
            transaction_type=transaction_type.value,
            balance=refreshed.points_balance,
        )
        return LoyaltyBalance.from_row(refreshed)

    async def list_transactions(
        self,
        customer_id: UUID,
        business_id: UUID | None = None,
        *,
        limit: int = 25,
        cursor: Tuple[datetime, UUID] | None = None,
    ) -> tuple[list[LoyaltyTransaction], Tuple[datetime, UUID] | None]:
        """Return a newest-first window of a customer's transactions."""

        bounded_limit = max(1, min(limit, 100))
        stmt = (
            select(LoyaltyTransaction)
            .join(LoyaltyPoints, LoyaltyPoints.id == LoyaltyTransaction.loyalty_id)
            .options(selectinload(LoyaltyTransaction.ledger))
            .where(LoyaltyPoints.customer_id == customer_id)
            .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
        )
        if business_id is not None:
            stmt = stmt.where(LoyaltyPoints.business_id == business_id)
        if cursor:
            cursor_time, cursor_id = cursor
            stmt = stmt.where(
                or_(
                    LoyaltyTransaction.created_at < cursor_time,
                    and_(
                        LoyaltyTransaction.created_at == cursor_time,
                        LoyaltyTransaction.id < cursor_id,
                    ),
                )
            )

        stmt = stmt.limit(bounded_limit + 1)
        result = await self._session.execute(stmt)
        rows = list(result.scalars().all())
        has_more = len(rows) > bounded_limit
        entries = rows[:bounded_limit]
        next_cursor: Tuple[datetime, UUID] | None = None
        if has_more and entries:
            tail = entries[-1]
            next_cursor = (tail.created_at, tail.id)
        return entries, next_cursor

    async def list_balances(self, customer_id: UUID) -> list[LoyaltyBalance]:
        """Balances with spendable points across every business."""

        stmt = (
            select(LoyaltyPoints)
            .where(LoyaltyPoints.customer_id == customer_id, LoyaltyPoints.points_balance > 0)
            .order_by(LoyaltyPoints.points_balance.desc())
        )
        result = await self._session.execute(stmt)
        return [LoyaltyBalance.from_row(row) for row in result.scalars().all()]

    async def reconcile(self, customer_id: UUID, business_id: UUID) -> LedgerReconciliation:
        balance = await self.get_balance(customer_id, business_id)
        transaction_sum = 0
        if balance.loyalty_id is not None:
            stmt = select(func.coalesce(func.sum(LoyaltyTransaction.points_amount), 0)).where(
                LoyaltyTransaction.loyalty_id == balance.loyalty_id
            )
            result = await self._session.execute(stmt)
            transaction_sum = int(result.scalar_one())
        return LedgerReconciliation(
            customer_id=customer_id,
            business_id=business_id,
            points_balance=balance.points_balance,
            earned_minus_spent=balance.total_earned - balance.total_spent,
            transaction_sum=transaction_sum,
        )

    async def _find_ledger(self, customer_id: UUID, business_id: UUID) -> LoyaltyPoints | None:
        stmt = select(LoyaltyPoints).where(
            LoyaltyPoints.customer_id == customer_id,
            LoyaltyPoints.business_id == business_id,
        )
        stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _ensure_ledger(self, customer_id: UUID, business_id: UUID) -> LoyaltyPoints:
        ledger = await self._find_ledger(customer_id, business_id)
        if ledger is not None:
            return ledger

        inserted = await insert_if_absent(
            self._session,
            LoyaltyPoints,
            values={
                "id": uuid4(),
                "customer_id": customer_id,
                "business_id": business_id,
                "points_balance": 0,
                "total_earned": 0,
                "total_spent": 0,
            },
            index_elements=["customer_id", "business_id"],
        )
        if not inserted:
            logger.warning(
                "Detected race when creating loyalty ledger",
                customer_id=str(customer_id),
                business_id=str(business_id),
            )
        ledger = await self._find_ledger(customer_id, business_id)
        if ledger is None:  # pragma: no cover - the insert above guarantees a row
            raise RuntimeError("Loyalty ledger row missing after insert")
        return ledger

    async def _has_reference(
        self,
        loyalty_id: UUID,
        transaction_type: LoyaltyTransactionTypeEnum,
        reference_id: str,
    ) -> bool:
        stmt = select(LoyaltyTransaction.id).where(
            LoyaltyTransaction.loyalty_id == loyalty_id,
            LoyaltyTransaction.transaction_type == transaction_type,
            LoyaltyTransaction.reference_id == reference_id,
        )
        result = await self._session.execute(stmt)
        return result.first() is not None


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{timestamp.isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
    timestamp_str, identifier_str = raw.split("|", 1)
    return datetime.fromisoformat(timestamp_str), UUID(identifier_str)
