"""Loyalty balances and transaction history."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger_api.api.dependencies.session import require_session_user
from promo_ledger_api.db.session import get_session
from promo_ledger_api.models.loyalty import LoyaltyTransaction
from promo_ledger_api.schemas.ledger import aware
from promo_ledger_api.services.ledger_engine import LedgerEngine
from promo_ledger_api.services.loyalty import (
    LoyaltyBalance,
    LoyaltyLedger,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)


router = APIRouter(prefix="/loyalty", tags=["Loyalty"])


class LoyaltyBalanceResponse(BaseModel):
    customerId: UUID
    businessId: UUID
    pointsBalance: int
    totalEarned: int
    totalSpent: int


class LoyaltyTransactionResponse(BaseModel):
    id: UUID
    businessId: UUID
    transactionType: str
    pointsAmount: int
    description: Optional[str]
    referenceId: Optional[str]
    createdAt: datetime


class LoyaltyTransactionWindowResponse(BaseModel):
    transactions: List[LoyaltyTransactionResponse]
    nextCursor: Optional[str]


def _serialize_balance(balance: LoyaltyBalance) -> LoyaltyBalanceResponse:
    return LoyaltyBalanceResponse(
        customerId=balance.customer_id,
        businessId=balance.business_id,
        pointsBalance=balance.points_balance,
        totalEarned=balance.total_earned,
        totalSpent=balance.total_spent,
    )


def _serialize_transaction(entry: LoyaltyTransaction) -> LoyaltyTransactionResponse:
    return LoyaltyTransactionResponse(
        id=entry.id,
        businessId=entry.ledger.business_id,
        transactionType=entry.transaction_type.value,
        pointsAmount=entry.points_amount,
        description=entry.description,
        referenceId=entry.reference_id,
        createdAt=aware(entry.created_at),
    )


@router.get("/balances", response_model=List[LoyaltyBalanceResponse])
async def list_balances(
    customer_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> List[LoyaltyBalanceResponse]:
    """Balances with points for every business the customer has visited."""

    balances = await LoyaltyLedger(db).list_balances(customer_id)
    return [_serialize_balance(balance) for balance in balances]


@router.get("/balances/{business_id}", response_model=LoyaltyBalanceResponse)
async def get_balance(
    business_id: UUID,
    customer_id: UUID | None = Query(None, alias="customerId"),
    session_user: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> LoyaltyBalanceResponse:
    balance = await LedgerEngine(db).get_balance(customer_id or session_user, business_id)
    return _serialize_balance(balance)


@router.get("/transactions", response_model=LoyaltyTransactionWindowResponse)
async def list_transactions(
    business_id: UUID | None = Query(None, alias="businessId"),
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    customer_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> LoyaltyTransactionWindowResponse:
    decoded_cursor = None
    if cursor:
        try:
            decoded_cursor = decode_time_uuid_cursor(cursor)
        except (ValueError, UnicodeDecodeError) as exc:
            raise HTTPException(status_code=400, detail="Invalid transaction cursor") from exc

    entries, next_cursor = await LoyaltyLedger(db).list_transactions(
        customer_id,
        business_id,
        limit=limit,
        cursor=decoded_cursor,
    )
    return LoyaltyTransactionWindowResponse(
        transactions=[_serialize_transaction(entry) for entry in entries],
        nextCursor=encode_time_uuid_cursor(*next_cursor) if next_cursor else None,
    )
