"""Reward redemption: spend points, verify proofs, complete at the counter."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger_api.api.dependencies.session import require_session_user
from promo_ledger_api.db.session import get_session
from promo_ledger_api.domain.errors import (
    CampaignInactiveError,
    CampaignNotFoundError,
    InsufficientPointsError,
    InvalidProofError,
    LedgerValidationError,
    RedemptionAlreadyProcessedError,
    RedemptionExpiredError,
    RedemptionForbiddenError,
    RedemptionNotFoundError,
)
from promo_ledger_api.models.loyalty import RewardRedemptionStatusEnum
from promo_ledger_api.schemas.ledger import RedemptionResponse, aware, serialize_redemption
from promo_ledger_api.services.ledger_engine import LedgerEngine
from promo_ledger_api.services.redemptions import RedemptionStateMachine


router = APIRouter(prefix="/rewards", tags=["Rewards"])


class RedemptionEnvelope(BaseModel):
    redemption: RedemptionResponse


class RedemptionQrResponse(BaseModel):
    redemptionId: UUID
    qrProof: str
    qrImage: str
    expiresAt: datetime


@router.post(
    "/{campaign_id}/redeem",
    response_model=RedemptionEnvelope,
    status_code=status.HTTP_201_CREATED,
)
async def redeem_reward(
    campaign_id: UUID,
    customer_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> RedemptionEnvelope:
    """Spend loyalty points on a reward campaign and mint its QR proof."""

    engine = LedgerEngine(db)
    try:
        redemption = await engine.redeem(customer_id, campaign_id)
    except InsufficientPointsError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Insufficient points",
                "required": exc.required,
                "available": exc.available,
            },
        ) from exc
    except (CampaignNotFoundError, CampaignInactiveError) as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Reward campaign not found or inactive",
        ) from exc
    return RedemptionEnvelope(redemption=serialize_redemption(redemption))


@router.get("/verify", response_model=RedemptionEnvelope)
async def verify_reward(
    qr_token: str = Query("", alias="qrToken"),
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> RedemptionEnvelope:
    engine = LedgerEngine(db)
    try:
        redemption = await engine.verify_reward(qr_token, business_id)
    except InvalidProofError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return RedemptionEnvelope(redemption=serialize_redemption(redemption))


@router.post("/redemptions/{redemption_id}/complete", response_model=RedemptionEnvelope)
async def complete_redemption(
    redemption_id: UUID,
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> RedemptionEnvelope:
    engine = LedgerEngine(db)
    try:
        redemption = await engine.complete_redemption(redemption_id, business_id)
    except RedemptionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Redemption not found") from exc
    except RedemptionForbiddenError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except (RedemptionAlreadyProcessedError, RedemptionExpiredError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return RedemptionEnvelope(redemption=serialize_redemption(redemption))


@router.get("/redemptions", response_model=List[RedemptionResponse])
async def list_redemptions(
    role: Literal["customer", "business"] = Query("customer"),
    redemption_status: str | None = Query(None, alias="status"),
    session_user: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> List[RedemptionResponse]:
    status_filter: RewardRedemptionStatusEnum | None = None
    if redemption_status:
        try:
            status_filter = RewardRedemptionStatusEnum(redemption_status)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail=f"Unsupported redemption status: {redemption_status}"
            ) from exc

    service = RedemptionStateMachine(db)
    if role == "business":
        redemptions = await service.list_business_redemptions(session_user, status_filter)
    else:
        redemptions = await service.list_customer_redemptions(session_user, status_filter)
    return [serialize_redemption(redemption) for redemption in redemptions]


@router.get("/redemptions/{redemption_id}/qr", response_model=RedemptionQrResponse)
async def get_redemption_qr(
    redemption_id: UUID,
    customer_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> RedemptionQrResponse:
    """Render the QR image for one of the customer's pending redemptions."""

    engine = LedgerEngine(db)
    try:
        redemption, image = await engine.redemption_qr(redemption_id, customer_id)
    except RedemptionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Redemption not found") from exc
    except LedgerValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return RedemptionQrResponse(
        redemptionId=redemption.id,
        qrProof=redemption.qr_proof,
        qrImage=image,
        expiresAt=aware(redemption.expires_at),
    )
