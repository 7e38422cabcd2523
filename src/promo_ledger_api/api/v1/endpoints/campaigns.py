"""Business operations on a campaign: referral codes, status and credit pool."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger_api.api.dependencies.session import require_session_user
from promo_ledger_api.db.session import get_session
from promo_ledger_api.domain.errors import (
    CampaignMismatchError,
    CampaignNotFoundError,
    InvalidCampaignTransitionError,
)
from promo_ledger_api.models.campaign import Campaign, CampaignStatusEnum
from promo_ledger_api.schemas.ledger import aware
from promo_ledger_api.services.ledger_engine import LedgerEngine


router = APIRouter(prefix="/campaigns", tags=["Campaigns"])


class ReferralCodeRequest(BaseModel):
    influencerId: UUID
    usageLimit: Optional[int] = Field(None, gt=0, description="Maximum approved visits for the code")
    expiresAt: Optional[datetime] = None


class ReferralCodeResponse(BaseModel):
    id: UUID
    campaignId: UUID
    influencerId: UUID
    code: str
    usageCount: int
    usageLimit: Optional[int]
    isActive: bool
    expiresAt: Optional[datetime]


class CampaignStatusRequest(BaseModel):
    status: CampaignStatusEnum


class CampaignResponse(BaseModel):
    id: UUID
    businessId: UUID
    title: str
    campaignType: str
    status: str
    creditsPerAction: int
    totalCredits: int
    periodStart: datetime
    periodEnd: datetime


class CreditPoolResponse(BaseModel):
    campaignId: UUID
    totalCredits: int
    creditsPerAction: int
    remainingActions: int


def _serialize_campaign(campaign: Campaign) -> CampaignResponse:
    return CampaignResponse(
        id=campaign.id,
        businessId=campaign.business_id,
        title=campaign.title,
        campaignType=campaign.campaign_type.value,
        status=campaign.status.value,
        creditsPerAction=campaign.credits_per_action,
        totalCredits=campaign.total_credits,
        periodStart=aware(campaign.period_start),
        periodEnd=aware(campaign.period_end),
    )


def _campaign_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, CampaignMismatchError):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Campaign does not belong to this business",
        )
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")


@router.post(
    "/{campaign_id}/referral-codes",
    response_model=ReferralCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def issue_referral_code(
    campaign_id: UUID,
    payload: ReferralCodeRequest,
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> ReferralCodeResponse:
    engine = LedgerEngine(db)
    try:
        artifact = await engine.issue_referral_code(
            campaign_id,
            business_id,
            payload.influencerId,
            usage_limit=payload.usageLimit,
            expires_at=payload.expiresAt,
        )
    except (CampaignNotFoundError, CampaignMismatchError) as exc:
        raise _campaign_http_error(exc) from exc
    return ReferralCodeResponse(
        id=artifact.id,
        campaignId=artifact.campaign_id,
        influencerId=artifact.influencer_id,
        code=artifact.code,
        usageCount=artifact.usage_count,
        usageLimit=artifact.usage_limit,
        isActive=artifact.is_active,
        expiresAt=aware(artifact.expires_at),
    )


@router.post("/{campaign_id}/status", response_model=CampaignResponse)
async def transition_campaign_status(
    campaign_id: UUID,
    payload: CampaignStatusRequest,
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> CampaignResponse:
    engine = LedgerEngine(db)
    try:
        campaign = await engine.transition_campaign(campaign_id, business_id, payload.status)
    except (CampaignNotFoundError, CampaignMismatchError) as exc:
        raise _campaign_http_error(exc) from exc
    except InvalidCampaignTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _serialize_campaign(campaign)


@router.get("/{campaign_id}/credit-pool", response_model=CreditPoolResponse)
async def read_credit_pool(
    campaign_id: UUID,
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> CreditPoolResponse:
    engine = LedgerEngine(db)
    try:
        campaign = await engine.credit_pool(campaign_id, business_id)
    except (CampaignNotFoundError, CampaignMismatchError) as exc:
        raise _campaign_http_error(exc) from exc
    return CreditPoolResponse(
        campaignId=campaign.id,
        totalCredits=campaign.total_credits,
        creditsPerAction=campaign.credits_per_action,
        remainingActions=campaign.total_credits // campaign.credits_per_action,
    )
