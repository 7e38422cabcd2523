"""Response shapes shared by the visit and reward endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from promo_ledger_api.core.clock import ensure_aware
from promo_ledger_api.models.loyalty import RewardRedemption
from promo_ledger_api.models.visit import Visit


class VisitResponse(BaseModel):
    id: UUID
    campaignId: UUID
    influencerId: UUID
    customerId: UUID
    businessId: UUID
    referralCodeId: Optional[UUID]
    status: str
    creditsEarned: int
    loyaltyPointsEarned: int
    createdAt: datetime
    approvedAt: Optional[datetime]
    rejectedAt: Optional[datetime]


class RedemptionResponse(BaseModel):
    id: UUID
    customerId: UUID
    businessId: UUID
    campaignId: UUID
    pointsSpent: int
    status: str
    qrProof: str
    reward: Optional[dict[str, Any]]
    createdAt: datetime
    redeemedAt: Optional[datetime]
    expiresAt: datetime


def aware(value: datetime | None) -> datetime | None:
    return ensure_aware(value) if value is not None else None


def serialize_visit(visit: Visit) -> VisitResponse:
    return VisitResponse(
        id=visit.id,
        campaignId=visit.campaign_id,
        influencerId=visit.influencer_id,
        customerId=visit.customer_id,
        businessId=visit.business_id,
        referralCodeId=visit.referral_code_id,
        status=visit.status.value,
        creditsEarned=visit.credits_earned or 0,
        loyaltyPointsEarned=visit.loyalty_points_earned or 0,
        createdAt=aware(visit.created_at),
        approvedAt=aware(visit.approved_at),
        rejectedAt=aware(visit.rejected_at),
    )


def serialize_redemption(redemption: RewardRedemption) -> RedemptionResponse:
    return RedemptionResponse(
        id=redemption.id,
        customerId=redemption.customer_id,
        businessId=redemption.business_id,
        campaignId=redemption.campaign_id,
        pointsSpent=redemption.points_spent,
        status=redemption.status.value,
        qrProof=redemption.qr_proof,
        reward=dict(redemption.reward_snapshot) if redemption.reward_snapshot else None,
        createdAt=aware(redemption.created_at),
        redeemedAt=aware(redemption.redeemed_at),
        expiresAt=aware(redemption.expires_at),
    )
