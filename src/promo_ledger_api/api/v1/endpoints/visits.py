"""Business-facing visit verification and approval."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger_api.api.dependencies.session import require_session_user
from promo_ledger_api.db.session import get_session
from promo_ledger_api.domain.errors import (
    CampaignInactiveError,
    CampaignMismatchError,
    CampaignNotFoundError,
    CreditPoolExhaustedError,
    InvalidProofError,
    ReferralArtifactNotFoundError,
    ReferralLimitExceededError,
    VisitAlreadyProcessedError,
)
from promo_ledger_api.models.visit import VisitStatusEnum
from promo_ledger_api.schemas.ledger import VisitResponse, serialize_visit
from promo_ledger_api.services.ledger_engine import LedgerEngine
from promo_ledger_api.services.visits import VisitStateMachine


router = APIRouter(prefix="/visits", tags=["Visits"])


class VisitVerifyRequest(BaseModel):
    qrToken: Optional[str] = Field(None, description="Scanned visit proof")
    referralCode: Optional[str] = Field(None, description="Influencer referral code presented with the visit")


class CampaignSummary(BaseModel):
    id: UUID
    title: str
    campaignType: str
    creditsPerAction: int


class VisitVerifyResponse(BaseModel):
    visit: VisitResponse
    campaign: CampaignSummary
    message: str


class VisitEnvelope(BaseModel):
    visit: VisitResponse


class VisitStatsResponse(BaseModel):
    total: int
    approved: int
    rejected: int
    pending: int
    byDay: Dict[str, int]
    byInfluencer: Dict[str, int]


@router.post("/verify", response_model=VisitVerifyResponse, status_code=status.HTTP_201_CREATED)
async def verify_visit(
    payload: VisitVerifyRequest,
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> VisitVerifyResponse:
    """Verify a scanned visit proof and record a pending visit."""

    engine = LedgerEngine(db)
    try:
        result = await engine.verify_visit(payload.qrToken or "", business_id, payload.referralCode)
    except (InvalidProofError, ReferralArtifactNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except CampaignNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found") from exc
    except CampaignMismatchError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Campaign does not belong to this business",
        ) from exc
    except CampaignInactiveError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Campaign is not active") from exc

    campaign = result.campaign
    return VisitVerifyResponse(
        visit=serialize_visit(result.visit),
        campaign=CampaignSummary(
            id=campaign.id,
            title=campaign.title,
            campaignType=campaign.campaign_type.value,
            creditsPerAction=campaign.credits_per_action,
        ),
        message=result.message,
    )


@router.post("/{visit_id}/approve", response_model=VisitEnvelope)
async def approve_visit(
    visit_id: UUID,
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> VisitEnvelope:
    engine = LedgerEngine(db)
    try:
        visit = await engine.approve_visit(visit_id, business_id)
    except VisitAlreadyProcessedError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (CreditPoolExhaustedError, ReferralLimitExceededError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except CampaignInactiveError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Campaign is not active") from exc
    return VisitEnvelope(visit=serialize_visit(visit))


@router.post("/{visit_id}/reject", response_model=VisitEnvelope)
async def reject_visit(
    visit_id: UUID,
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> VisitEnvelope:
    engine = LedgerEngine(db)
    try:
        visit = await engine.reject_visit(visit_id, business_id)
    except VisitAlreadyProcessedError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return VisitEnvelope(visit=serialize_visit(visit))


def _parse_status(value: str | None) -> VisitStatusEnum | None:
    if not value:
        return None
    try:
        return VisitStatusEnum(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unsupported visit status: {value}") from exc


@router.get("", response_model=List[VisitResponse])
async def list_visits(
    visit_status: str | None = Query(None, alias="status"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> List[VisitResponse]:
    service = VisitStateMachine(db)
    visits = await service.list_business_visits(
        business_id,
        status=_parse_status(visit_status),
        start=start_date,
        end=end_date,
    )
    return [serialize_visit(visit) for visit in visits]


@router.get("/stats", response_model=VisitStatsResponse)
async def visit_stats(
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    business_id: UUID = Depends(require_session_user),
    db: AsyncSession = Depends(get_session),
) -> VisitStatsResponse:
    stats = await VisitStateMachine(db).visit_stats(business_id, start=start_date, end=end_date)
    return VisitStatsResponse(
        total=stats.total,
        approved=stats.approved,
        rejected=stats.rejected,
        pending=stats.pending,
        byDay=stats.by_day,
        byInfluencer=stats.by_influencer,
    )
