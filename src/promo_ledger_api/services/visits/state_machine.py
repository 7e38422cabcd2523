"""Visit lifecycle: pending -> approved | rejected, plus approval side effects."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger_api.core.clock import ensure_aware, utcnow
from promo_ledger_api.core.settings import settings
from promo_ledger_api.db.guarded import reload, update_where
from promo_ledger_api.domain.errors import (
    CampaignMismatchError,
    VisitAlreadyProcessedError,
    VisitNotFoundError,
)
from promo_ledger_api.models.visit import Visit, VisitStatusEnum
from promo_ledger_api.services.campaigns import CampaignDirectory
from promo_ledger_api.services.loyalty import LoyaltyLedger


@dataclass
class VisitStats:
    """Visit counts for a business dashboard."""

    total: int = 0
    approved: int = 0
    rejected: int = 0
    pending: int = 0
    by_day: dict[str, int] = field(default_factory=dict)
    by_influencer: dict[str, int] = field(default_factory=dict)


class VisitStateMachine:
    """Owns visit creation and the single transition out of ``pending``.

    The service flushes but never commits; the caller owns the transaction
    so an approval and its side effects land together.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        directory: CampaignDirectory | None = None,
        ledger: LoyaltyLedger | None = None,
    ) -> None:
        self._session = session
        self._directory = directory or CampaignDirectory(session)
        self._ledger = ledger or LoyaltyLedger(session)

    async def create_pending_visit(
        self,
        campaign_id: UUID,
        influencer_id: UUID,
        customer_id: UUID,
        business_id: UUID,
        referral_artifact_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Visit:
        """Record a scan. Every scan yields a new pending visit."""

        moment = now or utcnow()
        campaign = await self._directory.get_active_campaign(campaign_id, moment)
        if campaign.business_id != business_id:
            raise CampaignMismatchError(campaign_id, business_id)

        visit = Visit(
            campaign_id=campaign.id,
            influencer_id=influencer_id,
            customer_id=customer_id,
            business_id=business_id,
            referral_code_id=referral_artifact_id,
            status=VisitStatusEnum.PENDING,
            credits_earned=0,
            loyalty_points_earned=0,
            created_at=moment,
        )
        self._session.add(visit)
        await self._session.flush()
        logger.info(
            "Created pending visit",
            visit_id=str(visit.id),
            campaign_id=str(campaign.id),
            business_id=str(business_id),
        )
        return visit

    async def approve(self, visit_id: UUID, business_id: UUID, now: datetime | None = None) -> Visit:
        """Approve a pending visit and settle its credits, points and referral usage."""

        moment = now or utcnow()
        rows = await update_where(
            self._session,
            Visit,
            criteria=[
                Visit.id == visit_id,
                Visit.business_id == business_id,
                Visit.status == VisitStatusEnum.PENDING,
            ],
            values={"status": VisitStatusEnum.APPROVED, "approved_at": moment},
        )
        if rows == 0:
            raise VisitAlreadyProcessedError(visit_id)

        visit = await reload(self._session, Visit, visit_id)
        # Settling needs a live campaign; the caller rolls the transition back otherwise.
        campaign = await self._directory.get_active_campaign(visit.campaign_id, moment)
        credits_earned = campaign.credits_per_action
        points_earned = settings.visit_loyalty_points

        await update_where(
            self._session,
            Visit,
            criteria=[Visit.id == visit_id, Visit.status == VisitStatusEnum.APPROVED],
            values={"credits_earned": credits_earned, "loyalty_points_earned": points_earned},
        )
        await self._directory.debit_credit_pool(campaign.id, credits_earned)
        await self._ledger.credit(
            visit.customer_id,
            visit.business_id,
            points_earned,
            reason=f"Visit reward: {campaign.title}",
            reference_id=f"visit:{visit.id}",
        )
        if visit.referral_code_id is not None:
            await self._directory.increment_artifact_usage(visit.referral_code_id)

        visit = await reload(self._session, Visit, visit_id)
        logger.info(
            "Approved visit",
            visit_id=str(visit_id),
            campaign_id=str(campaign.id),
            credits_earned=credits_earned,
            loyalty_points_earned=points_earned,
        )
        return visit

    async def reject(self, visit_id: UUID, business_id: UUID, now: datetime | None = None) -> Visit:
        rows = await update_where(
            self._session,
            Visit,
            criteria=[
                Visit.id == visit_id,
                Visit.business_id == business_id,
                Visit.status == VisitStatusEnum.PENDING,
            ],
            values={"status": VisitStatusEnum.REJECTED, "rejected_at": now or utcnow()},
        )
        if rows == 0:
            raise VisitAlreadyProcessedError(visit_id)
        visit = await reload(self._session, Visit, visit_id)
        logger.info("Rejected visit", visit_id=str(visit_id), business_id=str(business_id))
        return visit

    async def get_visit(self, visit_id: UUID, business_id: UUID) -> Visit:
        stmt = select(Visit).where(Visit.id == visit_id, Visit.business_id == business_id)
        result = await self._session.execute(stmt)
        visit = result.scalar_one_or_none()
        if visit is None:
            raise VisitNotFoundError(f"Visit {visit_id} not found")
        return visit

    async def list_business_visits(
        self,
        business_id: UUID,
        status: VisitStatusEnum | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Visit]:
        stmt = select(Visit).where(Visit.business_id == business_id)
        if status is not None:
            stmt = stmt.where(Visit.status == status)
        if start is not None:
            stmt = stmt.where(Visit.created_at >= start)
        if end is not None:
            stmt = stmt.where(Visit.created_at <= end)
        stmt = stmt.order_by(Visit.created_at.desc(), Visit.id.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def visit_stats(
        self,
        business_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> VisitStats:
        visits = await self.list_business_visits(business_id, start=start, end=end)
        statuses = Counter(visit.status for visit in visits)
        by_day = Counter(ensure_aware(visit.created_at).date().isoformat() for visit in visits)
        by_influencer = Counter(str(visit.influencer_id) for visit in visits)
        return VisitStats(
            total=len(visits),
            approved=statuses.get(VisitStatusEnum.APPROVED, 0),
            rejected=statuses.get(VisitStatusEnum.REJECTED, 0),
            pending=statuses.get(VisitStatusEnum.PENDING, 0),
            by_day=dict(sorted(by_day.items())),
            by_influencer=dict(by_influencer),
        )
