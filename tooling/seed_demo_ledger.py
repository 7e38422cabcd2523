"""Seed a demo business with a visit campaign, a referral code and a reward campaign."""

from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from promo_ledger_api.core.settings import settings
from promo_ledger_api.db.base import Base
from promo_ledger_api.models import (
    Campaign,
    CampaignReferralCode,
    CampaignRewardDetails,
    CampaignStatusEnum,
    CampaignTypeEnum,
    RewardTypeEnum,
)
from promo_ledger_api.services.proofs import encode_visit_proof


DEMO_BUSINESS_ID = UUID(os.getenv("DEMO_BUSINESS_ID", "0b6f3c1e-5d7a-4e0b-9f1a-2c3d4e5f6a7b"))
DEMO_INFLUENCER_ID = UUID(os.getenv("DEMO_INFLUENCER_ID", "1c7a4d2f-6e8b-4f1c-8a2b-3d4e5f6a7b8c"))
DEMO_CUSTOMER_ID = UUID(os.getenv("DEMO_CUSTOMER_ID", "2d8b5e3a-7f9c-4a2d-9b3c-4e5f6a7b8c9d"))
DEMO_REFERRAL_CODE = "DEMOVISIT"


async def _ensure_campaign(session: AsyncSession, title: str, **fields) -> Campaign:
    existing = await session.execute(
        select(Campaign).where(Campaign.business_id == DEMO_BUSINESS_ID, Campaign.title == title)
    )
    campaign = existing.scalar_one_or_none()
    if campaign is None:
        campaign = Campaign(business_id=DEMO_BUSINESS_ID, title=title, **fields)
        session.add(campaign)
        await session.flush()
    return campaign


async def seed_ledger(session: AsyncSession) -> tuple[Campaign, Campaign]:
    now = datetime.now(timezone.utc)
    window = {
        "status": CampaignStatusEnum.ACTIVE,
        "period_start": now - timedelta(days=1),
        "period_end": now + timedelta(days=90),
    }
    visit_campaign = await _ensure_campaign(
        session,
        "Demo pay-per-customer",
        campaign_type=CampaignTypeEnum.PAY_PER_CUSTOMER,
        credits_per_action=5,
        total_credits=500,
        **window,
    )
    reward_campaign = await _ensure_campaign(
        session,
        "Demo free coffee",
        campaign_type=CampaignTypeEnum.LOYALTY_REWARD,
        credits_per_action=1,
        total_credits=0,
        **window,
    )
    details = await session.execute(
        select(CampaignRewardDetails).where(CampaignRewardDetails.campaign_id == reward_campaign.id)
    )
    if details.scalar_one_or_none() is None:
        session.add(
            CampaignRewardDetails(
                campaign_id=reward_campaign.id,
                points_cost=30,
                reward_type=RewardTypeEnum.FREE_ITEM,
                description="One free coffee",
                terms="One per visit",
            )
        )

    referral = await session.execute(
        select(CampaignReferralCode).where(CampaignReferralCode.code == DEMO_REFERRAL_CODE)
    )
    if referral.scalar_one_or_none() is None:
        session.add(
            CampaignReferralCode(
                campaign_id=visit_campaign.id,
                influencer_id=DEMO_INFLUENCER_ID,
                code=DEMO_REFERRAL_CODE,
                usage_limit=100,
            )
        )
    await session.commit()
    return visit_campaign, reward_campaign


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        if settings.database_url.startswith("sqlite"):
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as session:
            visit_campaign, reward_campaign = await seed_ledger(session)
        print(f"Business:        {DEMO_BUSINESS_ID}")
        print(f"Visit campaign:  {visit_campaign.id}")
        print(f"Reward campaign: {reward_campaign.id}")
        print(f"Visit QR token:  {encode_visit_proof(visit_campaign.id, DEMO_INFLUENCER_ID, DEMO_CUSTOMER_ID)}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
