"""Campaign reads, credit pool accounting and referral artifacts."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from promo_ledger_api.core.clock import ensure_aware, utcnow
from promo_ledger_api.core.settings import settings
from promo_ledger_api.db.guarded import reload, update_where
from promo_ledger_api.domain.campaigns import (
    CampaignTerms,
    RewardCampaignTerms,
    VisitCampaignTerms,
)
from promo_ledger_api.domain.errors import (
    CampaignInactiveError,
    CampaignNotFoundError,
    CreditPoolExhaustedError,
    InvalidCampaignTransitionError,
    ReferralArtifactNotFoundError,
    ReferralLimitExceededError,
)
from promo_ledger_api.models.campaign import (
    Campaign,
    CampaignReferralCode,
    CampaignStatusEnum,
    CampaignTypeEnum,
)


ReferralArtifact = CampaignReferralCode


def campaign_terms(campaign: Campaign) -> CampaignTerms:
    """Fold the type-specific payload into its variant."""

    if campaign.campaign_type == CampaignTypeEnum.LOYALTY_REWARD:
        details = campaign.reward_details
        if details is None:
            raise CampaignNotFoundError(campaign.id)
        return RewardCampaignTerms(
            campaign_id=campaign.id,
            points_cost=details.points_cost,
            reward_type=details.reward_type,
            reward_value=details.reward_value,
            description=details.description,
            terms=details.terms,
        )
    return VisitCampaignTerms(
        campaign_id=campaign.id,
        campaign_type=campaign.campaign_type,
        credits_per_action=campaign.credits_per_action,
    )


class CampaignDirectory:
    """Read/write access to campaigns and the referral artifacts bound to them."""

    _ALLOWED_TRANSITIONS: dict[CampaignStatusEnum, set[CampaignStatusEnum]] = {
        CampaignStatusEnum.DRAFT: {CampaignStatusEnum.ACTIVE},
        CampaignStatusEnum.ACTIVE: {
            CampaignStatusEnum.PAUSED,
            CampaignStatusEnum.COMPLETED,
            CampaignStatusEnum.CANCELLED,
            CampaignStatusEnum.EXPIRED,
        },
        CampaignStatusEnum.PAUSED: {CampaignStatusEnum.ACTIVE},
        CampaignStatusEnum.COMPLETED: set(),
        CampaignStatusEnum.CANCELLED: set(),
        CampaignStatusEnum.EXPIRED: set(),
    }

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_campaign(self, campaign_id: UUID) -> Campaign:
        stmt = (
            select(Campaign)
            .options(selectinload(Campaign.reward_details))
            .where(Campaign.id == campaign_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        campaign = result.scalar_one_or_none()
        if campaign is None:
            raise CampaignNotFoundError(campaign_id)
        return campaign

    async def get_active_campaign(self, campaign_id: UUID, now: datetime | None = None) -> Campaign:
        """Return the campaign only while it can settle actions."""

        campaign = await self.get_campaign(campaign_id)
        moment = ensure_aware(now or utcnow())
        start = ensure_aware(campaign.period_start)
        end = ensure_aware(campaign.period_end)
        if campaign.status != CampaignStatusEnum.ACTIVE or not (start <= moment <= end):
            raise CampaignInactiveError(campaign.id, campaign.status.value, start, end)
        return campaign

    async def get_reward_campaign(self, campaign_id: UUID, now: datetime | None = None) -> Campaign:
        campaign = await self.get_active_campaign(campaign_id, now)
        if campaign.campaign_type != CampaignTypeEnum.LOYALTY_REWARD or campaign.reward_details is None:
            raise CampaignNotFoundError(campaign_id)
        return campaign

    async def get_referral_artifact_by_code(self, code: str) -> ReferralArtifact:
        normalized = (code or "").strip().upper()
        if not normalized:
            raise ReferralArtifactNotFoundError(code)
        stmt = select(CampaignReferralCode).where(CampaignReferralCode.code == normalized)
        result = await self._session.execute(stmt)
        artifact = result.scalar_one_or_none()
        if artifact is None:
            raise ReferralArtifactNotFoundError(code)
        return artifact

    async def resolve_referral_artifact(
        self,
        campaign_id: UUID,
        influencer_id: UUID,
        code: str | None = None,
        now: datetime | None = None,
    ) -> ReferralArtifact | None:
        """Pick the artifact a new visit should be attributed to.

        An explicit code must be usable and bound to this campaign and
        influencer. Without a code, the influencer's newest usable artifact
        for the campaign is used; ``None`` when there is none.
        """

        moment = ensure_aware(now or utcnow())
        if code:
            artifact = await self.get_referral_artifact_by_code(code)
            if (
                artifact.campaign_id != campaign_id
                or artifact.influencer_id != influencer_id
                or not self._is_usable(artifact, moment)
            ):
                raise ReferralArtifactNotFoundError(code)
            return artifact

        stmt = (
            select(CampaignReferralCode)
            .where(
                CampaignReferralCode.campaign_id == campaign_id,
                CampaignReferralCode.influencer_id == influencer_id,
                CampaignReferralCode.is_active.is_(True),
            )
            .order_by(CampaignReferralCode.created_at.desc())
        )
        result = await self._session.execute(stmt)
        for artifact in result.scalars():
            if self._is_usable(artifact, moment):
                return artifact
        return None

    async def increment_artifact_usage(self, artifact_id: UUID) -> ReferralArtifact:
        rows = await update_where(
            self._session,
            CampaignReferralCode,
            criteria=[
                CampaignReferralCode.id == artifact_id,
                or_(
                    CampaignReferralCode.usage_limit.is_(None),
                    CampaignReferralCode.usage_count < CampaignReferralCode.usage_limit,
                ),
            ],
            values={"usage_count": CampaignReferralCode.usage_count + 1},
        )
        artifact = await reload(self._session, CampaignReferralCode, artifact_id)
        if artifact is None:
            raise ReferralArtifactNotFoundError()
        if rows == 0:
            logger.warning(
                "Referral usage limit reached",
                artifact_id=str(artifact_id),
                usage_limit=artifact.usage_limit,
            )
            raise ReferralLimitExceededError(artifact_id)
        return artifact

    async def issue_referral_artifact(
        self,
        campaign_id: UUID,
        influencer_id: UUID,
        usage_limit: int | None = None,
        expires_at: datetime | None = None,
    ) -> ReferralArtifact:
        """Mint a referral code for an influencer promoting the campaign."""

        if usage_limit is not None and usage_limit <= 0:
            raise ValueError("usage_limit must be positive when provided")
        campaign = await self.get_campaign(campaign_id)
        code = await self._generate_unique_referral_code()
        artifact = CampaignReferralCode(
            campaign_id=campaign.id,
            influencer_id=influencer_id,
            code=code,
            usage_count=0,
            usage_limit=usage_limit,
            is_active=True,
            expires_at=expires_at,
        )
        self._session.add(artifact)
        await self._session.flush()
        logger.info(
            "Issued referral code",
            code=code,
            campaign_id=str(campaign.id),
            influencer_id=str(influencer_id),
        )
        return artifact

    async def debit_credit_pool(self, campaign_id: UUID, amount: int) -> Campaign:
        """Take ``amount`` credits from the funded pool, never below zero."""

        if amount <= 0:
            raise ValueError("Credit pool debits require a positive amount")
        rows = await update_where(
            self._session,
            Campaign,
            criteria=[Campaign.id == campaign_id, Campaign.total_credits >= amount],
            values={"total_credits": Campaign.total_credits - amount},
        )
        campaign = await reload(self._session, Campaign, campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(campaign_id)
        if rows == 0:
            logger.warning(
                "Campaign credit pool exhausted",
                campaign_id=str(campaign_id),
                required=amount,
                available=campaign.total_credits,
            )
            raise CreditPoolExhaustedError(campaign_id, amount)
        return campaign

    async def transition_status(self, campaign_id: UUID, target: CampaignStatusEnum) -> Campaign:
        campaign = await self.get_campaign(campaign_id)
        current = campaign.status
        if target not in self._ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidCampaignTransitionError(current.value, target.value)

        rows = await update_where(
            self._session,
            Campaign,
            criteria=[Campaign.id == campaign_id, Campaign.status == current],
            values={"status": target},
        )
        refreshed = await reload(self._session, Campaign, campaign_id)
        if rows == 0 or refreshed is None:
            latest = refreshed.status.value if refreshed is not None else current.value
            raise InvalidCampaignTransitionError(latest, target.value)
        logger.info(
            "Campaign status transitioned",
            campaign_id=str(campaign_id),
            from_status=current.value,
            to_status=target.value,
        )
        return refreshed

    @staticmethod
    def _is_usable(artifact: ReferralArtifact, moment: datetime) -> bool:
        if not artifact.is_active:
            return False
        if artifact.expires_at is not None and ensure_aware(artifact.expires_at) <= moment:
            return False
        return True

    async def _generate_unique_referral_code(self) -> str:
        candidate = uuid4().hex[: settings.referral_code_length].upper()
        stmt = select(CampaignReferralCode.id).where(CampaignReferralCode.code == candidate)
        result = await self._session.execute(stmt)
        if result.scalar_one_or_none():
            return await self._generate_unique_referral_code()
        return candidate
