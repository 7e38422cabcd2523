"""Reward redemption lifecycle: spend points, mint a proof, complete once."""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger_api.core.clock import ensure_aware, utcnow
from promo_ledger_api.core.settings import settings
from promo_ledger_api.db.guarded import reload, update_where
from promo_ledger_api.domain.errors import (
    InvalidProofError,
    RedemptionAlreadyProcessedError,
    RedemptionExpiredError,
    RedemptionForbiddenError,
    RedemptionNotFoundError,
)
from promo_ledger_api.models.loyalty import RewardRedemption, RewardRedemptionStatusEnum
from promo_ledger_api.services.campaigns import CampaignDirectory, campaign_terms
from promo_ledger_api.services.loyalty import LoyaltyLedger
from promo_ledger_api.services.proofs import decode_redemption_proof, encode_redemption_proof


class RedemptionStateMachine:
    """Owns reward redemptions from minting to their single terminal transition.

    Like the visit state machine it only flushes; the debit taken in
    :meth:`redeem` and the minted row share the caller's transaction, so a
    failed mint is compensated by rolling that transaction back.
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

    async def redeem(
        self,
        customer_id: UUID,
        campaign_id: UUID,
        now: datetime | None = None,
    ) -> RewardRedemption:
        moment = now or utcnow()
        campaign = await self._directory.get_reward_campaign(campaign_id, moment)
        terms = campaign_terms(campaign)
        redemption_id = uuid4()

        await self._ledger.debit(
            customer_id,
            campaign.business_id,
            terms.points_cost,
            reason=f"Reward redemption: {campaign.title}",
            reference_id=f"redemption:{redemption_id}",
        )

        redemption = RewardRedemption(
            id=redemption_id,
            customer_id=customer_id,
            business_id=campaign.business_id,
            campaign_id=campaign.id,
            points_spent=terms.points_cost,
            status=RewardRedemptionStatusEnum.PENDING,
            qr_proof=encode_redemption_proof(redemption_id, customer_id, campaign.business_id),
            reward_snapshot=terms.snapshot(),
            created_at=moment,
            expires_at=moment + timedelta(days=settings.redemption_validity_days),
        )
        self._session.add(redemption)
        await self._session.flush()
        logger.info(
            "Minted reward redemption",
            redemption_id=str(redemption.id),
            campaign_id=str(campaign.id),
            points_spent=terms.points_cost,
        )
        return redemption

    async def verify_proof(
        self,
        token: str,
        business_id: UUID | None = None,
        now: datetime | None = None,
    ) -> RewardRedemption:
        """Resolve a scanned proof to a redeemable row.

        Every failure raises the same :class:`InvalidProofError` so a scanner
        cannot tell which check rejected the token.
        """

        moment = ensure_aware(now or utcnow())
        proof = decode_redemption_proof(token)
        redemption = await self._session.get(
            RewardRedemption, proof.redemption_id, populate_existing=True
        )
        if (
            redemption is None
            or redemption.qr_proof != token.strip()
            or redemption.customer_id != proof.customer_id
            or redemption.business_id != proof.business_id
            or (business_id is not None and redemption.business_id != business_id)
            or redemption.status != RewardRedemptionStatusEnum.PENDING
            or ensure_aware(redemption.expires_at) <= moment
        ):
            raise InvalidProofError()
        return redemption

    async def complete(
        self,
        redemption_id: UUID,
        business_id: UUID | None = None,
        now: datetime | None = None,
    ) -> RewardRedemption:
        moment = now or utcnow()
        criteria = [
            RewardRedemption.id == redemption_id,
            RewardRedemption.status == RewardRedemptionStatusEnum.PENDING,
            RewardRedemption.expires_at > moment,
        ]
        if business_id is not None:
            criteria.append(RewardRedemption.business_id == business_id)

        rows = await update_where(
            self._session,
            RewardRedemption,
            criteria=criteria,
            values={"status": RewardRedemptionStatusEnum.APPROVED, "redeemed_at": moment},
        )
        redemption = await reload(self._session, RewardRedemption, redemption_id)
        if rows == 0:
            if redemption is None:
                raise RedemptionNotFoundError(f"Redemption {redemption_id} not found")
            if business_id is not None and redemption.business_id != business_id:
                raise RedemptionForbiddenError("Redemption belongs to another business")
            if redemption.status != RewardRedemptionStatusEnum.PENDING:
                raise RedemptionAlreadyProcessedError(redemption_id)
            raise RedemptionExpiredError(redemption_id)

        logger.info("Completed reward redemption", redemption_id=str(redemption_id))
        return redemption

    async def mark_expired(self, redemption_id: UUID, now: datetime | None = None) -> bool:
        """Move an overdue pending redemption to ``expired``. Points are not refunded."""

        rows = await update_where(
            self._session,
            RewardRedemption,
            criteria=[
                RewardRedemption.id == redemption_id,
                RewardRedemption.status == RewardRedemptionStatusEnum.PENDING,
                RewardRedemption.expires_at <= (now or utcnow()),
            ],
            values={"status": RewardRedemptionStatusEnum.EXPIRED},
        )
        if rows:
            logger.info("Expired reward redemption", redemption_id=str(redemption_id))
        return bool(rows)

    async def get_customer_redemption(self, redemption_id: UUID, customer_id: UUID) -> RewardRedemption:
        stmt = select(RewardRedemption).where(
            RewardRedemption.id == redemption_id,
            RewardRedemption.customer_id == customer_id,
        )
        result = await self._session.execute(stmt)
        redemption = result.scalar_one_or_none()
        if redemption is None:
            raise RedemptionNotFoundError(f"Redemption {redemption_id} not found")
        return redemption

    async def list_customer_redemptions(
        self,
        customer_id: UUID,
        status: RewardRedemptionStatusEnum | None = None,
    ) -> list[RewardRedemption]:
        stmt = select(RewardRedemption).where(RewardRedemption.customer_id == customer_id)
        if status is not None:
            stmt = stmt.where(RewardRedemption.status == status)
        stmt = stmt.order_by(RewardRedemption.created_at.desc(), RewardRedemption.id.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_business_redemptions(
        self,
        business_id: UUID,
        status: RewardRedemptionStatusEnum | None = None,
    ) -> list[RewardRedemption]:
        stmt = select(RewardRedemption).where(RewardRedemption.business_id == business_id)
        if status is not None:
            stmt = stmt.where(RewardRedemption.status == status)
        stmt = stmt.order_by(RewardRedemption.created_at.desc(), RewardRedemption.id.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
