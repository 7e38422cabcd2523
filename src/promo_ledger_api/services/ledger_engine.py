"""Visit and redemption workflows, one database transaction each."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger_api.core.clock import Clock, ensure_aware, utcnow
from promo_ledger_api.domain.errors import (
    CampaignMismatchError,
    InsufficientPointsError,
    InvalidProofError,
    LedgerError,
    LedgerValidationError,
    RedemptionExpiredError,
    VisitAlreadyProcessedError,
)
from promo_ledger_api.models.campaign import Campaign, CampaignStatusEnum
from promo_ledger_api.models.loyalty import RewardRedemption, RewardRedemptionStatusEnum
from promo_ledger_api.models.visit import Visit
from promo_ledger_api.observability.ledger import LedgerObservabilityStore, get_ledger_store
from promo_ledger_api.observability.tracing import get_tracer
from promo_ledger_api.services.campaigns import CampaignDirectory, ReferralArtifact
from promo_ledger_api.services.loyalty import LoyaltyBalance, LoyaltyLedger
from promo_ledger_api.services.proofs import decode_visit_proof, render_proof_qr
from promo_ledger_api.services.redemptions import RedemptionStateMachine
from promo_ledger_api.services.visits import VisitStateMachine


@dataclass
class VisitVerification:
    visit: Visit
    campaign: Campaign
    message: str


class LedgerEngine:
    """Composes the state machines into the externally exposed workflows.

    Each workflow commits on success and rolls back on any failure, so a
    visit is never left approved without its credits and points, and points
    are never spent without a minted redemption.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock = utcnow,
        store: LedgerObservabilityStore | None = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._store = store or get_ledger_store()
        self._directory = CampaignDirectory(session)
        self._ledger = LoyaltyLedger(session)
        self._visits = VisitStateMachine(session, directory=self._directory, ledger=self._ledger)
        self._redemptions = RedemptionStateMachine(
            session, directory=self._directory, ledger=self._ledger
        )

    @asynccontextmanager
    async def _unit_of_work(self, workflow: str) -> AsyncIterator[None]:
        with get_tracer().start_as_current_span(f"ledger.{workflow}"):
            try:
                yield
                await self._session.commit()
            except Exception as exc:
                await self._session.rollback()
                self._store.record_failure(workflow, exc)
                if isinstance(exc, LedgerError):
                    logger.warning(
                        "Ledger workflow rejected",
                        workflow=workflow,
                        error=type(exc).__name__,
                        detail=str(exc),
                    )
                else:
                    logger.exception("Ledger workflow failed", workflow=workflow)
                raise

    async def verify_visit(
        self,
        qr_token: str,
        business_id: UUID,
        referral_code: str | None = None,
    ) -> VisitVerification:
        """Decode a visit proof and record a pending visit for the scanning business."""

        async with self._unit_of_work("verify_visit"):
            proof = decode_visit_proof(qr_token)
            moment = self._clock()
            campaign = await self._directory.get_active_campaign(proof.campaign_id, moment)
            if campaign.business_id != business_id:
                raise CampaignMismatchError(campaign.id, business_id)
            artifact = await self._directory.resolve_referral_artifact(
                campaign.id, proof.influencer_id, referral_code, moment
            )
            visit = await self._visits.create_pending_visit(
                campaign.id,
                proof.influencer_id,
                proof.customer_id,
                business_id,
                referral_artifact_id=artifact.id if artifact else None,
                now=moment,
            )
        self._store.record_visit_event("verified")
        return VisitVerification(
            visit=visit,
            campaign=campaign,
            message="Visit verified and awaiting approval",
        )

    async def approve_visit(self, visit_id: UUID, business_id: UUID) -> Visit:
        try:
            async with self._unit_of_work("approve_visit"):
                visit = await self._visits.approve(visit_id, business_id, self._clock())
        except VisitAlreadyProcessedError:
            self._store.record_visit_event("conflicts")
            raise
        self._store.record_visit_event("approved")
        self._store.record_points("credited", visit.loyalty_points_earned)
        return visit

    async def reject_visit(self, visit_id: UUID, business_id: UUID) -> Visit:
        try:
            async with self._unit_of_work("reject_visit"):
                visit = await self._visits.reject(visit_id, business_id, self._clock())
        except VisitAlreadyProcessedError:
            self._store.record_visit_event("conflicts")
            raise
        self._store.record_visit_event("rejected")
        return visit

    async def get_balance(self, customer_id: UUID, business_id: UUID) -> LoyaltyBalance:
        return await self._ledger.get_balance(customer_id, business_id)

    async def redeem(self, customer_id: UUID, campaign_id: UUID) -> RewardRedemption:
        """Spend points on a reward campaign and mint its redemption proof."""

        try:
            async with self._unit_of_work("redeem"):
                redemption = await self._redemptions.redeem(customer_id, campaign_id, self._clock())
        except InsufficientPointsError:
            self._store.record_redemption_event("insufficient_points")
            raise
        self._store.record_redemption_event("minted")
        self._store.record_points("debited", redemption.points_spent)
        return redemption

    async def verify_reward(self, qr_token: str, business_id: UUID | None = None) -> RewardRedemption:
        try:
            async with self._unit_of_work("verify_reward"):
                redemption = await self._redemptions.verify_proof(
                    qr_token, business_id, self._clock()
                )
        except InvalidProofError:
            self._store.record_redemption_event("invalid_proofs")
            raise
        return redemption

    async def complete_redemption(
        self,
        redemption_id: UUID,
        business_id: UUID | None = None,
    ) -> RewardRedemption:
        try:
            async with self._unit_of_work("complete_redemption"):
                redemption = await self._redemptions.complete(
                    redemption_id, business_id, self._clock()
                )
        except RedemptionExpiredError:
            await self._expire_redemption(redemption_id)
            raise
        self._store.record_redemption_event("completed")
        return redemption

    async def redemption_qr(self, redemption_id: UUID, customer_id: UUID) -> tuple[RewardRedemption, str]:
        """Render the QR image for a customer's still-redeemable proof."""

        redemption = await self._redemptions.get_customer_redemption(redemption_id, customer_id)
        expired = ensure_aware(redemption.expires_at) <= ensure_aware(self._clock())
        if redemption.status == RewardRedemptionStatusEnum.APPROVED:
            raise LedgerValidationError("Reward has already been redeemed")
        if redemption.status == RewardRedemptionStatusEnum.EXPIRED or expired:
            raise LedgerValidationError("Reward has expired")
        return redemption, render_proof_qr(redemption.qr_proof)

    async def issue_referral_code(
        self,
        campaign_id: UUID,
        business_id: UUID,
        influencer_id: UUID,
        *,
        usage_limit: int | None = None,
        expires_at: datetime | None = None,
    ) -> ReferralArtifact:
        async with self._unit_of_work("issue_referral_code"):
            await self._owned_campaign(campaign_id, business_id)
            artifact = await self._directory.issue_referral_artifact(
                campaign_id, influencer_id, usage_limit=usage_limit, expires_at=expires_at
            )
        return artifact

    async def transition_campaign(
        self,
        campaign_id: UUID,
        business_id: UUID,
        target: CampaignStatusEnum,
    ) -> Campaign:
        async with self._unit_of_work("transition_campaign"):
            await self._owned_campaign(campaign_id, business_id)
            campaign = await self._directory.transition_status(campaign_id, target)
        return campaign

    async def credit_pool(self, campaign_id: UUID, business_id: UUID) -> Campaign:
        return await self._owned_campaign(campaign_id, business_id)

    async def _owned_campaign(self, campaign_id: UUID, business_id: UUID) -> Campaign:
        campaign = await self._directory.get_campaign(campaign_id)
        if campaign.business_id != business_id:
            raise CampaignMismatchError(campaign_id, business_id)
        return campaign

    async def _expire_redemption(self, redemption_id: UUID) -> None:
        async with self._unit_of_work("expire_redemption"):
            expired = await self._redemptions.mark_expired(redemption_id, self._clock())
        if expired:
            self._store.record_redemption_event("expired")
