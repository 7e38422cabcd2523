from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from promo_ledger_api.domain.errors import (
    CampaignInactiveError,
    CampaignMismatchError,
    CreditPoolExhaustedError,
    InsufficientPointsError,
    InvalidProofError,
    LedgerValidationError,
    RedemptionExpiredError,
    ReferralLimitExceededError,
    VisitAlreadyProcessedError,
)
from promo_ledger_api.models import (
    Campaign,
    CampaignStatusEnum,
    CampaignTypeEnum,
    RewardRedemption,
    RewardRedemptionStatusEnum,
    VisitStatusEnum,
)
from promo_ledger_api.observability.ledger import get_ledger_store
from promo_ledger_api.services.ledger_engine import LedgerEngine
from promo_ledger_api.services.loyalty import LoyaltyLedger
from promo_ledger_api.services.proofs import encode_visit_proof
from promo_ledger_api.services.visits import VisitStateMachine


async def _verify(session_factory, clock, campaign, *, influencer_id=None, customer_id=None, referral_code=None):
    token = encode_visit_proof(campaign.id, influencer_id or uuid4(), customer_id or uuid4())
    async with session_factory() as session:
        verification = await LedgerEngine(session, clock=clock).verify_visit(
            token, campaign.business_id, referral_code
        )
    return verification.visit


async def _fund(session_factory, customer_id, business_id, amount):
    async with session_factory() as session:
        await LoyaltyLedger(session).credit(customer_id, business_id, amount, "Seed")
        await session.commit()


async def _balance(session_factory, customer_id, business_id):
    async with session_factory() as session:
        return await LedgerEngine(session).get_balance(customer_id, business_id)


@pytest.mark.asyncio
async def test_visit_approval_credits_points_exactly_once(session_factory, make_campaign, clock) -> None:
    campaign = await make_campaign(credits_per_action=5, total_credits=100)
    customer_id = uuid4()
    visit = await _verify(session_factory, clock, campaign, customer_id=customer_id)
    assert visit.status == VisitStatusEnum.PENDING

    async with session_factory() as session:
        approved = await LedgerEngine(session, clock=clock).approve_visit(visit.id, campaign.business_id)
    assert approved.credits_earned == 5
    assert approved.loyalty_points_earned == 10

    async with session_factory() as session:
        with pytest.raises(VisitAlreadyProcessedError):
            await LedgerEngine(session, clock=clock).approve_visit(visit.id, campaign.business_id)

    balance = await _balance(session_factory, customer_id, campaign.business_id)
    assert balance.points_balance == 10

    async with session_factory() as session:
        stored = await session.get(Campaign, campaign.id)
    assert stored.total_credits == 95

    snapshot = get_ledger_store().snapshot()
    assert snapshot.visits["verified"] == 1
    assert snapshot.visits["approved"] == 1
    assert snapshot.visits["conflicts"] == 1
    assert snapshot.points["credited"] == 10


@pytest.mark.asyncio
async def test_verify_visit_rejects_malformed_foreign_and_inactive(session_factory, make_campaign, clock) -> None:
    campaign = await make_campaign()
    paused = await make_campaign(status=CampaignStatusEnum.PAUSED)

    async with session_factory() as session:
        engine = LedgerEngine(session, clock=clock)
        with pytest.raises(InvalidProofError):
            await engine.verify_visit("garbage", campaign.business_id)
        with pytest.raises(CampaignMismatchError):
            await engine.verify_visit(encode_visit_proof(campaign.id, uuid4(), uuid4()), uuid4())
        with pytest.raises(CampaignInactiveError):
            await engine.verify_visit(encode_visit_proof(paused.id, uuid4(), uuid4()), paused.business_id)

    failures = get_ledger_store().snapshot().failures
    assert failures["verify_visit:InvalidProofError"] == 1
    assert failures["verify_visit:CampaignMismatchError"] == 1
    assert failures["verify_visit:CampaignInactiveError"] == 1


@pytest.mark.asyncio
async def test_redeem_spends_points_and_refuses_overdraw(session_factory, make_campaign, clock) -> None:
    campaign = await make_campaign(campaign_type=CampaignTypeEnum.LOYALTY_REWARD, points_cost=80)
    customer_id = uuid4()
    await _fund(session_factory, customer_id, campaign.business_id, 100)

    async with session_factory() as session:
        redemption = await LedgerEngine(session, clock=clock).redeem(customer_id, campaign.id)
    assert redemption.status == RewardRedemptionStatusEnum.PENDING

    async with session_factory() as session:
        with pytest.raises(InsufficientPointsError) as excinfo:
            await LedgerEngine(session, clock=clock).redeem(customer_id, campaign.id)
    assert (excinfo.value.required, excinfo.value.available) == (80, 20)

    balance = await _balance(session_factory, customer_id, campaign.business_id)
    assert balance.points_balance == 20

    snapshot = get_ledger_store().snapshot()
    assert snapshot.redemptions["minted"] == 1
    assert snapshot.redemptions["insufficient_points"] == 1
    assert snapshot.points["debited"] == 80


@pytest.mark.asyncio
async def test_expired_redemption_proof_is_invalid_and_row_stays_pending(
    session_factory, make_campaign, clock
) -> None:
    campaign = await make_campaign(campaign_type=CampaignTypeEnum.LOYALTY_REWARD, points_cost=80)
    customer_id = uuid4()
    await _fund(session_factory, customer_id, campaign.business_id, 100)

    async with session_factory() as session:
        redemption = await LedgerEngine(session, clock=clock).redeem(customer_id, campaign.id)

    clock.advance(timedelta(days=31))
    async with session_factory() as session:
        with pytest.raises(InvalidProofError):
            await LedgerEngine(session, clock=clock).verify_reward(redemption.qr_proof, campaign.business_id)

    async with session_factory() as session:
        stored = await session.get(RewardRedemption, redemption.id)
    assert stored.status == RewardRedemptionStatusEnum.PENDING
    assert get_ledger_store().snapshot().redemptions["invalid_proofs"] == 1


@pytest.mark.asyncio
async def test_completing_expired_redemption_marks_it_expired_without_refund(
    session_factory, make_campaign, clock
) -> None:
    campaign = await make_campaign(campaign_type=CampaignTypeEnum.LOYALTY_REWARD, points_cost=80)
    customer_id = uuid4()
    await _fund(session_factory, customer_id, campaign.business_id, 100)

    async with session_factory() as session:
        redemption = await LedgerEngine(session, clock=clock).redeem(customer_id, campaign.id)

    clock.advance(timedelta(days=31))
    async with session_factory() as session:
        with pytest.raises(RedemptionExpiredError):
            await LedgerEngine(session, clock=clock).complete_redemption(redemption.id, campaign.business_id)

    async with session_factory() as session:
        stored = await session.get(RewardRedemption, redemption.id)
        engine = LedgerEngine(session, clock=clock)
        with pytest.raises(LedgerValidationError):
            await engine.redemption_qr(redemption.id, customer_id)

    assert stored.status == RewardRedemptionStatusEnum.EXPIRED
    assert get_ledger_store().snapshot().redemptions["expired"] == 1
    balance = await _balance(session_factory, customer_id, campaign.business_id)
    assert balance.points_balance == 20


@pytest.mark.asyncio
async def test_verify_then_complete_redemption(session_factory, make_campaign, clock) -> None:
    campaign = await make_campaign(campaign_type=CampaignTypeEnum.LOYALTY_REWARD, points_cost=30)
    customer_id = uuid4()
    await _fund(session_factory, customer_id, campaign.business_id, 30)

    async with session_factory() as session:
        redemption = await LedgerEngine(session, clock=clock).redeem(customer_id, campaign.id)

    async with session_factory() as session:
        engine = LedgerEngine(session, clock=clock)
        _, image = await engine.redemption_qr(redemption.id, customer_id)
        assert image.startswith("data:image/png;base64,")
        verified = await engine.verify_reward(redemption.qr_proof, campaign.business_id)
        assert verified.id == redemption.id
        completed = await engine.complete_redemption(redemption.id, campaign.business_id)
        assert completed.status == RewardRedemptionStatusEnum.APPROVED

    async with session_factory() as session:
        with pytest.raises(InvalidProofError):
            await LedgerEngine(session, clock=clock).verify_reward(redemption.qr_proof, campaign.business_id)

    assert get_ledger_store().snapshot().redemptions["completed"] == 1


@pytest.mark.asyncio
async def test_referral_usage_limit_keeps_extra_visit_pending(
    session_factory, make_campaign, make_referral_code, clock
) -> None:
    campaign = await make_campaign(credits_per_action=5, total_credits=100)
    influencer_id = uuid4()
    artifact = await make_referral_code(campaign, influencer_id=influencer_id, usage_limit=2)

    visits = [
        await _verify(session_factory, clock, campaign, influencer_id=influencer_id, referral_code=artifact.code)
        for _ in range(3)
    ]
    assert all(visit.referral_code_id == artifact.id for visit in visits)

    for visit in visits[:2]:
        async with session_factory() as session:
            await LedgerEngine(session, clock=clock).approve_visit(visit.id, campaign.business_id)

    async with session_factory() as session:
        with pytest.raises(ReferralLimitExceededError):
            await LedgerEngine(session, clock=clock).approve_visit(visits[2].id, campaign.business_id)

    async with session_factory() as session:
        engine = LedgerEngine(session, clock=clock)
        balance = await engine.get_balance(visits[2].customer_id, campaign.business_id)
        pool = await engine.credit_pool(campaign.id, campaign.business_id)
        remaining = await VisitStateMachine(session).get_visit(visits[2].id, campaign.business_id)

    assert remaining.status == VisitStatusEnum.PENDING
    assert balance.points_balance == 0
    assert pool.total_credits == 90


@pytest.mark.asyncio
async def test_exhausted_credit_pool_leaves_visit_pending(session_factory, make_campaign, clock) -> None:
    campaign = await make_campaign(credits_per_action=5, total_credits=5)
    first = await _verify(session_factory, clock, campaign)
    second = await _verify(session_factory, clock, campaign)

    async with session_factory() as session:
        await LedgerEngine(session, clock=clock).approve_visit(first.id, campaign.business_id)

    async with session_factory() as session:
        with pytest.raises(CreditPoolExhaustedError):
            await LedgerEngine(session, clock=clock).approve_visit(second.id, campaign.business_id)

    balance = await _balance(session_factory, second.customer_id, campaign.business_id)
    assert balance.points_balance == 0
    assert get_ledger_store().snapshot().failures["approve_visit:CreditPoolExhaustedError"] == 1


@pytest.mark.asyncio
async def test_approval_after_campaign_ends_rolls_back(session_factory, make_campaign, clock) -> None:
    campaign = await make_campaign(credits_per_action=5, total_credits=100)
    visit = await _verify(session_factory, clock, campaign)
    clock.advance(timedelta(days=31))

    async with session_factory() as session:
        with pytest.raises(CampaignInactiveError):
            await LedgerEngine(session, clock=clock).approve_visit(visit.id, campaign.business_id)

    async with session_factory() as session:
        stored = await VisitStateMachine(session).get_visit(visit.id, campaign.business_id)
        pool = await session.get(Campaign, campaign.id)

    assert stored.status == VisitStatusEnum.PENDING
    assert pool.total_credits == 100
    assert get_ledger_store().snapshot().failures["approve_visit:CampaignInactiveError"] == 1


@pytest.mark.asyncio
async def test_failed_mint_rolls_back_the_debit(session_factory, make_campaign, clock, monkeypatch) -> None:
    campaign = await make_campaign(campaign_type=CampaignTypeEnum.LOYALTY_REWARD, points_cost=10)
    customer_id = uuid4()
    await _fund(session_factory, customer_id, campaign.business_id, 50)

    async with session_factory() as session:
        existing = await LedgerEngine(session, clock=clock).redeem(customer_id, campaign.id)

    monkeypatch.setattr(
        "promo_ledger_api.services.redemptions.state_machine.encode_redemption_proof",
        lambda *args, **kwargs: existing.qr_proof,
    )

    async with session_factory() as session:
        with pytest.raises(IntegrityError):
            await LedgerEngine(session, clock=clock).redeem(customer_id, campaign.id)

    balance = await _balance(session_factory, customer_id, campaign.business_id)
    assert balance.points_balance == 40
    assert balance.total_spent == 10
    assert get_ledger_store().snapshot().redemptions["minted"] == 1


@pytest.mark.asyncio
async def test_campaign_management_requires_ownership(session_factory, make_campaign, clock) -> None:
    campaign = await make_campaign(status=CampaignStatusEnum.DRAFT)
    influencer_id = uuid4()

    async with session_factory() as session:
        engine = LedgerEngine(session, clock=clock)
        with pytest.raises(CampaignMismatchError):
            await engine.transition_campaign(campaign.id, uuid4(), CampaignStatusEnum.ACTIVE)

        activated = await engine.transition_campaign(campaign.id, campaign.business_id, CampaignStatusEnum.ACTIVE)
        assert activated.status == CampaignStatusEnum.ACTIVE

        artifact = await engine.issue_referral_code(
            campaign.id, campaign.business_id, influencer_id, usage_limit=5
        )
        assert artifact.influencer_id == influencer_id
        assert artifact.usage_limit == 5

    visit = await _verify(session_factory, clock, campaign, influencer_id=influencer_id)
    assert visit.referral_code_id == artifact.id
