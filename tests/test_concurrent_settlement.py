import asyncio
from uuid import uuid4

import pytest

from promo_ledger_api.domain.errors import (
    InsufficientPointsError,
    ReferralLimitExceededError,
    VisitAlreadyProcessedError,
)
from promo_ledger_api.models import Campaign, CampaignReferralCode, VisitStatusEnum
from promo_ledger_api.services.campaigns import CampaignDirectory
from promo_ledger_api.services.ledger_engine import LedgerEngine
from promo_ledger_api.services.loyalty import LoyaltyLedger
from promo_ledger_api.services.visits import VisitStateMachine

from conftest import FROZEN_NOW


CALLERS = 6


def _split(outcomes):
    winners = [outcome for outcome in outcomes if not isinstance(outcome, BaseException)]
    losers = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
    return winners, losers


@pytest.mark.asyncio
async def test_concurrent_approvals_settle_exactly_once(pooled_session_factory, make_campaign, clock) -> None:
    factory = pooled_session_factory
    campaign = await make_campaign(credits_per_action=5, total_credits=100, factory=factory)
    customer_id = uuid4()

    async with factory() as session:
        visit = await VisitStateMachine(session).create_pending_visit(
            campaign.id, uuid4(), customer_id, campaign.business_id, now=FROZEN_NOW
        )
        await session.commit()

    async def approve():
        async with factory() as session:
            return await LedgerEngine(session, clock=clock).approve_visit(visit.id, campaign.business_id)

    outcomes = await asyncio.gather(*(approve() for _ in range(CALLERS)), return_exceptions=True)
    winners, losers = _split(outcomes)

    assert len(winners) == 1
    assert winners[0].status == VisitStatusEnum.APPROVED
    assert len(losers) == CALLERS - 1
    assert all(isinstance(error, VisitAlreadyProcessedError) for error in losers)

    async with factory() as session:
        transactions, _ = await LoyaltyLedger(session).list_transactions(customer_id)
        balance = await LoyaltyLedger(session).get_balance(customer_id, campaign.business_id)
        pool = await session.get(Campaign, campaign.id)

    assert len(transactions) == 1
    assert balance.points_balance == winners[0].loyalty_points_earned
    assert pool.total_credits == 95


@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(pooled_session_factory) -> None:
    factory = pooled_session_factory
    customer_id, business_id = uuid4(), uuid4()

    async with factory() as session:
        await LoyaltyLedger(session).credit(customer_id, business_id, 100, "Seed")
        await session.commit()

    async def spend():
        async with factory() as session:
            balance = await LoyaltyLedger(session).debit(customer_id, business_id, 30, "Reward")
            await session.commit()
            return balance

    outcomes = await asyncio.gather(*(spend() for _ in range(CALLERS)), return_exceptions=True)
    winners, losers = _split(outcomes)

    assert len(winners) == 3
    assert all(isinstance(error, InsufficientPointsError) for error in losers)

    async with factory() as session:
        ledger = LoyaltyLedger(session)
        balance = await ledger.get_balance(customer_id, business_id)
        reconciliation = await ledger.reconcile(customer_id, business_id)
        transactions, _ = await ledger.list_transactions(customer_id)

    assert balance.points_balance == 10
    assert balance.total_spent == 90
    assert reconciliation.consistent
    assert len([entry for entry in transactions if entry.points_amount < 0]) == 3


@pytest.mark.asyncio
async def test_concurrent_referral_usage_stops_at_limit(
    pooled_session_factory, make_campaign, make_referral_code
) -> None:
    factory = pooled_session_factory
    campaign = await make_campaign(factory=factory)
    artifact = await make_referral_code(campaign, usage_limit=3, factory=factory)

    async def use():
        async with factory() as session:
            updated = await CampaignDirectory(session).increment_artifact_usage(artifact.id)
            await session.commit()
            return updated

    outcomes = await asyncio.gather(*(use() for _ in range(CALLERS)), return_exceptions=True)
    winners, losers = _split(outcomes)

    assert len(winners) == 3
    assert len(losers) == CALLERS - 3
    assert all(isinstance(error, ReferralLimitExceededError) for error in losers)

    async with factory() as session:
        stored = await session.get(CampaignReferralCode, artifact.id)

    assert stored.usage_count == 3
