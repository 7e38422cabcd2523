import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from promo_ledger_api.app import create_app  # noqa: E402
from promo_ledger_api.db.base import Base  # noqa: E402
from promo_ledger_api.db.session import get_session  # noqa: E402
from promo_ledger_api.models import (  # noqa: E402
    Campaign,
    CampaignReferralCode,
    CampaignRewardDetails,
    CampaignStatusEnum,
    CampaignTypeEnum,
    RewardTypeEnum,
)
from promo_ledger_api.observability.ledger import get_ledger_store  # noqa: E402


FROZEN_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Manually advanced clock for expiry and campaign window tests."""

    def __init__(self, now: datetime = FROZEN_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture(autouse=True)
def reset_ledger_store():
    get_ledger_store().reset()
    yield
    get_ledger_store().reset()


async def _build_session_factory(url: str, **engine_options):
    engine = create_async_engine(url, future=True, **engine_options)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session_factory():
    engine, factory = await _build_session_factory("sqlite+aiosqlite:///:memory:")

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def pooled_session_factory(tmp_path):
    """File-backed database with one connection per session, for racing callers."""

    engine, factory = await _build_session_factory(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"timeout": 30},
    )

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_campaign(session_factory):
    """Persist a campaign (and its reward payload) in its own committed session."""

    async def _make(
        *,
        business_id=None,
        campaign_type: CampaignTypeEnum = CampaignTypeEnum.PAY_PER_CUSTOMER,
        status: CampaignStatusEnum = CampaignStatusEnum.ACTIVE,
        credits_per_action: int = 5,
        total_credits: int = 100,
        points_cost: int | None = None,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        title: str = "Spring promo",
        factory=None,
    ) -> Campaign:
        campaign = Campaign(
            business_id=business_id or uuid4(),
            title=title,
            campaign_type=campaign_type,
            status=status,
            credits_per_action=credits_per_action,
            total_credits=total_credits,
            period_start=period_start or FROZEN_NOW - timedelta(days=30),
            period_end=period_end or FROZEN_NOW + timedelta(days=30),
        )
        if points_cost is not None:
            campaign.reward_details = CampaignRewardDetails(
                points_cost=points_cost,
                reward_type=RewardTypeEnum.FREE_ITEM,
                description="Free dessert",
            )
        async with (factory or session_factory)() as session:
            session.add(campaign)
            await session.commit()
        return campaign

    return _make


@pytest.fixture
def make_referral_code(session_factory):
    async def _make(
        campaign: Campaign, *, influencer_id=None, code=None, usage_limit=None, factory=None, **fields
    ):
        artifact = CampaignReferralCode(
            campaign_id=campaign.id,
            influencer_id=influencer_id or uuid4(),
            code=code or uuid4().hex[:8].upper(),
            usage_count=0,
            usage_limit=usage_limit,
            is_active=fields.pop("is_active", True),
            **fields,
        )
        async with (factory or session_factory)() as session:
            session.add(artifact)
            await session.commit()
        return artifact

    return _make


def live_window(days: int = 30) -> dict[str, datetime]:
    """Campaign window around the wall clock, for requests served with the real clock."""

    now = datetime.now(timezone.utc)
    return {"period_start": now - timedelta(days=1), "period_end": now + timedelta(days=days)}
