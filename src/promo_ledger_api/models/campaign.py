"""Campaign, reward payload, and referral artifact models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from promo_ledger_api.core.clock import utcnow
from promo_ledger_api.db.base import Base


class CampaignTypeEnum(str, Enum):
    PAY_PER_CUSTOMER = "pay_per_customer"
    PAY_PER_POST = "pay_per_post"
    MEDIA_EVENT = "media_event"
    LOYALTY_REWARD = "loyalty_reward"


class CampaignStatusEnum(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class RewardTypeEnum(str, Enum):
    DISCOUNT = "discount"
    FREE_ITEM = "free_item"
    PERCENTAGE_OFF = "percentage_off"
    OTHER = "other"


class Campaign(Base):
    """Promotional campaign owned by a single business."""

    __tablename__ = "campaigns"
    __table_args__ = (
        CheckConstraint("credits_per_action > 0", name="ck_campaigns_credits_per_action_positive"),
        CheckConstraint("total_credits >= 0", name="ck_campaigns_total_credits_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    business_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    campaign_type = Column(
        SqlEnum(
            CampaignTypeEnum,
            name="campaign_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    status = Column(
        SqlEnum(
            CampaignStatusEnum,
            name="campaign_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=CampaignStatusEnum.DRAFT,
        server_default=CampaignStatusEnum.DRAFT.value,
    )
    credits_per_action = Column(Integer, nullable=False, default=1, server_default="1")
    total_credits = Column(Integer, nullable=False, default=0, server_default="0")
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    reward_details = relationship(
        "CampaignRewardDetails",
        back_populates="campaign",
        uselist=False,
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    referral_codes = relationship(
        "CampaignReferralCode",
        back_populates="campaign",
        cascade="all, delete-orphan",
    )


class CampaignRewardDetails(Base):
    """Payload specific to loyalty reward campaigns."""

    __tablename__ = "campaign_reward_details"
    __table_args__ = (
        CheckConstraint("points_cost > 0", name="ck_campaign_reward_details_points_cost_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    campaign_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    points_cost = Column(Integer, nullable=False)
    reward_type = Column(
        SqlEnum(
            RewardTypeEnum,
            name="reward_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RewardTypeEnum.OTHER,
        server_default=RewardTypeEnum.OTHER.value,
    )
    reward_value = Column(Numeric(12, 2), nullable=True)
    description = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)

    campaign = relationship("Campaign", back_populates="reward_details")


class CampaignReferralCode(Base):
    """Referral artifact (code or deep link) issued to an influencer for one campaign."""

    __tablename__ = "campaign_referral_codes"
    __table_args__ = (
        CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_campaign_referral_codes_usage_within_limit",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    campaign_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    influencer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    code = Column(String(32), nullable=False, unique=True, index=True)
    usage_count = Column(Integer, nullable=False, default=0, server_default="0")
    usage_limit = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    campaign = relationship("Campaign", back_populates="referral_codes")
