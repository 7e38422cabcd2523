from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, func
from sqlalchemy.dialects.postgresql import UUID

from promo_ledger_api.core.clock import utcnow
from promo_ledger_api.db.base import Base


class VisitStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Visit(Base):
    """A verified in-person visit awaiting (or past) business approval."""

    __tablename__ = "visits"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id"), nullable=False, index=True)
    influencer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    business_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    referral_code_id = Column(
        UUID(as_uuid=True),
        ForeignKey("campaign_referral_codes.id", ondelete="SET NULL"),
        nullable=True,
    )
    status = Column(
        SqlEnum(
            VisitStatusEnum,
            name="visit_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=VisitStatusEnum.PENDING,
        server_default=VisitStatusEnum.PENDING.value,
    )
    credits_earned = Column(Integer, nullable=False, default=0, server_default="0")
    loyalty_points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
