"""Loyalty balances, transaction log, and reward redemptions."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from promo_ledger_api.core.clock import utcnow
from promo_ledger_api.db.base import Base


class LoyaltyTransactionTypeEnum(str, Enum):
    """Ledger transaction types; earn/adjust add points, spend/expire remove them."""

    EARN = "earn"
    SPEND = "spend"
    EXPIRE = "expire"
    ADJUST = "adjust"


class LoyaltyPoints(Base):
    """Points balance for one (customer, business) pair."""

    __tablename__ = "loyalty_points"
    __table_args__ = (
        UniqueConstraint("customer_id", "business_id", name="uq_loyalty_points_customer_business"),
        CheckConstraint("points_balance >= 0", name="ck_loyalty_points_balance_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    business_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    points_balance = Column(Integer, nullable=False, default=0, server_default="0")
    total_earned = Column(Integer, nullable=False, default=0, server_default="0")
    total_spent = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    transactions = relationship(
        "LoyaltyTransaction",
        back_populates="ledger",
        cascade="all, delete-orphan",
    )


class LoyaltyTransaction(Base):
    """Append-only, signed entry in a loyalty ledger."""

    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        UniqueConstraint(
            "loyalty_id",
            "transaction_type",
            "reference_id",
            name="uq_loyalty_transactions_reference",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    loyalty_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_points.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_type = Column(
        SqlEnum(
            LoyaltyTransactionTypeEnum,
            name="loyalty_transaction_type_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    points_amount = Column(Integer, nullable=False)
    description = Column(String, nullable=True)
    reference_id = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    ledger = relationship("LoyaltyPoints", back_populates="transactions")


class RewardRedemptionStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXPIRED = "expired"


class RewardRedemption(Base):
    """Points spent on a reward, provable once via its QR token."""

    __tablename__ = "reward_redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    business_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id"), nullable=False, index=True)
    points_spent = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(
            RewardRedemptionStatusEnum,
            name="reward_redemption_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RewardRedemptionStatusEnum.PENDING,
        server_default=RewardRedemptionStatusEnum.PENDING.value,
    )
    qr_proof = Column(String(255), nullable=False, unique=True)
    reward_snapshot = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
