"""Ledger core tables: campaigns, referral codes, visits, loyalty, redemptions.

Revision ID: 20261019_01
Revises: 
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


campaign_type_enum = sa.Enum(
    "pay_per_customer",
    "pay_per_post",
    "media_event",
    "loyalty_reward",
    name="campaign_type_enum",
)
campaign_status_enum = sa.Enum(
    "draft",
    "active",
    "paused",
    "completed",
    "cancelled",
    "expired",
    name="campaign_status_enum",
)
reward_type_enum = sa.Enum("discount", "free_item", "percentage_off", "other", name="reward_type_enum")
visit_status_enum = sa.Enum("pending", "approved", "rejected", name="visit_status_enum")
loyalty_transaction_type_enum = sa.Enum(
    "earn", "spend", "expire", "adjust", name="loyalty_transaction_type_enum"
)
reward_redemption_status_enum = sa.Enum(
    "pending", "approved", "expired", name="reward_redemption_status_enum"
)


def upgrade() -> None:
    op.create_table(
        "campaigns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("campaign_type", campaign_type_enum, nullable=False),
        sa.Column("status", campaign_status_enum, nullable=False, server_default="draft"),
        sa.Column("credits_per_action", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("credits_per_action > 0", name="ck_campaigns_credits_per_action_positive"),
        sa.CheckConstraint("total_credits >= 0", name="ck_campaigns_total_credits_non_negative"),
    )
    op.create_index("ix_campaigns_business_id", "campaigns", ["business_id"])

    op.create_table(
        "campaign_reward_details",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "campaign_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("reward_type", reward_type_enum, nullable=False, server_default="other"),
        sa.Column("reward_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("terms", sa.Text(), nullable=True),
        sa.CheckConstraint("points_cost > 0", name="ck_campaign_reward_details_points_cost_positive"),
    )

    op.create_table(
        "campaign_referral_codes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "campaign_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("influencer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "usage_limit IS NULL OR usage_count <= usage_limit",
            name="ck_campaign_referral_codes_usage_within_limit",
        ),
    )
    op.create_index("ix_campaign_referral_codes_code", "campaign_referral_codes", ["code"], unique=True)
    op.create_index("ix_campaign_referral_codes_campaign_id", "campaign_referral_codes", ["campaign_id"])
    op.create_index("ix_campaign_referral_codes_influencer_id", "campaign_referral_codes", ["influencer_id"])

    op.create_table(
        "visits",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id"), nullable=False),
        sa.Column("influencer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "referral_code_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("campaign_referral_codes.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", visit_status_enum, nullable=False, server_default="pending"),
        sa.Column("credits_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("loyalty_points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_visits_campaign_id", "visits", ["campaign_id"])
    op.create_index("ix_visits_influencer_id", "visits", ["influencer_id"])
    op.create_index("ix_visits_customer_id", "visits", ["customer_id"])
    op.create_index("ix_visits_business_id", "visits", ["business_id"])

    op.create_table(
        "loyalty_points",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("customer_id", "business_id", name="uq_loyalty_points_customer_business"),
        sa.CheckConstraint("points_balance >= 0", name="ck_loyalty_points_balance_non_negative"),
    )
    op.create_index("ix_loyalty_points_customer_id", "loyalty_points", ["customer_id"])
    op.create_index("ix_loyalty_points_business_id", "loyalty_points", ["business_id"])

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "loyalty_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_points.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("transaction_type", loyalty_transaction_type_enum, nullable=False),
        sa.Column("points_amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint(
            "loyalty_id",
            "transaction_type",
            "reference_id",
            name="uq_loyalty_transactions_reference",
        ),
    )
    op.create_index("ix_loyalty_transactions_loyalty_id", "loyalty_transactions", ["loyalty_id"])

    op.create_table(
        "reward_redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id"), nullable=False),
        sa.Column("points_spent", sa.Integer(), nullable=False),
        sa.Column("status", reward_redemption_status_enum, nullable=False, server_default="pending"),
        sa.Column("qr_proof", sa.String(length=255), nullable=False, unique=True),
        sa.Column("reward_snapshot", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_reward_redemptions_customer_id", "reward_redemptions", ["customer_id"])
    op.create_index("ix_reward_redemptions_business_id", "reward_redemptions", ["business_id"])
    op.create_index("ix_reward_redemptions_campaign_id", "reward_redemptions", ["campaign_id"])


def downgrade() -> None:
    op.drop_table("reward_redemptions")
    op.drop_table("loyalty_transactions")
    op.drop_table("loyalty_points")
    op.drop_table("visits")
    op.drop_table("campaign_referral_codes")
    op.drop_table("campaign_reward_details")
    op.drop_table("campaigns")

    bind = op.get_bind()
    for enum in (
        reward_redemption_status_enum,
        loyalty_transaction_type_enum,
        visit_status_enum,
        reward_type_enum,
        campaign_status_enum,
        campaign_type_enum,
    ):
        enum.drop(bind, checkfirst=True)
