"""SQLAlchemy models package."""

from .campaign import (  # noqa: F401
    Campaign,
    CampaignReferralCode,
    CampaignRewardDetails,
    CampaignStatusEnum,
    CampaignTypeEnum,
    RewardTypeEnum,
)
from .loyalty import (  # noqa: F401
    LoyaltyPoints,
    LoyaltyTransaction,
    LoyaltyTransactionTypeEnum,
    RewardRedemption,
    RewardRedemptionStatusEnum,
)
from .visit import Visit, VisitStatusEnum  # noqa: F401
