"""Type-specific campaign terms.

A campaign's behaviour depends on its type; the payload row (if any) is
folded into one of these read-only variants so callers branch on the
variant instead of on nullable columns.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Union
from uuid import UUID

from promo_ledger_api.models.campaign import CampaignTypeEnum, RewardTypeEnum


@dataclass(frozen=True, slots=True)
class VisitCampaignTerms:
    """Pay-per-customer, pay-per-post and media event campaigns."""

    campaign_id: UUID
    campaign_type: CampaignTypeEnum
    credits_per_action: int


@dataclass(frozen=True, slots=True)
class RewardCampaignTerms:
    """Loyalty reward campaigns: points are exchanged for a reward."""

    campaign_id: UUID
    points_cost: int
    reward_type: RewardTypeEnum
    reward_value: Decimal | None
    description: str | None
    terms: str | None

    def snapshot(self) -> dict[str, object]:
        return {
            "pointsCost": self.points_cost,
            "rewardType": self.reward_type.value,
            "rewardValue": str(self.reward_value) if self.reward_value is not None else None,
            "description": self.description,
            "terms": self.terms,
        }


CampaignTerms = Union[VisitCampaignTerms, RewardCampaignTerms]
