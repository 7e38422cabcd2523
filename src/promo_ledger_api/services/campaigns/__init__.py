"""Campaign directory exports."""

from .directory import CampaignDirectory, ReferralArtifact, campaign_terms  # noqa: F401
