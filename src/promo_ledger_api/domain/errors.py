"""Ledger error taxonomy.

Services raise these; the HTTP layer maps each family to a status code.
Conflicts (lost races, exhausted pools) are never reported as validation
failures.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID


class LedgerError(RuntimeError):
    """Base exception for ledger workflow failures."""


class LedgerValidationError(LedgerError):
    """Input was malformed or names something that cannot be used."""


class LedgerAuthorizationError(LedgerError):
    """The caller does not own the resource it is acting on."""


class LedgerConflictError(LedgerError):
    """A guarded write lost: the row already moved or a pool ran dry."""


class LedgerNotFoundError(LedgerError):
    """The referenced entity does not exist (or is hidden from the caller)."""


class InsufficientPointsError(LedgerError):
    """A debit was refused because the balance cannot cover it."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient points: {required} required, {available} available")
        self.required = required
        self.available = available


class InvalidProofError(LedgerValidationError):
    """A QR token is malformed, unknown, already used or expired."""

    def __init__(self, message: str = "Invalid or expired QR code") -> None:
        super().__init__(message)


class CampaignNotFoundError(LedgerNotFoundError):
    def __init__(self, campaign_id: UUID | str) -> None:
        super().__init__(f"Campaign {campaign_id} not found")
        self.campaign_id = campaign_id


class CampaignInactiveError(LedgerConflictError):
    """The campaign exists but is not running right now."""

    def __init__(
        self,
        campaign_id: UUID,
        status: str,
        period_start: datetime | None = None,
        period_end: datetime | None = None,
    ) -> None:
        super().__init__(f"Campaign {campaign_id} is not active (status={status})")
        self.campaign_id = campaign_id
        self.status = status
        self.period_start = period_start
        self.period_end = period_end


class CampaignMismatchError(LedgerAuthorizationError):
    """The campaign belongs to a different business than the caller."""

    def __init__(self, campaign_id: UUID, business_id: UUID) -> None:
        super().__init__(f"Campaign {campaign_id} does not belong to business {business_id}")
        self.campaign_id = campaign_id
        self.business_id = business_id


class InvalidCampaignTransitionError(LedgerConflictError):
    def __init__(self, current_status: str, requested_status: str) -> None:
        super().__init__(f"Cannot transition campaign from {current_status} to {requested_status}")
        self.current_status = current_status
        self.requested_status = requested_status


class CreditPoolExhaustedError(LedgerConflictError):
    def __init__(self, campaign_id: UUID, required: int) -> None:
        super().__init__(f"Campaign {campaign_id} credit pool cannot cover {required} credits")
        self.campaign_id = campaign_id
        self.required = required


class ReferralArtifactNotFoundError(LedgerValidationError):
    def __init__(self, code: str | None = None) -> None:
        super().__init__(f"Referral code {code!r} is not usable" if code else "Referral code is not usable")
        self.code = code


class ReferralLimitExceededError(LedgerConflictError):
    def __init__(self, artifact_id: UUID) -> None:
        super().__init__(f"Referral code {artifact_id} reached its usage limit")
        self.artifact_id = artifact_id


class VisitNotFoundError(LedgerNotFoundError):
    pass


class VisitAlreadyProcessedError(LedgerConflictError):
    def __init__(self, visit_id: UUID) -> None:
        super().__init__("Visit already processed or not found")
        self.visit_id = visit_id


class RedemptionNotFoundError(LedgerNotFoundError):
    pass


class RedemptionForbiddenError(LedgerAuthorizationError):
    pass


class RedemptionAlreadyProcessedError(LedgerConflictError):
    def __init__(self, redemption_id: UUID) -> None:
        super().__init__("Redemption already processed")
        self.redemption_id = redemption_id


class RedemptionExpiredError(LedgerConflictError):
    def __init__(self, redemption_id: UUID) -> None:
        super().__init__("Redemption has expired")
        self.redemption_id = redemption_id
