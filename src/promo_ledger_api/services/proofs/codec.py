"""Scan-time proof tokens carried in QR codes.

Two token shapes exist:

* visit proofs, ``<campaign>:<influencer>:<customer>``, rendered by the
  customer app when an influencer brings them to a business;
* redemption proofs, ``<scheme>://redeem/<redemption>/<customer>/<business>/<millis>``,
  minted when points are exchanged for a reward.

The codec only guarantees shape. Authenticity is established by the callers
(active campaign, matching owner, pending status).
"""

from __future__ import annotations

import base64
import io
import threading
import time
from dataclasses import dataclass
from uuid import UUID

import qrcode

from promo_ledger_api.core.settings import settings
from promo_ledger_api.domain.errors import InvalidProofError


_VISIT_SEPARATOR = ":"
_REDEEM_ACTION = "redeem"
_MAX_STAMP_DIGITS = 19

_stamp_lock = threading.Lock()
_last_stamp = 0


@dataclass(frozen=True, slots=True)
class VisitProof:
    campaign_id: UUID
    influencer_id: UUID
    customer_id: UUID


@dataclass(frozen=True, slots=True)
class RedemptionProof:
    redemption_id: UUID
    customer_id: UUID
    business_id: UUID
    issued_at_millis: int


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value.strip())
    except (AttributeError, ValueError) as exc:
        raise InvalidProofError() from exc


def next_issue_stamp() -> int:
    """Epoch milliseconds, strictly increasing within the process."""

    global _last_stamp
    with _stamp_lock:
        candidate = int(time.time() * 1000)
        if candidate <= _last_stamp:
            candidate = _last_stamp + 1
        _last_stamp = candidate
        return candidate


def encode_visit_proof(campaign_id: UUID, influencer_id: UUID, customer_id: UUID) -> str:
    return _VISIT_SEPARATOR.join(str(part) for part in (campaign_id, influencer_id, customer_id))


def decode_visit_proof(token: str | None) -> VisitProof:
    if not token or not isinstance(token, str):
        raise InvalidProofError()
    parts = token.strip().split(_VISIT_SEPARATOR)
    if len(parts) != 3 or not all(parts):
        raise InvalidProofError()
    campaign_id, influencer_id, customer_id = (_parse_uuid(part) for part in parts)
    return VisitProof(campaign_id=campaign_id, influencer_id=influencer_id, customer_id=customer_id)


def _redemption_prefix() -> str:
    return f"{settings.redemption_proof_scheme}://{_REDEEM_ACTION}/"


def encode_redemption_proof(
    redemption_id: UUID,
    customer_id: UUID,
    business_id: UUID,
    issued_at_millis: int | None = None,
) -> str:
    stamp = issued_at_millis if issued_at_millis is not None else next_issue_stamp()
    if stamp < 0:
        raise ValueError("issued_at_millis must be non-negative")
    return f"{_redemption_prefix()}{redemption_id}/{customer_id}/{business_id}/{stamp}"


def decode_redemption_proof(token: str | None) -> RedemptionProof:
    if not token or not isinstance(token, str):
        raise InvalidProofError()
    prefix = _redemption_prefix()
    candidate = token.strip()
    if not candidate.startswith(prefix):
        raise InvalidProofError()
    parts = candidate[len(prefix):].split("/")
    if len(parts) != 4:
        raise InvalidProofError()
    redemption_raw, customer_raw, business_raw, stamp_raw = parts
    return RedemptionProof(
        redemption_id=_parse_uuid(redemption_raw),
        customer_id=_parse_uuid(customer_raw),
        business_id=_parse_uuid(business_raw),
        issued_at_millis=_parse_stamp(stamp_raw),
    )


def _parse_stamp(value: str) -> int:
    # ASCII digits only; str.isdigit() also admits superscripts int() rejects
    if not value or len(value) > _MAX_STAMP_DIGITS or not (value.isascii() and value.isdigit()):
        raise InvalidProofError()
    try:
        return int(value)
    except ValueError as exc:
        raise InvalidProofError() from exc


def render_proof_qr(token: str) -> str:
    """Render a token as a PNG QR code data URL."""

    if not token:
        raise InvalidProofError()
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=settings.qr_box_size,
        border=settings.qr_border,
    )
    qr.add_data(token)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
