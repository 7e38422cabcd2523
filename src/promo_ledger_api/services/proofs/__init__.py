"""Proof token codec exports."""

from .codec import (  # noqa: F401
    RedemptionProof,
    VisitProof,
    decode_redemption_proof,
    decode_visit_proof,
    encode_redemption_proof,
    encode_visit_proof,
    render_proof_qr,
)
