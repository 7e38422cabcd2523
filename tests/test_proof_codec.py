from uuid import uuid4

import pytest

from promo_ledger_api.domain.errors import InvalidProofError
from promo_ledger_api.services.proofs import (
    decode_redemption_proof,
    decode_visit_proof,
    encode_redemption_proof,
    encode_visit_proof,
    render_proof_qr,
)
from promo_ledger_api.services.proofs.codec import next_issue_stamp


def test_visit_proof_uses_colon_separated_ids() -> None:
    campaign_id, influencer_id, customer_id = uuid4(), uuid4(), uuid4()

    token = encode_visit_proof(campaign_id, influencer_id, customer_id)

    assert token == f"{campaign_id}:{influencer_id}:{customer_id}"
    proof = decode_visit_proof(token)
    assert proof.campaign_id == campaign_id
    assert proof.influencer_id == influencer_id
    assert proof.customer_id == customer_id


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "   ",
        "only-one-part",
        f"{uuid4()}:{uuid4()}",
        f"{uuid4()}:{uuid4()}:{uuid4()}:{uuid4()}",
        f"{uuid4()}::{uuid4()}",
        f"{uuid4()}:not-a-uuid:{uuid4()}",
    ],
)
def test_malformed_visit_proofs_are_invalid(token) -> None:
    with pytest.raises(InvalidProofError):
        decode_visit_proof(token)


def test_redemption_proof_embeds_owner_and_stamp() -> None:
    redemption_id, customer_id, business_id = uuid4(), uuid4(), uuid4()

    token = encode_redemption_proof(redemption_id, customer_id, business_id, issued_at_millis=1700000000000)

    assert token == f"promo://redeem/{redemption_id}/{customer_id}/{business_id}/1700000000000"
    proof = decode_redemption_proof(token)
    assert proof.redemption_id == redemption_id
    assert proof.customer_id == customer_id
    assert proof.business_id == business_id
    assert proof.issued_at_millis == 1700000000000


def test_redemption_proofs_are_unique_even_for_the_same_owner() -> None:
    redemption_id, customer_id, business_id = uuid4(), uuid4(), uuid4()

    tokens = {encode_redemption_proof(redemption_id, customer_id, business_id) for _ in range(50)}

    assert len(tokens) == 50


def test_issue_stamp_is_strictly_increasing() -> None:
    stamps = [next_issue_stamp() for _ in range(200)]

    assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "promo://redeem/",
        f"collabuu://redeem/{uuid4()}/{uuid4()}/{uuid4()}/1",
        f"promo://verify/{uuid4()}/{uuid4()}/{uuid4()}/1",
        f"promo://redeem/{uuid4()}/{uuid4()}/{uuid4()}",
        f"promo://redeem/{uuid4()}/{uuid4()}/{uuid4()}/abc",
        f"promo://redeem/{uuid4()}/{uuid4()}/{uuid4()}/-5",
        f"promo://redeem/{uuid4()}/{uuid4()}/{uuid4()}/²",
        f"promo://redeem/{uuid4()}/{uuid4()}/{uuid4()}/{'1' * 5000}",
        f"promo://redeem/not-a-uuid/{uuid4()}/{uuid4()}/1",
        f"{uuid4()}:{uuid4()}:{uuid4()}",
    ],
)
def test_malformed_redemption_proofs_are_invalid(token) -> None:
    with pytest.raises(InvalidProofError):
        decode_redemption_proof(token)


def test_invalid_proof_message_does_not_reveal_the_failed_check() -> None:
    messages = set()
    for token in ("", "promo://redeem/x/y/z/1", f"promo://redeem/{uuid4()}/{uuid4()}/{uuid4()}/x"):
        with pytest.raises(InvalidProofError) as excinfo:
            decode_redemption_proof(token)
        messages.add(str(excinfo.value))

    assert messages == {"Invalid or expired QR code"}


def test_render_proof_qr_returns_png_data_url() -> None:
    image = render_proof_qr(encode_visit_proof(uuid4(), uuid4(), uuid4()))

    assert image.startswith("data:image/png;base64,")
    assert len(image) > len("data:image/png;base64,") + 100
