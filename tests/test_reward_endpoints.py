from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from promo_ledger_api.models import CampaignTypeEnum
from promo_ledger_api.services.loyalty import LoyaltyLedger

from conftest import live_window


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _fund(session_factory, customer_id, business_id, amount) -> None:
    async with session_factory() as session:
        await LoyaltyLedger(session).credit(customer_id, business_id, amount, "Seed points")
        await session.commit()


@pytest.mark.asyncio
async def test_redeem_verify_and_complete_flow(app_with_db, make_campaign) -> None:
    app, session_factory = app_with_db
    campaign = await make_campaign(
        campaign_type=CampaignTypeEnum.LOYALTY_REWARD, points_cost=80, **live_window()
    )
    customer_id = uuid4()
    await _fund(session_factory, customer_id, campaign.business_id, 100)
    customer = {"X-Session-User": str(customer_id)}
    business = {"X-Session-User": str(campaign.business_id)}

    async with _client(app) as client:
        redeem = await client.post(f"/api/v1/rewards/{campaign.id}/redeem", headers=customer)
        assert redeem.status_code == 201
        redemption = redeem.json()["redemption"]
        assert redemption["status"] == "pending"
        assert redemption["pointsSpent"] == 80
        assert redemption["reward"]["pointsCost"] == 80

        qr = await client.get(f"/api/v1/rewards/redemptions/{redemption['id']}/qr", headers=customer)
        assert qr.status_code == 200
        assert qr.json()["qrProof"] == redemption["qrProof"]
        assert qr.json()["qrImage"].startswith("data:image/png;base64,")

        verify = await client.get(
            "/api/v1/rewards/verify", params={"qrToken": redemption["qrProof"]}, headers=business
        )
        assert verify.status_code == 200
        assert verify.json()["redemption"]["id"] == redemption["id"]

        complete = await client.post(
            f"/api/v1/rewards/redemptions/{redemption['id']}/complete", headers=business
        )
        assert complete.status_code == 200
        assert complete.json()["redemption"]["status"] == "approved"

        repeat = await client.post(
            f"/api/v1/rewards/redemptions/{redemption['id']}/complete", headers=business
        )
        assert repeat.status_code == 400

        reverify = await client.get(
            "/api/v1/rewards/verify", params={"qrToken": redemption["qrProof"]}, headers=business
        )
        assert reverify.status_code == 400

        used_qr = await client.get(f"/api/v1/rewards/redemptions/{redemption['id']}/qr", headers=customer)
        assert used_qr.status_code == 400

        listing = await client.get(
            "/api/v1/rewards/redemptions",
            params={"role": "business", "status": "approved"},
            headers=business,
        )
        assert [entry["id"] for entry in listing.json()] == [redemption["id"]]


@pytest.mark.asyncio
async def test_redeem_reports_required_and_available_points(app_with_db, make_campaign) -> None:
    app, session_factory = app_with_db
    campaign = await make_campaign(
        campaign_type=CampaignTypeEnum.LOYALTY_REWARD, points_cost=80, **live_window()
    )
    customer_id = uuid4()
    await _fund(session_factory, customer_id, campaign.business_id, 100)
    customer = {"X-Session-User": str(customer_id)}

    async with _client(app) as client:
        first = await client.post(f"/api/v1/rewards/{campaign.id}/redeem", headers=customer)
        second = await client.post(f"/api/v1/rewards/{campaign.id}/redeem", headers=customer)
        balance = await client.get(f"/api/v1/loyalty/balances/{campaign.business_id}", headers=customer)

    assert first.status_code == 201
    assert second.status_code == 400
    assert second.json()["detail"] == {"message": "Insufficient points", "required": 80, "available": 20}
    assert balance.json()["pointsBalance"] == 20


@pytest.mark.asyncio
async def test_reward_error_mapping(app_with_db, make_campaign) -> None:
    app, session_factory = app_with_db
    visit_campaign = await make_campaign(**live_window())
    campaign = await make_campaign(
        campaign_type=CampaignTypeEnum.LOYALTY_REWARD, points_cost=10, **live_window()
    )
    customer_id = uuid4()
    await _fund(session_factory, customer_id, campaign.business_id, 10)
    customer = {"X-Session-User": str(customer_id)}

    async with _client(app) as client:
        not_reward = await client.post(f"/api/v1/rewards/{visit_campaign.id}/redeem", headers=customer)
        unknown = await client.post(f"/api/v1/rewards/{uuid4()}/redeem", headers=customer)
        garbage = await client.get(
            "/api/v1/rewards/verify",
            params={"qrToken": "promo://redeem/nope"},
            headers={"X-Session-User": str(campaign.business_id)},
        )
        superscript_stamp = await client.get(
            "/api/v1/rewards/verify",
            params={"qrToken": f"promo://redeem/{uuid4()}/{uuid4()}/{campaign.business_id}/²"},
            headers={"X-Session-User": str(campaign.business_id)},
        )

        redeem = await client.post(f"/api/v1/rewards/{campaign.id}/redeem", headers=customer)
        redemption_id = redeem.json()["redemption"]["id"]

        foreign = await client.post(
            f"/api/v1/rewards/redemptions/{redemption_id}/complete",
            headers={"X-Session-User": str(uuid4())},
        )
        missing = await client.post(
            f"/api/v1/rewards/redemptions/{uuid4()}/complete",
            headers={"X-Session-User": str(campaign.business_id)},
        )
        someone_elses_qr = await client.get(
            f"/api/v1/rewards/redemptions/{redemption_id}/qr",
            headers={"X-Session-User": str(uuid4())},
        )
        bad_status = await client.get(
            "/api/v1/rewards/redemptions", params={"status": "lost"}, headers=customer
        )

    assert not_reward.status_code == 404
    assert unknown.status_code == 404
    assert garbage.status_code == 400
    assert garbage.json()["detail"] == "Invalid or expired QR code"
    assert superscript_stamp.status_code == 400
    assert foreign.status_code == 403
    assert missing.status_code == 404
    assert someone_elses_qr.status_code == 404
    assert bad_status.status_code == 400
