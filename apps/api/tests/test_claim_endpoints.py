from uuid import uuid4

import pytest
from eth_account import Account
from httpx import ASGITransport, AsyncClient

from rewardledger_api.api.dependencies.services import get_signing_key_resolver
from rewardledger_api.core.settings import settings
from rewardledger_api.models.user import User
from rewardledger_api.services.secrets.signing_keys import SettingsSigningKeySource, SigningKeyResolver

WALLET = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
TX_CLAIM = "0x" + "c1" * 32
TX_STEAL = "0x" + "5e" * 32
OPERATOR_HEADERS = {"X-API-Key": "ops-secret", "X-Operator-Id": "ops-sam"}


async def _create_user(session_factory, email: str) -> User:
    async with session_factory() as session:
        user = User(email=email)
        session.add(user)
        await session.commit()
        return user


@pytest.fixture
def claims_app(app_with_db, signer_key, monkeypatch):
    app, session_factory = app_with_db
    monkeypatch.setattr(settings, "operator_api_key", "ops-secret")
    resolver = SigningKeyResolver(SettingsSigningKeySource(signer_key), allowed_addresses=[])
    app.dependency_overrides[get_signing_key_resolver] = lambda: resolver
    return app, session_factory


@pytest.mark.asyncio
async def test_payout_voucher_lifecycle(claims_app, signer_key) -> None:
    app, session_factory = claims_app
    user = await _create_user(session_factory, "api-claims@example.com")
    member = {"X-Session-User": str(user.id)}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post(
            "/api/v1/operator/payouts",
            json={"userId": str(user.id), "walletAddress": WALLET, "amountTokens": "2.5", "tokenDecimals": 6},
            headers=OPERATOR_HEADERS,
        )
        assert created.status_code == 201
        payout = created.json()["payout"]
        voucher = created.json()["voucher"]
        payout_id = payout["id"]

        assert payout["amountBaseUnits"] == "2500000"
        assert payout["status"] == "claimable"
        assert voucher["nonce"] == f"{payout_id}:1"
        assert voucher["chainId"] == settings.chain_id
        assert voucher["signerAddress"] == Account.from_key(signer_key).address
        assert voucher["deadlineTimestamp"] > 0

        active = await client.get(f"/api/v1/claims/payouts/{payout_id}/voucher", headers=member)
        assert active.json()["id"] == voucher["id"]

        regenerated = await client.post(f"/api/v1/claims/payouts/{payout_id}/voucher/regenerate", headers=member)
        assert regenerated.status_code == 200
        assert regenerated.json()["generation"] == 2

        history = await client.get(f"/api/v1/claims/payouts/{payout_id}/vouchers", headers=member)
        assert [item["status"] for item in history.json()] == ["superseded", "issued"]

        claimed = await client.post(
            f"/api/v1/claims/payouts/{payout_id}/claimed",
            json={"txHash": TX_CLAIM},
            headers=member,
        )
        assert claimed.status_code == 200
        assert claimed.json()["status"] == "claimed"

        repeat = await client.post(
            f"/api/v1/claims/payouts/{payout_id}/claimed",
            json={"txHash": TX_CLAIM},
            headers=member,
        )
        assert repeat.json()["id"] == claimed.json()["id"]

        regenerate_after_claim = await client.post(
            f"/api/v1/operator/payouts/{payout_id}/regenerate",
            headers=OPERATOR_HEADERS,
        )
        assert regenerate_after_claim.status_code == 409


@pytest.mark.asyncio
async def test_claim_routes_enforce_ownership(claims_app) -> None:
    app, session_factory = claims_app
    owner = await _create_user(session_factory, "api-owner@example.com")
    stranger = await _create_user(session_factory, "api-stranger@example.com")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        created = await client.post(
            "/api/v1/operator/payouts",
            json={"userId": str(owner.id), "walletAddress": WALLET, "amountBaseUnits": 1000},
            headers=OPERATOR_HEADERS,
        )
        payout_id = created.json()["payout"]["id"]
        headers = {"X-Session-User": str(stranger.id)}

        view = await client.get(f"/api/v1/claims/payouts/{payout_id}/voucher", headers=headers)
        regenerate = await client.post(f"/api/v1/claims/payouts/{payout_id}/voucher/regenerate", headers=headers)
        claim = await client.post(
            f"/api/v1/claims/payouts/{payout_id}/claimed",
            json={"txHash": TX_STEAL},
            headers=headers,
        )
        missing = await client.get(f"/api/v1/claims/payouts/{uuid4()}/voucher", headers=headers)

    assert view.status_code == 403
    assert regenerate.status_code == 403
    assert claim.status_code == 403
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_operator_payout_validation_and_deferred_issue(claims_app) -> None:
    app, session_factory = claims_app
    user = await _create_user(session_factory, "api-deferred@example.com")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        both_amounts = await client.post(
            "/api/v1/operator/payouts",
            json={"userId": str(user.id), "walletAddress": WALLET, "amountTokens": "1", "amountBaseUnits": 10},
            headers=OPERATOR_HEADERS,
        )
        deferred = await client.post(
            "/api/v1/operator/payouts",
            json={"userId": str(user.id), "walletAddress": WALLET, "amountBaseUnits": 10, "issueVoucher": False},
            headers=OPERATOR_HEADERS,
        )
        payout_id = deferred.json()["payout"]["id"]
        issued = await client.post(f"/api/v1/operator/payouts/{payout_id}/voucher", headers=OPERATOR_HEADERS)
        issued_again = await client.post(f"/api/v1/operator/payouts/{payout_id}/voucher", headers=OPERATOR_HEADERS)
        history = await client.get(f"/api/v1/operator/payouts/{payout_id}/vouchers", headers=OPERATOR_HEADERS)
        expired = await client.post("/api/v1/operator/vouchers/expire", json={}, headers=OPERATOR_HEADERS)

    assert both_amounts.status_code == 400
    assert deferred.status_code == 201
    assert deferred.json()["voucher"] is None
    assert deferred.json()["payout"]["status"] == "approved"
    assert issued.status_code == 200
    assert issued_again.status_code == 409
    assert len(history.json()) == 1
    assert expired.json() == {"expired": 0}


@pytest.mark.asyncio
async def test_regenerate_without_signer_returns_503(app_with_db, monkeypatch, signer_key) -> None:
    app, session_factory = app_with_db
    monkeypatch.setattr(settings, "operator_api_key", "ops-secret")
    working = SigningKeyResolver(SettingsSigningKeySource(signer_key), allowed_addresses=[])
    missing = SigningKeyResolver(SettingsSigningKeySource(""), allowed_addresses=[])
    user = await _create_user(session_factory, "api-nosigner@example.com")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        app.dependency_overrides[get_signing_key_resolver] = lambda: working
        created = await client.post(
            "/api/v1/operator/payouts",
            json={"userId": str(user.id), "walletAddress": WALLET, "amountBaseUnits": 10},
            headers=OPERATOR_HEADERS,
        )
        payout_id = created.json()["payout"]["id"]

        app.dependency_overrides[get_signing_key_resolver] = lambda: missing
        response = await client.post(
            f"/api/v1/claims/payouts/{payout_id}/voucher/regenerate",
            headers={"X-Session-User": str(user.id)},
        )
        history = await client.get(
            f"/api/v1/claims/payouts/{payout_id}/vouchers",
            headers={"X-Session-User": str(user.id)},
        )

    assert response.status_code == 503
    assert [item["status"] for item in history.json()] == ["issued"]
