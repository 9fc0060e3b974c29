from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from rewardledger_api.models.claims import ClaimVoucherStatus, RewardPayoutStatus
from rewardledger_api.models.user import User
from rewardledger_api.observability.rewards import get_reward_store
from rewardledger_api.services.claims import (
    ClaimInputError,
    ClaimLifecycleTracker,
    ClaimVoucherIssuer,
    PayoutNotFoundError,
    VoucherExpiredError,
    VoucherOwnershipError,
    VoucherStateError,
)
from rewardledger_api.services.secrets.signing_keys import SettingsSigningKeySource, SigningKeyResolver

NOW = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)
WALLET = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
TX_CLAIM = "0x" + "c1" * 32
TX_LATE = "0x" + "c2" * 32


async def _issued_payout(session, signer_key, email: str):
    user = User(email=email)
    session.add(user)
    await session.commit()
    resolver = SigningKeyResolver(SettingsSigningKeySource(signer_key), allowed_addresses=[])
    issuer = ClaimVoucherIssuer(session, key_resolver=resolver, chain_id=8453, voucher_ttl=timedelta(days=30))
    payout = await issuer.approve_payout(user.id, WALLET, amount_base_units=42)
    voucher = await issuer.issue_voucher(payout.id, now=NOW)
    return user, issuer, payout, voucher


@pytest.mark.asyncio
async def test_mark_claimed_completes_payout(session_factory, signer_key) -> None:
    async with session_factory() as session:
        user, issuer, payout, voucher = await _issued_payout(session, signer_key, "claimer@example.com")
        tracker = ClaimLifecycleTracker(session)

        claimed = await tracker.mark_claimed(payout.id, TX_CLAIM, caller_user_id=user.id, now=NOW + timedelta(days=1))

        assert claimed.id == voucher.id
        assert claimed.status is ClaimVoucherStatus.CLAIMED
        assert claimed.claim_tx_hash == TX_CLAIM
        refreshed = await issuer.get_payout(payout.id)
        assert refreshed.status is RewardPayoutStatus.COMPLETED
        assert refreshed.claim_tx_hash == TX_CLAIM

        repeat = await tracker.mark_claimed(payout.id, TX_CLAIM, caller_user_id=user.id, now=NOW + timedelta(days=2))
        assert repeat.id == voucher.id
        assert await tracker.active_voucher(payout.id) is None

        with pytest.raises(VoucherStateError):
            await issuer.issue_voucher(payout.id, now=NOW + timedelta(days=2))

    assert get_reward_store().snapshot().vouchers["claimed"] == 1


@pytest.mark.asyncio
async def test_mark_claimed_checks_ownership(session_factory, signer_key) -> None:
    async with session_factory() as session:
        user, _, payout, voucher = await _issued_payout(session, signer_key, "owner-claim@example.com")
        tracker = ClaimLifecycleTracker(session)

        assert await tracker.ownership_check(payout.id, user.id) is True
        assert await tracker.ownership_check(payout.id, uuid4()) is False
        with pytest.raises(VoucherOwnershipError):
            await tracker.mark_claimed(payout.id, TX_CLAIM, caller_user_id=uuid4(), now=NOW)

        assert (await tracker.active_voucher(payout.id)).id == voucher.id


@pytest.mark.asyncio
async def test_expired_voucher_cannot_be_claimed(session_factory, signer_key) -> None:
    later = NOW + timedelta(days=31)
    async with session_factory() as session:
        user, issuer, payout, voucher = await _issued_payout(session, signer_key, "late@example.com")
        tracker = ClaimLifecycleTracker(session)

        with pytest.raises(VoucherExpiredError):
            await tracker.mark_claimed(payout.id, TX_LATE, caller_user_id=user.id, now=later)
        assert (await tracker.active_voucher(payout.id)).id == voucher.id

        assert await tracker.expire_overdue_vouchers(now=NOW + timedelta(days=29)) == 0
        assert await tracker.expire_overdue_vouchers(now=later) == 1
        assert await tracker.active_voucher(payout.id) is None

        reissued = await issuer.issue_voucher(payout.id, now=later)
        assert reissued.generation == 2
        assert reissued.nonce != voucher.nonce

        history = await tracker.voucher_history(payout.id)
        assert [item.status for item in history] == [ClaimVoucherStatus.EXPIRED, ClaimVoucherStatus.ISSUED]

    snapshot = get_reward_store().snapshot()
    assert snapshot.vouchers["claim_rejected_expired"] == 1
    assert snapshot.sweeps["vouchers_rows"] == 1
    assert snapshot.sweeps["vouchers_runs"] == 2


@pytest.mark.asyncio
async def test_unknown_payout(session_factory) -> None:
    async with session_factory() as session:
        tracker = ClaimLifecycleTracker(session)

        with pytest.raises(PayoutNotFoundError):
            await tracker.mark_claimed(uuid4(), TX_CLAIM, caller_user_id=uuid4(), now=NOW)
        assert await tracker.voucher_history(uuid4()) == []


@pytest.mark.asyncio
async def test_mark_claimed_stores_canonical_hash(session_factory, signer_key) -> None:
    async with session_factory() as session:
        user, _, payout, _ = await _issued_payout(session, signer_key, "canonical-claim@example.com")
        tracker = ClaimLifecycleTracker(session)

        with pytest.raises(ClaimInputError):
            await tracker.mark_claimed(payout.id, "0xclaim", caller_user_id=user.id, now=NOW)

        claimed = await tracker.mark_claimed(payout.id, TX_CLAIM.upper(), caller_user_id=user.id, now=NOW)
        assert claimed.claim_tx_hash == TX_CLAIM
