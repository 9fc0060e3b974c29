from datetime import datetime, timedelta, timezone

import pytest

from rewardledger_api.models.claims import ClaimVoucherStatus
from rewardledger_api.models.rewards import RewardEvent
from rewardledger_api.models.user import User
from rewardledger_api.services.claims import ClaimLifecycleTracker, ClaimVoucherIssuer
from rewardledger_api.services.rewards import AppDayClock, RewardLedger
from rewardledger_api.services.secrets.signing_keys import SettingsSigningKeySource, SigningKeyResolver
from rewardledger_api.workers import ReservationCleanupWorker, VoucherExpiryWorker

NOW = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)
CLOCK = AppDayClock(cutover_hour=8, utc_offset_hours=-8)


@pytest.mark.asyncio
async def test_reservation_cleanup_worker_releases_only_stale_rows(session_factory) -> None:
    async with session_factory() as session:
        stale_user = User(email="stale-worker@example.com")
        fresh_user = User(email="fresh-worker@example.com")
        session.add_all([stale_user, fresh_user])
        await session.commit()

        ledger = RewardLedger(session)
        today = CLOCK.current_app_day(NOW)
        await ledger.reserve(stale_user.id, today, now=NOW - timedelta(hours=1))
        fresh = await ledger.reserve(fresh_user.id, today, now=NOW - timedelta(minutes=1))

    worker = ReservationCleanupWorker(session_factory, interval_seconds=60, limit=50, older_than_seconds=900)
    assert await worker.run_once(now=NOW) == {"released": 1}
    assert await worker.run_once(now=NOW) == {"released": 0}

    async with session_factory() as session:
        remaining = await session.get(RewardEvent, fresh.handle.event_id)
        assert remaining is not None


@pytest.mark.asyncio
async def test_voucher_expiry_worker_expires_overdue_vouchers(session_factory, signer_key) -> None:
    async with session_factory() as session:
        user = User(email="expiry-worker@example.com")
        session.add(user)
        await session.commit()
        resolver = SigningKeyResolver(SettingsSigningKeySource(signer_key), allowed_addresses=[])
        issuer = ClaimVoucherIssuer(session, key_resolver=resolver, chain_id=8453, voucher_ttl=timedelta(days=30))
        payout = await issuer.approve_payout(
            user.id,
            "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
            amount_base_units=100,
        )
        await issuer.issue_voucher(payout.id, now=NOW)

    worker = VoucherExpiryWorker(session_factory, interval_seconds=60, limit=10)
    assert await worker.run_once(now=NOW + timedelta(days=10)) == {"expired": 0}
    assert await worker.run_once(now=NOW + timedelta(days=30, seconds=1)) == {"expired": 1}

    async with session_factory() as session:
        history = await ClaimLifecycleTracker(session).voucher_history(payout.id)
        assert [voucher.status for voucher in history] == [ClaimVoucherStatus.EXPIRED]


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory) -> None:
    worker = ReservationCleanupWorker(session_factory, interval_seconds=3600, limit=10, older_than_seconds=900)

    worker.start()
    assert worker.is_running is True
    await worker.stop()
    assert worker.is_running is False
