from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from rewardledger_api.models.rewards import RewardCompletionSource, RewardEvent
from rewardledger_api.models.user import User
from rewardledger_api.services.rewards.app_day import AppDayClock
from rewardledger_api.services.rewards.ledger import (
    ReservationStatus,
    RewardLedger,
    StaleReservationError,
    TransactionAlreadyUsedError,
    normalize_tx_hash,
)

CLOCK = AppDayClock(cutover_hour=8, utc_offset_hours=-8)
NOW = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc)
TODAY = CLOCK.current_app_day(NOW)
TX_A = "0x" + "aa" * 32
TX_DUP = "0x" + "d0" * 32


async def _create_user(session, email: str) -> User:
    user = User(email=email)
    session.add(user)
    await session.commit()
    return user


@pytest.mark.asyncio
async def test_reserve_confirm_and_repeat(session_factory) -> None:
    async with session_factory() as session:
        user = await _create_user(session, "ledger@example.com")
        ledger = RewardLedger(session)

        first = await ledger.reserve(user.id, TODAY, now=NOW)
        assert first.status is ReservationStatus.RESERVED
        assert first.handle is not None

        second = await ledger.reserve(user.id, TODAY, now=NOW)
        assert second.status is ReservationStatus.ALREADY_RESERVED
        assert second.existing_event_id == first.handle.event_id

        event = await ledger.confirm(
            first.handle,
            amount_awarded=50,
            streak_count=1,
            source_tx_hash=TX_A,
            now=NOW,
        )
        assert event.confirmed_at is not None
        assert event.completion_source is RewardCompletionSource.STANDARD
        assert event.source_tx_hash == TX_A
        assert event.onchain_checked_at is None

        third = await ledger.reserve(user.id, TODAY, now=NOW)
        assert third.status is ReservationStatus.ALREADY_CONFIRMED

        count = (await session.execute(select(func.count()).select_from(RewardEvent))).scalar_one()
        assert count == 1


@pytest.mark.asyncio
async def test_confirm_twice_is_stale(session_factory) -> None:
    async with session_factory() as session:
        user = await _create_user(session, "stale@example.com")
        ledger = RewardLedger(session)
        handle = (await ledger.reserve(user.id, TODAY, now=NOW)).handle

        await ledger.confirm(handle, amount_awarded=50, streak_count=1, source_tx_hash=None, now=NOW)
        with pytest.raises(StaleReservationError):
            await ledger.confirm(handle, amount_awarded=50, streak_count=1, source_tx_hash=None, now=NOW)


@pytest.mark.asyncio
async def test_release_frees_slot_and_never_touches_confirmed(session_factory) -> None:
    async with session_factory() as session:
        user = await _create_user(session, "release@example.com")
        ledger = RewardLedger(session)
        handle = (await ledger.reserve(user.id, TODAY, now=NOW)).handle

        assert await ledger.release(handle) is True
        with pytest.raises(StaleReservationError):
            await ledger.confirm(handle, amount_awarded=50, streak_count=1, source_tx_hash=None, now=NOW)

        again = await ledger.reserve(user.id, TODAY, now=NOW)
        assert again.status is ReservationStatus.RESERVED
        await ledger.confirm(again.handle, amount_awarded=50, streak_count=1, source_tx_hash=None, now=NOW)
        assert await ledger.release(again.handle) is False
        assert await ledger.get_confirmed(user.id, TODAY) is not None


@pytest.mark.asyncio
async def test_find_reservation_honours_max_age(session_factory) -> None:
    async with session_factory() as session:
        user = await _create_user(session, "age@example.com")
        ledger = RewardLedger(session)
        reserved_at = NOW - timedelta(minutes=20)
        handle = (await ledger.reserve(user.id, TODAY, now=reserved_at)).handle

        assert await ledger.find_reservation(user.id, TODAY, 900, now=NOW) is None
        found = await ledger.find_reservation(user.id, TODAY, 1800, now=NOW)
        assert found is not None and found.event_id == handle.event_id
        assert (await ledger.find_reservation(user.id, TODAY)).event_id == handle.event_id

        stale = await ledger.list_stale_reservations(older_than_seconds=900, now=NOW)
        assert [item.event_id for item in stale] == [handle.event_id]
        assert await ledger.list_stale_reservations(older_than_seconds=1800, now=NOW) == []


@pytest.mark.asyncio
async def test_transaction_hash_backs_one_reward(session_factory) -> None:
    async with session_factory() as session:
        first_user = await _create_user(session, "tx-one@example.com")
        second_user = await _create_user(session, "tx-two@example.com")
        ledger = RewardLedger(session)

        first = (await ledger.reserve(first_user.id, TODAY, now=NOW)).handle
        await ledger.confirm(first, amount_awarded=50, streak_count=1, source_tx_hash=TX_DUP, now=NOW)

        second = (await ledger.reserve(second_user.id, TODAY, now=NOW)).handle
        with pytest.raises(TransactionAlreadyUsedError):
            await ledger.confirm(second, amount_awarded=50, streak_count=1, source_tx_hash=TX_DUP, now=NOW)

        assert (await ledger.find_by_source_tx(TX_DUP)).user_id == first_user.id
        assert await ledger.find_reservation(second_user.id, TODAY) is not None


@pytest.mark.asyncio
async def test_previous_streak_reads_prior_day(session_factory) -> None:
    async with session_factory() as session:
        user = await _create_user(session, "streak@example.com")
        ledger = RewardLedger(session)
        yesterday = CLOCK.app_day_for_date(date(2026, 3, 9))

        assert await ledger.previous_streak(user.id, yesterday) == 0

        handle = (await ledger.reserve(user.id, yesterday, now=NOW - timedelta(days=1))).handle
        await ledger.confirm(handle, amount_awarded=50, streak_count=4, source_tx_hash=None, now=NOW - timedelta(days=1))

        assert await ledger.previous_streak(user.id, yesterday) == 4


def test_normalize_tx_hash_canonicalizes_and_validates() -> None:
    upper = "0X" + "AB" * 32

    assert normalize_tx_hash(f"  {upper}\n") == "0x" + "ab" * 32
    assert normalize_tx_hash(None) is None
    for invalid in ("0xabc", "ab" * 32, "0x" + "zz" * 32, "0x" + "ab" * 33, ""):
        with pytest.raises(ValueError):
            normalize_tx_hash(invalid)


@pytest.mark.asyncio
async def test_transaction_hash_casing_cannot_back_second_reward(session_factory) -> None:
    async with session_factory() as session:
        first_user = await _create_user(session, "case-one@example.com")
        second_user = await _create_user(session, "case-two@example.com")
        ledger = RewardLedger(session)
        upper = "0x" + "AB" * 32

        first = (await ledger.reserve(first_user.id, TODAY, now=NOW)).handle
        event = await ledger.confirm(first, amount_awarded=50, streak_count=1, source_tx_hash=upper, now=NOW)
        assert event.source_tx_hash == upper.lower()

        second = (await ledger.reserve(second_user.id, TODAY, now=NOW)).handle
        with pytest.raises(TransactionAlreadyUsedError):
            await ledger.confirm(second, amount_awarded=50, streak_count=1, source_tx_hash=upper.lower(), now=NOW)

        assert (await ledger.find_by_source_tx(upper)).id == event.id
        assert (await ledger.find_by_source_tx(f" {upper.lower()} ")).id == event.id


@pytest.mark.asyncio
async def test_stale_reservations_carry_app_day_cutover(session_factory) -> None:
    async with session_factory() as session:
        user = await _create_user(session, "stale-day@example.com")
        ledger = RewardLedger(session, clock=CLOCK)
        handle = (await ledger.reserve(user.id, TODAY, now=NOW)).handle

        stale = await ledger.list_stale_reservations(older_than_seconds=60, now=NOW + timedelta(hours=1))

        assert [item.event_id for item in stale] == [handle.event_id]
        assert stale[0].app_day == TODAY
        assert stale[0].app_day.starts_at == CLOCK.app_day_start(TODAY)
        assert stale[0].reserved_at == NOW
