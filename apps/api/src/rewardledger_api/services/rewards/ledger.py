"""Authoritative off-chain ledger of daily reward slots."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.core.logging import shorten_hex
from rewardledger_api.models.rewards import RewardCompletionSource, RewardEvent
from rewardledger_api.services.rewards.app_day import AppDay, AppDayClock, ensure_utc, get_app_day_clock
from rewardledger_api.services.rewards.chain_reader import OnChainRewardState

_TX_HASH_PATTERN = re.compile(r"0x[0-9a-f]{64}")


def normalize_tx_hash(value: str | None) -> str | None:
    """Canonical lower-case form of a transaction hash; ``None`` passes through.

    Raises ``ValueError`` when the value is not 0x followed by 64 hex digits.
    """

    if value is None:
        return None
    candidate = value.strip().lower()
    if not _TX_HASH_PATTERN.fullmatch(candidate):
        raise ValueError("Transaction hash must be 0x followed by 64 hex characters")
    return candidate


class RewardError(RuntimeError):
    """Base exception for reward ledger and reconciliation failures."""


class StaleReservationError(RewardError):
    """Raised when confirming a reservation that was confirmed or swept already.

    Callers restart the whole attempt; the slot may have been freed by the
    cleanup sweep or completed by a concurrent recovery.
    """

    def __init__(self, handle: "ReservationHandle") -> None:
        super().__init__(f"Reservation {handle.event_id} is no longer pending")
        self.handle = handle


class TransactionAlreadyUsedError(RewardError):
    """Raised when a source transaction already backs another reward."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__("Transaction already backs a confirmed reward")
        self.tx_hash = tx_hash


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    ALREADY_CONFIRMED = "already_confirmed"
    ALREADY_RESERVED = "already_reserved"


@dataclass(frozen=True)
class ReservationHandle:
    """Proof of a provisional claim on a (user, app-day) slot."""

    event_id: UUID
    user_id: UUID
    app_day: AppDay
    reserved_at: datetime


@dataclass(frozen=True)
class ReservationOutcome:
    status: ReservationStatus
    handle: ReservationHandle | None = None
    existing_event_id: UUID | None = None


class RewardLedger:
    """Reserve → confirm / release lifecycle keyed by (user, app-day).

    ``reserve`` is the only synchronization point and relies on the
    ``uq_reward_events_user_app_day`` constraint with an insert-or-nothing
    statement. Every other mutation targets a single row by primary key.
    """

    def __init__(self, session: AsyncSession, *, clock: AppDayClock | None = None) -> None:
        self._db = session
        self._clock = clock or get_app_day_clock()

    async def reserve(
        self,
        user_id: UUID,
        app_day: AppDay,
        *,
        wallet_address: str | None = None,
        now: datetime | None = None,
    ) -> ReservationOutcome:
        reserved_at = ensure_utc(now or datetime.now(timezone.utc))
        event_id = uuid4()
        stmt = (
            self._insert()
            .values(
                id=event_id,
                user_id=user_id,
                app_day=app_day.day,
                wallet_address=wallet_address,
                amount_awarded=0,
                streak_count=0,
                reserved_at=reserved_at,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "app_day"])
            .returning(RewardEvent.id)
        )
        inserted = (await self._db.execute(stmt)).scalar_one_or_none()
        await self._db.commit()

        if inserted is not None:
            logger.debug(
                "Reserved reward slot",
                user_id=str(user_id),
                app_day=app_day.isoformat(),
                event_id=str(inserted),
            )
            return ReservationOutcome(
                status=ReservationStatus.RESERVED,
                handle=ReservationHandle(
                    event_id=inserted,
                    user_id=user_id,
                    app_day=app_day,
                    reserved_at=reserved_at,
                ),
            )

        existing = await self._get_slot(user_id, app_day)
        if existing is None:
            # The conflicting row was released between the insert and the read.
            return ReservationOutcome(status=ReservationStatus.ALREADY_RESERVED)
        if existing.confirmed_at is not None:
            return ReservationOutcome(status=ReservationStatus.ALREADY_CONFIRMED, existing_event_id=existing.id)
        return ReservationOutcome(status=ReservationStatus.ALREADY_RESERVED, existing_event_id=existing.id)

    async def confirm(
        self,
        handle: ReservationHandle,
        *,
        amount_awarded: int,
        streak_count: int,
        source_tx_hash: str | None,
        completion_source: RewardCompletionSource = RewardCompletionSource.STANDARD,
        onchain_state: OnChainRewardState | None = None,
        wallet_address: str | None = None,
        now: datetime | None = None,
    ) -> RewardEvent:
        source_tx_hash = normalize_tx_hash(source_tx_hash)
        confirmed_at = ensure_utc(now or datetime.now(timezone.utc))
        values: dict[str, Any] = {
            "amount_awarded": amount_awarded,
            "streak_count": streak_count,
            "source_tx_hash": source_tx_hash,
            "completion_source": completion_source,
            "confirmed_at": confirmed_at,
        }
        if wallet_address:
            values["wallet_address"] = wallet_address
        if onchain_state is not None and onchain_state.is_known:
            values["onchain_checked_at"] = confirmed_at
            values["onchain_last_day_start"] = onchain_state.raw_timestamp

        stmt = (
            update(RewardEvent)
            .where(RewardEvent.id == handle.event_id, RewardEvent.confirmed_at.is_(None))
            .values(**values)
            .returning(RewardEvent.id)
            .execution_options(synchronize_session=False)
        )
        try:
            updated = (await self._db.execute(stmt)).scalar_one_or_none()
        except IntegrityError as exc:
            await self._db.rollback()
            raise TransactionAlreadyUsedError(source_tx_hash or "") from exc

        if updated is None:
            await self._db.rollback()
            raise StaleReservationError(handle)

        await self._db.commit()
        event = await self._db.get(RewardEvent, handle.event_id, populate_existing=True)
        logger.info(
            "Reward confirmed",
            user_id=str(handle.user_id),
            app_day=handle.app_day.isoformat(),
            event_id=str(handle.event_id),
            amount=amount_awarded,
            streak=streak_count,
            source=completion_source.value,
            tx_hash=shorten_hex(source_tx_hash),
        )
        return event

    async def release(self, handle: ReservationHandle) -> bool:
        """Delete an abandoned reservation; confirmed rows are never touched."""

        stmt = (
            delete(RewardEvent)
            .where(RewardEvent.id == handle.event_id, RewardEvent.confirmed_at.is_(None))
            .returning(RewardEvent.id)
            .execution_options(synchronize_session=False)
        )
        deleted = (await self._db.execute(stmt)).scalar_one_or_none()
        await self._db.commit()
        if deleted is not None:
            logger.info(
                "Released reward reservation",
                user_id=str(handle.user_id),
                app_day=handle.app_day.isoformat(),
                event_id=str(handle.event_id),
            )
        return deleted is not None

    async def find_reservation(
        self,
        user_id: UUID,
        app_day: AppDay,
        max_age_seconds: int | None = None,
        *,
        now: datetime | None = None,
    ) -> ReservationHandle | None:
        """Return the pending reservation for the slot, if it is recent enough."""

        stmt = select(RewardEvent).where(
            RewardEvent.user_id == user_id,
            RewardEvent.app_day == app_day.day,
            RewardEvent.confirmed_at.is_(None),
        )
        if max_age_seconds is not None:
            horizon = ensure_utc(now or datetime.now(timezone.utc)) - timedelta(seconds=max_age_seconds)
            stmt = stmt.where(RewardEvent.reserved_at >= horizon)
        event = (await self._db.execute(stmt)).scalar_one_or_none()
        if event is None:
            return None
        return self._handle_for(event, app_day)

    async def list_stale_reservations(
        self,
        *,
        older_than_seconds: int,
        limit: int = 200,
        now: datetime | None = None,
    ) -> list[ReservationHandle]:
        """Reservations never confirmed and older than the threshold, oldest first."""

        horizon = ensure_utc(now or datetime.now(timezone.utc)) - timedelta(seconds=older_than_seconds)
        stmt = (
            select(RewardEvent)
            .where(RewardEvent.confirmed_at.is_(None), RewardEvent.reserved_at < horizon)
            .order_by(RewardEvent.reserved_at.asc())
            .limit(limit)
        )
        events = (await self._db.execute(stmt)).scalars().all()
        return [
            ReservationHandle(
                event_id=event.id,
                user_id=event.user_id,
                app_day=self._clock.app_day_for_date(event.app_day),
                reserved_at=ensure_utc(event.reserved_at),
            )
            for event in events
        ]

    async def get_confirmed(self, user_id: UUID, app_day: AppDay) -> RewardEvent | None:
        stmt = select(RewardEvent).where(
            RewardEvent.user_id == user_id,
            RewardEvent.app_day == app_day.day,
            RewardEvent.confirmed_at.is_not(None),
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def find_by_source_tx(self, tx_hash: str) -> RewardEvent | None:
        stmt = select(RewardEvent).where(RewardEvent.source_tx_hash == normalize_tx_hash(tx_hash))
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def previous_streak(self, user_id: UUID, previous_day: AppDay) -> int:
        """Streak carried into the next app-day; zero when the previous day was missed."""

        event = await self.get_confirmed(user_id, previous_day)
        if event is None:
            return 0
        return int(event.streak_count or 0)

    def _insert(self):
        dialect = self._db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(RewardEvent)
        if dialect == "sqlite":
            return sqlite.insert(RewardEvent)
        raise RewardError(f"Unsupported database dialect for reservations: {dialect}")

    async def _get_slot(self, user_id: UUID, app_day: AppDay) -> RewardEvent | None:
        stmt = select(RewardEvent).where(
            RewardEvent.user_id == user_id,
            RewardEvent.app_day == app_day.day,
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    @staticmethod
    def _handle_for(event: RewardEvent, app_day: AppDay) -> ReservationHandle:
        return ReservationHandle(
            event_id=event.id,
            user_id=event.user_id,
            app_day=app_day,
            reserved_at=ensure_utc(event.reserved_at),
        )


__all__ = [
    "ReservationHandle",
    "ReservationOutcome",
    "ReservationStatus",
    "RewardError",
    "RewardLedger",
    "StaleReservationError",
    "TransactionAlreadyUsedError",
    "normalize_tx_hash",
]
