"""Reconcile daily reward attempts between the off-chain ledger and the contract."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.core.logging import shorten_hex
from rewardledger_api.core.settings import settings
from rewardledger_api.models.rewards import RewardCompletionSource, RewardEvent
from rewardledger_api.observability.rewards import RewardObservabilityStore, get_reward_store
from rewardledger_api.observability.tracing import get_tracer
from rewardledger_api.services.rewards.app_day import AppDay, AppDayClock, get_app_day_clock
from rewardledger_api.services.rewards.chain_reader import (
    OnChainRewardState,
    OnChainStateReader,
    TransactionVerificationStatus,
    build_default_chain_reader,
)
from rewardledger_api.services.rewards.ledger import (
    ReservationStatus,
    RewardError,
    RewardLedger,
    StaleReservationError,
    TransactionAlreadyUsedError,
    normalize_tx_hash,
)
from rewardledger_api.services.rewards.policy import RewardPolicy, build_default_reward_policy
from rewardledger_api.services.rewards.throttle import (
    RecoveryRateLimitedError,
    RecoveryThrottle,
    get_recovery_throttle,
)


class RewardInputError(RewardError):
    """Raised when an attempt is missing data it cannot proceed without."""


class RecoveryVerificationError(RewardError):
    """Raised when a recovery transaction is missing, reverted, or unrelated to the reward contract."""


class RecoveryUnavailableError(RewardError):
    """Raised when a recovery transaction cannot be verified right now; safe to retry."""


def _normalize_tx_hash(value: str | None) -> str | None:
    try:
        return normalize_tx_hash(value)
    except ValueError as exc:
        raise RewardInputError(str(exc)) from exc


class RewardAttemptOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_REWARDED_TODAY = "already_rewarded_today"
    ALREADY_REWARDED_ON_CHAIN = "already_rewarded_on_chain"
    CONCURRENT_ATTEMPT_IN_PROGRESS = "concurrent_attempt_in_progress"


@dataclass(frozen=True)
class RewardAttemptResult:
    """Outcome of one reward attempt; idempotent outcomes are results, not errors."""

    outcome: RewardAttemptOutcome
    app_day: AppDay
    event: RewardEvent | None = None
    retry_after_seconds: int | None = None
    onchain_state: OnChainRewardState | None = None

    @property
    def newly_confirmed(self) -> bool:
        return self.outcome is RewardAttemptOutcome.CONFIRMED


@dataclass(frozen=True)
class DailyRewardStatus:
    app_day: AppDay
    event: RewardEvent | None
    reservation_pending: bool
    next_cutover: datetime


class RewardReconciliationService:
    """Drive the reserve → check → confirm/release state machine for daily rewards."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        reader: OnChainStateReader | None = None,
        clock: AppDayClock | None = None,
        policy: RewardPolicy | None = None,
        store: RewardObservabilityStore | None = None,
        stale_restart_limit: int | None = None,
        retry_after_seconds: int | None = None,
        throttle: RecoveryThrottle | None = None,
    ) -> None:
        self._clock = clock or get_app_day_clock()
        self._ledger = RewardLedger(session, clock=self._clock)
        self._reader = reader or build_default_chain_reader()
        self._throttle = throttle or get_recovery_throttle()
        self._policy = policy or build_default_reward_policy()
        self._store = store or get_reward_store()
        self._stale_restart_limit = (
            settings.reward_stale_restart_limit if stale_restart_limit is None else stale_restart_limit
        )
        self._retry_after_seconds = (
            settings.reward_concurrent_retry_after_seconds if retry_after_seconds is None else retry_after_seconds
        )

    @property
    def ledger(self) -> RewardLedger:
        return self._ledger

    async def attempt_daily_reward(
        self,
        user_id: UUID,
        wallet_address: str | None = None,
        source_tx_hash: str | None = None,
        skip_on_chain_check: bool = False,
        *,
        now: datetime | None = None,
    ) -> RewardAttemptResult:
        """Grant today's reward at most once for the user."""

        if not skip_on_chain_check and not wallet_address:
            raise RewardInputError("A wallet address is required for the on-chain reward check")
        source_tx_hash = _normalize_tx_hash(source_tx_hash or None)
        return await self._run_attempt(
            user_id,
            wallet_address=wallet_address,
            source_tx_hash=source_tx_hash,
            skip_on_chain_check=skip_on_chain_check,
            completion_source=RewardCompletionSource.STANDARD,
            adopt_reservation=False,
            now=now,
        )

    async def recover_stuck_reward(
        self,
        user_id: UUID,
        wallet_address: str | None,
        tx_hash: str | None,
        *,
        now: datetime | None = None,
    ) -> RewardAttemptResult:
        """Complete a reward whose on-chain transaction landed but whose confirm never did.

        The transaction must verify against the reward contract and must not already
        back a reward. The attempt then skips the on-chain check, since the chain
        now (correctly) reports the day as rewarded, and adopts any dangling
        reservation left by the interrupted attempt.
        """

        if not tx_hash:
            raise RewardInputError("A transaction hash is required to recover a reward")
        tx_hash = _normalize_tx_hash(tx_hash)
        try:
            self._throttle.acquire(user_id, now=now)
        except RecoveryRateLimitedError as exc:
            self._store.record_recovery(RewardCompletionSource.SELF_RECOVERY.value, "rate_limited")
            logger.warning(
                "Reward recovery throttled",
                user_id=str(user_id),
                retry_after_seconds=exc.retry_after_seconds,
            )
            raise

        existing = await self._ledger.find_by_source_tx(tx_hash)
        if existing is not None:
            if existing.user_id != user_id:
                raise TransactionAlreadyUsedError(tx_hash)
            self._store.record_recovery(RewardCompletionSource.SELF_RECOVERY.value, "duplicate_tx")
            return RewardAttemptResult(
                outcome=RewardAttemptOutcome.ALREADY_REWARDED_TODAY,
                app_day=self._clock.app_day_for_date(existing.app_day),
                event=existing,
            )

        verification = await self._reader.verify_transaction(tx_hash, wallet_address)
        if verification.status is TransactionVerificationStatus.FAILED:
            self._store.record_recovery(RewardCompletionSource.SELF_RECOVERY.value, "verification_failed")
            logger.warning(
                "Reward recovery rejected",
                user_id=str(user_id),
                tx_hash=shorten_hex(tx_hash),
                reason=verification.reason,
            )
            raise RecoveryVerificationError(verification.reason or "Transaction could not be verified")
        if verification.status is TransactionVerificationStatus.UNKNOWN:
            self._store.record_recovery(RewardCompletionSource.SELF_RECOVERY.value, "verification_unavailable")
            raise RecoveryUnavailableError("Transaction verification is temporarily unavailable")

        result = await self._run_attempt(
            user_id,
            wallet_address=wallet_address,
            source_tx_hash=tx_hash,
            skip_on_chain_check=True,
            completion_source=RewardCompletionSource.SELF_RECOVERY,
            adopt_reservation=True,
            now=now,
        )
        self._store.record_recovery(RewardCompletionSource.SELF_RECOVERY.value, result.outcome.value)
        logger.info(
            "Reward recovery processed",
            user_id=str(user_id),
            app_day=result.app_day.isoformat(),
            outcome=result.outcome.value,
            tx_hash=shorten_hex(tx_hash),
        )
        return result

    async def force_complete_reward(
        self,
        user_id: UUID,
        wallet_address: str | None = None,
        tx_hash: str | None = None,
        *,
        operator: str,
        now: datetime | None = None,
    ) -> RewardAttemptResult:
        """Operator override: confirm today's slot without any on-chain verification."""

        tx_hash = _normalize_tx_hash(tx_hash or None)
        result = await self._run_attempt(
            user_id,
            wallet_address=wallet_address,
            source_tx_hash=tx_hash,
            skip_on_chain_check=True,
            completion_source=RewardCompletionSource.OPERATOR_FORCED,
            adopt_reservation=True,
            now=now,
        )
        self._store.record_recovery(RewardCompletionSource.OPERATOR_FORCED.value, result.outcome.value)
        logger.warning(
            "Reward force-completed by operator",
            user_id=str(user_id),
            app_day=result.app_day.isoformat(),
            outcome=result.outcome.value,
            operator=operator,
            tx_hash=shorten_hex(tx_hash),
        )
        return result

    async def sweep_stale_reservations(
        self,
        *,
        older_than_seconds: int | None = None,
        limit: int = 200,
        now: datetime | None = None,
    ) -> int:
        """Release reservations that were never confirmed and return how many were removed."""

        threshold = settings.reward_reservation_stale_seconds if older_than_seconds is None else older_than_seconds
        handles = await self._ledger.list_stale_reservations(
            older_than_seconds=threshold,
            limit=limit,
            now=now,
        )
        released = 0
        for handle in handles:
            if await self._ledger.release(handle):
                released += 1
        self._store.record_sweep("reservations", released)
        if handles:
            logger.info(
                "Stale reward reservations swept",
                candidates=len(handles),
                released=released,
                older_than_seconds=threshold,
            )
        return released

    async def daily_status(self, user_id: UUID, *, now: datetime | None = None) -> DailyRewardStatus:
        app_day = self._clock.current_app_day(now)
        event = await self._ledger.get_confirmed(user_id, app_day)
        pending = None
        if event is None:
            pending = await self._ledger.find_reservation(user_id, app_day)
        return DailyRewardStatus(
            app_day=app_day,
            event=event,
            reservation_pending=pending is not None,
            next_cutover=self._clock.next_cutover(now),
        )

    async def _run_attempt(
        self,
        user_id: UUID,
        *,
        wallet_address: str | None,
        source_tx_hash: str | None,
        skip_on_chain_check: bool,
        completion_source: RewardCompletionSource,
        adopt_reservation: bool,
        now: datetime | None,
    ) -> RewardAttemptResult:
        with get_tracer().start_as_current_span("rewards.attempt") as span:
            span.set_attribute("reward.user_id", str(user_id))
            span.set_attribute("reward.completion_source", completion_source.value)
            span.set_attribute("reward.skip_on_chain_check", skip_on_chain_check)

            restarts = 0
            while True:
                try:
                    result = await self._attempt_once(
                        user_id,
                        wallet_address=wallet_address,
                        source_tx_hash=source_tx_hash,
                        skip_on_chain_check=skip_on_chain_check,
                        completion_source=completion_source,
                        adopt_reservation=adopt_reservation,
                        now=now,
                    )
                except StaleReservationError as exc:
                    if restarts >= self._stale_restart_limit:
                        logger.error(
                            "Reward attempt kept losing its reservation",
                            user_id=str(user_id),
                            event_id=str(exc.handle.event_id),
                            restarts=restarts,
                        )
                        raise
                    restarts += 1
                    self._store.record_stale_restart()
                    logger.warning(
                        "Reward reservation went stale; restarting attempt",
                        user_id=str(user_id),
                        event_id=str(exc.handle.event_id),
                        restart=restarts,
                    )
                    continue

                self._store.record_attempt(result.outcome.value)
                span.set_attribute("reward.app_day", result.app_day.isoformat())
                span.set_attribute("reward.outcome", result.outcome.value)
                return result

    async def _attempt_once(
        self,
        user_id: UUID,
        *,
        wallet_address: str | None,
        source_tx_hash: str | None,
        skip_on_chain_check: bool,
        completion_source: RewardCompletionSource,
        adopt_reservation: bool,
        now: datetime | None,
    ) -> RewardAttemptResult:
        app_day = self._clock.current_app_day(now)
        reservation = await self._ledger.reserve(user_id, app_day, wallet_address=wallet_address, now=now)

        if reservation.status is ReservationStatus.ALREADY_CONFIRMED:
            logger.info("Daily reward already granted", user_id=str(user_id), app_day=app_day.isoformat())
            return RewardAttemptResult(
                outcome=RewardAttemptOutcome.ALREADY_REWARDED_TODAY,
                app_day=app_day,
                event=await self._ledger.get_confirmed(user_id, app_day),
            )

        handle = reservation.handle
        if reservation.status is ReservationStatus.ALREADY_RESERVED:
            handle = await self._ledger.find_reservation(user_id, app_day) if adopt_reservation else None
            if handle is None:
                logger.info(
                    "Daily reward attempt already in progress",
                    user_id=str(user_id),
                    app_day=app_day.isoformat(),
                )
                return RewardAttemptResult(
                    outcome=RewardAttemptOutcome.CONCURRENT_ATTEMPT_IN_PROGRESS,
                    app_day=app_day,
                    retry_after_seconds=self._retry_after_seconds,
                )
            logger.info(
                "Adopting dangling reward reservation",
                user_id=str(user_id),
                app_day=app_day.isoformat(),
                event_id=str(handle.event_id),
            )

        onchain_state: OnChainRewardState | None = None
        if not skip_on_chain_check and wallet_address:
            onchain_state = await self._reader.last_rewarded_app_day(wallet_address)
            if onchain_state.covers(app_day):
                await self._ledger.release(handle)
                self._report_drift(user_id, wallet_address, app_day, onchain_state)
                return RewardAttemptResult(
                    outcome=RewardAttemptOutcome.ALREADY_REWARDED_ON_CHAIN,
                    app_day=app_day,
                    onchain_state=onchain_state,
                )
            if not onchain_state.is_known:
                self._store.record_onchain_unknown()
                logger.info(
                    "On-chain reward state unknown; continuing ledger-only",
                    user_id=str(user_id),
                    app_day=app_day.isoformat(),
                    error=onchain_state.error,
                )

        streak = await self._ledger.previous_streak(user_id, self._clock.previous(app_day)) + 1
        amount = self._policy.amount_for(streak)
        try:
            event = await self._ledger.confirm(
                handle,
                amount_awarded=amount,
                streak_count=streak,
                source_tx_hash=source_tx_hash,
                completion_source=completion_source,
                onchain_state=onchain_state,
                wallet_address=wallet_address,
                now=now,
            )
        except TransactionAlreadyUsedError:
            await self._ledger.release(handle)
            logger.warning(
                "Reward transaction already used",
                user_id=str(user_id),
                app_day=app_day.isoformat(),
                tx_hash=shorten_hex(source_tx_hash),
            )
            raise

        return RewardAttemptResult(
            outcome=RewardAttemptOutcome.CONFIRMED,
            app_day=app_day,
            event=event,
            onchain_state=onchain_state,
        )

    def _report_drift(
        self,
        user_id: UUID,
        wallet_address: str,
        app_day: AppDay,
        state: OnChainRewardState,
    ) -> None:
        self._store.record_drift("already_rewarded_on_chain")
        if not settings.reward_drift_alerts_enabled:
            return
        logger.warning(
            "Ledger drift: reward already recorded on-chain",
            user_id=str(user_id),
            wallet=shorten_hex(wallet_address),
            app_day=app_day.isoformat(),
            onchain_app_day=state.app_day.isoformat() if state.app_day else None,
            onchain_last_day_start=state.raw_timestamp,
        )


__all__ = [
    "DailyRewardStatus",
    "RecoveryUnavailableError",
    "RecoveryVerificationError",
    "RewardAttemptOutcome",
    "RewardAttemptResult",
    "RewardInputError",
    "RewardReconciliationService",
]
