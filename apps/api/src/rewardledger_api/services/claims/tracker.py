"""Claim voucher lifecycle: ownership, claim recording and expiry."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.core.logging import shorten_hex
from rewardledger_api.models.claims import (
    ClaimVoucher,
    ClaimVoucherStatus,
    RewardPayout,
    RewardPayoutStatus,
)
from rewardledger_api.observability.rewards import RewardObservabilityStore, get_reward_store
from rewardledger_api.services.claims.issuer import (
    PayoutNotFoundError,
    VoucherExpiredError,
    VoucherOwnershipError,
    VoucherStateError,
)
from rewardledger_api.services.claims.signing import ClaimInputError
from rewardledger_api.services.rewards.app_day import ensure_utc
from rewardledger_api.services.rewards.ledger import normalize_tx_hash


class ClaimLifecycleTracker:
    """Track vouchers from issuance to claimed or expired."""

    def __init__(self, session: AsyncSession, *, store: RewardObservabilityStore | None = None) -> None:
        self._db = session
        self._store = store or get_reward_store()

    async def ownership_check(self, payout_id: UUID, caller_user_id: UUID) -> bool:
        payout = await self._get_payout(payout_id)
        return payout.user_id == caller_user_id

    async def active_voucher(self, payout_id: UUID) -> ClaimVoucher | None:
        stmt = select(ClaimVoucher).where(
            ClaimVoucher.payout_id == payout_id,
            ClaimVoucher.status == ClaimVoucherStatus.ISSUED,
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def voucher_history(self, payout_id: UUID) -> list[ClaimVoucher]:
        stmt = (
            select(ClaimVoucher)
            .where(ClaimVoucher.payout_id == payout_id)
            .order_by(ClaimVoucher.generation.asc())
        )
        return list((await self._db.execute(stmt)).scalars().all())

    async def mark_claimed(
        self,
        payout_id: UUID,
        on_chain_tx_hash: str,
        *,
        caller_user_id: UUID,
        now: datetime | None = None,
    ) -> ClaimVoucher:
        """Record that the active voucher was redeemed on-chain.

        Repeating the call after success returns the claimed voucher unchanged.
        """

        if not on_chain_tx_hash:
            raise ClaimInputError("A claim transaction hash is required")
        try:
            on_chain_tx_hash = normalize_tx_hash(on_chain_tx_hash)
        except ValueError as exc:
            raise ClaimInputError(str(exc)) from exc
        current = ensure_utc(now or datetime.now(timezone.utc))

        payout = await self._get_payout(payout_id)
        if payout.user_id != caller_user_id:
            raise VoucherOwnershipError("Payout does not belong to the caller")

        if payout.status == RewardPayoutStatus.COMPLETED:
            claimed = await self._claimed_voucher(payout.id)
            if claimed is not None:
                return claimed
            raise VoucherStateError("Payout is completed but has no claimed voucher")

        voucher = await self.active_voucher(payout.id)
        if voucher is None:
            raise VoucherStateError("Payout has no active voucher")
        if ensure_utc(voucher.deadline) <= current:
            self._store.record_voucher_event("claim_rejected_expired")
            logger.warning(
                "Claim reported for an expired voucher",
                payout_id=str(payout.id),
                nonce=voucher.nonce,
                deadline=ensure_utc(voucher.deadline).isoformat(),
            )
            raise VoucherExpiredError("Voucher deadline has passed")

        result = await self._db.execute(
            update(ClaimVoucher)
            .where(ClaimVoucher.id == voucher.id, ClaimVoucher.status == ClaimVoucherStatus.ISSUED)
            .values(status=ClaimVoucherStatus.CLAIMED, claim_tx_hash=on_chain_tx_hash, claimed_at=current)
            .returning(ClaimVoucher.id)
        )
        if result.scalar_one_or_none() is None:
            await self._db.rollback()
            claimed = await self._claimed_voucher(payout.id)
            if claimed is not None:
                return claimed
            raise VoucherStateError("Voucher changed state before it could be marked claimed")

        payout.status = RewardPayoutStatus.COMPLETED
        payout.claim_tx_hash = on_chain_tx_hash
        payout.completed_at = current
        await self._db.commit()
        await self._db.refresh(voucher)

        self._store.record_voucher_event("claimed")
        logger.info(
            "Claim voucher redeemed",
            payout_id=str(payout.id),
            nonce=voucher.nonce,
            tx_hash=shorten_hex(on_chain_tx_hash),
        )
        return voucher

    async def expire_overdue_vouchers(self, *, now: datetime | None = None, limit: int = 500) -> int:
        """Move ``issued`` vouchers past their deadline to ``expired``."""

        current = ensure_utc(now or datetime.now(timezone.utc))
        candidates = (
            await self._db.execute(
                select(ClaimVoucher.id)
                .where(ClaimVoucher.status == ClaimVoucherStatus.ISSUED, ClaimVoucher.deadline <= current)
                .order_by(ClaimVoucher.deadline.asc())
                .limit(limit)
            )
        ).scalars().all()
        if not candidates:
            self._store.record_sweep("vouchers", 0)
            return 0

        expired = (
            await self._db.execute(
                update(ClaimVoucher)
                .where(ClaimVoucher.id.in_(candidates), ClaimVoucher.status == ClaimVoucherStatus.ISSUED)
                .values(status=ClaimVoucherStatus.EXPIRED, expired_at=current)
                .returning(ClaimVoucher.id)
            )
        ).scalars().all()
        await self._db.commit()

        self._store.record_sweep("vouchers", len(expired))
        logger.info("Expired overdue claim vouchers", expired=len(expired), candidates=len(candidates))
        return len(expired)

    async def _get_payout(self, payout_id: UUID) -> RewardPayout:
        payout = await self._db.get(RewardPayout, payout_id)
        if payout is None:
            raise PayoutNotFoundError(f"Payout {payout_id} not found")
        return payout

    async def _claimed_voucher(self, payout_id: UUID) -> ClaimVoucher | None:
        stmt = (
            select(ClaimVoucher)
            .where(ClaimVoucher.payout_id == payout_id, ClaimVoucher.status == ClaimVoucherStatus.CLAIMED)
            .order_by(ClaimVoucher.generation.desc())
            .limit(1)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()


__all__ = ["ClaimLifecycleTracker"]
