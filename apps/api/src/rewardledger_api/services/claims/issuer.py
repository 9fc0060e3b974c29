"""Approve payouts and sign their single-use claim vouchers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.core.settings import settings
from rewardledger_api.models.claims import (
    ClaimVoucher,
    ClaimVoucherStatus,
    RewardPayout,
    RewardPayoutStatus,
)
from rewardledger_api.observability.rewards import RewardObservabilityStore, get_reward_store
from rewardledger_api.observability.tracing import get_tracer
from rewardledger_api.services.claims.signing import (
    ClaimError,
    ClaimInputError,
    VoucherPayload,
    nonce_hash,
    normalize_wallet,
    recover_voucher_signer,
    sign_voucher,
    to_base_units,
    voucher_nonce,
)
from rewardledger_api.services.rewards.app_day import ensure_utc
from rewardledger_api.services.secrets.signing_keys import (
    SigningKeyMaterial,
    SigningKeyResolver,
    build_default_signing_key_resolver,
)


class PayoutNotFoundError(ClaimError):
    """Raised when a payout id does not resolve."""


class VoucherOwnershipError(ClaimError):
    """Raised when a caller acts on a payout owned by someone else."""


class VoucherStateError(ClaimError):
    """Raised when a voucher or payout is not in a state that allows the operation."""


class VoucherExpiredError(VoucherStateError):
    """Raised when a voucher is used after its deadline."""


class ClaimVoucherIssuer:
    """Issue and regenerate signed claim vouchers for approved payouts."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        key_resolver: SigningKeyResolver | None = None,
        chain_id: int | None = None,
        voucher_ttl: timedelta | None = None,
        store: RewardObservabilityStore | None = None,
    ) -> None:
        self._db = session
        self._key_resolver = key_resolver or build_default_signing_key_resolver()
        self._chain_id = chain_id or settings.chain_id
        self._voucher_ttl = voucher_ttl or timedelta(days=settings.claim_voucher_ttl_days)
        self._store = store or get_reward_store()

    async def approve_payout(
        self,
        user_id: UUID,
        wallet_address: str,
        *,
        amount_tokens: Decimal | int | str | None = None,
        amount_base_units: int | None = None,
        token_decimals: int | None = None,
        reward_event_id: UUID | None = None,
    ) -> RewardPayout:
        """Record a payout the user may later claim; no voucher is signed yet."""

        if (amount_tokens is None) == (amount_base_units is None):
            raise ClaimInputError("Provide exactly one of amount_tokens or amount_base_units")
        decimals = settings.claim_token_decimals if token_decimals is None else token_decimals
        if amount_base_units is None:
            amount_base_units = to_base_units(amount_tokens, decimals)
        if amount_base_units <= 0:
            raise ClaimInputError("Payout amount must be positive")

        payout = RewardPayout(
            user_id=user_id,
            reward_event_id=reward_event_id,
            wallet_address=normalize_wallet(wallet_address),
            amount_base_units=str(amount_base_units),
            token_decimals=decimals,
            status=RewardPayoutStatus.APPROVED,
            voucher_generation=0,
        )
        self._db.add(payout)
        await self._db.commit()
        await self._db.refresh(payout)
        logger.info(
            "Payout approved",
            payout_id=str(payout.id),
            user_id=str(user_id),
            amount_base_units=payout.amount_base_units,
        )
        return payout

    async def get_payout(self, payout_id: UUID) -> RewardPayout:
        payout = await self._db.get(RewardPayout, payout_id)
        if payout is None:
            raise PayoutNotFoundError(f"Payout {payout_id} not found")
        return payout

    async def issue_voucher(
        self,
        payout_id: UUID,
        *,
        deadline: datetime | None = None,
        now: datetime | None = None,
    ) -> ClaimVoucher:
        """Sign the first voucher for an approved payout."""

        payout = await self.get_payout(payout_id)
        if payout.status == RewardPayoutStatus.COMPLETED:
            raise VoucherStateError("Payout has already been claimed")
        if await self._active_voucher(payout.id) is not None:
            raise VoucherStateError("Payout already has an active voucher; regenerate it instead")

        material = await self._key_resolver.get()
        voucher = await self._sign_and_store(payout, material, deadline=deadline, now=now)
        self._store.record_voucher_event("issued")
        return voucher

    async def regenerate_voucher(
        self,
        payout_id: UUID,
        *,
        caller_user_id: UUID | None = None,
        operator: bool = False,
        now: datetime | None = None,
    ) -> ClaimVoucher:
        """Replace the active voucher with a freshly signed one.

        Only an ``issued`` voucher on a claimable payout can be regenerated; the
        previous voucher is superseded in the same transaction that stores the
        new one, so exactly one voucher stays redeemable.
        """

        payout = await self.get_payout(payout_id)
        if not operator and (caller_user_id is None or payout.user_id != caller_user_id):
            raise VoucherOwnershipError("Payout does not belong to the caller")
        if payout.status != RewardPayoutStatus.CLAIMABLE:
            raise VoucherStateError(f"Payout is {payout.status.value}; only claimable payouts can be regenerated")
        prior = await self._active_voucher(payout.id)
        if prior is None:
            raise VoucherStateError("Payout has no issued voucher to regenerate")

        material = await self._key_resolver.get()
        current = ensure_utc(now or datetime.now(timezone.utc))
        superseded = await self._db.execute(
            update(ClaimVoucher)
            .where(ClaimVoucher.id == prior.id, ClaimVoucher.status == ClaimVoucherStatus.ISSUED)
            .values(status=ClaimVoucherStatus.SUPERSEDED, superseded_at=current)
            .returning(ClaimVoucher.id)
        )
        if superseded.scalar_one_or_none() is None:
            await self._db.rollback()
            raise VoucherStateError("Voucher changed state while regenerating; reload and retry")

        voucher = await self._sign_and_store(payout, material, now=current)
        self._store.record_voucher_event("regenerated")
        logger.info(
            "Claim voucher regenerated",
            payout_id=str(payout.id),
            previous_nonce=prior.nonce,
            nonce=voucher.nonce,
            operator=operator,
        )
        return voucher

    async def _sign_and_store(
        self,
        payout: RewardPayout,
        material: SigningKeyMaterial,
        *,
        deadline: datetime | None = None,
        now: datetime | None = None,
    ) -> ClaimVoucher:
        issued_at = ensure_utc(now or datetime.now(timezone.utc))
        expires_at = ensure_utc(deadline) if deadline else issued_at + self._voucher_ttl
        if expires_at <= issued_at:
            raise ClaimInputError("Voucher deadline must be in the future")

        with get_tracer().start_as_current_span("claims.sign_voucher") as span:
            generation = (
                await self._db.execute(
                    update(RewardPayout)
                    .where(RewardPayout.id == payout.id)
                    .values(voucher_generation=RewardPayout.voucher_generation + 1)
                    .returning(RewardPayout.voucher_generation)
                )
            ).scalar_one()
            nonce = voucher_nonce(payout.id, generation)
            digest_nonce = nonce_hash(nonce)
            payload = VoucherPayload(
                wallet_address=payout.wallet_address,
                amount=payout.amount,
                nonce_hash=digest_nonce,
                chain_id=self._chain_id,
                deadline=int(expires_at.timestamp()),
            )
            signature = sign_voucher(payload, material.private_key)
            if recover_voucher_signer(payload, signature).lower() != material.address.lower():
                await self._db.rollback()
                raise ClaimError("Voucher signature did not recover to the configured signer")

            span.set_attribute("claim.payout_id", str(payout.id))
            span.set_attribute("claim.generation", generation)
            span.set_attribute("claim.chain_id", self._chain_id)

            voucher = ClaimVoucher(
                payout_id=payout.id,
                wallet_address=payload.wallet_address,
                amount_base_units=payout.amount_base_units,
                nonce=nonce,
                nonce_hash="0x" + digest_nonce.hex(),
                generation=generation,
                chain_id=self._chain_id,
                deadline=expires_at,
                signature=signature,
                signer_address=material.address,
                status=ClaimVoucherStatus.ISSUED,
                issued_at=issued_at,
            )
            payout.status = RewardPayoutStatus.CLAIMABLE
            self._db.add(voucher)
            try:
                await self._db.commit()
            except IntegrityError as exc:
                await self._db.rollback()
                raise VoucherStateError("Another voucher became active for this payout") from exc

        await self._db.refresh(voucher)
        logger.info(
            "Claim voucher issued",
            payout_id=str(payout.id),
            generation=generation,
            nonce=nonce,
            chain_id=self._chain_id,
            deadline=expires_at.isoformat(),
            signer=material.address,
        )
        return voucher

    async def _active_voucher(self, payout_id: UUID) -> ClaimVoucher | None:
        stmt = select(ClaimVoucher).where(
            ClaimVoucher.payout_id == payout_id,
            ClaimVoucher.status == ClaimVoucherStatus.ISSUED,
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()


__all__ = [
    "ClaimVoucherIssuer",
    "PayoutNotFoundError",
    "VoucherExpiredError",
    "VoucherOwnershipError",
    "VoucherStateError",
]
