"""Member endpoints for claim vouchers."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.api.dependencies.services import get_signing_key_resolver
from rewardledger_api.api.dependencies.session import require_member_session
from rewardledger_api.db.session import get_session
from rewardledger_api.models.user import User
from rewardledger_api.schemas.rewards import ClaimCompleteRequest, VoucherResponse
from rewardledger_api.services.claims import (
    ClaimError,
    ClaimInputError,
    ClaimLifecycleTracker,
    ClaimVoucherIssuer,
    PayoutNotFoundError,
    VoucherExpiredError,
    VoucherOwnershipError,
    VoucherStateError,
)
from rewardledger_api.services.secrets.signing_keys import SigningKeyResolver, SigningKeyUnavailableError


router = APIRouter(prefix="/claims", tags=["Claims"])


def raise_for_claim_error(exc: Exception) -> None:
    if isinstance(exc, PayoutNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payout not found") from exc
    if isinstance(exc, VoucherOwnershipError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, VoucherExpiredError):
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=str(exc)) from exc
    if isinstance(exc, VoucherStateError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, ClaimInputError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, SigningKeyUnavailableError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Claim signing is unavailable",
        ) from exc
    raise exc


@router.get("/payouts/{payout_id}/voucher", response_model=VoucherResponse, summary="Active claim voucher")
async def get_active_voucher(
    payout_id: UUID,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> VoucherResponse:
    tracker = ClaimLifecycleTracker(db)
    try:
        if not await tracker.ownership_check(payout_id, user.id):
            raise VoucherOwnershipError("Payout does not belong to the caller")
    except ClaimError as exc:
        raise_for_claim_error(exc)
    voucher = await tracker.active_voucher(payout_id)
    if voucher is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active voucher for payout")
    return VoucherResponse.from_voucher(voucher)


@router.get("/payouts/{payout_id}/vouchers", response_model=list[VoucherResponse], summary="Voucher history")
async def list_vouchers(
    payout_id: UUID,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> list[VoucherResponse]:
    tracker = ClaimLifecycleTracker(db)
    try:
        if not await tracker.ownership_check(payout_id, user.id):
            raise VoucherOwnershipError("Payout does not belong to the caller")
    except ClaimError as exc:
        raise_for_claim_error(exc)
    return [VoucherResponse.from_voucher(voucher) for voucher in await tracker.voucher_history(payout_id)]


@router.post(
    "/payouts/{payout_id}/voucher/regenerate",
    response_model=VoucherResponse,
    summary="Replace the active voucher with a fresh signature",
)
async def regenerate_voucher(
    payout_id: UUID,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    key_resolver: SigningKeyResolver = Depends(get_signing_key_resolver),
) -> VoucherResponse:
    issuer = ClaimVoucherIssuer(db, key_resolver=key_resolver)
    try:
        voucher = await issuer.regenerate_voucher(payout_id, caller_user_id=user.id)
    except (ClaimError, SigningKeyUnavailableError) as exc:
        raise_for_claim_error(exc)
    return VoucherResponse.from_voucher(voucher)


@router.post("/payouts/{payout_id}/claimed", response_model=VoucherResponse, summary="Record an on-chain claim")
async def mark_payout_claimed(
    payout_id: UUID,
    payload: ClaimCompleteRequest,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> VoucherResponse:
    tracker = ClaimLifecycleTracker(db)
    try:
        voucher = await tracker.mark_claimed(payout_id, payload.tx_hash, caller_user_id=user.id)
    except ClaimError as exc:
        raise_for_claim_error(exc)
    return VoucherResponse.from_voucher(voucher)
