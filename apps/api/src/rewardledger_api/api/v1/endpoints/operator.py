"""Operator endpoints for reward recovery and payout management."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.api.dependencies.security import require_operator_api_key
from rewardledger_api.api.dependencies.services import get_chain_reader, get_signing_key_resolver
from rewardledger_api.api.v1.endpoints.claims import raise_for_claim_error
from rewardledger_api.db.session import get_session
from rewardledger_api.models.user import User
from rewardledger_api.schemas.rewards import (
    DailyRewardResponse,
    ForceCompleteRequest,
    PayoutCreateRequest,
    PayoutIssueResponse,
    PayoutResponse,
    ReservationCleanupRequest,
    VoucherExpiryRequest,
    VoucherResponse,
)
from rewardledger_api.services.claims import ClaimError, ClaimLifecycleTracker, ClaimVoucherIssuer
from rewardledger_api.services.rewards import (
    OnChainStateReader,
    RewardInputError,
    RewardReconciliationService,
    StaleReservationError,
    TransactionAlreadyUsedError,
)
from rewardledger_api.services.secrets.signing_keys import SigningKeyResolver, SigningKeyUnavailableError


router = APIRouter(prefix="/operator", tags=["Operator"])


async def _require_user(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.post("/rewards/force-complete", response_model=DailyRewardResponse, summary="Force-complete today's reward")
async def force_complete_reward(
    payload: ForceCompleteRequest,
    operator: str = Depends(require_operator_api_key),
    db: AsyncSession = Depends(get_session),
    reader: OnChainStateReader = Depends(get_chain_reader),
) -> DailyRewardResponse:
    await _require_user(db, payload.user_id)
    service = RewardReconciliationService(db, reader=reader)
    try:
        result = await service.force_complete_reward(
            payload.user_id,
            wallet_address=payload.wallet_address,
            tx_hash=payload.tx_hash,
            operator=operator,
        )
    except RewardInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TransactionAlreadyUsedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except StaleReservationError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return DailyRewardResponse.from_result(result)


@router.post("/rewards/cleanup", summary="Release abandoned reward reservations")
async def cleanup_reservations(
    payload: ReservationCleanupRequest,
    operator: str = Depends(require_operator_api_key),
    db: AsyncSession = Depends(get_session),
    reader: OnChainStateReader = Depends(get_chain_reader),
) -> dict[str, int]:
    service = RewardReconciliationService(db, reader=reader)
    released = await service.sweep_stale_reservations(
        older_than_seconds=payload.older_than_seconds,
        limit=payload.limit,
    )
    logger.info("Operator reservation cleanup", operator=operator, released=released)
    return {"released": released}


@router.post(
    "/payouts",
    response_model=PayoutIssueResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Approve a payout and optionally issue its voucher",
)
async def create_payout(
    payload: PayoutCreateRequest,
    operator: str = Depends(require_operator_api_key),
    db: AsyncSession = Depends(get_session),
    key_resolver: SigningKeyResolver = Depends(get_signing_key_resolver),
) -> PayoutIssueResponse:
    await _require_user(db, payload.user_id)
    issuer = ClaimVoucherIssuer(db, key_resolver=key_resolver)
    try:
        payout = await issuer.approve_payout(
            payload.user_id,
            payload.wallet_address,
            amount_tokens=payload.amount_tokens,
            amount_base_units=payload.amount_base_units,
            token_decimals=payload.token_decimals,
            reward_event_id=payload.reward_event_id,
        )
        voucher = None
        if payload.issue_voucher:
            voucher = await issuer.issue_voucher(payout.id, deadline=payload.deadline)
            await db.refresh(payout)
    except (ClaimError, SigningKeyUnavailableError) as exc:
        raise_for_claim_error(exc)

    logger.info("Operator approved payout", operator=operator, payout_id=str(payout.id))
    return PayoutIssueResponse(
        payout=PayoutResponse.model_validate(payout),
        voucher=VoucherResponse.from_voucher(voucher) if voucher is not None else None,
    )


@router.post("/payouts/{payout_id}/voucher", response_model=VoucherResponse, summary="Issue a voucher for a payout")
async def issue_voucher(
    payout_id: UUID,
    operator: str = Depends(require_operator_api_key),
    db: AsyncSession = Depends(get_session),
    key_resolver: SigningKeyResolver = Depends(get_signing_key_resolver),
) -> VoucherResponse:
    issuer = ClaimVoucherIssuer(db, key_resolver=key_resolver)
    try:
        voucher = await issuer.issue_voucher(payout_id)
    except (ClaimError, SigningKeyUnavailableError) as exc:
        raise_for_claim_error(exc)
    logger.info("Operator issued voucher", operator=operator, payout_id=str(payout_id))
    return VoucherResponse.from_voucher(voucher)


@router.post(
    "/payouts/{payout_id}/regenerate",
    response_model=VoucherResponse,
    summary="Regenerate the active voucher for a payout",
)
async def regenerate_voucher(
    payout_id: UUID,
    operator: str = Depends(require_operator_api_key),
    db: AsyncSession = Depends(get_session),
    key_resolver: SigningKeyResolver = Depends(get_signing_key_resolver),
) -> VoucherResponse:
    issuer = ClaimVoucherIssuer(db, key_resolver=key_resolver)
    try:
        voucher = await issuer.regenerate_voucher(payout_id, operator=True)
    except (ClaimError, SigningKeyUnavailableError) as exc:
        raise_for_claim_error(exc)
    logger.info("Operator regenerated voucher", operator=operator, payout_id=str(payout_id))
    return VoucherResponse.from_voucher(voucher)


@router.get("/payouts/{payout_id}/vouchers", response_model=list[VoucherResponse], summary="Voucher history")
async def list_vouchers(
    payout_id: UUID,
    operator: str = Depends(require_operator_api_key),
    db: AsyncSession = Depends(get_session),
) -> list[VoucherResponse]:
    tracker = ClaimLifecycleTracker(db)
    return [VoucherResponse.from_voucher(voucher) for voucher in await tracker.voucher_history(payout_id)]


@router.post("/vouchers/expire", summary="Expire vouchers past their deadline")
async def expire_vouchers(
    payload: VoucherExpiryRequest,
    operator: str = Depends(require_operator_api_key),
    db: AsyncSession = Depends(get_session),
) -> dict[str, int]:
    tracker = ClaimLifecycleTracker(db)
    expired = await tracker.expire_overdue_vouchers(limit=payload.limit)
    logger.info("Operator voucher expiry", operator=operator, expired=expired)
    return {"expired": expired}
