"""Member endpoints for the daily reward."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from rewardledger_api.api.dependencies.services import get_chain_reader
from rewardledger_api.api.dependencies.session import require_member_session
from rewardledger_api.db.session import get_session
from rewardledger_api.models.user import User
from rewardledger_api.schemas.rewards import (
    DailyRewardRequest,
    DailyRewardResponse,
    DailyRewardStatusResponse,
    RecoverRewardRequest,
)
from rewardledger_api.services.rewards import (
    OnChainStateReader,
    RecoveryRateLimitedError,
    RecoveryUnavailableError,
    RecoveryVerificationError,
    RewardAttemptOutcome,
    RewardAttemptResult,
    RewardError,
    RewardInputError,
    RewardReconciliationService,
    StaleReservationError,
    TransactionAlreadyUsedError,
)


router = APIRouter(prefix="/rewards", tags=["Rewards"])


def _raise_for_reward_error(exc: RewardError) -> None:
    if isinstance(exc, RewardInputError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, TransactionAlreadyUsedError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, RecoveryRateLimitedError):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from exc
    if isinstance(exc, RecoveryVerificationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, (RecoveryUnavailableError, StaleReservationError)):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": "5"},
        ) from exc
    raise exc


def _render(result: RewardAttemptResult, response: Response) -> DailyRewardResponse:
    if result.outcome is RewardAttemptOutcome.CONCURRENT_ATTEMPT_IN_PROGRESS:
        response.status_code = status.HTTP_202_ACCEPTED
        if result.retry_after_seconds:
            response.headers["Retry-After"] = str(result.retry_after_seconds)
    return DailyRewardResponse.from_result(result)


@router.post("/daily", response_model=DailyRewardResponse, summary="Attempt today's reward")
async def attempt_daily_reward(
    payload: DailyRewardRequest,
    response: Response,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    reader: OnChainStateReader = Depends(get_chain_reader),
) -> DailyRewardResponse:
    service = RewardReconciliationService(db, reader=reader)
    try:
        result = await service.attempt_daily_reward(
            user.id,
            wallet_address=payload.wallet_address,
            source_tx_hash=payload.tx_hash,
        )
    except RewardError as exc:
        _raise_for_reward_error(exc)
    return _render(result, response)


@router.get("/daily/status", response_model=DailyRewardStatusResponse, summary="Today's reward status")
async def get_daily_reward_status(
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    reader: OnChainStateReader = Depends(get_chain_reader),
) -> DailyRewardStatusResponse:
    service = RewardReconciliationService(db, reader=reader)
    return DailyRewardStatusResponse.from_status(await service.daily_status(user.id))


@router.post("/recover", response_model=DailyRewardResponse, summary="Recover a reward stuck after its transaction")
async def recover_stuck_reward(
    payload: RecoverRewardRequest,
    response: Response,
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    reader: OnChainStateReader = Depends(get_chain_reader),
) -> DailyRewardResponse:
    service = RewardReconciliationService(db, reader=reader)
    try:
        result = await service.recover_stuck_reward(user.id, payload.wallet_address, payload.tx_hash)
    except RewardError as exc:
        _raise_for_reward_error(exc)
    return _render(result, response)
