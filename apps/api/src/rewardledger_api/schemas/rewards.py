from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rewardledger_api.models.claims import ClaimVoucher, ClaimVoucherStatus, RewardPayoutStatus
from rewardledger_api.models.rewards import RewardCompletionSource
from rewardledger_api.services.rewards import AppDay, DailyRewardStatus, RewardAttemptResult, ensure_utc


class RewardEventResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    user_id: UUID = Field(..., alias="userId")
    app_day: date = Field(..., alias="appDay")
    wallet_address: str | None = Field(None, alias="walletAddress")
    amount_awarded: int = Field(..., alias="amountAwarded")
    streak_count: int = Field(..., alias="streakCount")
    reserved_at: datetime = Field(..., alias="reservedAt")
    confirmed_at: datetime | None = Field(None, alias="confirmedAt")
    source_tx_hash: str | None = Field(None, alias="sourceTxHash")
    completion_source: RewardCompletionSource | None = Field(None, alias="completionSource")
    onchain_checked_at: datetime | None = Field(None, alias="onchainCheckedAt")
    onchain_last_day_start: int | None = Field(None, alias="onchainLastDayStart")


class DailyRewardRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wallet_address: str | None = Field(None, alias="walletAddress")
    tx_hash: str | None = Field(None, alias="txHash", description="On-chain check-in transaction, when one was sent")


class RecoverRewardRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wallet_address: str | None = Field(None, alias="walletAddress")
    tx_hash: str = Field(..., alias="txHash", min_length=1)


class DailyRewardResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    outcome: str
    app_day: date = Field(..., alias="appDay")
    app_day_starts_at: datetime = Field(..., alias="appDayStartsAt")
    retry_after_seconds: int | None = Field(None, alias="retryAfterSeconds")
    onchain_status: str | None = Field(None, alias="onchainStatus")
    event: RewardEventResponse | None = None

    @classmethod
    def from_result(cls, result: RewardAttemptResult) -> "DailyRewardResponse":
        return cls(
            outcome=result.outcome.value,
            app_day=result.app_day.day,
            app_day_starts_at=result.app_day.starts_at,
            retry_after_seconds=result.retry_after_seconds,
            onchain_status=result.onchain_state.status.value if result.onchain_state else None,
            event=RewardEventResponse.model_validate(result.event) if result.event is not None else None,
        )


class DailyRewardStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    app_day: date = Field(..., alias="appDay")
    app_day_starts_at: datetime = Field(..., alias="appDayStartsAt")
    next_cutover_at: datetime = Field(..., alias="nextCutoverAt")
    rewarded: bool
    reservation_pending: bool = Field(..., alias="reservationPending")
    event: RewardEventResponse | None = None

    @classmethod
    def from_status(cls, status: DailyRewardStatus) -> "DailyRewardStatusResponse":
        app_day: AppDay = status.app_day
        return cls(
            app_day=app_day.day,
            app_day_starts_at=app_day.starts_at,
            next_cutover_at=status.next_cutover,
            rewarded=status.event is not None,
            reservation_pending=status.reservation_pending,
            event=RewardEventResponse.model_validate(status.event) if status.event is not None else None,
        )


class ForceCompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(..., alias="userId")
    wallet_address: str | None = Field(None, alias="walletAddress")
    tx_hash: str | None = Field(None, alias="txHash")


class ReservationCleanupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    older_than_seconds: int | None = Field(None, alias="olderThanSeconds", gt=0)
    limit: int = Field(200, gt=0, le=5000)


class VoucherExpiryRequest(BaseModel):
    limit: int = Field(500, gt=0, le=5000)


class PayoutResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    user_id: UUID = Field(..., alias="userId")
    reward_event_id: UUID | None = Field(None, alias="rewardEventId")
    wallet_address: str = Field(..., alias="walletAddress")
    amount_base_units: str = Field(..., alias="amountBaseUnits")
    token_decimals: int = Field(..., alias="tokenDecimals")
    status: RewardPayoutStatus
    voucher_generation: int = Field(..., alias="voucherGeneration")
    claim_tx_hash: str | None = Field(None, alias="claimTxHash")
    completed_at: datetime | None = Field(None, alias="completedAt")


class PayoutCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(..., alias="userId")
    wallet_address: str = Field(..., alias="walletAddress")
    amount_tokens: Decimal | None = Field(None, alias="amountTokens", gt=0)
    amount_base_units: int | None = Field(None, alias="amountBaseUnits", gt=0)
    token_decimals: int | None = Field(None, alias="tokenDecimals", ge=0, le=36)
    reward_event_id: UUID | None = Field(None, alias="rewardEventId")
    issue_voucher: bool = Field(True, alias="issueVoucher")
    deadline: datetime | None = None


class VoucherResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: UUID
    payout_id: UUID = Field(..., alias="payoutId")
    wallet_address: str = Field(..., alias="walletAddress")
    amount_base_units: str = Field(..., alias="amountBaseUnits")
    nonce: str
    nonce_hash: str = Field(..., alias="nonceHash")
    generation: int
    chain_id: int = Field(..., alias="chainId")
    deadline: datetime
    deadline_timestamp: int | None = Field(None, alias="deadlineTimestamp")
    signature: str
    signer_address: str = Field(..., alias="signerAddress")
    status: ClaimVoucherStatus
    issued_at: datetime = Field(..., alias="issuedAt")
    claim_tx_hash: str | None = Field(None, alias="claimTxHash")
    claimed_at: datetime | None = Field(None, alias="claimedAt")
    expired_at: datetime | None = Field(None, alias="expiredAt")
    superseded_at: datetime | None = Field(None, alias="supersededAt")

    @classmethod
    def from_voucher(cls, voucher: ClaimVoucher) -> "VoucherResponse":
        response = cls.model_validate(voucher)
        response.deadline_timestamp = int(ensure_utc(voucher.deadline).timestamp())
        return response


class PayoutIssueResponse(BaseModel):
    payout: PayoutResponse
    voucher: VoucherResponse | None = None


class ClaimCompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str = Field(..., alias="txHash", min_length=1)
