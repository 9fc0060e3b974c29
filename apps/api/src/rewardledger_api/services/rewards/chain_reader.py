"""Read-only access to the reward contract's "last rewarded" state."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Awaitable, Protocol, TypeVar

from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound

from rewardledger_api.core.logging import shorten_hex
from rewardledger_api.core.settings import settings
from rewardledger_api.services.rewards.app_day import AppDay, AppDayClock, get_app_day_clock

T = TypeVar("T")

REWARD_CONTRACT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "lastDayStart",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


class OnChainRewardStatus(str, Enum):
    NEVER_REWARDED = "never_rewarded"
    REWARDED = "rewarded"
    UNKNOWN = "unknown"


class TransactionVerificationStatus(str, Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class OnChainRewardState:
    """Result of the on-chain lookup; ``UNKNOWN`` means the signal is unusable."""

    status: OnChainRewardStatus
    app_day: AppDay | None = None
    raw_timestamp: int | None = None
    error: str | None = None

    @property
    def is_known(self) -> bool:
        return self.status is not OnChainRewardStatus.UNKNOWN

    def covers(self, app_day: AppDay) -> bool:
        """True when the contract already recorded a reward for ``app_day`` or later."""

        return (
            self.status is OnChainRewardStatus.REWARDED
            and self.app_day is not None
            and self.app_day.day >= app_day.day
        )


@dataclass(frozen=True)
class TransactionVerification:
    status: TransactionVerificationStatus
    reason: str | None = None

    @property
    def verified(self) -> bool:
        return self.status is TransactionVerificationStatus.VERIFIED


class RewardContractClient(Protocol):
    """Minimal blockchain RPC surface consumed by the reader."""

    async def last_day_start(self, wallet_address: str) -> int:
        """Return the raw ``lastDayStart`` timestamp recorded for the wallet."""

    async def transaction_succeeded(self, tx_hash: str, wallet_address: str | None) -> bool:
        """Return whether the transaction succeeded against the reward contract."""


class Web3RewardContractClient(RewardContractClient):
    """``web3`` backed client for the reward contract."""

    def __init__(self, *, rpc_url: str, contract_address: str, request_timeout: float) -> None:
        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
        self._contract_address = AsyncWeb3.to_checksum_address(contract_address)
        self._contract = self._w3.eth.contract(address=self._contract_address, abi=REWARD_CONTRACT_ABI)

    async def last_day_start(self, wallet_address: str) -> int:  # pragma: no cover - thin RPC wrapper
        checksum = AsyncWeb3.to_checksum_address(wallet_address)
        value = await self._contract.functions.lastDayStart(checksum).call()
        return int(value)

    async def transaction_succeeded(
        self, tx_hash: str, wallet_address: str | None
    ) -> bool:  # pragma: no cover - thin RPC wrapper
        try:
            receipt = await self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return False
        if receipt.get("status") != 1:
            return False
        recipient = receipt.get("to")
        if not recipient or recipient.lower() != self._contract_address.lower():
            return False
        if wallet_address:
            sender = receipt.get("from") or ""
            return sender.lower() == wallet_address.lower()
        return True


class OnChainStateReader:
    """Translate contract state into app-days; RPC trouble becomes ``UNKNOWN``."""

    def __init__(
        self,
        client: RewardContractClient | None,
        *,
        clock: AppDayClock | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._client = client
        self._clock = clock or get_app_day_clock()
        self._timeout_seconds = timeout_seconds or settings.chain_rpc_timeout_seconds

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def last_rewarded_app_day(self, wallet_address: str) -> OnChainRewardState:
        if self._client is None:
            return OnChainRewardState(status=OnChainRewardStatus.UNKNOWN, error="reader not configured")

        try:
            raw = await self._bounded(self._client.last_day_start(wallet_address))
        except asyncio.TimeoutError:
            logger.warning(
                "Reward contract read timed out",
                wallet=shorten_hex(wallet_address),
                timeout_seconds=self._timeout_seconds,
            )
            return OnChainRewardState(status=OnChainRewardStatus.UNKNOWN, error="timeout")
        except Exception as exc:  # RPC/transport failures of any kind
            logger.warning(
                "Reward contract read failed",
                wallet=shorten_hex(wallet_address),
                error=str(exc),
            )
            return OnChainRewardState(status=OnChainRewardStatus.UNKNOWN, error=str(exc))

        if raw <= 0:
            return OnChainRewardState(status=OnChainRewardStatus.NEVER_REWARDED, raw_timestamp=raw)
        return OnChainRewardState(
            status=OnChainRewardStatus.REWARDED,
            app_day=self._clock.app_day_for_timestamp(raw),
            raw_timestamp=raw,
        )

    async def verify_transaction(self, tx_hash: str, wallet_address: str | None = None) -> TransactionVerification:
        if self._client is None:
            return TransactionVerification(TransactionVerificationStatus.UNKNOWN, "reader not configured")

        try:
            succeeded = await self._bounded(self._client.transaction_succeeded(tx_hash, wallet_address))
        except asyncio.TimeoutError:
            logger.warning("Transaction verification timed out", tx_hash=shorten_hex(tx_hash))
            return TransactionVerification(TransactionVerificationStatus.UNKNOWN, "timeout")
        except Exception as exc:  # RPC/transport failures of any kind
            logger.warning("Transaction verification failed", tx_hash=shorten_hex(tx_hash), error=str(exc))
            return TransactionVerification(TransactionVerificationStatus.UNKNOWN, str(exc))

        if not succeeded:
            return TransactionVerification(
                TransactionVerificationStatus.FAILED,
                "transaction missing, reverted, or not sent to the reward contract",
            )
        return TransactionVerification(TransactionVerificationStatus.VERIFIED)

    async def _bounded(self, call: Awaitable[T]) -> T:
        return await asyncio.wait_for(call, timeout=self._timeout_seconds)


@lru_cache(maxsize=1)
def build_default_chain_reader() -> OnChainStateReader:
    """Wire the reader from settings; unconfigured deployments always answer ``UNKNOWN``."""

    client: RewardContractClient | None = None
    if settings.chain_rpc_url and settings.reward_contract_address:
        client = Web3RewardContractClient(
            rpc_url=settings.chain_rpc_url,
            contract_address=settings.reward_contract_address,
            request_timeout=settings.chain_rpc_timeout_seconds,
        )
    else:
        logger.info("Reward contract reader disabled", reason="chain_rpc_url or reward_contract_address unset")
    return OnChainStateReader(client)


__all__ = [
    "OnChainRewardState",
    "OnChainRewardStatus",
    "OnChainStateReader",
    "REWARD_CONTRACT_ABI",
    "RewardContractClient",
    "TransactionVerification",
    "TransactionVerificationStatus",
    "Web3RewardContractClient",
    "build_default_chain_reader",
]
