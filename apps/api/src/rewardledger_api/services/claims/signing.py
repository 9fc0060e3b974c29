"""Canonical claim-voucher encoding and personal-message signatures.

The contract verifies ``keccak256(abi.encodePacked(wallet, amount, nonce,
chainId, deadline))`` wrapped in the EIP-191 personal-message prefix, so
encoding and field order here must never drift from the Solidity side.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, localcontext

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

VOUCHER_ABI_TYPES: tuple[str, ...] = ("address", "uint256", "bytes32", "uint256", "uint256")


class ClaimError(RuntimeError):
    """Base exception for payout and claim voucher failures."""


class ClaimInputError(ClaimError):
    """Raised when a payout or voucher request carries invalid data."""


@dataclass(frozen=True)
class VoucherPayload:
    wallet_address: str
    amount: int
    nonce_hash: bytes
    chain_id: int
    deadline: int

    def __post_init__(self) -> None:
        if len(self.nonce_hash) != 32:
            raise ClaimInputError("Voucher nonce must be 32 bytes")
        if self.amount <= 0:
            raise ClaimInputError("Voucher amount must be positive")


def to_base_units(amount: Decimal | int | str, decimals: int) -> int:
    """Convert a token amount to integer base units without float rounding."""

    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ClaimInputError(f"Invalid token amount: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise ClaimInputError("Token amount must be a positive number")
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ClaimInputError(f"Token amount has more than {decimals} decimal places")
        return int(scaled)


def normalize_wallet(wallet_address: str) -> str:
    if not wallet_address or not Web3.is_address(wallet_address):
        raise ClaimInputError("A valid wallet address is required")
    return Web3.to_checksum_address(wallet_address)


def voucher_nonce(payout_id: object, generation: int) -> str:
    return f"{payout_id}:{generation}"


def nonce_hash(nonce: str) -> bytes:
    return bytes(Web3.keccak(text=nonce))


def voucher_digest(payload: VoucherPayload) -> bytes:
    return bytes(
        Web3.solidity_keccak(
            list(VOUCHER_ABI_TYPES),
            [
                normalize_wallet(payload.wallet_address),
                payload.amount,
                payload.nonce_hash,
                payload.chain_id,
                payload.deadline,
            ],
        )
    )


def sign_voucher(payload: VoucherPayload, private_key: str) -> str:
    message = encode_defunct(primitive=voucher_digest(payload))
    signed = Account.sign_message(message, private_key=private_key)
    return Web3.to_hex(signed.signature)


def recover_voucher_signer(payload: VoucherPayload, signature: str) -> str:
    message = encode_defunct(primitive=voucher_digest(payload))
    return Account.recover_message(message, signature=signature)


__all__ = [
    "ClaimError",
    "ClaimInputError",
    "VOUCHER_ABI_TYPES",
    "VoucherPayload",
    "nonce_hash",
    "normalize_wallet",
    "recover_voucher_signer",
    "sign_voucher",
    "to_base_units",
    "voucher_digest",
    "voucher_nonce",
]
