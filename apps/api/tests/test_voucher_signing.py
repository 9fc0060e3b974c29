from dataclasses import replace
from decimal import Decimal
from uuid import UUID

import pytest
from eth_account import Account

from rewardledger_api.services.claims.signing import (
    ClaimInputError,
    VoucherPayload,
    nonce_hash,
    normalize_wallet,
    recover_voucher_signer,
    sign_voucher,
    to_base_units,
    voucher_digest,
    voucher_nonce,
)

WALLET = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"


@pytest.fixture
def payload() -> VoucherPayload:
    return VoucherPayload(
        wallet_address=WALLET,
        amount=to_base_units("12.5", 18),
        nonce_hash=nonce_hash(voucher_nonce(UUID("6f1c1ad4-8a51-4a0e-9f8e-3d7c3a8b2f10"), 1)),
        chain_id=8453,
        deadline=1_780_000_000,
    )


@pytest.mark.parametrize(
    ("amount", "decimals", "expected"),
    [
        ("1", 18, 10**18),
        ("0.000000000000000001", 18, 1),
        (Decimal("12.5"), 6, 12_500_000),
        (3, 0, 3),
        ("123456789012345678901234567890.5", 1, 1234567890123456789012345678905),
    ],
)
def test_to_base_units_is_exact(amount, decimals, expected) -> None:
    assert to_base_units(amount, decimals) == expected


@pytest.mark.parametrize("amount", ["0", "-1", "1.0000001", "abc", "NaN"])
def test_to_base_units_rejects_invalid_amounts(amount) -> None:
    with pytest.raises(ClaimInputError):
        to_base_units(amount, 6)


def test_nonce_is_payout_and_generation() -> None:
    payout_id = UUID("6f1c1ad4-8a51-4a0e-9f8e-3d7c3a8b2f10")
    assert voucher_nonce(payout_id, 3) == "6f1c1ad4-8a51-4a0e-9f8e-3d7c3a8b2f10:3"
    assert nonce_hash(voucher_nonce(payout_id, 3)) != nonce_hash(voucher_nonce(payout_id, 4))
    assert len(nonce_hash("anything")) == 32


def test_signature_recovers_signer(payload, signer_key) -> None:
    signature = sign_voucher(payload, signer_key)

    assert signature.startswith("0x")
    assert recover_voucher_signer(payload, signature) == Account.from_key(signer_key).address


def test_checksum_and_lowercase_wallet_sign_identically(payload, signer_key) -> None:
    checksummed = replace(payload, wallet_address=normalize_wallet(WALLET))

    assert voucher_digest(checksummed) == voucher_digest(payload)


@pytest.mark.parametrize(
    "changes",
    [
        {"wallet_address": "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"},
        {"amount": 12_500_000_000_000_000_001},
        {"nonce_hash": nonce_hash("other-payout:1")},
        {"chain_id": 1},
        {"deadline": 1_780_000_001},
    ],
)
def test_any_field_change_invalidates_signature(payload, signer_key, changes) -> None:
    signature = sign_voucher(payload, signer_key)
    tampered = replace(payload, **changes)

    assert recover_voucher_signer(tampered, signature) != Account.from_key(signer_key).address


def test_payload_validation() -> None:
    with pytest.raises(ClaimInputError):
        VoucherPayload(wallet_address=WALLET, amount=1, nonce_hash=b"short", chain_id=1, deadline=1)
    with pytest.raises(ClaimInputError):
        VoucherPayload(wallet_address=WALLET, amount=0, nonce_hash=b"\x00" * 32, chain_id=1, deadline=1)
    with pytest.raises(ClaimInputError):
        normalize_wallet("not-a-wallet")
