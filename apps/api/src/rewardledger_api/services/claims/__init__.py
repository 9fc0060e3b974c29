"""Claim voucher service exports."""

from .issuer import (  # noqa: F401
    ClaimVoucherIssuer,
    PayoutNotFoundError,
    VoucherExpiredError,
    VoucherOwnershipError,
    VoucherStateError,
)
from .signing import (  # noqa: F401
    ClaimError,
    ClaimInputError,
    VoucherPayload,
    nonce_hash,
    recover_voucher_signer,
    sign_voucher,
    to_base_units,
    voucher_digest,
    voucher_nonce,
)
from .tracker import ClaimLifecycleTracker  # noqa: F401
