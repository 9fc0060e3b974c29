"""Background workers for reward ledger maintenance."""

from .reservation_cleanup import ReservationCleanupWorker
from .voucher_expiry import VoucherExpiryWorker

__all__ = [
    "ReservationCleanupWorker",
    "VoucherExpiryWorker",
]
