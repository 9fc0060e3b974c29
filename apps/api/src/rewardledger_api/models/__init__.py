"""SQLAlchemy models package."""

# Import all models
from .user import User, UserRoleEnum  # noqa: F401
from .rewards import RewardCompletionSource, RewardEvent  # noqa: F401
from .claims import (  # noqa: F401
    ClaimVoucher,
    ClaimVoucherStatus,
    RewardPayout,
    RewardPayoutStatus,
)
