"""Daily reward ledger service exports."""

from .app_day import AppDay, AppDayClock, ensure_utc, get_app_day_clock  # noqa: F401
from .chain_reader import (  # noqa: F401
    OnChainRewardState,
    OnChainRewardStatus,
    OnChainStateReader,
    RewardContractClient,
    TransactionVerification,
    TransactionVerificationStatus,
    build_default_chain_reader,
)
from .ledger import (  # noqa: F401
    ReservationHandle,
    ReservationOutcome,
    ReservationStatus,
    RewardError,
    RewardLedger,
    StaleReservationError,
    TransactionAlreadyUsedError,
    normalize_tx_hash,
)
from .policy import FlatStreakRewardPolicy, RewardPolicy, build_default_reward_policy  # noqa: F401
from .reconciliation import (  # noqa: F401
    DailyRewardStatus,
    RecoveryUnavailableError,
    RecoveryVerificationError,
    RewardAttemptOutcome,
    RewardAttemptResult,
    RewardInputError,
    RewardReconciliationService,
)
from .throttle import RecoveryRateLimitedError, RecoveryThrottle, get_recovery_throttle  # noqa: F401
