"""Per-member throttle for self-service reward recovery."""

from __future__ import annotations

from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Deque, Dict
from uuid import UUID

from rewardledger_api.core.settings import settings
from rewardledger_api.services.rewards.app_day import ensure_utc
from rewardledger_api.services.rewards.ledger import RewardError


class RecoveryRateLimitedError(RewardError):
    """Raised when a member exhausted their recovery attempts for the window."""

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Too many recovery attempts; wait before trying again")
        self.retry_after_seconds = retry_after_seconds


class RecoveryThrottle:
    """Sliding window of recovery attempts per member, kept in process memory."""

    def __init__(self, *, max_attempts: int, window_seconds: int) -> None:
        self.max_attempts = max_attempts
        self.window = timedelta(seconds=window_seconds)
        self._lock = Lock()
        self._attempts: Dict[UUID, Deque[datetime]] = defaultdict(deque)

    def acquire(self, user_id: UUID, *, now: datetime | None = None) -> None:
        """Count one attempt, raising ``RecoveryRateLimitedError`` once the window is full."""

        current = ensure_utc(now or datetime.now(timezone.utc))
        horizon = current - self.window
        with self._lock:
            attempts = self._attempts[user_id]
            while attempts and attempts[0] <= horizon:
                attempts.popleft()
            if len(attempts) >= self.max_attempts:
                retry_after = attempts[0] + self.window - current
                raise RecoveryRateLimitedError(max(1, int(retry_after.total_seconds())))
            attempts.append(current)

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()


_THROTTLE = RecoveryThrottle(
    max_attempts=settings.reward_recovery_max_attempts,
    window_seconds=settings.reward_recovery_window_seconds,
)


def get_recovery_throttle() -> RecoveryThrottle:
    return _THROTTLE


__all__ = ["RecoveryRateLimitedError", "RecoveryThrottle", "get_recovery_throttle"]
