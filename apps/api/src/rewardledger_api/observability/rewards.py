from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RewardSnapshot:
    attempts: Dict[str, int]
    recoveries: Dict[str, int]
    drift: Dict[str, int]
    vouchers: Dict[str, int]
    sweeps: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "attempts": dict(self.attempts),
            "recoveries": dict(self.recoveries),
            "drift": dict(self.drift),
            "vouchers": dict(self.vouchers),
            "sweeps": dict(self.sweeps),
        }


class RewardObservabilityStore:
    """Collect reward ledger and claim voucher telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._attempts: Dict[str, int] = defaultdict(int)
        self._recoveries: Dict[str, int] = defaultdict(int)
        self._drift: Dict[str, int] = defaultdict(int)
        self._vouchers: Dict[str, int] = defaultdict(int)
        self._sweeps: Dict[str, int] = defaultdict(int)

    def record_attempt(self, outcome: str) -> None:
        with self._lock:
            self._attempts["total"] += 1
            self._attempts[outcome] += 1

    def record_stale_restart(self) -> None:
        with self._lock:
            self._attempts["stale_restarts"] += 1

    def record_onchain_unknown(self) -> None:
        with self._lock:
            self._attempts["onchain_unknown"] += 1

    def record_recovery(self, source: str, outcome: str) -> None:
        with self._lock:
            self._recoveries[f"{source}:{outcome}"] += 1

    def record_drift(self, kind: str) -> None:
        with self._lock:
            self._drift["total"] += 1
            self._drift[kind] += 1

    def record_voucher_event(self, event: str) -> None:
        with self._lock:
            self._vouchers[event] += 1

    def record_sweep(self, kind: str, count: int) -> None:
        with self._lock:
            self._sweeps[f"{kind}_runs"] += 1
            self._sweeps[f"{kind}_rows"] += count

    def snapshot(self) -> RewardSnapshot:
        with self._lock:
            return RewardSnapshot(
                attempts=dict(self._attempts),
                recoveries=dict(self._recoveries),
                drift=dict(self._drift),
                vouchers=dict(self._vouchers),
                sweeps=dict(self._sweeps),
            )

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()
            self._recoveries.clear()
            self._drift.clear()
            self._vouchers.clear()
            self._sweeps.clear()


_STORE = RewardObservabilityStore()


def get_reward_store() -> RewardObservabilityStore:
    return _STORE


__all__ = ["get_reward_store", "RewardObservabilityStore", "RewardSnapshot"]
