"""Pluggable reward amount calculation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from rewardledger_api.core.settings import settings


class RewardPolicy(Protocol):
    """Decides the amount credited for a confirmed daily reward."""

    def amount_for(self, streak_count: int) -> int:
        """Return the points awarded for a day that extends the streak to ``streak_count``."""


@dataclass(frozen=True)
class FlatStreakRewardPolicy:
    """Flat daily amount plus an optional bonus per consecutive day after the first."""

    base_points: int
    streak_bonus_points: int = 0
    max_bonus_days: int = 6

    def amount_for(self, streak_count: int) -> int:
        bonus_days = max(0, min(streak_count - 1, self.max_bonus_days))
        return self.base_points + bonus_days * self.streak_bonus_points


def build_default_reward_policy() -> RewardPolicy:
    return FlatStreakRewardPolicy(
        base_points=settings.daily_reward_points,
        streak_bonus_points=settings.reward_streak_bonus_points,
    )


__all__ = ["FlatStreakRewardPolicy", "RewardPolicy", "build_default_reward_policy"]
