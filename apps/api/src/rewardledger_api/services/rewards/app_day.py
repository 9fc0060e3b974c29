"""App-day boundary calculations shared by the ledger and the on-chain reader.

An app-day starts at a fixed cutover hour in a fixed reference offset (08:00
at UTC-8 by default). It is deliberately not the user's local midnight and not
midnight UTC, and it does not follow daylight saving: the same instant always
maps to the same app-day regardless of who asks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache

from rewardledger_api.core.settings import settings


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are interpreted as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, order=True)
class AppDay:
    """Canonical reward period keyed by the calendar date of its cutover."""

    day: date
    starts_at: datetime

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(days=1)

    @property
    def start_timestamp(self) -> int:
        return int(self.starts_at.timestamp())

    def isoformat(self) -> str:
        return self.day.isoformat()


class AppDayClock:
    """Pure mapping between wall-clock instants and app-days."""

    def __init__(self, *, cutover_hour: int, utc_offset_hours: int) -> None:
        if not 0 <= cutover_hour <= 23:
            raise ValueError("cutover_hour must be between 0 and 23")
        self.cutover_hour = cutover_hour
        self.reference_zone = timezone(timedelta(hours=utc_offset_hours))

    def current_app_day(self, now: datetime | None = None) -> AppDay:
        instant = ensure_utc(now or datetime.now(timezone.utc))
        local = instant.astimezone(self.reference_zone)
        calendar_day = local.date()
        if local.hour < self.cutover_hour:
            calendar_day -= timedelta(days=1)
        return AppDay(day=calendar_day, starts_at=self._start_for(calendar_day))

    def app_day_start(self, app_day: AppDay | date) -> datetime:
        calendar_day = app_day.day if isinstance(app_day, AppDay) else app_day
        return self._start_for(calendar_day)

    def app_day_for_date(self, calendar_day: date) -> AppDay:
        return AppDay(day=calendar_day, starts_at=self._start_for(calendar_day))

    def app_day_for_timestamp(self, unix_seconds: int) -> AppDay:
        return self.current_app_day(datetime.fromtimestamp(unix_seconds, tz=timezone.utc))

    def previous(self, app_day: AppDay) -> AppDay:
        return self.app_day_for_date(app_day.day - timedelta(days=1))

    def next_cutover(self, now: datetime | None = None) -> datetime:
        return self.current_app_day(now).ends_at

    def _start_for(self, calendar_day: date) -> datetime:
        local_start = datetime.combine(calendar_day, time(hour=self.cutover_hour), tzinfo=self.reference_zone)
        return local_start.astimezone(timezone.utc)


@lru_cache(maxsize=1)
def get_app_day_clock() -> AppDayClock:
    return AppDayClock(
        cutover_hour=settings.reward_day_cutover_hour,
        utc_offset_hours=settings.reward_day_utc_offset_hours,
    )


__all__ = ["AppDay", "AppDayClock", "ensure_utc", "get_app_day_clock"]
