"""Business-day and business-hour arithmetic.

All wall-clock reasoning happens in the calendar's timezone: an instant is
converted to local time before deciding which date or hour it falls in.
Naive datetimes are taken to be UTC.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta

import pytz

from nudge_app.core.config import TIMEZONE, BusinessHours


class BusinessCalendar:
    def __init__(
        self,
        holidays: Iterable[str | date] = (),
        start_hour: int = 9,
        end_hour: int = 17,
        tz_name: str = TIMEZONE,
    ):
        self.holidays: frozenset[date] = frozenset(
            h if isinstance(h, date) else date.fromisoformat(str(h)) for h in holidays
        )
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.tz = pytz.timezone(tz_name)

    @classmethod
    def from_config(cls, holidays: Iterable[str], hours: BusinessHours) -> BusinessCalendar:
        return cls(holidays, start_hour=hours.start, end_hour=hours.end, tz_name=hours.timezone)

    def local(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(self.tz)

    def today(self, now: datetime) -> date:
        return self.local(now).date()

    def _at(self, day: date, hour: int) -> datetime:
        return self.tz.localize(datetime.combine(day, time(hour)))

    def is_business_day(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self.holidays

    def is_business_hour(self, value: datetime) -> bool:
        local = self.local(value)
        return self.is_business_day(local.date()) and self.start_hour <= local.hour < self.end_hour

    def next_business_day(self, day: date) -> date:
        day += timedelta(days=1)
        while not self.is_business_day(day):
            day += timedelta(days=1)
        return day

    # ------------------ Day counting ------------------
    def calendar_days_between(self, today: date, target: date) -> int:
        return (target - today).days

    def business_days_between(self, today: date, target: date) -> int:
        """Signed count of business dates between ``today`` and ``target``.

        Future targets count business dates ``d`` with ``today < d <= target``,
        so a target falling on a weekend or holiday adds nothing for that date.
        Past targets count ``target <= d < today`` and come back negative.
        """
        if target == today:
            return 0
        sign = 1 if target > today else -1
        lo, hi = (today + timedelta(days=1), target) if sign > 0 else (target, today - timedelta(days=1))
        count = 0
        day = lo
        while day <= hi:
            if self.is_business_day(day):
                count += 1
            day += timedelta(days=1)
        return sign * count

    # ------------------ Hour arithmetic ------------------
    def add_business_hours(self, start: datetime, hours: float) -> datetime:
        """Walk forward from ``start`` until ``hours`` business hours have elapsed."""
        current = self.local(start)
        remaining = timedelta(hours=hours)
        while remaining > timedelta(0):
            day = current.date()
            if not self.is_business_day(day) or current.hour >= self.end_hour:
                current = self._at(self.next_business_day(day), self.start_hour)
                continue
            if current.hour < self.start_hour:
                current = self._at(day, self.start_hour)
            available = self._at(day, self.end_hour) - current
            if remaining <= available:
                return current + remaining
            remaining -= available
            current = self._at(self.next_business_day(day), self.start_hour)
        return current

    def business_hours_between(self, start: datetime, end: datetime) -> float:
        """Signed number of business hours in ``[start, end]`` (negative when end < start)."""
        if end < start:
            return -self.business_hours_between(end, start)
        start_l, end_l = self.local(start), self.local(end)
        total = timedelta(0)
        day = start_l.date()
        while day <= end_l.date():
            if self.is_business_day(day):
                lo = max(start_l, self._at(day, self.start_hour))
                hi = min(end_l, self._at(day, self.end_hour))
                if hi > lo:
                    total += hi - lo
            day += timedelta(days=1)
        return total.total_seconds() / 3600.0
