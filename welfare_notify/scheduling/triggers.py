"""
triggers.py — When a scheduled task fires next.

    Every(timedelta(hours=1))          now + interval
    DailyAt(time(7, 0))                next 07:00
    WeeklyAt(0, time(9, 30))           next Monday 09:30  (0 = Monday … 6 = Sunday)
    MonthlyAt(15, time(10, 0))         next 15th at 10:00

Calendar triggers are evaluated in the scheduler timezone (Asia/Seoul by
default) and always return a time strictly after `now`. A MonthlyAt day that
a month does not have (31 in April, 30 in February) skips that month.
"""

from __future__ import annotations

import calendar
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo

from welfare_notify.alerts.models import ReminderSchedule, ScheduleType
from welfare_notify.core.config import settings

LOCAL_TZ = ZoneInfo(settings.SCHEDULER_TIMEZONE)

WEEKDAY_NAMES = ("월", "화", "수", "목", "금", "토", "일")


def parse_time_of_day(value: str) -> time:
    """"07:00" → time(7, 0)."""
    hour, minute = value.strip().split(":")[:2]
    return time(int(hour), int(minute))


class Trigger(ABC):

    @abstractmethod
    def next_fire_after(self, now: datetime) -> datetime:
        """First fire time strictly after `now` (an aware datetime)."""

    @abstractmethod
    def describe(self) -> str:
        ...


@dataclass(frozen=True)
class Every(Trigger):
    interval: timedelta

    def __post_init__(self) -> None:
        if self.interval <= timedelta(0):
            raise ValueError("interval must be positive")

    def next_fire_after(self, now: datetime) -> datetime:
        return now + self.interval

    def describe(self) -> str:
        seconds = int(self.interval.total_seconds())
        if seconds % 3600 == 0:
            return f"every {seconds // 3600}h"
        if seconds % 60 == 0:
            return f"every {seconds // 60}m"
        return f"every {seconds}s"


@dataclass(frozen=True)
class DailyAt(Trigger):
    at: time
    tz: tzinfo = field(default=LOCAL_TZ, compare=False)

    def _at_on(self, day: date) -> datetime:
        return datetime.combine(day, self.at, tzinfo=self.tz)

    def next_fire_after(self, now: datetime) -> datetime:
        local = now.astimezone(self.tz)
        candidate = self._at_on(local.date())
        if candidate <= local:
            candidate = self._at_on(local.date() + timedelta(days=1))
        return candidate

    def describe(self) -> str:
        return f"daily at {self.at.strftime('%H:%M')}"


@dataclass(frozen=True)
class WeeklyAt(Trigger):
    weekday: int
    at: time
    tz: tzinfo = field(default=LOCAL_TZ, compare=False)

    def __post_init__(self) -> None:
        if not 0 <= self.weekday <= 6:
            raise ValueError("weekday must be between 0 (Monday) and 6 (Sunday)")

    def next_fire_after(self, now: datetime) -> datetime:
        local = now.astimezone(self.tz)
        days_ahead = (self.weekday - local.weekday()) % 7
        candidate = datetime.combine(
            local.date() + timedelta(days=days_ahead), self.at, tzinfo=self.tz,
        )
        if candidate <= local:
            candidate = datetime.combine(
                candidate.date() + timedelta(days=7), self.at, tzinfo=self.tz,
            )
        return candidate

    def describe(self) -> str:
        return f"weekly on {WEEKDAY_NAMES[self.weekday]} at {self.at.strftime('%H:%M')}"


@dataclass(frozen=True)
class MonthlyAt(Trigger):
    day: int
    at: time
    tz: tzinfo = field(default=LOCAL_TZ, compare=False)

    def __post_init__(self) -> None:
        if not 1 <= self.day <= 31:
            raise ValueError("day of month must be between 1 and 31")

    def next_fire_after(self, now: datetime) -> datetime:
        local = now.astimezone(self.tz)
        year, month = local.year, local.month
        # 31 is present at least once in any 12-month window
        for _ in range(13):
            if self.day <= calendar.monthrange(year, month)[1]:
                candidate = datetime.combine(date(year, month, self.day), self.at, tzinfo=self.tz)
                if candidate > local:
                    return candidate
            month += 1
            if month > 12:
                year, month = year + 1, 1
        raise RuntimeError(f"no fire time found for day {self.day}")

    def describe(self) -> str:
        return f"monthly on day {self.day} at {self.at.strftime('%H:%M')}"


def trigger_for_reminder(reminder: ReminderSchedule) -> Trigger:
    if reminder.schedule_type is ScheduleType.DAILY:
        return DailyAt(reminder.time_of_day)
    if reminder.schedule_type is ScheduleType.WEEKLY:
        return WeeklyAt(reminder.day, reminder.time_of_day)
    return MonthlyAt(reminder.day, reminder.time_of_day)
