"""
scheduling — Named periodic and calendar tasks.

    triggers  — Every / DailyAt / WeeklyAt / MonthlyAt with explicit next-fire times
    runner    — ScheduleRunner: register, start, stop, restart, status
    jobs      — the standing schedule and per-recipient reminder tasks
"""

from .triggers import DailyAt, Every, MonthlyAt, Trigger, WeeklyAt
from .runner import ScheduleRunner, ScheduledTask

__all__ = [
    "Trigger",
    "Every",
    "DailyAt",
    "WeeklyAt",
    "MonthlyAt",
    "ScheduleRunner",
    "ScheduledTask",
]
