"""
test_jobs.py — Standing schedule actions and custom reminder wiring.

Run with:
    pytest tests/test_jobs.py -v
"""

from __future__ import annotations

import asyncio
from datetime import time, timedelta
from unittest.mock import ANY, MagicMock

import pytest

from welfare_notify.alerts.channels.sms_gateway import SendResult
from welfare_notify.alerts.dispatcher import Dispatcher
from welfare_notify.alerts.emergency_monitor import TASK_NAME as EMERGENCY_TASK
from welfare_notify.alerts.emergency_monitor import EmergencyMonitor
from welfare_notify.alerts.models import (
    DispatchStatus,
    MessageType,
    Recipient,
    ReminderSchedule,
    ScheduleType,
)
from welfare_notify.alerts.store import RecipientDirectory, ReminderRegistry
from welfare_notify.core.errors import DataUnavailableError, ReminderLimitError
from welfare_notify.ingestion.models import AirQualityRecord, StationReading, WeatherRecord
from welfare_notify.scheduling import jobs as jobs_module
from welfare_notify.scheduling.jobs import SchedulerJobs
from welfare_notify.scheduling.runner import ScheduleRunner
from welfare_notify.scheduling.triggers import DailyAt, WeeklyAt


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

class StubDataService:
    def __init__(self, weather=None, air=None, weather_error=None, air_error=None):
        self.weather = weather or WeatherRecord(
            temperature=25, min_temperature=18, max_temperature=30, condition="맑음", region="유성구",
        )
        self.air = air or AirQualityRecord(
            stations={"노은동": StationReading("노은동", pm10_grade=3)}, region="유성구",
        )
        self.weather_error = weather_error
        self.air_error = air_error
        self.forced = []
        self.cleanups = 0

    async def get_weather(self, force_refresh=False):
        if force_refresh:
            self.forced.append("weather")
        if self.weather_error:
            raise self.weather_error
        return self.weather

    async def get_air_quality(self, force_refresh=False):
        if force_refresh:
            self.forced.append("air_quality")
        if self.air_error:
            raise self.air_error
        return self.air

    async def get_emergency_alerts(self):
        return []

    async def cleanup_expired_cache(self):
        self.cleanups += 1
        return 2


class RecordingGateway:
    def __init__(self):
        self.sent = []

    async def send_one(self, phone_number, text):
        self.sent.append((phone_number, text))
        return SendResult(succeeded=True, status_code=202)

    async def send_with_retry(self, phone_number, text):
        return await self.send_one(phone_number, text)


def _unavailable(data_type):
    return DataUnavailableError(data_type, "fetch and cache both failed")


def _make_jobs(clock, fake_sleep, *, data=None, runner=None, recipients=2):
    gateway = RecordingGateway()
    directory = RecipientDirectory()
    for i in range(recipients):
        directory.add(Recipient(f"R{i}", f"주민{i}", f"010-7777-{i:04d}"))
    data = data or StubDataService()
    dispatcher = Dispatcher(gateway, sleep=fake_sleep, clock=clock)
    monitor = EmergencyMonitor(data, dispatcher, directory, clock=clock, sleep=fake_sleep)
    jobs = SchedulerJobs(
        runner or MagicMock(), data, dispatcher, directory, ReminderRegistry(max_per_recipient=5),
        monitor, clock=clock,
    )
    return jobs, gateway


def _reminder(recipient_id="R0", schedule_type=ScheduleType.DAILY, day=None, title="약 복용"):
    return ReminderSchedule(
        recipient_id=recipient_id,
        title=title,
        message="혈압약 드실 시간입니다.",
        schedule_type=schedule_type,
        time_of_day=time(8, 30),
        day=day,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Daily weather
# ═══════════════════════════════════════════════════════════════════════════

class TestDailyWeather:

    def test_sent_to_every_active_recipient(self, clock, fake_sleep):
        jobs, gateway = _make_jobs(clock, fake_sleep, recipients=3)

        result = asyncio.run(jobs.send_daily_weather())

        assert result.success_count == 3
        text = gateway.sent[0][1]
        assert "18~30도" in text
        assert "미세먼지 '나쁨'" in text

    def test_skipped_when_weather_unavailable(self, clock, fake_sleep):
        data = StubDataService(weather_error=_unavailable("weather"))
        jobs, gateway = _make_jobs(clock, fake_sleep, data=data)

        assert asyncio.run(jobs.send_daily_weather()) is None
        assert gateway.sent == []

    def test_sent_without_air_quality(self, clock, fake_sleep):
        data = StubDataService(air_error=_unavailable("air_quality"))
        jobs, gateway = _make_jobs(clock, fake_sleep, data=data)

        result = asyncio.run(jobs.send_daily_weather())

        assert result.success_count == 2
        assert "미세먼지" not in gateway.sent[0][1]

    def test_skipped_without_recipients(self, clock, fake_sleep):
        jobs, gateway = _make_jobs(clock, fake_sleep, recipients=0)
        assert asyncio.run(jobs.send_daily_weather()) is None


# ═══════════════════════════════════════════════════════════════════════════
# Weather risk
# ═══════════════════════════════════════════════════════════════════════════

class TestWeatherRisk:

    def test_heatwave_from_daily_maximum(self):
        text = SchedulerJobs.assess_weather_risk(
            WeatherRecord(temperature=29, max_temperature=34, region="유성구"),
        )
        assert text.startswith("[폭염경보]")
        assert "34도" in text

    def test_coldwave_from_daily_minimum(self):
        text = SchedulerJobs.assess_weather_risk(
            WeatherRecord(temperature=-8, min_temperature=-13, region="유성구"),
        )
        assert text.startswith("[한파경보]")
        assert "-13도" in text

    def test_normal_range(self):
        assert SchedulerJobs.assess_weather_risk(
            WeatherRecord(temperature=20, min_temperature=12, max_temperature=26),
        ) is None

    def test_missing_temperatures(self):
        assert SchedulerJobs.assess_weather_risk(WeatherRecord()) is None

    def test_warning_sent_as_emergency(self, clock, fake_sleep):
        data = StubDataService(weather=WeatherRecord(temperature=35, region="유성구"))
        jobs, gateway = _make_jobs(clock, fake_sleep, data=data)

        result = asyncio.run(jobs.check_weather_risk())

        job = jobs.dispatcher.log.get_job(result.message_id)
        assert job.message_type is MessageType.EMERGENCY
        assert job.title == "긴급알림: 폭염"
        assert len(gateway.sent) == 2

    def test_nothing_sent_in_normal_weather(self, clock, fake_sleep):
        jobs, gateway = _make_jobs(clock, fake_sleep)
        assert asyncio.run(jobs.check_weather_risk()) is None
        assert gateway.sent == []


# ═══════════════════════════════════════════════════════════════════════════
# Collection, cleanup and scheduled messages
# ═══════════════════════════════════════════════════════════════════════════

class TestMaintenanceActions:

    def test_collection_forces_refresh(self, clock, fake_sleep):
        jobs, _ = _make_jobs(clock, fake_sleep)

        asyncio.run(jobs.collect_weather())
        asyncio.run(jobs.collect_air_quality())

        assert jobs.data_service.forced == ["weather", "air_quality"]

    def test_collection_failure_is_logged_not_raised(self, clock, fake_sleep):
        data = StubDataService(weather_error=_unavailable("weather"))
        jobs, _ = _make_jobs(clock, fake_sleep, data=data)
        asyncio.run(jobs.collect_weather())

    def test_cleanup(self, clock, fake_sleep):
        jobs, _ = _make_jobs(clock, fake_sleep)
        assert asyncio.run(jobs.cleanup_cache()) == 2

    def test_due_scheduled_message_sent_once(self, clock, fake_sleep):
        jobs, gateway = _make_jobs(clock, fake_sleep, recipients=3)
        job = jobs.dispatcher.schedule_message(
            "내일 경로당 무료 건강검진", [], clock.now + timedelta(minutes=5),
        )

        assert asyncio.run(jobs.send_due_scheduled_messages()) == []

        clock.advance(minutes=6)
        results = asyncio.run(jobs.send_due_scheduled_messages())

        assert len(results) == 1
        assert job.status is DispatchStatus.SENT
        assert len(job.recipients) == 3
        assert len(gateway.sent) == 3
        assert asyncio.run(jobs.send_due_scheduled_messages()) == []

    def test_failing_scheduled_message_does_not_block_later_ones(self, clock, fake_sleep):
        jobs, gateway = _make_jobs(clock, fake_sleep, recipients=2)
        broken = jobs.dispatcher.schedule_message(
            "첫 번째 안내", [], clock.now + timedelta(minutes=1),
        )
        later = jobs.dispatcher.schedule_message(
            "두 번째 안내", [], clock.now + timedelta(minutes=2),
        )
        real_send = jobs.dispatcher.send

        async def send(job, policy=None):
            if job is broken:
                raise RuntimeError("audit log unavailable")
            return await real_send(job, policy)

        jobs.dispatcher.send = send
        clock.advance(minutes=3)

        results = asyncio.run(jobs.send_due_scheduled_messages())

        assert [r.message_id for r in results] == [later.message_id]
        assert broken.status is DispatchStatus.FAILED
        assert later.status is DispatchStatus.SENT
        assert len(gateway.sent) == 2
        assert asyncio.run(jobs.send_due_scheduled_messages()) == []


# ═══════════════════════════════════════════════════════════════════════════
# Custom reminders
# ═══════════════════════════════════════════════════════════════════════════

class TestReminders:

    def test_create_registers_task(self, clock, fake_sleep):
        jobs, _ = _make_jobs(clock, fake_sleep)

        reminder = jobs.create_reminder(_reminder())

        jobs.runner.register.assert_called_once_with(
            reminder.task_name, DailyAt(time(8, 30)), ANY,
        )

    def test_weekly_reminder_trigger(self, clock, fake_sleep):
        jobs, _ = _make_jobs(clock, fake_sleep)

        reminder = jobs.create_reminder(_reminder(schedule_type=ScheduleType.WEEKLY, day=4))

        _, trigger, _ = jobs.runner.register.call_args.args
        assert trigger == WeeklyAt(4, time(8, 30))
        assert reminder.task_name.startswith("custom-reminder-")

    def test_sixth_active_reminder_rejected(self, clock, fake_sleep):
        jobs, _ = _make_jobs(clock, fake_sleep)
        created = [jobs.create_reminder(_reminder(title=f"알림{i}")) for i in range(5)]

        with pytest.raises(ReminderLimitError):
            jobs.create_reminder(_reminder(title="알림6"))

        jobs.deactivate_reminder(created[0].reminder_id)
        jobs.runner.unregister.assert_called_once_with(created[0].task_name)
        jobs.create_reminder(_reminder(title="알림6"))

    def test_reactivation_respects_cap(self, clock, fake_sleep):
        jobs, _ = _make_jobs(clock, fake_sleep)
        created = [jobs.create_reminder(_reminder(title=f"알림{i}")) for i in range(5)]
        jobs.deactivate_reminder(created[0].reminder_id)
        jobs.create_reminder(_reminder(title="대체"))

        with pytest.raises(ReminderLimitError):
            jobs.activate_reminder(created[0].reminder_id)

    def test_cap_is_per_recipient(self, clock, fake_sleep):
        jobs, _ = _make_jobs(clock, fake_sleep)
        for i in range(5):
            jobs.create_reminder(_reminder(title=f"알림{i}"))
        jobs.create_reminder(_reminder(recipient_id="R1"))

    def test_fire_sends_and_marks(self, clock, fake_sleep):
        jobs, gateway = _make_jobs(clock, fake_sleep)
        reminder = jobs.create_reminder(_reminder())

        result = asyncio.run(jobs.send_custom_reminder(reminder.reminder_id))

        assert result.success_count == 1
        assert [phone for phone, _ in gateway.sent] == ["01077770000"]
        assert gateway.sent[0][1].startswith("주민0님, 약 복용 알림입니다.")
        assert reminder.last_fired_at == clock.now

    def test_inactive_recipient_skipped(self, clock, fake_sleep):
        jobs, gateway = _make_jobs(clock, fake_sleep)
        reminder = jobs.create_reminder(_reminder())
        jobs.recipients.set_active("R0", False)

        assert asyncio.run(jobs.send_custom_reminder(reminder.reminder_id)) is None
        assert gateway.sent == []

    def test_deactivated_reminder_skipped(self, clock, fake_sleep):
        jobs, gateway = _make_jobs(clock, fake_sleep)
        reminder = jobs.create_reminder(_reminder())
        jobs.deactivate_reminder(reminder.reminder_id)

        assert asyncio.run(jobs.send_custom_reminder(reminder.reminder_id)) is None
        assert asyncio.run(jobs.send_custom_reminder("REM-MISSING")) is None
        assert gateway.sent == []


# ═══════════════════════════════════════════════════════════════════════════
# Standing schedule
# ═══════════════════════════════════════════════════════════════════════════

class TestStartAll:

    def test_registers_standard_tasks_and_reminders(self, clock, fake_sleep):
        async def scenario():
            jobs, _ = _make_jobs(clock, fake_sleep, runner=ScheduleRunner())
            reminder = jobs.reminders.create(_reminder())
            status = jobs.start_all()
            monitoring = jobs.monitor.is_monitoring
            jobs.stop_all()
            stopped = jobs.runner.status()
            await jobs.runner.shutdown()
            return status, monitoring, stopped, reminder

        status, monitoring, stopped, reminder = asyncio.run(scenario())

        assert set(status["active_tasks"]) == {
            jobs_module.DAILY_WEATHER,
            jobs_module.WEATHER_RISK,
            jobs_module.WEATHER_COLLECTION,
            jobs_module.AIR_QUALITY_COLLECTION,
            jobs_module.SCHEDULED_MESSAGE_CHECK,
            jobs_module.CACHE_CLEANUP,
            EMERGENCY_TASK,
            reminder.task_name,
        }
        assert monitoring
        assert stopped["is_running"] is False
