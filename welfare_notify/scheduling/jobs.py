"""
jobs.py — The notifier's standing schedule and per-recipient reminders.

═══════════════════════════════════════════════════════════════════════════
STANDARD TASKS (Asia/Seoul)
═══════════════════════════════════════════════════════════════════════════

    Task name                       Trigger          Action
    ─────────────────────────────   ──────────────   ─────────────────────────────
    daily-weather                   daily 07:00      weather + air quality SMS
    weather-risk-monitoring         daily 09:00      폭염/한파 warning if thresholds hit
    weather-data-collection         every 1h         force-refresh weather cache
    air-quality-data-collection     every 2h         force-refresh air quality cache
    scheduled-message-check         every 1m         send due SCHEDULED jobs
    cache-cleanup                   every 1h         drop expired cache entries
    emergency-monitor               every 2m         EmergencyMonitor.poll()
    custom-reminder-{id}            per reminder     one recipient's reminder SMS

Every action catches its own domain failures and logs them; anything else
is caught by the runner at the task boundary.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from welfare_notify.alerts import templates
from welfare_notify.alerts.dispatcher import Dispatcher
from welfare_notify.alerts.emergency_monitor import EmergencyMonitor
from welfare_notify.alerts.models import DispatchResult, DispatchStatus, ReminderSchedule
from welfare_notify.alerts.store import RecipientDirectory, ReminderRegistry
from welfare_notify.core.config import settings
from welfare_notify.core.errors import DataUnavailableError, NotifierError
from welfare_notify.ingestion.models import AirQualityRecord, WeatherRecord
from welfare_notify.ingestion.public_data_service import PublicDataService
from welfare_notify.scheduling.runner import ScheduleRunner
from welfare_notify.scheduling.triggers import DailyAt, Every, parse_time_of_day, trigger_for_reminder

logger = logging.getLogger(__name__)

DAILY_WEATHER = "daily-weather"
WEATHER_RISK = "weather-risk-monitoring"
WEATHER_COLLECTION = "weather-data-collection"
AIR_QUALITY_COLLECTION = "air-quality-data-collection"
SCHEDULED_MESSAGE_CHECK = "scheduled-message-check"
CACHE_CLEANUP = "cache-cleanup"

SCHEDULED_MESSAGE_INTERVAL = timedelta(minutes=1)


class SchedulerJobs:
    """Binds the standing schedule to the runner and owns reminder task wiring."""

    def __init__(
        self,
        runner: ScheduleRunner,
        data_service: PublicDataService,
        dispatcher: Dispatcher,
        recipients: RecipientDirectory,
        reminders: ReminderRegistry,
        monitor: EmergencyMonitor,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.runner = runner
        self.data_service = data_service
        self.dispatcher = dispatcher
        self.recipients = recipients
        self.reminders = reminders
        self.monitor = monitor
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ═══════════════════════════════════════════════════════════════════════
    # Registration
    # ═══════════════════════════════════════════════════════════════════════

    def start_all(self) -> Dict[str, object]:
        logger.info("Starting all schedulers...")
        self.runner.register(
            DAILY_WEATHER, DailyAt(parse_time_of_day(settings.DAILY_BROADCAST_TIME)),
            self.send_daily_weather,
        )
        self.runner.register(
            WEATHER_RISK, DailyAt(parse_time_of_day(settings.WEATHER_RISK_CHECK_TIME)),
            self.check_weather_risk,
        )
        self.runner.register(
            SCHEDULED_MESSAGE_CHECK, Every(SCHEDULED_MESSAGE_INTERVAL),
            self.send_due_scheduled_messages,
        )
        self.runner.register(
            WEATHER_COLLECTION, Every(timedelta(seconds=settings.WEATHER_REFRESH_INTERVAL)),
            self.collect_weather,
        )
        self.runner.register(
            AIR_QUALITY_COLLECTION, Every(timedelta(seconds=settings.AIR_QUALITY_REFRESH_INTERVAL)),
            self.collect_air_quality,
        )
        self.runner.register(
            CACHE_CLEANUP, Every(timedelta(seconds=settings.CACHE_CLEANUP_INTERVAL)),
            self.cleanup_cache,
        )
        self.monitor.start(self.runner)
        count = self.schedule_all_reminders()
        logger.info("All schedulers started (%d custom reminders)", count)
        return self.runner.status()

    def stop_all(self) -> None:
        self.runner.stop_all()
        self.monitor.is_monitoring = False

    # ═══════════════════════════════════════════════════════════════════════
    # Standard actions
    # ═══════════════════════════════════════════════════════════════════════

    async def send_daily_weather(self) -> Optional[DispatchResult]:
        recipients = self.recipients.list_active()
        if not recipients:
            logger.info("Daily weather skipped: no active recipients")
            return None

        try:
            weather = await self.data_service.get_weather()
        except DataUnavailableError as e:
            logger.error("Daily weather skipped: %s", e.message)
            return None

        air_quality: Optional[AirQualityRecord]
        try:
            air_quality = await self.data_service.get_air_quality()
        except DataUnavailableError as e:
            logger.warning("Daily weather sent without air quality: %s", e.message)
            air_quality = None

        result = await self.dispatcher.send_daily_weather(recipients, weather, air_quality)
        logger.info(
            "Daily weather broadcast %s: %d/%d delivered",
            result.status.value, result.success_count, result.total,
        )
        return result

    @staticmethod
    def assess_weather_risk(weather: WeatherRecord) -> Optional[str]:
        """Rendered warning text when the day crosses a heat or cold threshold."""
        highs = [t for t in (weather.temperature, weather.max_temperature) if t is not None]
        lows = [t for t in (weather.temperature, weather.min_temperature) if t is not None]

        if highs and max(highs) >= settings.HEATWAVE_THRESHOLD_C:
            return templates.render_emergency(
                "폭염", "경보",
                f"기온 {templates.format_number(max(highs))}도. 야외 활동을 자제하고 물을 자주 마셔주세요.",
                location=weather.region,
            )
        if lows and min(lows) <= settings.COLDWAVE_THRESHOLD_C:
            return templates.render_emergency(
                "한파", "경보",
                f"기온 {templates.format_number(min(lows))}도. 외출 시 따뜻하게 입으시고 수도 동파에 유의하세요.",
                location=weather.region,
            )
        return None

    async def check_weather_risk(self) -> Optional[DispatchResult]:
        try:
            weather = await self.data_service.get_weather()
        except DataUnavailableError as e:
            logger.warning("Weather risk check skipped: %s", e.message)
            return None

        content = self.assess_weather_risk(weather)
        if content is None:
            logger.info("Weather risk check: temperatures within normal range")
            return None

        recipients = self.recipients.list_active()
        if not recipients:
            logger.warning("Weather risk warning not sent: no active recipients")
            return None

        title = "긴급알림: 폭염" if content.startswith("[폭염") else "긴급알림: 한파"
        result = await self.dispatcher.send_emergency(recipients, content, title=title)
        logger.info("Weather risk warning sent: %d/%d delivered", result.success_count, result.total)
        return result

    async def collect_weather(self) -> None:
        try:
            await self.data_service.get_weather(force_refresh=True)
            logger.info("Weather data collected")
        except DataUnavailableError as e:
            logger.error("Failed to collect weather data: %s", e.message)

    async def collect_air_quality(self) -> None:
        try:
            await self.data_service.get_air_quality(force_refresh=True)
            logger.info("Air quality data collected")
        except DataUnavailableError as e:
            logger.error("Failed to collect air quality data: %s", e.message)

    async def cleanup_cache(self) -> int:
        removed = await self.data_service.cleanup_expired_cache()
        if removed:
            logger.info("Cache cleanup removed %d expired entries", removed)
        return removed

    async def send_due_scheduled_messages(self) -> List[DispatchResult]:
        """Send every PENDING scheduled job whose time has come, oldest first."""
        due = self.dispatcher.log.due_scheduled(self._clock())
        if not due:
            return []

        logger.info("Found %d scheduled messages due", len(due))
        results = []
        for job in due:
            if not job.recipients:
                job.recipients = self.recipients.list_active()
            try:
                result = await self.dispatcher.send(job)
            except Exception:
                job.status = DispatchStatus.FAILED
                self.dispatcher.log.update_job(job)
                logger.exception("Scheduled message %s failed", job.message_id)
                continue
            logger.info(
                "Scheduled message %s %s: %d sent",
                job.message_id, result.status.value, result.success_count,
            )
            results.append(result)
        return results

    # ═══════════════════════════════════════════════════════════════════════
    # Custom reminders
    # ═══════════════════════════════════════════════════════════════════════

    def schedule_reminder(self, reminder: ReminderSchedule) -> None:
        async def fire() -> None:
            await self.send_custom_reminder(reminder.reminder_id)

        self.runner.register(reminder.task_name, trigger_for_reminder(reminder), fire)

    def schedule_all_reminders(self) -> int:
        active = self.reminders.list_active()
        for reminder in active:
            self.schedule_reminder(reminder)
        return len(active)

    def create_reminder(self, reminder: ReminderSchedule) -> ReminderSchedule:
        created = self.reminders.create(reminder)
        if created.is_active:
            self.schedule_reminder(created)
        return created

    def deactivate_reminder(self, reminder_id: str) -> ReminderSchedule:
        reminder = self.reminders.deactivate(reminder_id)
        self.runner.unregister(reminder.task_name)
        logger.info("Reminder %s deactivated", reminder_id)
        return reminder

    def activate_reminder(self, reminder_id: str) -> ReminderSchedule:
        reminder = self.reminders.activate(reminder_id)
        self.schedule_reminder(reminder)
        logger.info("Reminder %s reactivated", reminder_id)
        return reminder

    async def send_custom_reminder(self, reminder_id: str) -> Optional[DispatchResult]:
        try:
            reminder = self.reminders.get(reminder_id)
        except NotifierError:
            logger.warning("Reminder %s no longer exists", reminder_id)
            return None
        if not reminder.is_active:
            return None

        recipient = self.recipients.get(reminder.recipient_id)
        if recipient is None or not recipient.is_active:
            logger.info(
                "Reminder %s skipped: recipient %s missing or inactive",
                reminder_id, reminder.recipient_id,
            )
            return None

        result = await self.dispatcher.send_custom_reminder(recipient, reminder)
        self.reminders.mark_fired(reminder_id, self._clock())
        return result
