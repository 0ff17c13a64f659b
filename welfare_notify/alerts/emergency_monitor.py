"""
emergency_monitor.py — Periodic disaster poll with dedup, watermark and
5-minute delivery budget.

═══════════════════════════════════════════════════════════════════════════
POLL CYCLE
═══════════════════════════════════════════════════════════════════════════

    poll()  (every 2 min, started_at = now)
        │
        ├── fetch last-hour disaster messages   (30 s timeout)
        │       timeout / DataUnavailableError ──▶ no alerts this cycle
        │
        ├── classify, keep is_emergency
        ├── drop ids already in ProcessedAlertSet
        ├── drop observed_at <= last_check_time
        │
        ├── for each survivor, concurrently:
        │       Dispatcher.send_emergency_alert(all active recipients)
        │       job FAILED or raised → wait 30 s, retry (3 attempts total)
        │       id → ProcessedAlertSet   (on any outcome)
        │       elapsed > 5 min → SLA breach logged, send not cancelled
        │
        └── last_check_time = max(last_check_time, started_at)

Nothing escapes poll(): every failure is logged and reflected in the
returned PollReport.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from welfare_notify.alerts.classifier import AlertClassifier
from welfare_notify.alerts.dedup import ProcessedAlertSet
from welfare_notify.alerts.dispatcher import Dispatcher
from welfare_notify.alerts.models import AlertRecord, DispatchStatus, Recipient
from welfare_notify.alerts.store import RecipientDirectory
from welfare_notify.core.config import settings
from welfare_notify.core.errors import DataUnavailableError, ValidationError
from welfare_notify.ingestion.models import DisasterMessage
from welfare_notify.ingestion.public_data_service import PublicDataService
from welfare_notify.scheduling.triggers import Every

logger = logging.getLogger(__name__)

TASK_NAME = "emergency-monitor"


@dataclass
class AlertDispatch:
    """What happened to one new emergency alert within a poll."""
    alert_id: str
    category: str
    status: DispatchStatus = DispatchStatus.PENDING
    attempts: int = 0
    success_count: int = 0
    failure_count: int = 0
    elapsed_seconds: float = 0.0
    sla_breached: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "category": self.category,
            "status": self.status.value,
            "attempts": self.attempts,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "sla_breached": self.sla_breached,
            "error": self.error,
        }


@dataclass
class PollReport:
    started_at: datetime
    fetched: int = 0
    emergencies: int = 0
    duplicates: int = 0
    before_watermark: int = 0
    fetch_error: Optional[str] = None
    dispatches: List[AlertDispatch] = field(default_factory=list)

    @property
    def new_alerts(self) -> int:
        return len(self.dispatches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "fetched": self.fetched,
            "emergencies": self.emergencies,
            "duplicates": self.duplicates,
            "before_watermark": self.before_watermark,
            "new_alerts": self.new_alerts,
            "fetch_error": self.fetch_error,
            "dispatches": [d.to_dict() for d in self.dispatches],
        }


class EmergencyMonitor:
    """
    Usage:
        monitor = EmergencyMonitor(data_service, dispatcher, recipients)
        report = await monitor.poll()

        monitor.start(runner)     # registers the 2-minute poll task
    """

    def __init__(
        self,
        data_service: PublicDataService,
        dispatcher: Dispatcher,
        recipients: RecipientDirectory,
        *,
        classifier: Optional[AlertClassifier] = None,
        processed: Optional[ProcessedAlertSet] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        fetch_timeout: Optional[float] = None,
        send_attempts: Optional[int] = None,
        send_retry_delay: Optional[float] = None,
        sla_seconds: Optional[float] = None,
    ):
        self.data_service = data_service
        self.dispatcher = dispatcher
        self.recipients = recipients
        self.classifier = classifier or AlertClassifier()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.processed = processed or ProcessedAlertSet(clock=self._clock)
        self._sleep = sleep or asyncio.sleep
        self.fetch_timeout = fetch_timeout or settings.EMERGENCY_FETCH_TIMEOUT
        self.send_attempts = send_attempts or settings.EMERGENCY_SEND_ATTEMPTS
        self.send_retry_delay = (
            send_retry_delay if send_retry_delay is not None
            else settings.EMERGENCY_SEND_RETRY_DELAY
        )
        self.sla = timedelta(seconds=sla_seconds or settings.EMERGENCY_SLA_SECONDS)

        self.last_check_time: Optional[datetime] = None
        self.last_report: Optional[PollReport] = None
        self.is_monitoring = False
        self._runner = None
        self._poll_lock: Optional[asyncio.Lock] = None

    # ═══════════════════════════════════════════════════════════════════════
    # Poll
    # ═══════════════════════════════════════════════════════════════════════

    async def _fetch(self) -> List[DisasterMessage]:
        return await asyncio.wait_for(
            self.data_service.get_emergency_alerts(), timeout=self.fetch_timeout,
        )

    def _select_new(self, alerts: Sequence[AlertRecord], report: PollReport) -> List[AlertRecord]:
        fresh: List[AlertRecord] = []
        seen_this_poll = set()
        for alert in alerts:
            if alert.id in self.processed or alert.id in seen_this_poll:
                report.duplicates += 1
                continue
            if self.last_check_time is not None and alert.observed_at <= self.last_check_time:
                report.before_watermark += 1
                continue
            seen_this_poll.add(alert.id)
            fresh.append(alert)
        return fresh

    async def poll(self) -> PollReport:
        """One check cycle. Concurrent callers run one after another."""
        if self._poll_lock is None:
            self._poll_lock = asyncio.Lock()
        async with self._poll_lock:
            return await self._poll_once()

    async def _poll_once(self) -> PollReport:
        started_at = self._clock()
        report = PollReport(started_at=started_at)

        try:
            try:
                messages = await self._fetch()
            except asyncio.TimeoutError:
                report.fetch_error = f"timed out after {self.fetch_timeout}s"
                logger.error("Emergency alert fetch timed out after %.0fs", self.fetch_timeout)
                messages = []
            except DataUnavailableError as e:
                report.fetch_error = e.message
                logger.error("Emergency alert source unavailable: %s", e.message)
                messages = []

            report.fetched = len(messages)
            emergencies = [a for a in self.classifier.classify_all(messages) if a.is_emergency]
            report.emergencies = len(emergencies)

            new_alerts = self._select_new(emergencies, report)
            if new_alerts:
                logger.warning(
                    "Detected %d new emergency alerts: %s",
                    len(new_alerts), ", ".join(f"{a.id}({a.category})" for a in new_alerts),
                )
                recipients = self.recipients.list_active()
                report.dispatches = list(await asyncio.gather(
                    *(self._handle_alert(a, recipients, started_at) for a in new_alerts)
                ))
            else:
                logger.debug("No new emergency alerts since last check")
        except Exception:
            logger.exception("Emergency check failed")
        finally:
            if self.last_check_time is None or started_at > self.last_check_time:
                self.last_check_time = started_at
            self.last_report = report

        return report

    async def _handle_alert(
        self,
        alert: AlertRecord,
        recipients: Sequence[Recipient],
        started_at: datetime,
    ) -> AlertDispatch:
        outcome = AlertDispatch(alert_id=alert.id, category=alert.category)
        try:
            if not recipients:
                outcome.error = "no active recipients"
                logger.warning(
                    "No active recipients for emergency alert %s", alert.id,
                    extra={"alert_id": alert.id},
                )
                return outcome
            await self._send_with_retry(alert, recipients, outcome)
        except Exception as e:
            outcome.status = DispatchStatus.FAILED
            outcome.error = str(e)
            logger.exception("Failed to process emergency alert %s", alert.id)
        finally:
            self.processed.add(alert.id)
            outcome.elapsed_seconds = (self._clock() - started_at).total_seconds()
            if outcome.elapsed_seconds > self.sla.total_seconds():
                outcome.sla_breached = True
                logger.warning(
                    "Emergency alert %s exceeded the %d-second delivery budget (%.1fs)",
                    alert.id, int(self.sla.total_seconds()), outcome.elapsed_seconds,
                    extra={"alert_id": alert.id},
                )
        return outcome

    async def _send_with_retry(
        self,
        alert: AlertRecord,
        recipients: Sequence[Recipient],
        outcome: AlertDispatch,
    ) -> None:
        for attempt in range(1, self.send_attempts + 1):
            outcome.attempts = attempt
            try:
                result = await self.dispatcher.send_emergency_alert(recipients, alert)
            except Exception as e:
                outcome.error = str(e)
                logger.warning(
                    "Emergency alert %s attempt %d/%d raised: %s",
                    alert.id, attempt, self.send_attempts, e,
                    extra={"alert_id": alert.id},
                )
            else:
                outcome.status = result.status
                outcome.success_count = result.success_count
                outcome.failure_count = result.failure_count
                if result.status is not DispatchStatus.FAILED:
                    outcome.error = None
                    logger.info(
                        "Emergency alert %s sent on attempt %d: %d/%d delivered",
                        alert.id, attempt, result.success_count, result.total,
                        extra={"alert_id": alert.id, "message_id": result.message_id},
                    )
                    return
                outcome.error = "no recipient could be reached"
                logger.warning(
                    "Emergency alert %s attempt %d/%d reached no recipients",
                    alert.id, attempt, self.send_attempts,
                    extra={"alert_id": alert.id},
                )

            if attempt < self.send_attempts:
                await self._sleep(self.send_retry_delay)

        outcome.status = DispatchStatus.FAILED
        logger.error(
            "All %d attempts failed for emergency alert %s: %s",
            self.send_attempts, alert.id, outcome.error,
            extra={"alert_id": alert.id},
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Lifecycle and admin
    # ═══════════════════════════════════════════════════════════════════════

    def start(self, runner: Any, interval_seconds: Optional[float] = None) -> None:
        """Register the poll with a ScheduleRunner and run the first check now."""
        if self.last_check_time is None:
            self.last_check_time = self._clock()
        runner.register(
            TASK_NAME,
            Every(timedelta(seconds=interval_seconds or settings.EMERGENCY_CHECK_INTERVAL)),
            self.poll,
            run_immediately=True,
        )
        self._runner = runner
        self.is_monitoring = True
        logger.info("Emergency monitoring started")

    def stop(self) -> None:
        if self._runner is not None:
            self._runner.stop(TASK_NAME)
        self.is_monitoring = False
        logger.info("Emergency monitoring stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "is_monitoring": self.is_monitoring,
            "last_check_time": self.last_check_time.isoformat() if self.last_check_time else None,
            "processed_alerts": len(self.processed),
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "config": {
                "check_interval_seconds": settings.EMERGENCY_CHECK_INTERVAL,
                "sla_seconds": self.sla.total_seconds(),
                "fetch_timeout_seconds": self.fetch_timeout,
                "send_attempts": self.send_attempts,
                "send_retry_delay_seconds": self.send_retry_delay,
            },
        }

    async def manual_check(self) -> PollReport:
        logger.info("Manual emergency check requested")
        return await self.poll()

    async def send_test_alert(
        self,
        message: str = "이것은 테스트 긴급 알림입니다.",
        keyword: str = "테스트",
        location: Optional[str] = None,
        recipients: Optional[Sequence[Recipient]] = None,
    ):
        """Send a synthetic alert straight to the dispatcher (no dedup, no retry)."""
        now = self._clock()
        alert = AlertRecord(
            id=f"TEST-{int(now.timestamp() * 1000)}",
            region=location or settings.DEFAULT_REGION,
            category="test",
            keyword=keyword,
            message=message,
            emergency_level="test",
            is_emergency=True,
            observed_at=now,
            fetched_at=now,
        )
        targets = list(recipients) if recipients is not None else self.recipients.list_active()
        if not targets:
            raise ValidationError("No recipients available for test alert", field="recipients")
        result = await self.dispatcher.send_emergency_alert(targets, alert)
        logger.info(
            "Test emergency alert %s: %d sent, %d failed",
            result.status.value, result.success_count, result.failure_count,
        )
        return result
