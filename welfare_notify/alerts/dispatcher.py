"""
dispatcher.py — Batched fan-out of one SMS to many recipients.

═══════════════════════════════════════════════════════════════════════════
DISPATCH FLOW
═══════════════════════════════════════════════════════════════════════════

    DispatchJob (PENDING)
        │
        ├── status → SENDING, job recorded in DispatchLog
        │
        ├── for each batch of N recipients:
        │       gather(send to every recipient in the batch)
        │       one DeliveryOutcome per recipient, exceptions included
        │       running success / failure counts
        │       pause before the next batch
        │
        └── status → rollup(success, failure), job updated in DispatchLog

    Message type   Batch size   Pause   Per-recipient transport retry
    ────────────   ──────────   ─────   ─────────────────────────────
    emergency      50           0.5 s   yes
    everything     100          1.0 s   no
    else

A recipient is never skipped: an exception raised while sending to one
recipient is recorded as that recipient's failure and its siblings carry on.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from welfare_notify.alerts import templates
from welfare_notify.alerts.channels.sms_gateway import SendResult, SmsGateway
from welfare_notify.alerts.models import (
    AlertRecord,
    DeliveryOutcome,
    DispatchJob,
    DispatchResult,
    DispatchStatus,
    MessageType,
    Recipient,
    ReminderSchedule,
    rollup_status,
)
from welfare_notify.alerts.store import DispatchLog
from welfare_notify.core.config import settings
from welfare_notify.core.errors import MessageValidationError
from welfare_notify.ingestion.models import AirQualityRecord, WeatherRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchPolicy:
    size: int
    pause_seconds: float
    transport_retry: bool = False


def policy_for(message_type: MessageType) -> BatchPolicy:
    if message_type is MessageType.EMERGENCY:
        return BatchPolicy(
            settings.EMERGENCY_BATCH_SIZE, settings.EMERGENCY_BATCH_PAUSE, transport_retry=True,
        )
    return BatchPolicy(settings.BROADCAST_BATCH_SIZE, settings.BROADCAST_BATCH_PAUSE)


def _batches(items: Sequence[Recipient], size: int) -> List[Sequence[Recipient]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class Dispatcher:
    """
    Usage:
        dispatcher = Dispatcher(SmsGateway(), DispatchLog())
        result = await dispatcher.send(DispatchJob(content=text, recipients=people))
    """

    def __init__(
        self,
        gateway: SmsGateway,
        log: Optional[DispatchLog] = None,
        *,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.log = log or DispatchLog()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ── Per recipient ──

    async def _transport(self, recipient: Recipient, content: str, retry: bool) -> SendResult:
        if retry:
            return await self.gateway.send_with_retry(recipient.phone_number, content)
        return await self.gateway.send_one(recipient.phone_number, content)

    def _record(self, message_id: str, outcome: DeliveryOutcome) -> None:
        try:
            self.log.record_outcome(message_id, outcome)
        except Exception as e:
            logger.error("Failed to write delivery outcome for %s: %s", outcome.recipient_id, e)

    def _outcome(self, recipient: Recipient, result: Any) -> DeliveryOutcome:
        if isinstance(result, SendResult):
            return DeliveryOutcome(
                recipient_id=recipient.recipient_id,
                phone_number=recipient.phone_number,
                succeeded=result.succeeded,
                error=result.error,
                retry_count=result.retry_count,
                recorded_at=self._clock(),
            )
        logger.error("Send to %s raised: %s", recipient.recipient_id, result)
        return DeliveryOutcome(
            recipient_id=recipient.recipient_id,
            phone_number=recipient.phone_number,
            succeeded=False,
            error=str(result) or type(result).__name__,
            recorded_at=self._clock(),
        )

    # ── Job ──

    async def send(self, job: DispatchJob, policy: Optional[BatchPolicy] = None) -> DispatchResult:
        policy = policy or policy_for(job.message_type)
        result = DispatchResult(message_id=job.message_id)
        start = time.monotonic()

        job.status = DispatchStatus.SENDING
        job.success_count = job.failure_count = 0
        self.log.record_job(job)
        logger.info(
            "Dispatch %s started (%s)", job.message_id, job.message_type.value,
            extra={"message_id": job.message_id, "recipient_count": len(job.recipients)},
        )

        batches = _batches(job.recipients, max(policy.size, 1))
        for index, batch in enumerate(batches):
            sends = [self._transport(r, job.content, policy.transport_retry) for r in batch]
            raw_results = await asyncio.gather(*sends, return_exceptions=True)

            for recipient, raw in zip(batch, raw_results):
                outcome = self._outcome(recipient, raw)
                result.outcomes.append(outcome)
                if outcome.succeeded:
                    result.success_count += 1
                else:
                    result.failure_count += 1
                self._record(job.message_id, outcome)

            job.success_count = result.success_count
            job.failure_count = result.failure_count

            if index < len(batches) - 1 and policy.pause_seconds > 0:
                await self._sleep(policy.pause_seconds)

        job.status = result.status = rollup_status(result.success_count, result.failure_count)
        job.sent_at = self._clock()
        self.log.update_job(job)

        logger.info(
            "Dispatch %s %s: %d sent, %d failed",
            job.message_id, job.status.value, result.success_count, result.failure_count,
            extra={
                "message_id": job.message_id,
                "recipient_count": len(job.recipients),
                "duration_ms": round((time.monotonic() - start) * 1000, 1),
            },
        )
        return result

    async def send_one(
        self,
        recipient: Recipient,
        content: str,
        *,
        message_type: MessageType = MessageType.CUSTOM,
        title: str = "",
    ) -> DispatchResult:
        """Single recipient, no batching, transport-level retry."""
        job = DispatchJob(
            content=content,
            recipients=[recipient],
            message_type=message_type,
            title=title,
        )
        return await self.send(job, BatchPolicy(size=1, pause_seconds=0, transport_retry=True))

    # ── Rendered helpers ──

    @staticmethod
    def _validated(content: str) -> str:
        validation = templates.validate_message(content)
        if not validation.is_valid:
            raise MessageValidationError(validation.errors)
        for warning in validation.warnings:
            logger.warning("Message warning: %s", warning)
        return content

    async def send_daily_weather(
        self,
        recipients: Sequence[Recipient],
        weather: Optional[WeatherRecord],
        air_quality: Optional[AirQualityRecord] = None,
    ) -> DispatchResult:
        content = self._validated(templates.render_daily_weather(weather, air_quality))
        return await self.send(DispatchJob(
            content=content,
            recipients=list(recipients),
            message_type=MessageType.DAILY,
            title="일일 날씨 알림",
        ))

    async def send_emergency(
        self,
        recipients: Sequence[Recipient],
        content: str,
        title: str = "긴급알림: 재난상황",
    ) -> DispatchResult:
        return await self.send(DispatchJob(
            content=self._validated(content),
            recipients=list(recipients),
            message_type=MessageType.EMERGENCY,
            title=title,
        ))

    async def send_emergency_alert(
        self,
        recipients: Sequence[Recipient],
        alert: AlertRecord,
    ) -> DispatchResult:
        return await self.send_emergency(
            recipients,
            templates.render_alert(alert),
            title=f"긴급알림: {alert.keyword or '재난상황'}",
        )

    async def send_custom_reminder(
        self,
        recipient: Recipient,
        reminder: ReminderSchedule,
    ) -> DispatchResult:
        content = self._validated(templates.render_custom_reminder(
            reminder.title, reminder.message, recipient_name=recipient.name,
        ))
        return await self.send_one(
            recipient, content,
            message_type=MessageType.CUSTOM,
            title=f"맞춤알림: {reminder.title}",
        )

    async def send_welfare_notice(
        self,
        recipients: Sequence[Recipient],
        title: str,
        content: str = "",
        deadline: str = "",
        contact: str = "",
    ) -> DispatchResult:
        text = self._validated(templates.render_welfare(title, content, deadline, contact))
        return await self.send(DispatchJob(
            content=text,
            recipients=list(recipients),
            message_type=MessageType.WELFARE,
            title=title or "보건복지 알림",
        ))

    def schedule_message(
        self,
        content: str,
        recipients: Sequence[Recipient],
        scheduled_at: datetime,
        title: str = "",
    ) -> DispatchJob:
        """Store a PENDING job for the scheduled-message check to pick up."""
        job = DispatchJob(
            content=self._validated(content),
            recipients=list(recipients),
            message_type=MessageType.SCHEDULED,
            title=title,
            scheduled_at=scheduled_at,
        )
        self.log.record_job(job)
        logger.info("Message %s scheduled for %s", job.message_id, scheduled_at.isoformat())
        return job
