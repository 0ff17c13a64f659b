"""
store.py — Recipient, reminder and dispatch-audit storage.

The dispatch core only needs a narrow surface from its persistence layer:

    RecipientDirectory   list_active(), get(id)
    ReminderRegistry     create() enforcing the per-recipient cap,
                         activate()/deactivate(), list_active()
    DispatchLog          record_job(), record_outcome(), update_job(),
                         due_scheduled(now)

The implementations here are in-memory and process-local. A database-backed
store only has to provide the same methods.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from welfare_notify.alerts.models import (
    DeliveryOutcome,
    DispatchJob,
    DispatchStatus,
    Recipient,
    ReminderSchedule,
    is_valid_mobile,
)
from welfare_notify.core.config import settings
from welfare_notify.core.errors import NotFoundError, ReminderLimitError, ValidationError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Recipients
# ═══════════════════════════════════════════════════════════════════════════

class RecipientDirectory:

    def __init__(self) -> None:
        self._recipients: Dict[str, Recipient] = {}

    def add(self, recipient: Recipient) -> Recipient:
        if not is_valid_mobile(recipient.phone_number):
            raise ValidationError(
                f"Invalid mobile number: {recipient.phone_number}", field="phone_number",
            )
        self._recipients[recipient.recipient_id] = recipient
        logger.info("Recipient registered: %s", recipient.recipient_id)
        return recipient

    def get(self, recipient_id: str) -> Optional[Recipient]:
        return self._recipients.get(recipient_id)

    def list_active(self) -> List[Recipient]:
        return [r for r in self._recipients.values() if r.is_active]

    def list_all(self) -> List[Recipient]:
        return list(self._recipients.values())

    def set_active(self, recipient_id: str, active: bool) -> Recipient:
        recipient = self._recipients.get(recipient_id)
        if recipient is None:
            raise NotFoundError("Recipient", recipient_id=recipient_id)
        recipient.is_active = active
        return recipient

    def __len__(self) -> int:
        return len(self._recipients)


# ═══════════════════════════════════════════════════════════════════════════
# Custom reminders
# ═══════════════════════════════════════════════════════════════════════════

class ReminderRegistry:
    """Holds ReminderSchedules; enforces the active-reminder cap per recipient."""

    def __init__(self, max_per_recipient: Optional[int] = None):
        self.max_per_recipient = max_per_recipient or settings.MAX_REMINDERS_PER_RECIPIENT
        self._reminders: Dict[str, ReminderSchedule] = {}

    def active_count(self, recipient_id: str) -> int:
        return sum(
            1 for r in self._reminders.values()
            if r.recipient_id == recipient_id and r.is_active
        )

    def _check_cap(self, recipient_id: str) -> None:
        if self.active_count(recipient_id) >= self.max_per_recipient:
            raise ReminderLimitError(recipient_id, self.max_per_recipient)

    def create(self, reminder: ReminderSchedule) -> ReminderSchedule:
        errors = reminder.validate()
        if errors:
            raise ValidationError(", ".join(errors), field="reminder", errors=errors)
        if reminder.is_active:
            self._check_cap(reminder.recipient_id)
        self._reminders[reminder.reminder_id] = reminder
        logger.info(
            "Reminder %s created for recipient %s", reminder.reminder_id, reminder.recipient_id,
        )
        return reminder

    def get(self, reminder_id: str) -> ReminderSchedule:
        reminder = self._reminders.get(reminder_id)
        if reminder is None:
            raise NotFoundError("Reminder", reminder_id=reminder_id)
        return reminder

    def activate(self, reminder_id: str) -> ReminderSchedule:
        reminder = self.get(reminder_id)
        if not reminder.is_active:
            self._check_cap(reminder.recipient_id)
            reminder.is_active = True
        return reminder

    def deactivate(self, reminder_id: str) -> ReminderSchedule:
        reminder = self.get(reminder_id)
        reminder.is_active = False
        return reminder

    def mark_fired(self, reminder_id: str, fired_at: datetime) -> None:
        self.get(reminder_id).last_fired_at = fired_at

    def list_active(self) -> List[ReminderSchedule]:
        return sorted(
            (r for r in self._reminders.values() if r.is_active),
            key=lambda r: r.time_of_day,
        )

    def for_recipient(self, recipient_id: str) -> List[ReminderSchedule]:
        return [r for r in self._reminders.values() if r.recipient_id == recipient_id]


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch audit log
# ═══════════════════════════════════════════════════════════════════════════

class DispatchLog:
    """Jobs and their append-only per-recipient outcomes."""

    def __init__(self) -> None:
        self._jobs: Dict[str, DispatchJob] = {}
        self._outcomes: Dict[str, List[DeliveryOutcome]] = {}

    def record_job(self, job: DispatchJob) -> None:
        self._jobs[job.message_id] = job
        self._outcomes.setdefault(job.message_id, [])

    def update_job(self, job: DispatchJob) -> None:
        self._jobs[job.message_id] = job

    def record_outcome(self, message_id: str, outcome: DeliveryOutcome) -> None:
        self._outcomes.setdefault(message_id, []).append(outcome)

    def get_job(self, message_id: str) -> Optional[DispatchJob]:
        return self._jobs.get(message_id)

    def outcomes_for(self, message_id: str) -> List[DeliveryOutcome]:
        return list(self._outcomes.get(message_id, []))

    def recent_jobs(self, limit: int = 20) -> List[DispatchJob]:
        jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def due_scheduled(self, now: datetime) -> List[DispatchJob]:
        """PENDING jobs whose scheduled_at has passed."""
        return sorted(
            (
                j for j in self._jobs.values()
                if j.status is DispatchStatus.PENDING
                and j.scheduled_at is not None
                and j.scheduled_at <= now
            ),
            key=lambda j: j.scheduled_at,
        )
