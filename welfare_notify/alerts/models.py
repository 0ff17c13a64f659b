"""
models.py — Shared data structures for alert classification and SMS dispatch.

Defines:
    • AlertRecord      — a classified disaster message (immutable)
    • Recipient        — a registered welfare recipient
    • MessageType      — daily / emergency / custom / welfare / scheduled
    • DispatchStatus   — job-level state machine
    • DispatchJob      — one message fanned out to many recipients
    • DeliveryOutcome  — one recipient's final result (append-only)
    • DispatchResult   — aggregate returned by Dispatcher.send()
    • ReminderSchedule — a recipient's recurring custom reminder

═══════════════════════════════════════════════════════════════════════════
DISPATCH STATUS ROLLUP
═══════════════════════════════════════════════════════════════════════════

    PENDING ──▶ SENDING ──▶ SENT     failure_count == 0  or  success_count > 0
                        └─▶ FAILED   success_count == 0  and failure_count > 0

Partial success still reports SENT; per-recipient failures are visible in
the outcome list. Once a job leaves SENDING:

    success_count + failure_count == len(recipients)
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class DispatchStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT    = "sent"
    FAILED  = "failed"


class MessageType(str, Enum):
    DAILY     = "daily"
    EMERGENCY = "emergency"
    CUSTOM    = "custom"
    WELFARE   = "welfare"
    SCHEDULED = "scheduled"  # operator-authored, sent at scheduled_at


class ScheduleType(str, Enum):
    DAILY   = "daily"
    WEEKLY  = "weekly"
    MONTHLY = "monthly"


def rollup_status(success_count: int, failure_count: int) -> DispatchStatus:
    """Reduce per-recipient counts to a job status."""
    if success_count == 0 and failure_count > 0:
        return DispatchStatus.FAILED
    return DispatchStatus.SENT


# ═══════════════════════════════════════════════════════════════════════════
# Alerts
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AlertRecord:
    """
    A disaster message after classification.

    Identity is `id` (the provider serial number): two records with the same
    id are the same alert regardless of when they were fetched.
    """
    id: str
    region: str
    category: str          # heatwave, cold-wave, earthquake, … or "other"
    message: str
    emergency_level: str   # warning, watch, advisory, … or "general"
    is_emergency: bool
    observed_at: datetime
    fetched_at: datetime
    keyword: str = ""      # the Korean keyword that matched, e.g. "폭염"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "region": self.region,
            "category": self.category,
            "keyword": self.keyword,
            "message": self.message,
            "emergency_level": self.emergency_level,
            "is_emergency": self.is_emergency,
            "observed_at": self.observed_at.isoformat(),
            "fetched_at": self.fetched_at.isoformat(),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Recipients
# ═══════════════════════════════════════════════════════════════════════════

_NON_DIGIT = re.compile(r"[^0-9]")
_MOBILE = re.compile(r"^01[0-9][0-9]{3,4}[0-9]{4}$")


def normalize_phone(phone: str) -> str:
    """Strip everything but digits: "010-1234-5678" → "01012345678"."""
    return _NON_DIGIT.sub("", phone or "")


def is_valid_mobile(phone: str) -> bool:
    return bool(_MOBILE.match(normalize_phone(phone)))


@dataclass
class Recipient:
    recipient_id: str
    name: str
    phone_number: str
    is_active: bool = True

    def __post_init__(self) -> None:
        self.phone_number = normalize_phone(self.phone_number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "name": self.name,
            "phone_number": self.phone_number,
            "is_active": self.is_active,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch
# ═══════════════════════════════════════════════════════════════════════════

def new_message_id() -> str:
    return f"MSG-{uuid.uuid4().hex[:12].upper()}"


@dataclass(frozen=True)
class DeliveryOutcome:
    """One recipient's final result within a DispatchJob."""
    recipient_id: str
    phone_number: str
    succeeded: bool
    error: Optional[str] = None
    retry_count: int = 0
    recorded_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "phone_number": self.phone_number,
            "succeeded": self.succeeded,
            "error": self.error,
            "retry_count": self.retry_count,
            "recorded_at": self.recorded_at.isoformat(),
        }


@dataclass
class DispatchJob:
    content: str
    recipients: List[Recipient]
    message_type: MessageType = MessageType.WELFARE
    title: str = ""
    message_id: str = field(default_factory=new_message_id)
    created_at: datetime = field(default_factory=_utcnow)
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    status: DispatchStatus = DispatchStatus.PENDING
    success_count: int = 0
    failure_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "message_type": self.message_type.value,
            "title": self.title,
            "content": self.content,
            "recipient_count": len(self.recipients),
            "status": self.status.value,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "created_at": self.created_at.isoformat(),
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }


@dataclass
class DispatchResult:
    message_id: str
    success_count: int = 0
    failure_count: int = 0
    outcomes: List[DeliveryOutcome] = field(default_factory=list)
    status: DispatchStatus = DispatchStatus.PENDING

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    def to_dict(self, include_outcomes: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "message_id": self.message_id,
            "status": self.status.value,
            "total_recipients": self.total,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
        }
        if include_outcomes:
            d["outcomes"] = [o.to_dict() for o in self.outcomes]
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Custom reminders
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ReminderSchedule:
    """
    A recurring reminder for one recipient.

    `day` is the weekday (0 = Monday … 6 = Sunday) for WEEKLY and the day of
    month (1 … 31) for MONTHLY; it must be None for DAILY.
    """
    recipient_id: str
    title: str
    message: str
    schedule_type: ScheduleType
    time_of_day: time
    day: Optional[int] = None
    reminder_id: str = field(default_factory=lambda: f"REM-{uuid.uuid4().hex[:8].upper()}")
    last_fired_at: Optional[datetime] = None
    is_active: bool = True

    @property
    def task_name(self) -> str:
        return f"custom-reminder-{self.reminder_id}"

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.recipient_id:
            errors.append("recipient_id is required")
        if not self.title.strip():
            errors.append("title is required")
        elif len(self.title) > 100:
            errors.append("title must be at most 100 characters")
        if not self.message.strip():
            errors.append("message is required")
        elif len(self.message) > 90:
            errors.append("message must be at most 90 characters")

        if self.schedule_type is ScheduleType.DAILY:
            if self.day is not None:
                errors.append("day must not be set for daily reminders")
        elif self.day is None:
            errors.append(f"day is required for {self.schedule_type.value} reminders")
        elif self.schedule_type is ScheduleType.WEEKLY and not 0 <= self.day <= 6:
            errors.append("weekday must be between 0 (Monday) and 6 (Sunday)")
        elif self.schedule_type is ScheduleType.MONTHLY and not 1 <= self.day <= 31:
            errors.append("day of month must be between 1 and 31")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reminder_id": self.reminder_id,
            "recipient_id": self.recipient_id,
            "title": self.title,
            "message": self.message,
            "schedule_type": self.schedule_type.value,
            "time_of_day": self.time_of_day.strftime("%H:%M"),
            "day": self.day,
            "last_fired_at": self.last_fired_at.isoformat() if self.last_fired_at else None,
            "is_active": self.is_active,
        }
