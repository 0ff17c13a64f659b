"""
FastAPI route: recipients and their custom reminders.

    POST  /api/v1/recipients                          — register a recipient
    GET   /api/v1/recipients                          — list (active only by default)
    PATCH /api/v1/recipients/{id}                     — activate / deactivate

    POST  /api/v1/reminders                           — create + schedule (max 5 active)
    GET   /api/v1/reminders?recipient_id=
    POST  /api/v1/reminders/{id}/deactivate           — stops its task
    POST  /api/v1/reminders/{id}/activate             — re-registers its task
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from welfare_notify.alerts.models import Recipient, ReminderSchedule, ScheduleType
from welfare_notify.scheduling.triggers import parse_time_of_day
from welfare_notify.services import Services, get_services

recipients_router = APIRouter(prefix="/api/v1/recipients", tags=["recipients"])
router = APIRouter(prefix="/api/v1/reminders", tags=["reminders"])


class RecipientInput(BaseModel):
    recipient_id: str = Field(..., min_length=1, examples=["R001"])
    name: str = Field(..., min_length=1, max_length=50, examples=["김복지"])
    phone_number: str = Field(..., examples=["010-1234-5678"])
    is_active: bool = True


class RecipientUpdate(BaseModel):
    is_active: bool


class ReminderInput(BaseModel):
    recipient_id: str = Field(..., examples=["R001"])
    title: str = Field(..., min_length=1, max_length=100, examples=["약 복용"])
    message: str = Field(..., min_length=1, max_length=90, examples=["혈압약 드실 시간입니다."])
    schedule_type: ScheduleType = Field(..., examples=["daily"])
    time_of_day: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$", examples=["08:30"])
    day: Optional[int] = Field(
        None, ge=0, le=31,
        description="Weekday 0 (Mon) … 6 (Sun) for weekly, day of month for monthly",
    )


# ── Recipients ──

@recipients_router.post("", summary="Register a recipient", status_code=201)
async def add_recipient(request: RecipientInput, services: Services = Depends(get_services)):
    recipient = services.recipients.add(Recipient(
        recipient_id=request.recipient_id,
        name=request.name,
        phone_number=request.phone_number,
        is_active=request.is_active,
    ))
    return recipient.to_dict()


@recipients_router.get("", summary="List recipients")
async def list_recipients(
    active_only: bool = Query(True),
    services: Services = Depends(get_services),
):
    recipients = services.recipients.list_active() if active_only else services.recipients.list_all()
    return {"count": len(recipients), "recipients": [r.to_dict() for r in recipients]}


@recipients_router.patch("/{recipient_id}", summary="Activate or deactivate a recipient")
async def update_recipient(
    recipient_id: str,
    request: RecipientUpdate,
    services: Services = Depends(get_services),
):
    return services.recipients.set_active(recipient_id, request.is_active).to_dict()


# ── Reminders ──

@router.post("", summary="Create a custom reminder", status_code=201)
async def create_reminder(request: ReminderInput, services: Services = Depends(get_services)):
    reminder = services.jobs.create_reminder(ReminderSchedule(
        recipient_id=request.recipient_id,
        title=request.title,
        message=request.message,
        schedule_type=request.schedule_type,
        time_of_day=parse_time_of_day(request.time_of_day),
        day=request.day,
    ))
    return reminder.to_dict()


@router.get("", summary="List reminders")
async def list_reminders(
    recipient_id: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    reminders = (
        services.reminders.for_recipient(recipient_id) if recipient_id
        else services.reminders.list_active()
    )
    return {"count": len(reminders), "reminders": [r.to_dict() for r in reminders]}


@router.post("/{reminder_id}/deactivate", summary="Deactivate a reminder")
async def deactivate_reminder(reminder_id: str, services: Services = Depends(get_services)):
    return services.jobs.deactivate_reminder(reminder_id).to_dict()


@router.post("/{reminder_id}/activate", summary="Reactivate a reminder")
async def activate_reminder(reminder_id: str, services: Services = Depends(get_services)):
    return services.jobs.activate_reminder(reminder_id).to_dict()
