"""
FastAPI route: operator-authored messages.

    POST /api/v1/messages/preview       — length / feature-phone check, no send
    POST /api/v1/messages/welfare       — welfare notice to all active recipients
    POST /api/v1/messages/scheduled     — store for the scheduled-message check
    GET  /api/v1/messages               — recent dispatch jobs
    GET  /api/v1/messages/{message_id}  — one job with per-recipient outcomes
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from welfare_notify.alerts import templates
from welfare_notify.core.errors import NotFoundError, ValidationError
from welfare_notify.services import Services, get_services

router = APIRouter(prefix="/api/v1/messages", tags=["messages"])


class PreviewRequest(BaseModel):
    content: str = Field(..., examples=["[공지] 독감 예방접종 안내\n유성구 보건소"])


class WelfareNoticeRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=40, examples=["독감 예방접종"])
    content: str = Field("", max_length=90, examples=["65세 이상 무료 접종"])
    deadline: str = Field("", examples=["11월 30일"])
    contact: str = Field("", examples=["042-611-5000"])


class ScheduledMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, examples=["내일 경로당 무료 건강검진이 있습니다."])
    title: str = Field("", examples=["건강검진 안내"])
    scheduled_at: datetime = Field(..., description="Timezone-aware send time")


@router.post("/preview", summary="Preview a message")
async def preview_message(request: PreviewRequest):
    return templates.preview(request.content)


@router.post("/welfare", summary="Send a welfare notice to all active recipients")
async def send_welfare_notice(
    request: WelfareNoticeRequest,
    services: Services = Depends(get_services),
):
    recipients = services.recipients.list_active()
    if not recipients:
        raise ValidationError("No active recipients", field="recipients")
    result = await services.dispatcher.send_welfare_notice(
        recipients, request.title, request.content, request.deadline, request.contact,
    )
    return result.to_dict()


@router.post("/scheduled", summary="Schedule a message", status_code=201)
async def schedule_message(
    request: ScheduledMessageRequest,
    services: Services = Depends(get_services),
):
    scheduled_at = request.scheduled_at
    if scheduled_at.tzinfo is None:
        raise ValidationError("scheduled_at must include a timezone", field="scheduled_at")
    if scheduled_at <= datetime.now(timezone.utc):
        raise ValidationError("scheduled_at must be in the future", field="scheduled_at")
    job = services.dispatcher.schedule_message(
        request.content, [], scheduled_at, title=request.title,
    )
    return job.to_dict()


@router.get("", summary="Recent dispatch jobs")
async def recent_messages(
    limit: int = Query(20, ge=1, le=200),
    services: Services = Depends(get_services),
):
    jobs = services.dispatcher.log.recent_jobs(limit)
    return {"count": len(jobs), "messages": [j.to_dict() for j in jobs]}


@router.get("/{message_id}", summary="One dispatch job with outcomes")
async def get_message(message_id: str, services: Services = Depends(get_services)):
    log = services.dispatcher.log
    job = log.get_job(message_id)
    if job is None:
        raise NotFoundError("Message", message_id=message_id)
    return {
        **job.to_dict(),
        "outcomes": [o.to_dict() for o in log.outcomes_for(message_id)],
    }
