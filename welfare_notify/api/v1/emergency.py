"""
FastAPI route: emergency monitor.

    POST /api/v1/emergency/check   — run one poll cycle now
    GET  /api/v1/emergency/status  — watermark, processed-id count, last report
    POST /api/v1/emergency/test    — send a synthetic alert to active recipients
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from welfare_notify.services import Services, get_services

router = APIRouter(prefix="/api/v1/emergency", tags=["emergency"])


class TestAlertRequest(BaseModel):
    message: str = Field(
        "이것은 테스트 긴급 알림입니다.", min_length=1, max_length=90,
        examples=["이것은 테스트 긴급 알림입니다."],
    )
    keyword: str = Field("테스트", max_length=10, examples=["폭염"])
    location: Optional[str] = Field(None, examples=["유성구"])


@router.post(
    "/check",
    summary="Run an emergency check now",
    description="Polls the disaster feed once, outside the 2-minute schedule.",
)
async def manual_check(services: Services = Depends(get_services)):
    report = await services.monitor.manual_check()
    return report.to_dict()


@router.get("/status", summary="Emergency monitor status")
async def monitor_status(services: Services = Depends(get_services)):
    return services.monitor.status()


@router.post("/test", summary="Send a test emergency alert")
async def send_test_alert(
    request: TestAlertRequest,
    services: Services = Depends(get_services),
):
    result = await services.monitor.send_test_alert(
        message=request.message,
        keyword=request.keyword,
        location=request.location,
    )
    return result.to_dict(include_outcomes=True)
