"""
FastAPI route: scheduler administration.

    GET  /api/v1/scheduler/status              — tasks, next run times, monitor state
    POST /api/v1/scheduler/restart             — stop every task, start them again
    POST /api/v1/scheduler/tasks/{name}/run    — fire a task now
    POST /api/v1/scheduler/tasks/{name}/stop   — stop one task
    POST /api/v1/scheduler/tasks/{name}/start  — start one task
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from welfare_notify.core.errors import NotFoundError
from welfare_notify.services import Services, get_services

router = APIRouter(prefix="/api/v1/scheduler", tags=["scheduler"])


def _require_task(services: Services, name: str) -> None:
    if name not in services.runner:
        raise NotFoundError("Scheduled task", name=name)


@router.get("/status", summary="Scheduler status")
async def scheduler_status(services: Services = Depends(get_services)):
    return {
        **services.runner.status(),
        "emergency_monitoring": services.monitor.is_monitoring,
    }


@router.post(
    "/restart",
    summary="Restart all scheduled tasks",
    description="Stops every registered task and starts them again with fresh timers.",
)
async def restart_scheduler(services: Services = Depends(get_services)):
    status = services.runner.restart()
    return {"restarted": True, **status}


@router.post("/tasks/{name}/run", summary="Run a task immediately")
async def run_task(name: str, services: Services = Depends(get_services)):
    _require_task(services, name)
    started = services.runner.fire(name)
    return {
        "name": name,
        "started": started,
        "reason": None if started else "previous run still in progress",
    }


@router.post("/tasks/{name}/stop", summary="Stop a task")
async def stop_task(name: str, services: Services = Depends(get_services)):
    _require_task(services, name)
    services.runner.stop(name)
    return services.runner.get(name).to_dict()


@router.post("/tasks/{name}/start", summary="Start a task")
async def start_task(name: str, services: Services = Depends(get_services)):
    _require_task(services, name)
    services.runner.start(name)
    return services.runner.get(name).to_dict()
