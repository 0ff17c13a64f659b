"""
runner.py — In-process scheduler for named, independently stoppable tasks.

═══════════════════════════════════════════════════════════════════════════
TASK LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    register(name, trigger, action)
        │   an existing task with the same name is stopped first
        ▼
    timer loop (asyncio.Task)
        │   sleep until trigger.next_fire_after(now)
        │   fire ──▶ action runs as its own asyncio.Task
        │            previous run still in flight ──▶ tick skipped + logged
        ▼
    stop(name) cancels the timer; an action already running is left to finish

Firing is fire-and-forget: a slow action never delays the timer. An action
that raises is logged at the task boundary and the timer carries on.

Usage:
    runner = ScheduleRunner()
    runner.register("weather-refresh", Every(timedelta(hours=1)), refresh)
    runner.status()
    await runner.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from welfare_notify.core.logging_config import set_job_context
from welfare_notify.scheduling.triggers import Trigger

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledTask:
    name: str
    trigger: Trigger
    action: Action
    run_immediately: bool = False
    timer: Optional[asyncio.Task] = field(default=None, repr=False)
    in_flight: Optional[asyncio.Task] = field(default=None, repr=False)
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.timer is not None and not self.timer.done()

    @property
    def is_executing(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "trigger": self.trigger.describe(),
            "active": self.is_active,
            "executing": self.is_executing,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
        }


class ScheduleRunner:

    def __init__(
        self,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep or asyncio.sleep
        self._tasks: Dict[str, ScheduledTask] = {}

    # ── Registration ──

    def register(
        self,
        name: str,
        trigger: Trigger,
        action: Action,
        *,
        run_immediately: bool = False,
        start: bool = True,
    ) -> ScheduledTask:
        if name in self._tasks:
            logger.info("Re-registering scheduled task %s", name)
            self.stop(name)
        entry = ScheduledTask(name=name, trigger=trigger, action=action, run_immediately=run_immediately)
        self._tasks[name] = entry
        if start:
            self.start(name)
        return entry

    def unregister(self, name: str) -> bool:
        self.stop(name)
        return self._tasks.pop(name, None) is not None

    def get(self, name: str) -> Optional[ScheduledTask]:
        return self._tasks.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    # ── Start / stop ──

    def start(self, name: str) -> bool:
        entry = self._tasks.get(name)
        if entry is None:
            logger.warning("Cannot start unknown task %s", name)
            return False
        if entry.is_active:
            return True
        entry.timer = asyncio.create_task(self._timer_loop(entry), name=f"timer:{name}")
        logger.info("Scheduled task %s started (%s)", name, entry.trigger.describe())
        return True

    def stop(self, name: str) -> bool:
        entry = self._tasks.get(name)
        if entry is None or not entry.is_active:
            return False
        entry.timer.cancel()
        entry.timer = None
        entry.next_run_at = None
        logger.info("Scheduled task %s stopped", name)
        return True

    def start_all(self) -> List[str]:
        return [name for name in list(self._tasks) if self.start(name)]

    def stop_all(self) -> List[str]:
        stopped = [name for name in list(self._tasks) if self.stop(name)]
        logger.info("Stopped %d scheduled tasks", len(stopped))
        return stopped

    def restart(self) -> Dict[str, Any]:
        self.stop_all()
        started = self.start_all()
        logger.info("Scheduler restarted with %d tasks", len(started))
        return self.status()

    async def shutdown(self) -> None:
        """Cancel every timer and in-flight action and wait for them to unwind."""
        pending = []
        for entry in self._tasks.values():
            for task in (entry.timer, entry.in_flight):
                if task is not None and not task.done():
                    task.cancel()
                    pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Scheduler shut down")

    # ── Firing ──

    async def _timer_loop(self, entry: ScheduledTask) -> None:
        if entry.run_immediately:
            self._fire(entry)
        last_fire: Optional[datetime] = None
        while True:
            now = self._clock()
            # A wake-up just before the target must not yield the same slot again
            after = max(now, last_fire) if last_fire is not None else now
            target = entry.next_run_at = entry.trigger.next_fire_after(after)
            while True:
                delay = (target - self._clock()).total_seconds()
                if delay <= 0:
                    break
                await self._sleep(delay)
            last_fire = target
            self._fire(entry)

    def fire(self, name: str) -> bool:
        """Run a task's action now. Returns False when the previous run is still going."""
        entry = self._tasks.get(name)
        if entry is None:
            return False
        return self._fire(entry)

    def _fire(self, entry: ScheduledTask) -> bool:
        name = entry.name
        if entry.is_executing:
            entry.skipped_count += 1
            logger.warning(
                "Skipping tick for %s: previous run still in progress", name,
                extra={"task_name": name},
            )
            return False
        entry.in_flight = asyncio.create_task(self._run_action(entry), name=f"run:{name}")
        return True

    async def _run_action(self, entry: ScheduledTask) -> None:
        set_job_context(task_name=entry.name)
        entry.last_run_at = self._clock()
        entry.run_count += 1
        start = time.monotonic()
        try:
            await entry.action()
            entry.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            entry.failure_count += 1
            entry.last_error = str(e)
            logger.exception("Scheduled task %s failed", entry.name, extra={"task_name": entry.name})
        finally:
            logger.debug(
                "Scheduled task %s finished", entry.name,
                extra={
                    "task_name": entry.name,
                    "duration_ms": round((time.monotonic() - start) * 1000, 1),
                },
            )

    # ── Status ──

    def active_tasks(self) -> List[str]:
        return [name for name, entry in self._tasks.items() if entry.is_active]

    def status(self) -> Dict[str, Any]:
        active = self.active_tasks()
        return {
            "is_running": bool(active),
            "task_count": len(self._tasks),
            "active_tasks": active,
            "tasks": {name: entry.to_dict() for name, entry in self._tasks.items()},
        }
