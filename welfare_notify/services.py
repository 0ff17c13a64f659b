"""
services.py — Wiring of the notifier's long-lived components.

    CacheStore ─▶ PublicDataService ─┐
    SmsGateway ─▶ Dispatcher ────────┼─▶ EmergencyMonitor ─┐
    RecipientDirectory ──────────────┘                     ├─▶ SchedulerJobs
    ReminderRegistry, ScheduleRunner ──────────────────────┘

One Services instance per process, created lazily by get_services() and torn
down by the FastAPI lifespan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from welfare_notify.alerts.channels.sms_gateway import SmsGateway
from welfare_notify.alerts.dispatcher import Dispatcher
from welfare_notify.alerts.emergency_monitor import EmergencyMonitor
from welfare_notify.alerts.store import DispatchLog, RecipientDirectory, ReminderRegistry
from welfare_notify.core.cache import CacheStore, build_cache_store
from welfare_notify.ingestion.public_data_service import PublicDataService
from welfare_notify.scheduling.jobs import SchedulerJobs
from welfare_notify.scheduling.runner import ScheduleRunner

logger = logging.getLogger(__name__)


@dataclass
class Services:
    cache: CacheStore
    data_service: PublicDataService
    gateway: SmsGateway
    dispatcher: Dispatcher
    recipients: RecipientDirectory
    reminders: ReminderRegistry
    monitor: EmergencyMonitor
    runner: ScheduleRunner
    jobs: SchedulerJobs

    async def close(self) -> None:
        await self.runner.shutdown()
        await self.data_service.close()
        await self.gateway.close()
        await self.cache.close()
        logger.info("Services closed")


def build_services(
    *,
    cache: Optional[CacheStore] = None,
    data_service: Optional[PublicDataService] = None,
    gateway: Optional[SmsGateway] = None,
    recipients: Optional[RecipientDirectory] = None,
    reminders: Optional[ReminderRegistry] = None,
    runner: Optional[ScheduleRunner] = None,
    **monitor_kwargs: Any,
) -> Services:
    cache = cache or build_cache_store()
    data_service = data_service or PublicDataService(cache)
    gateway = gateway or SmsGateway()
    dispatcher = Dispatcher(gateway, DispatchLog())
    recipients = recipients or RecipientDirectory()
    reminders = reminders or ReminderRegistry()
    runner = runner or ScheduleRunner()
    monitor = EmergencyMonitor(data_service, dispatcher, recipients, **monitor_kwargs)
    jobs = SchedulerJobs(runner, data_service, dispatcher, recipients, reminders, monitor)
    return Services(
        cache=cache,
        data_service=data_service,
        gateway=gateway,
        dispatcher=dispatcher,
        recipients=recipients,
        reminders=reminders,
        monitor=monitor,
        runner=runner,
        jobs=jobs,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Global Instance
# ═══════════════════════════════════════════════════════════════════════════

_services: Optional[Services] = None


def get_services() -> Services:
    """Get or create the process-wide services (also a FastAPI dependency)."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services
