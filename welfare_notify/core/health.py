"""
Health check aggregation — probe for every subsystem the notifier depends on.

Checks:
    • Cache backend reachability (memory or Redis)
    • Scheduler tasks running, emergency monitor watermark freshness
    • Public-data provider configuration (API keys present)
    • SMS gateway mode and credentials

An unreachable cache or a stopped emergency monitor is UNHEALTHY; missing
provider keys or a simulated SMS gateway is DEGRADED.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from welfare_notify.core.config import settings

if TYPE_CHECKING:
    from welfare_notify.services import Services

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # sends still possible, something is off
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


async def check_cache(services: "Services") -> ComponentHealth:
    comp = ComponentHealth(name="cache")
    start = time.monotonic()
    backend = type(services.cache).__name__
    if await services.cache.ping():
        stats = await services.cache.stats()
        comp.message = f"{backend} reachable"
        comp.details = {"backend": backend, **stats}
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = f"{backend} unreachable"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_scheduler(services: "Services") -> ComponentHealth:
    comp = ComponentHealth(name="scheduler")
    start = time.monotonic()
    status = services.runner.status()
    monitor = services.monitor
    comp.details = {
        "active_tasks": status["active_tasks"],
        "emergency_monitoring": monitor.is_monitoring,
        "last_emergency_check": (
            monitor.last_check_time.isoformat() if monitor.last_check_time else None
        ),
    }

    if not settings.ENABLE_SCHEDULER:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Scheduler disabled by configuration"
    elif not monitor.is_monitoring:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Emergency monitor not running"
    elif monitor.last_check_time and (
        datetime.now(timezone.utc) - monitor.last_check_time
        > timedelta(seconds=settings.EMERGENCY_SLA_SECONDS)
    ):
        comp.status = HealthStatus.DEGRADED
        comp.message = "Emergency check overdue"
    else:
        comp.message = f"{len(status['active_tasks'])} tasks active"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_providers(services: "Services") -> ComponentHealth:
    """Configuration only; reachability is probed by /public-data/connections."""
    comp = ComponentHealth(name="public_data_providers")
    start = time.monotonic()
    data = services.data_service
    configured = {
        "weather": data.weather_client.is_configured,
        "air_quality": data.air_quality_client.is_configured,
        "disaster": data.disaster_client.is_configured,
    }
    missing = [name for name, ok in configured.items() if not ok]
    comp.details = configured
    if missing:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Missing API keys: {', '.join(missing)}"
    else:
        comp.message = "All providers configured"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_sms_gateway(services: "Services") -> ComponentHealth:
    comp = ComponentHealth(name="sms_gateway")
    gateway = services.gateway
    comp.details = {"provider": gateway.provider}
    if gateway.provider == "simulation":
        comp.status = HealthStatus.DEGRADED
        comp.message = "Simulation mode: messages are logged, not sent"
    elif not (gateway.access_key and gateway.secret_key and gateway.service_id):
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "SENS credentials incomplete"
    else:
        comp.message = "SENS credentials configured"
    return comp


async def run_health_check(services: "Services") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    for check in (check_cache, check_scheduler, check_providers, check_sms_gateway):
        report.components.append(await check(services))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
