"""
Health check aggregation — checks the store and the push provider.

Returns a structured report for liveness, readiness and load balancer
checks. The store being unreachable makes the service
unhealthy; a simulated push provider only degrades it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from starlette.concurrency import run_in_threadpool

from panic_relay.app.alerts.notifier import Notifier
from panic_relay.app.core.config import settings
from panic_relay.app.core.errors import StoreError
from panic_relay.app.storage.base import AlertStore

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # alerts stored, pushes not really sent
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


async def check_store(store: AlertStore) -> ComponentHealth:
    comp = ComponentHealth(name=f"store:{store.name}")
    start = time.monotonic()
    try:
        comp.details = await run_in_threadpool(store.ping)
        comp.message = "Store reachable"
    except StoreError as e:
        logger.error("Store health check failed: %s", e.details)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = e.message
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_push(notifier: Notifier) -> ComponentHealth:
    comp = ComponentHealth(name=f"push:{notifier.name}")
    if notifier.name == "simulation":
        comp.status = (
            HealthStatus.DEGRADED if settings.is_production else HealthStatus.HEALTHY
        )
        comp.message = "Push notifications are simulated"
    else:
        comp.message = "Push provider configured"
    return comp


async def run_health_check(store: AlertStore, notifier: Notifier) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components.append(await check_store(store))
    report.components.append(await check_push(notifier))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
