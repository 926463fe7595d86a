"""
Health aggregation for the messaging service.

One component per delivery transport plus one for admin configuration:

    inbox_transport   memory / firestore
    email_transport   simulation / smtp
    sms_transport     simulation / twilio
    admin_config      ADMIN_EMAILS non-empty

A disabled transport or a missing admin list only DEGRADES the service:
broadcasts still run and report the skipped channel per recipient. A
transport whose ``enabled()`` itself raises is UNHEALTHY.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List

from backend.app.core.config import settings
from backend.app.messaging.channels.base import DeliveryChannel

logger = logging.getLogger(__name__)

_started_at = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = [HealthStatus.HEALTHY, HealthStatus.DEGRADED, HealthStatus.UNHEALTHY]


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    latency_ms: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            out["message"] = self.message
        if self.details:
            out["details"] = self.details
        return out


@dataclass
class HealthReport:
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> HealthStatus:
        """Worst status across components; healthy when there are none."""
        return max(
            (c.status for c in self.components),
            key=_SEVERITY.index,
            default=HealthStatus.HEALTHY,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.checked_at.isoformat(),
            "uptime_seconds": round(time.monotonic() - _started_at, 1),
            "components": [c.to_dict() for c in self.components],
        }


def check_channel(channel: DeliveryChannel) -> ComponentHealth:
    comp = ComponentHealth(name=f"{channel.name}_transport", details={"provider": channel.provider})
    started = time.monotonic()
    try:
        enabled = channel.enabled()
    except Exception as exc:
        logger.error("Could not determine %s transport state: %s", channel.name, exc)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(exc)
    else:
        comp.details["enabled"] = enabled
        comp.message = f"{channel.provider} transport {'enabled' if enabled else 'disabled'}"
        if not enabled:
            comp.status = HealthStatus.DEGRADED
    comp.latency_ms = (time.monotonic() - started) * 1000
    return comp


def check_admin_config() -> ComponentHealth:
    count = sum(1 for e in settings.ADMIN_EMAILS if e and e.strip())
    if count:
        return ComponentHealth(
            name="admin_config",
            message=f"{count} admin email(s) configured",
            details={"admin_emails": count},
        )
    return ComponentHealth(
        name="admin_config",
        status=HealthStatus.DEGRADED,
        message="No ADMIN_EMAILS configured; every admin request will be rejected",
        details={"admin_emails": 0},
    )


async def run_health_check(channels: Iterable[DeliveryChannel] = ()) -> HealthReport:
    report = HealthReport(components=[check_channel(c) for c in channels])
    report.components.append(check_admin_config())
    return report
