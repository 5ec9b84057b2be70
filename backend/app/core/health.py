"""
Health check aggregation — deep probe for the engine's subsystems.

Checks:
    • Database connectivity (confirmation store)
    • Scoring self-test (known input → known score)

Returns a structured report suitable for readiness probes and dashboards.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY   = "healthy"
    DEGRADED  = "degraded"   # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
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


async def check_database(engine: Optional[AsyncEngine] = None) -> ComponentHealth:
    """Round-trip a trivial query through the async engine."""
    from backend.app.core.database import get_engine

    comp = ComponentHealth(name="database")
    start = time.monotonic()
    try:
        async with (engine or get_engine()).connect() as conn:
            await conn.execute(text("SELECT 1"))
        comp.message = "Connection available"
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database health check failed: %s", e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_scoring() -> ComponentHealth:
    """Severity 4, 3 confirmations, women + children must score 16.8."""
    from backend.app.safety.models import AffectedGroup
    from backend.app.safety.scoring import priority_score

    comp = ComponentHealth(name="scoring")
    start = time.monotonic()
    score = priority_score(4, 3, [AffectedGroup.WOMEN, AffectedGroup.CHILDREN])
    if abs(score - 16.8) > 1e-9:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Unexpected self-test score {score}"
    else:
        comp.message = "Self-test passed"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(engine: Optional[AsyncEngine] = None) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )
    report.components.append(await check_database(engine))
    report.components.append(await check_scoring())

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    return report
