"""
danger_zones.py — Risk-weighted spatial clusters of recent reports.

Pipeline:
    1. Keep reports inside the lookback window (default 30 days)
    2. Keep risk-relevant categories (safety, transport, public space,
       flooding)
       with severity ≥ 2 (lighter reports never form a zone)
    3. Aggregate the survivors on the density grid
    4. Turn each occupied cell into a DangerZone centred on the mean
       location of its reports

Pressure radius:

    radius = base_radius                      report_count ≤ 3
    radius = base_radius × 1.5                report_count > 3

Zones are ephemeral: recomputed from the caller's snapshot on every call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from backend.app.core.config import settings
from backend.app.safety.density_grid import CellId, build_grid
from backend.app.safety.geo import LatLng, align_tz
from backend.app.safety.models import Report, ReportCategory

logger = logging.getLogger(__name__)

RISK_CATEGORIES: FrozenSet[ReportCategory] = frozenset({
    ReportCategory.SAFETY,
    ReportCategory.TRANSPORT,
    ReportCategory.PUBLIC_SPACE,
    ReportCategory.FLOODING,
})


@dataclass(frozen=True)
class DangerZone:
    """A cluster of recent risk reports exerting avoidance pressure."""
    cell_id: CellId
    center: LatLng
    weight: float
    report_count: int
    radius_m: float
    avg_severity: float = 0.0
    intensity: float = 0.0
    dominant_category: Optional[ReportCategory] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cell_id": list(self.cell_id),
            "center": self.center.to_dict(),
            "weight": round(self.weight, 4),
            "report_count": self.report_count,
            "radius_m": round(self.radius_m, 1),
            "avg_severity": round(self.avg_severity, 2),
            "intensity": round(self.intensity, 4),
            "dominant_category": (
                self.dominant_category.value if self.dominant_category else None
            ),
        }


def pressure_radius(
    report_count: int,
    base_radius_m: Optional[float] = None,
) -> float:
    """Influence radius of a zone; denser clusters project further."""
    base = settings.DANGER_BASE_RADIUS_M if base_radius_m is None else base_radius_m
    if report_count > settings.DENSE_ZONE_MIN_REPORTS:
        return base * settings.DENSE_ZONE_RADIUS_FACTOR
    return base


def recent_risk_reports(
    reports: Sequence[Report],
    *,
    now: datetime,
    lookback_days: int,
    categories: FrozenSet[ReportCategory] = RISK_CATEGORIES,
    min_severity: int = 2,
) -> List[Report]:
    """Risk-relevant reports inside the lookback window, at or above `min_severity`."""
    since = now - timedelta(days=lookback_days)
    return [
        r for r in reports
        if r.category in categories
        and r.severity >= min_severity
        and align_tz(r.event_time, now) >= since
    ]


def aggregate_danger_zones(
    reports: Sequence[Report],
    *,
    now: Optional[datetime] = None,
    lookback_days: Optional[int] = None,
    cell_size_deg: Optional[float] = None,
    base_radius_m: Optional[float] = None,
    categories: FrozenSet[ReportCategory] = RISK_CATEGORIES,
    min_severity: Optional[int] = None,
) -> List[DangerZone]:
    """
    Build danger zones from a report snapshot.

    Parameters
    ----------
    reports : sequence of Report
    now : datetime | None
        Reference time for the lookback window. Defaults to current UTC.
    lookback_days : int | None
        Defaults to settings.DANGER_LOOKBACK_DAYS.
    cell_size_deg : float | None
        Defaults to settings.GRID_CELL_SIZE_DEG (~500 m).
    base_radius_m : float | None
        Defaults to settings.DANGER_BASE_RADIUS_M.
    categories : frozenset of ReportCategory
    min_severity : int | None
        Weakest severity that still counts. Defaults to
        settings.DANGER_MIN_SEVERITY.

    Returns
    -------
    list of DangerZone
        Heaviest first; ties broken by cell index.
    """
    now = now or datetime.now(timezone.utc)
    lookback = settings.DANGER_LOOKBACK_DAYS if lookback_days is None else lookback_days
    cell_size = settings.GRID_CELL_SIZE_DEG if cell_size_deg is None else cell_size_deg
    floor = settings.DANGER_MIN_SEVERITY if min_severity is None else min_severity

    relevant = recent_risk_reports(
        reports, now=now, lookback_days=lookback, categories=categories, min_severity=floor,
    )
    cells = build_grid(relevant, cell_size)

    zones = [
        DangerZone(
            cell_id=cell.cell_id,
            center=cell.centroid,
            weight=cell.weight,
            report_count=cell.count,
            radius_m=pressure_radius(cell.count, base_radius_m),
            avg_severity=cell.avg_severity,
            intensity=cell.intensity,
            dominant_category=cell.dominant_category,
        )
        for cell in cells
    ]
    zones.sort(key=lambda z: (-z.weight, z.cell_id))

    logger.info(
        "Danger zones: %d of %d reports relevant → %d zones",
        len(relevant), len(reports), len(zones),
        extra={"zone_count": len(zones)},
    )
    return zones
