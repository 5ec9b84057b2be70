"""
density_grid.py — Point-to-cell aggregation of reports.

Snaps every report to a square lat/lng cell and accumulates a severity
weight per cell:

    cell            = (⌊lat / size⌋, ⌊lng / size⌋)
    weight(cell)    = Σ severity × status_multiplier
    intensity(cell) = weight / max(1, max_weight)

`new` reports weigh 1.5×: they have not been acted on yet.

The builder is pure: cells live in a dict local to the call (keyed by the
computed index), nothing is cached between calls, and the result is ordered
by cell index, so identical inputs always produce identical output.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np

from backend.app.core.errors import ValidationError
from backend.app.safety.geo import BBox, LatLng
from backend.app.safety.models import (
    Report,
    ReportCategory,
    ReportStatus,
    ensure_complete,
)

logger = logging.getLogger(__name__)

STATUS_MULTIPLIER: Dict[ReportStatus, float] = {
    ReportStatus.NEW: 1.5,
    ReportStatus.ACKNOWLEDGED: 1.0,
    ReportStatus.IN_PROGRESS: 1.0,
    ReportStatus.RESOLVED: 1.0,
}
ensure_complete(STATUS_MULTIPLIER, ReportStatus, "STATUS_MULTIPLIER")

CellId = Tuple[int, int]


@dataclass(frozen=True)
class DensityCell:
    """One occupied grid cell."""
    cell_id: CellId
    bounds: BBox
    weight: float
    intensity: float
    dominant_category: ReportCategory
    count: int
    centroid: LatLng            # mean location of the cell's reports
    avg_severity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cell_id": list(self.cell_id),
            "bounds": self.bounds.to_dict(),
            "weight": round(self.weight, 4),
            "intensity": round(self.intensity, 4),
            "band": intensity_band(self.intensity),
            "dominant_category": self.dominant_category.value,
            "count": self.count,
            "centroid": self.centroid.to_dict(),
            "avg_severity": round(self.avg_severity, 2),
        }


def report_weight(report: Report) -> float:
    """Severity scaled by how actionable the report still is."""
    return report.severity * STATUS_MULTIPLIER[report.status]


def build_grid(points: Sequence[Report], cell_size_deg: float) -> List[DensityCell]:
    """
    Aggregate reports into occupied grid cells.

    Parameters
    ----------
    points : sequence of Report
        Snapshot to aggregate. May be empty.
    cell_size_deg : float
        Cell side length in degrees (0.002 ≈ 200 m).

    Returns
    -------
    list of DensityCell
        One entry per occupied cell, ordered by cell index.
    """
    if cell_size_deg <= 0:
        raise ValidationError(
            f"cell_size_deg must be positive, got {cell_size_deg}",
            field="cell_size_deg",
        )
    if not points:
        return []

    lats = np.array([p.location.lat for p in points], dtype=float)
    lngs = np.array([p.location.lng for p in points], dtype=float)
    lat_idx = np.floor(lats / cell_size_deg).astype(np.int64)
    lng_idx = np.floor(lngs / cell_size_deg).astype(np.int64)

    members: Dict[CellId, List[int]] = {}
    for i, key in enumerate(zip(lat_idx.tolist(), lng_idx.tolist())):
        members.setdefault(key, []).append(i)

    weights = {
        key: float(sum(report_weight(points[i]) for i in idx))
        for key, idx in members.items()
    }
    denominator = max(1.0, max(weights.values()))

    cells: List[DensityCell] = []
    for key in sorted(members):
        idx = members[key]
        cell_lat, cell_lng = key[0] * cell_size_deg, key[1] * cell_size_deg
        cells.append(DensityCell(
            cell_id=key,
            bounds=BBox(cell_lat, cell_lat + cell_size_deg, cell_lng, cell_lng + cell_size_deg),
            weight=weights[key],
            intensity=weights[key] / denominator,
            dominant_category=_dominant_category([points[i] for i in idx]),
            count=len(idx),
            centroid=LatLng(float(lats[idx].mean()), float(lngs[idx].mean())),
            avg_severity=float(np.mean([points[i].severity for i in idx])),
        ))

    logger.debug(
        "Density grid built: %d reports → %d cells",
        len(points), len(cells), extra={"cell_count": len(cells)},
    )
    return cells


def _dominant_category(reports: Sequence[Report]) -> ReportCategory:
    """Most frequent category; ties go to the higher summed weight, then name."""
    counts = Counter(r.category for r in reports)
    weight_by_cat: Dict[ReportCategory, float] = {}
    for r in reports:
        weight_by_cat[r.category] = weight_by_cat.get(r.category, 0.0) + report_weight(r)
    return min(counts, key=lambda c: (-counts[c], -weight_by_cat[c], c.value))


def intensity_band(intensity: float) -> str:
    """Five-step legend label for a normalised intensity."""
    if intensity > 0.8:
        return "severe"
    if intensity > 0.6:
        return "high"
    if intensity > 0.4:
        return "elevated"
    if intensity > 0.2:
        return "moderate"
    return "low"
