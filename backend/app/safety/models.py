"""
models.py — Input entities of the night-safety engine.

Defines:
    • ReportCategory / ReportStatus / AffectedGroup — closed enums
    • OverlayType — advisory overlay kind
    • Report          — a citizen-submitted, geolocated issue
    • RouteSegment    — a curated stretch of a named route
    • AdvisoryOverlay — admin-drawn safe / unsafe corridor

Derived outputs (danger zones, segment risks, candidate routes) live next to
the code that computes them.

Every lookup table keyed by one of the enums below is passed through
`ensure_complete()` at import time, so adding a variant without extending the
tables fails loudly instead of silently falling back to a default.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Type

from backend.app.core.errors import ValidationError
from backend.app.safety.geo import BBox, LatLng, compute_bbox

MIN_SEVERITY = 1
MAX_SEVERITY = 5


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class ReportCategory(str, Enum):
    WASTE         = "waste"
    SAFETY        = "safety"
    TRANSPORT     = "transport"
    FLOODING      = "flooding"
    ACCESSIBILITY = "accessibility"
    PUBLIC_SPACE  = "public_space"


class ReportStatus(str, Enum):
    NEW         = "new"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    RESOLVED    = "resolved"


class AffectedGroup(str, Enum):
    WOMEN      = "women"
    CHILDREN   = "children"
    ELDERLY    = "elderly"
    DISABLED   = "disabled"
    LOW_INCOME = "low_income"


class OverlayType(str, Enum):
    SAFE   = "safe"
    UNSAFE = "unsafe"


def ensure_complete(table: Mapping[Any, Any], enum_cls: Type[Enum], name: str) -> None:
    """Raise at import time if `table` does not cover every member of `enum_cls`."""
    missing = [m.value for m in enum_cls if m not in table]
    if missing:
        raise RuntimeError(f"{name} is missing entries for {enum_cls.__name__}: {missing}")


# ═══════════════════════════════════════════════════════════════════════════
# Report
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Report:
    """
    A citizen report snapshot.

    `priority_score` is not a field: it is always derived from severity,
    confirmations and affected groups, so it cannot drift from them.
    """
    id: str
    category: ReportCategory
    severity: int
    location: LatLng
    event_time: datetime
    affected_groups: FrozenSet[AffectedGroup] = frozenset()
    status: ReportStatus = ReportStatus.NEW
    confirmations_count: int = 0

    def __post_init__(self) -> None:
        if not (MIN_SEVERITY <= self.severity <= MAX_SEVERITY):
            raise ValidationError(
                f"Severity must be in [{MIN_SEVERITY}, {MAX_SEVERITY}], got {self.severity}",
                field="severity", report_id=self.id,
            )
        if self.confirmations_count < 0:
            raise ValidationError(
                f"confirmations_count must be >= 0, got {self.confirmations_count}",
                field="confirmations_count", report_id=self.id,
            )
        object.__setattr__(self, "category", ReportCategory(self.category))
        object.__setattr__(self, "status", ReportStatus(self.status))
        object.__setattr__(
            self, "affected_groups",
            frozenset(AffectedGroup(g) for g in self.affected_groups),
        )

    @property
    def priority_score(self) -> float:
        from backend.app.safety.scoring import priority_score

        return priority_score(self.severity, self.confirmations_count, self.affected_groups)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "severity": self.severity,
            "location": self.location.to_dict(),
            "event_time": self.event_time.isoformat(),
            "affected_groups": sorted(g.value for g in self.affected_groups),
            "status": self.status.value,
            "confirmations_count": self.confirmations_count,
            "priority_score": round(self.priority_score, 4),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Route catalog & overlays
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RouteSegment:
    """One externally-curated stretch of a route. `bbox` is derived when omitted."""
    id: str
    route_id: str
    polyline: Tuple[LatLng, ...]
    name: Optional[str] = None
    bbox: Optional[BBox] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "polyline", tuple(self.polyline))

    @property
    def bounding_box(self) -> BBox:
        return self.bbox if self.bbox is not None else compute_bbox(self.polyline)


@dataclass(frozen=True)
class AdvisoryOverlay:
    """Admin-drawn corridor marked safe or unsafe, rated 1 (poor) → 5 (good)."""
    polyline: Tuple[LatLng, ...]
    overlay_type: OverlayType
    safety_rating: int = 3
    name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "polyline", tuple(self.polyline))
        object.__setattr__(self, "overlay_type", OverlayType(self.overlay_type))
        if not (1 <= self.safety_rating <= 5):
            raise ValidationError(
                f"safety_rating must be in [1, 5], got {self.safety_rating}",
                field="safety_rating",
            )


def validate_polyline(points: Iterable[LatLng], *, what: str, ident: Optional[str] = None) -> None:
    """Reject polylines that cannot describe a path (fewer than two points)."""
    count = len(tuple(points))
    if count < 2:
        details = {"points": count}
        if ident is not None:
            details["id"] = ident
        raise ValidationError(
            f"{what} needs at least 2 points, got {count}",
            field="polyline", **details,
        )
