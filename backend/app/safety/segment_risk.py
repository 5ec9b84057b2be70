"""
segment_risk.py — Night-time risk of catalogued route segments.

For every segment, a report matches when:

    • its location lies in the segment bbox grown by δ (default 0.002°)
    • its event time is inside the lookback window (default 30 days)
    • its category is safety, transport or public space
    • it happened at local night (hour ≥ 19 or < 5)

Per segment:

    segment_risk_score = round(Σ matched.priority_score, 1)
    high_risk_count    = #matched with priority_score ≥ 10
    top_categories     = ≤ 3 categories by match count
    nearby_top_signals = ≤ 3 matched reports by priority_score

═══════════════════════════════════════════════════════════════════════════
RISK LEVELS
═══════════════════════════════════════════════════════════════════════════

    Condition                                   Level
    ─────────────────────────────────────────   ──────
    score ≥ 40  OR  high_risk_count ≥ 3         high
    score ≥ 15                                  medium
    otherwise                                   low

Route risk is the sum of its segments' scores.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from backend.app.core.config import settings
from backend.app.safety.geo import (
    BBox,
    LatLng,
    align_tz,
    is_night_time_local,
    point_in_expanded_bbox,
)
from backend.app.safety.models import (
    Report,
    ReportCategory,
    RouteSegment,
    validate_polyline,
)
from backend.app.safety.scoring import HIGH_PRIORITY_THRESHOLD

logger = logging.getLogger(__name__)

NIGHT_RISK_CATEGORIES: FrozenSet[ReportCategory] = frozenset({
    ReportCategory.SAFETY,
    ReportCategory.TRANSPORT,
    ReportCategory.PUBLIC_SPACE,
})

HIGH_SCORE_THRESHOLD = 40.0
MEDIUM_SCORE_THRESHOLD = 15.0
HIGH_COUNT_THRESHOLD = 3
TOP_N = 3


class RiskLevel(str, Enum):
    HIGH   = "high"
    MEDIUM = "medium"
    LOW    = "low"


@dataclass
class SegmentRisk:
    """Risk summary of one route segment."""
    segment_id: str
    route_id: str
    name: Optional[str]
    polyline: Tuple[LatLng, ...]
    bbox: BBox
    segment_risk_score: float
    signal_count: int
    high_risk_count: int
    top_categories: List[Tuple[ReportCategory, int]] = field(default_factory=list)
    nearby_top_signals: List[Report] = field(default_factory=list)

    @property
    def risk_level(self) -> RiskLevel:
        return risk_level(self.segment_risk_score, self.high_risk_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segment_id": self.segment_id,
            "route_id": self.route_id,
            "name": self.name,
            "polyline": [p.to_dict() for p in self.polyline],
            "bbox": self.bbox.to_dict(),
            "segment_risk_score": self.segment_risk_score,
            "signal_count": self.signal_count,
            "high_risk_count": self.high_risk_count,
            "risk_level": self.risk_level.value,
            "top_categories": [
                {"category": c.value, "count": n} for c, n in self.top_categories
            ],
            "nearby_top_signals": [r.to_dict() for r in self.nearby_top_signals],
        }


def risk_level(score: float, high_risk_count: int) -> RiskLevel:
    """
    Classify a segment.

    >>> risk_level(40, 0).value
    'high'
    >>> risk_level(39, 3).value
    'high'
    >>> risk_level(16, 0).value
    'medium'
    >>> risk_level(5, 0).value
    'low'
    """
    if score >= HIGH_SCORE_THRESHOLD or high_risk_count >= HIGH_COUNT_THRESHOLD:
        return RiskLevel.HIGH
    if score >= MEDIUM_SCORE_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def night_risk_reports(
    reports: Sequence[Report],
    *,
    now: datetime,
    lookback_days: int,
) -> List[Report]:
    """Recent, night-time, safety-relevant reports."""
    since = now - timedelta(days=lookback_days)
    return [
        r for r in reports
        if r.category in NIGHT_RISK_CATEGORIES
        and align_tz(r.event_time, now) >= since
        and is_night_time_local(r.event_time)
    ]


def evaluate_segments(
    segments: Sequence[RouteSegment],
    reports: Sequence[Report],
    lookback_days: Optional[int] = None,
    bbox_delta: Optional[float] = None,
    *,
    now: Optional[datetime] = None,
) -> List[SegmentRisk]:
    """
    Score every catalogued segment against the report snapshot.

    Parameters
    ----------
    segments : sequence of RouteSegment
        Every segment needs at least two points; the whole call is rejected
        otherwise, before anything is computed.
    reports : sequence of Report
    lookback_days : int | None
        Defaults to settings.SEGMENT_LOOKBACK_DAYS.
    bbox_delta : float | None
        Matching tolerance in degrees. Defaults to settings.SEGMENT_BBOX_DELTA_DEG.
    now : datetime | None
        Reference time. Defaults to current UTC.

    Returns
    -------
    list of SegmentRisk
        Sorted by segment_risk_score, highest first.
    """
    for seg in segments:
        validate_polyline(seg.polyline, what="Route segment", ident=seg.id)

    now = now or datetime.now(timezone.utc)
    lookback = settings.SEGMENT_LOOKBACK_DAYS if lookback_days is None else lookback_days
    delta = settings.SEGMENT_BBOX_DELTA_DEG if bbox_delta is None else bbox_delta

    relevant = night_risk_reports(reports, now=now, lookback_days=lookback)

    results: List[SegmentRisk] = []
    for seg in segments:
        bbox = seg.bounding_box
        matched = [r for r in relevant if point_in_expanded_bbox(r.location, bbox, delta)]
        results.append(_summarise(seg, bbox, matched))

    # stable: equal scores keep catalog order
    results.sort(key=lambda s: s.segment_risk_score, reverse=True)

    logger.info(
        "Evaluated %d segments against %d night reports",
        len(segments), len(relevant),
        extra={"segment_count": len(segments)},
    )
    return results


def _summarise(seg: RouteSegment, bbox: BBox, matched: List[Report]) -> SegmentRisk:
    scores = [r.priority_score for r in matched]

    counts = Counter(r.category for r in matched)
    top_categories = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0].value))[:TOP_N]

    top_signals = sorted(matched, key=lambda r: r.priority_score, reverse=True)[:TOP_N]

    return SegmentRisk(
        segment_id=seg.id,
        route_id=seg.route_id,
        name=seg.name,
        polyline=seg.polyline,
        bbox=bbox,
        segment_risk_score=round(sum(scores), 1),
        signal_count=len(matched),
        high_risk_count=sum(1 for s in scores if s >= HIGH_PRIORITY_THRESHOLD),
        top_categories=top_categories,
        nearby_top_signals=top_signals,
    )


def route_total_risk(segment_risks: Sequence[SegmentRisk], route_id: str) -> float:
    """Sum of segment scores belonging to `route_id` (0 when none)."""
    return sum(s.segment_risk_score for s in segment_risks if s.route_id == route_id)


def route_risk_totals(segment_risks: Sequence[SegmentRisk]) -> List[Tuple[str, float]]:
    """Every route's total risk, riskiest first."""
    totals: Dict[str, float] = {}
    for s in segment_risks:
        totals[s.route_id] = totals.get(s.route_id, 0.0) + s.segment_risk_score
    return sorted(
        ((rid, round(total, 1)) for rid, total in totals.items()),
        key=lambda kv: (-kv[1], kv[0]),
    )
