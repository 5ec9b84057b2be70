"""
test_segment_risk.py — Tests for night-time segment risk ranking.

Covers:
    • Report matching (bbox tolerance, lookback, category, night hours)
    • Score / high-risk count / top categories / top signals
    • Risk level thresholds
    • Ordering and route totals
    • Geometry validation

Run with:
    pytest tests/test_segment_risk.py -v
"""

from __future__ import annotations

import pytest
from datetime import datetime, timedelta, timezone

from backend.app.core.errors import ValidationError
from backend.app.safety.geo import LatLng
from backend.app.safety.models import AffectedGroup, Report, ReportCategory, RouteSegment
from backend.app.safety.segment_risk import (
    RiskLevel,
    evaluate_segments,
    night_risk_reports,
    risk_level,
    route_risk_totals,
    route_total_risk,
)

NOW = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)
LAST_NIGHT = datetime(2026, 10, 14, 22, 0, tzinfo=timezone.utc)
YESTERDAY_NOON = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


def _segment(sid: str, route_id: str = "R1", lat: float = 13.080, lng: float = 80.270) -> RouteSegment:
    """A short east-west segment starting at (lat, lng)."""
    return RouteSegment(
        id=sid,
        route_id=route_id,
        polyline=(LatLng(lat, lng), LatLng(lat, lng + 0.002)),
        name=f"Segment {sid}",
    )


def _report(
    rid: str,
    lat: float = 13.0801,
    lng: float = 80.2705,
    severity: int = 3,
    confirmations: int = 1,
    category: ReportCategory = ReportCategory.SAFETY,
    event_time: datetime = LAST_NIGHT,
    groups=(),
) -> Report:
    return Report(
        id=rid,
        category=category,
        severity=severity,
        location=LatLng(lat, lng),
        event_time=event_time,
        affected_groups=frozenset(groups),
        confirmations_count=confirmations,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Risk levels
# ═══════════════════════════════════════════════════════════════════════════

class TestRiskLevel:

    @pytest.mark.parametrize(
        "score, high_count, level",
        [
            (40.0, 0, RiskLevel.HIGH),
            (39.0, 3, RiskLevel.HIGH),
            (16.0, 0, RiskLevel.MEDIUM),
            (15.0, 2, RiskLevel.MEDIUM),
            (5.0, 0, RiskLevel.LOW),
            (0.0, 0, RiskLevel.LOW),
        ],
    )
    def test_thresholds(self, score, high_count, level):
        assert risk_level(score, high_count) == level


# ═══════════════════════════════════════════════════════════════════════════
# Matching
# ═══════════════════════════════════════════════════════════════════════════

class TestNightRiskReports:

    def test_filters(self):
        reports = [
            _report("keep"),
            _report("day", event_time=YESTERDAY_NOON),
            _report("old", event_time=LAST_NIGHT - timedelta(days=40)),
            _report("waste", category=ReportCategory.WASTE),
            _report("flood", category=ReportCategory.FLOODING),
        ]
        kept = night_risk_reports(reports, now=NOW, lookback_days=30)
        assert [r.id for r in kept] == ["keep"]

    @pytest.mark.parametrize("hour, is_night", [(19, True), (23, True), (0, True), (4, True), (5, False), (18, False)])
    def test_night_window_edges(self, hour, is_night):
        ts = datetime(2026, 10, 14, hour, 30, tzinfo=timezone.utc)
        kept = night_risk_reports([_report("r", event_time=ts)], now=NOW, lookback_days=30)
        assert bool(kept) is is_night


class TestEvaluateSegments:

    def test_empty_inputs(self):
        assert evaluate_segments([], []) == []
        risks = evaluate_segments([_segment("s1")], [], now=NOW)
        assert risks[0].segment_risk_score == 0.0
        assert risks[0].signal_count == 0
        assert risks[0].risk_level == RiskLevel.LOW

    def test_score_sums_priority_scores(self):
        reports = [
            _report("a", severity=5, confirmations=3, groups=[AffectedGroup.DISABLED]),  # 24.0
            _report("b", severity=2, confirmations=0),                                   # 2.0
        ]
        risk = evaluate_segments([_segment("s1")], reports, now=NOW)[0]
        assert risk.segment_risk_score == pytest.approx(26.0)
        assert risk.signal_count == 2
        assert risk.high_risk_count == 1
        assert risk.risk_level == RiskLevel.MEDIUM
        assert [r.id for r in risk.nearby_top_signals] == ["a", "b"]

    def test_bbox_tolerance(self):
        # segment spans lat 13.080; 0.0015° north is inside the 0.002° margin
        near = _report("near", lat=13.0815)
        far = _report("far", lat=13.0830)
        risk = evaluate_segments([_segment("s1")], [near, far], now=NOW)[0]
        assert risk.signal_count == 1

    def test_custom_bbox_delta(self):
        far = _report("far", lat=13.0830)
        risk = evaluate_segments([_segment("s1")], [far], bbox_delta=0.005, now=NOW)[0]
        assert risk.signal_count == 1

    def test_custom_lookback(self):
        week_old = _report("w", event_time=LAST_NIGHT - timedelta(days=7))
        risk = evaluate_segments([_segment("s1")], [week_old], lookback_days=3, now=NOW)[0]
        assert risk.signal_count == 0

    def test_three_high_signals_make_high_risk(self):
        reports = [_report(f"h{i}", severity=5, confirmations=2) for i in range(3)]  # 10.0 each
        risk = evaluate_segments([_segment("s1")], reports, now=NOW)[0]
        assert risk.segment_risk_score == pytest.approx(30.0)
        assert risk.high_risk_count == 3
        assert risk.risk_level == RiskLevel.HIGH

    def test_top_categories_limited_and_ordered(self):
        reports = [
            _report("t1", category=ReportCategory.TRANSPORT),
            _report("t2", category=ReportCategory.TRANSPORT),
            _report("p1", category=ReportCategory.PUBLIC_SPACE),
            _report("s1", category=ReportCategory.SAFETY),
        ]
        risk = evaluate_segments([_segment("s1")], reports, now=NOW)[0]
        assert risk.top_categories == [
            (ReportCategory.TRANSPORT, 2),
            (ReportCategory.PUBLIC_SPACE, 1),
            (ReportCategory.SAFETY, 1),
        ]

    def test_top_signals_capped_at_three(self):
        reports = [_report(f"r{i}", severity=i) for i in range(1, 6)]
        risk = evaluate_segments([_segment("s1")], reports, now=NOW)[0]
        assert [r.severity for r in risk.nearby_top_signals] == [5, 4, 3]

    def test_sorted_descending(self):
        segments = [
            _segment("quiet", lat=13.200),
            _segment("busy", lat=13.080),
            _segment("middle", lat=13.150),
        ]
        reports = [
            _report("a", lat=13.0801, severity=5),
            _report("b", lat=13.0801, severity=5),
            _report("c", lat=13.1501, severity=2),
        ]
        risks = evaluate_segments(segments, reports, now=NOW)
        assert [r.segment_id for r in risks] == ["busy", "middle", "quiet"]
        scores = [r.segment_risk_score for r in risks]
        assert scores == sorted(scores, reverse=True)

    def test_rejects_degenerate_segment(self):
        bad = RouteSegment(id="bad", route_id="R1", polyline=(LatLng(13.08, 80.27),))
        with pytest.raises(ValidationError) as exc_info:
            evaluate_segments([_segment("ok"), bad], [], now=NOW)
        assert exc_info.value.details["id"] == "bad"

    def test_to_dict(self):
        d = evaluate_segments([_segment("s1")], [_report("a")], now=NOW)[0].to_dict()
        assert d["segment_id"] == "s1"
        assert d["risk_level"] == "low"
        assert d["top_categories"] == [{"category": "safety", "count": 1}]


# ═══════════════════════════════════════════════════════════════════════════
# Route totals
# ═══════════════════════════════════════════════════════════════════════════

class TestRouteTotals:

    def _risks(self):
        segments = [
            _segment("a1", route_id="A", lat=13.080),
            _segment("a2", route_id="A", lat=13.100),
            _segment("b1", route_id="B", lat=13.150),
        ]
        reports = [
            _report("x", lat=13.0801, severity=4),
            _report("y", lat=13.1001, severity=3),
            _report("z", lat=13.1501, severity=5),
        ]
        return evaluate_segments(segments, reports, now=NOW)

    def test_route_total(self):
        risks = self._risks()
        assert route_total_risk(risks, "A") == pytest.approx(7.0)
        assert route_total_risk(risks, "B") == pytest.approx(5.0)
        assert route_total_risk(risks, "missing") == 0

    def test_totals_descending(self):
        assert route_risk_totals(self._risks()) == [("A", 7.0), ("B", 5.0)]
