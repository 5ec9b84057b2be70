"""
test_danger_zones.py — Tests for danger-zone aggregation.

Run with:
    pytest tests/test_danger_zones.py -v
"""

from __future__ import annotations

import pytest
from datetime import datetime, timedelta, timezone

from backend.app.safety.danger_zones import (
    RISK_CATEGORIES,
    aggregate_danger_zones,
    pressure_radius,
)
from backend.app.safety.geo import LatLng
from backend.app.safety.models import Report, ReportCategory, ReportStatus

NOW = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)


def _report(
    rid: str,
    lat: float = 13.0801,
    lng: float = 80.2701,
    severity: int = 3,
    category: ReportCategory = ReportCategory.SAFETY,
    days_ago: float = 1.0,
) -> Report:
    return Report(
        id=rid,
        category=category,
        severity=severity,
        location=LatLng(lat, lng),
        event_time=NOW - timedelta(days=days_ago),
        status=ReportStatus.ACKNOWLEDGED,
    )


class TestPressureRadius:

    def test_base_radius_up_to_three_reports(self):
        assert pressure_radius(1, 150.0) == pytest.approx(150.0)
        assert pressure_radius(3, 150.0) == pytest.approx(150.0)

    def test_dense_cluster_projects_further(self):
        assert pressure_radius(4, 150.0) == pytest.approx(225.0)

    def test_defaults_from_settings(self):
        assert pressure_radius(1) == pytest.approx(150.0)


class TestAggregateDangerZones:

    def test_no_reports_no_zones(self):
        assert aggregate_danger_zones([], now=NOW) == []

    def test_dense_zone_radius(self):
        reports = [_report(f"r{i}") for i in range(4)]
        zones = aggregate_danger_zones(reports, now=NOW, base_radius_m=100.0)
        assert len(zones) == 1
        assert zones[0].report_count == 4
        assert zones[0].radius_m == pytest.approx(150.0)

    def test_sparse_zone_keeps_base_radius(self):
        zones = aggregate_danger_zones(
            [_report("a"), _report("b")], now=NOW, base_radius_m=100.0,
        )
        assert zones[0].radius_m == pytest.approx(100.0)

    def test_old_reports_excluded(self):
        zones = aggregate_danger_zones(
            [_report("old", days_ago=45), _report("recent", days_ago=2)],
            now=NOW,
        )
        assert len(zones) == 1
        assert zones[0].report_count == 1

    def test_custom_lookback(self):
        zones = aggregate_danger_zones(
            [_report("a", days_ago=10)], now=NOW, lookback_days=7,
        )
        assert zones == []

    def test_irrelevant_categories_excluded(self):
        zones = aggregate_danger_zones(
            [
                _report("w", category=ReportCategory.WASTE),
                _report("x", category=ReportCategory.ACCESSIBILITY),
            ],
            now=NOW,
        )
        assert zones == []

    def test_flooding_counts_as_risk(self):
        assert ReportCategory.FLOODING in RISK_CATEGORIES
        zones = aggregate_danger_zones([_report("f", category=ReportCategory.FLOODING)], now=NOW)
        assert len(zones) == 1

    def test_light_reports_never_form_a_zone(self):
        assert aggregate_danger_zones([_report("a", severity=1)], now=NOW) == []

    def test_severity_floor_is_inclusive(self):
        zones = aggregate_danger_zones(
            [_report("a", severity=1), _report("b", severity=2)], now=NOW,
        )
        assert len(zones) == 1
        assert zones[0].report_count == 1

    def test_custom_severity_floor(self):
        zones = aggregate_danger_zones([_report("a", severity=1)], now=NOW, min_severity=1)
        assert len(zones) == 1
        assert aggregate_danger_zones([_report("b", severity=4)], now=NOW, min_severity=5) == []

    def test_center_is_mean_location(self):
        zones = aggregate_danger_zones(
            [_report("a", 13.0801, 80.2701), _report("b", 13.0809, 80.2709)],
            now=NOW,
        )
        assert zones[0].center.lat == pytest.approx(13.0805)
        assert zones[0].center.lng == pytest.approx(80.2705)

    def test_heaviest_first(self):
        zones = aggregate_danger_zones(
            [
                _report("light", 13.30, 80.50, severity=2),
                _report("heavy1", 13.08, 80.27, severity=5),
                _report("heavy2", 13.08, 80.27, severity=5),
            ],
            now=NOW,
        )
        assert [z.report_count for z in zones] == [2, 1]
        assert zones[0].weight > zones[1].weight

    def test_naive_event_times_are_accepted(self):
        naive = Report(
            id="n",
            category=ReportCategory.SAFETY,
            severity=3,
            location=LatLng(13.08, 80.27),
            event_time=datetime(2026, 10, 14, 22, 0),
        )
        assert len(aggregate_danger_zones([naive], now=NOW)) == 1

    def test_to_dict(self):
        d = aggregate_danger_zones([_report("a")], now=NOW)[0].to_dict()
        assert d["report_count"] == 1
        assert d["dominant_category"] == "safety"
        assert set(d["center"]) == {"lat", "lng"}
