"""
test_density_grid.py — Tests for the report heatmap grid.

Covers:
    • Cell indexing and bounds
    • Status-weighted accumulation and intensity normalisation
    • Determinism / empty input / bad cell size
    • Dominant category and legend bands

Run with:
    pytest tests/test_density_grid.py -v
"""

from __future__ import annotations

import pytest
from datetime import datetime, timezone

from backend.app.core.errors import ValidationError
from backend.app.safety.density_grid import (
    STATUS_MULTIPLIER,
    build_grid,
    intensity_band,
    report_weight,
)
from backend.app.safety.geo import LatLng
from backend.app.safety.models import Report, ReportCategory, ReportStatus

EVENT_TIME = datetime(2026, 10, 10, 21, 30, tzinfo=timezone.utc)


def _report(
    rid: str,
    lat: float,
    lng: float,
    severity: int = 3,
    category: ReportCategory = ReportCategory.SAFETY,
    status: ReportStatus = ReportStatus.ACKNOWLEDGED,
) -> Report:
    return Report(
        id=rid,
        category=category,
        severity=severity,
        location=LatLng(lat, lng),
        event_time=EVENT_TIME,
        status=status,
    )


class TestReportWeight:

    def test_new_reports_weigh_more(self):
        new = _report("a", 13.0, 80.0, severity=4, status=ReportStatus.NEW)
        old = _report("b", 13.0, 80.0, severity=4, status=ReportStatus.RESOLVED)
        assert report_weight(new) == pytest.approx(6.0)
        assert report_weight(old) == pytest.approx(4.0)

    def test_multiplier_table_is_exhaustive(self):
        assert set(STATUS_MULTIPLIER) == set(ReportStatus)


class TestBuildGrid:

    def test_empty_input(self):
        assert build_grid([], 0.002) == []

    @pytest.mark.parametrize("size", [0.0, -0.002])
    def test_rejects_non_positive_cell_size(self, size):
        with pytest.raises(ValidationError):
            build_grid([_report("a", 13.0, 80.0)], size)

    def test_same_cell_accumulates(self):
        cells = build_grid(
            [
                _report("a", 13.0801, 80.2701, severity=2),
                _report("b", 13.0802, 80.2702, severity=3),
            ],
            0.002,
        )
        assert len(cells) == 1
        cell = cells[0]
        assert cell.count == 2
        assert cell.weight == pytest.approx(5.0)
        assert cell.intensity == pytest.approx(1.0)
        assert cell.avg_severity == pytest.approx(2.5)

    def test_cell_index_and_bounds(self):
        cell = build_grid([_report("a", 13.0815, 80.2715)], 0.01)[0]
        assert cell.cell_id == (1308, 8027)
        assert cell.bounds.min_lat == pytest.approx(13.08)
        assert cell.bounds.max_lat == pytest.approx(13.09)
        assert cell.bounds.contains(LatLng(13.0815, 80.2715))

    def test_negative_coordinates_floor_down(self):
        cell = build_grid([_report("a", -0.0005, -0.0005)], 0.001)[0]
        assert cell.cell_id == (-1, -1)

    def test_centroid_is_mean_location(self):
        cell = build_grid(
            [_report("a", 13.0802, 80.2702), _report("b", 13.0804, 80.2706)],
            0.005,
        )[0]
        assert cell.centroid.lat == pytest.approx(13.0803)
        assert cell.centroid.lng == pytest.approx(80.2704)

    def test_intensity_normalised_to_heaviest_cell(self):
        cells = build_grid(
            [
                _report("a", 13.0801, 80.2701, severity=4),
                _report("b", 13.0801, 80.2701, severity=4),
                _report("c", 13.2001, 80.4001, severity=2),
            ],
            0.002,
        )
        by_weight = sorted(cells, key=lambda c: c.weight)
        assert by_weight[-1].intensity == pytest.approx(1.0)
        assert by_weight[0].intensity == pytest.approx(0.25)

    def test_single_light_cell_has_full_intensity(self):
        cell = build_grid([_report("a", 13.0, 80.0, severity=1)], 0.002)[0]
        assert cell.weight == pytest.approx(1.0)
        assert cell.intensity == pytest.approx(1.0)

    def test_deterministic_and_ordered(self):
        reports = [
            _report("a", 13.2001, 80.4001),
            _report("b", 13.0801, 80.2701),
            _report("c", 12.9001, 80.1001),
        ]
        first = build_grid(reports, 0.002)
        second = build_grid(list(reversed(reports)), 0.002)
        assert [c.cell_id for c in first] == sorted(c.cell_id for c in first)
        assert [c.to_dict() for c in first] == [c.to_dict() for c in second]

    def test_dominant_category_by_count(self):
        cell = build_grid(
            [
                _report("a", 13.0801, 80.2701, category=ReportCategory.TRANSPORT),
                _report("b", 13.0801, 80.2701, category=ReportCategory.TRANSPORT),
                _report("c", 13.0801, 80.2701, category=ReportCategory.SAFETY, severity=5),
            ],
            0.002,
        )[0]
        assert cell.dominant_category == ReportCategory.TRANSPORT

    def test_to_dict_includes_band(self):
        d = build_grid([_report("a", 13.0, 80.0)], 0.002)[0].to_dict()
        assert d["band"] == "severe"
        assert d["count"] == 1


class TestIntensityBand:

    @pytest.mark.parametrize(
        "intensity, band",
        [
            (0.95, "severe"),
            (0.7, "high"),
            (0.5, "elevated"),
            (0.3, "moderate"),
            (0.2, "low"),
            (0.0, "low"),
        ],
    )
    def test_bands(self, intensity, band):
        assert intensity_band(intensity) == band
