"""
test_scoring.py — Tests for report priority scoring.

Covers:
    • Vulnerability multiplier (group weights, duplicates, empty)
    • Priority score formula and confirmation factor
    • Badge thresholds and score formatting
    • Input validation
    • Monotonicity properties (hypothesis)

Run with:
    pytest tests/test_scoring.py -v
"""

from __future__ import annotations

import pytest
from datetime import datetime, timezone
from hypothesis import given, strategies as st

from backend.app.core.errors import ValidationError
from backend.app.safety.geo import LatLng
from backend.app.safety.models import AffectedGroup, Report, ReportCategory
from backend.app.safety.scoring import (
    GROUP_WEIGHTS,
    PriorityBadge,
    format_score,
    priority_badge,
    priority_score,
    vulnerability_multiplier,
)

groups_strategy = st.frozensets(st.sampled_from(list(AffectedGroup)))


# ═══════════════════════════════════════════════════════════════════════════
# Vulnerability multiplier
# ═══════════════════════════════════════════════════════════════════════════

class TestVulnerabilityMultiplier:

    def test_empty_is_neutral(self):
        assert vulnerability_multiplier([]) == 1.0

    def test_single_group_uses_its_weight(self):
        for group, weight in GROUP_WEIGHTS.items():
            assert vulnerability_multiplier([group]) == pytest.approx(weight)

    def test_average_of_excess_weights(self):
        # women 1.3, children 1.5 → 1 + (0.3 + 0.5) / 2
        m = vulnerability_multiplier([AffectedGroup.WOMEN, AffectedGroup.CHILDREN])
        assert m == pytest.approx(1.4)

    def test_duplicates_count_once(self):
        once = vulnerability_multiplier([AffectedGroup.ELDERLY])
        twice = vulnerability_multiplier([AffectedGroup.ELDERLY, AffectedGroup.ELDERLY])
        assert once == pytest.approx(twice)

    def test_accepts_string_values(self):
        assert vulnerability_multiplier(["disabled"]) == pytest.approx(1.6)

    def test_weights_cover_every_group(self):
        assert set(GROUP_WEIGHTS) == set(AffectedGroup)


# ═══════════════════════════════════════════════════════════════════════════
# Priority score
# ═══════════════════════════════════════════════════════════════════════════

class TestPriorityScore:

    def test_high_priority_example(self):
        score = priority_score(5, 3, [AffectedGroup.DISABLED])
        assert score == pytest.approx(24.0)
        assert priority_badge(score) == PriorityBadge.HIGH

    def test_low_priority_example(self):
        score = priority_score(2, 0, [])
        assert score == pytest.approx(2.0)
        assert priority_badge(score) == PriorityBadge.LOW

    def test_zero_confirmations_count_as_one(self):
        assert priority_score(3, 0) == priority_score(3, 1)

    def test_scales_linearly_with_confirmations(self):
        assert priority_score(3, 4) == pytest.approx(4 * priority_score(3, 1))

    @pytest.mark.parametrize("severity", [0, 6, -1])
    def test_rejects_out_of_range_severity(self, severity):
        with pytest.raises(ValidationError):
            priority_score(severity, 1)

    def test_rejects_negative_confirmations(self):
        with pytest.raises(ValidationError) as exc_info:
            priority_score(3, -1)
        assert exc_info.value.details["field"] == "confirmations_count"

    def test_validation_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            priority_score(9, 1)


class TestReportPriorityProperty:

    def _report(self, **overrides) -> Report:
        fields = dict(
            id="r1",
            category=ReportCategory.SAFETY,
            severity=4,
            location=LatLng(13.08, 80.27),
            event_time=datetime(2026, 10, 1, 22, 0, tzinfo=timezone.utc),
            affected_groups=frozenset({AffectedGroup.WOMEN}),
            confirmations_count=2,
        )
        fields.update(overrides)
        return Report(**fields)

    def test_derived_from_fields(self):
        report = self._report()
        assert report.priority_score == pytest.approx(4 * 2 * 1.3)

    def test_report_rejects_bad_severity(self):
        with pytest.raises(ValidationError):
            self._report(severity=7)

    def test_string_enums_are_coerced(self):
        report = self._report(category="transport", affected_groups=["children"])
        assert report.category is ReportCategory.TRANSPORT
        assert report.affected_groups == frozenset({AffectedGroup.CHILDREN})


# ═══════════════════════════════════════════════════════════════════════════
# Badges & formatting
# ═══════════════════════════════════════════════════════════════════════════

class TestPriorityBadge:

    @pytest.mark.parametrize(
        "score, badge",
        [
            (10.0, PriorityBadge.HIGH),
            (9.99, PriorityBadge.MEDIUM),
            (6.0, PriorityBadge.MEDIUM),
            (5.99, PriorityBadge.LOW),
            (0.0, PriorityBadge.LOW),
        ],
    )
    def test_thresholds(self, score, badge):
        assert priority_badge(score) == badge

    def test_badge_values(self):
        assert PriorityBadge.HIGH.value == "High"
        assert PriorityBadge.LOW.value == "Low"


class TestFormatScore:

    def test_one_decimal(self):
        assert format_score(23.96) == "24.0"
        assert format_score(2.0) == "2.0"
        assert format_score(7.84) == "7.8"


# ═══════════════════════════════════════════════════════════════════════════
# Properties
# ═══════════════════════════════════════════════════════════════════════════

class TestScoreProperties:

    @given(
        severity=st.integers(min_value=1, max_value=5),
        confirmations=st.integers(min_value=0, max_value=500),
        groups=groups_strategy,
    )
    def test_monotone_in_confirmations(self, severity, confirmations, groups):
        assert priority_score(severity, confirmations + 1, groups) >= priority_score(
            severity, confirmations, groups
        )

    @given(
        severity=st.integers(min_value=1, max_value=4),
        confirmations=st.integers(min_value=0, max_value=500),
        groups=groups_strategy,
    )
    def test_monotone_in_severity(self, severity, confirmations, groups):
        assert priority_score(severity + 1, confirmations, groups) > priority_score(
            severity, confirmations, groups
        )

    @given(groups=groups_strategy)
    def test_multiplier_bounds(self, groups):
        m = vulnerability_multiplier(groups)
        assert 1.0 <= m <= max(GROUP_WEIGHTS.values())

    @given(
        severity=st.integers(min_value=1, max_value=5),
        confirmations=st.integers(min_value=0, max_value=500),
        groups=groups_strategy,
    )
    def test_score_is_at_least_severity(self, severity, confirmations, groups):
        assert priority_score(severity, confirmations, groups) >= severity
