"""
scoring.py — Report priority scoring.

═══════════════════════════════════════════════════════════════════════════
PRIORITY FORMULA
═══════════════════════════════════════════════════════════════════════════

    confirmation_factor      = max(1, confirmations_count)
    vulnerability_multiplier = 1 + mean(weight[g] − 1 for g in groups)
                               (1 when no group is affected)
    priority_score           = severity × confirmation_factor
                               × vulnerability_multiplier

Group weights:

    Group         Weight
    ──────────    ──────
    women         1.3
    children      1.5
    elderly       1.4
    disabled      1.6
    low_income    1.2

Badges:

    priority_score    Badge
    ──────────────    ──────
    ≥ 10              High
    6 – 10            Medium
    < 6               Low

The score is monotonically non-decreasing in both severity and
confirmations: every factor is non-negative and the group term does not
depend on either.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable

from backend.app.core.errors import ValidationError
from backend.app.safety.models import (
    MAX_SEVERITY,
    MIN_SEVERITY,
    AffectedGroup,
    ensure_complete,
)

GROUP_WEIGHTS: Dict[AffectedGroup, float] = {
    AffectedGroup.WOMEN: 1.3,
    AffectedGroup.CHILDREN: 1.5,
    AffectedGroup.ELDERLY: 1.4,
    AffectedGroup.DISABLED: 1.6,
    AffectedGroup.LOW_INCOME: 1.2,
}
ensure_complete(GROUP_WEIGHTS, AffectedGroup, "GROUP_WEIGHTS")

HIGH_PRIORITY_THRESHOLD = 10.0
MEDIUM_PRIORITY_THRESHOLD = 6.0


class PriorityBadge(str, Enum):
    HIGH   = "High"
    MEDIUM = "Medium"
    LOW    = "Low"


def vulnerability_multiplier(groups: Iterable[AffectedGroup]) -> float:
    """
    1 + average excess weight of the affected groups.

    Duplicates collapse: a group counts once however often it is listed.

    >>> vulnerability_multiplier([AffectedGroup.DISABLED])
    1.6
    >>> vulnerability_multiplier([])
    1.0
    """
    unique = {AffectedGroup(g) for g in groups}
    if not unique:
        return 1.0
    excess = sum(GROUP_WEIGHTS[g] - 1.0 for g in unique)
    return 1.0 + excess / len(unique)


def priority_score(
    severity: int,
    confirmations_count: int,
    affected_groups: Iterable[AffectedGroup] = (),
) -> float:
    """
    Derive a report's ranking score.

    Parameters
    ----------
    severity : int
        Reporter-assessed severity, 1 (minor) → 5 (critical).
    confirmations_count : int
        Distinct users who confirmed the report (≥ 0). Zero counts as one:
        the reporter's own observation.
    affected_groups : iterable of AffectedGroup

    Returns
    -------
    float

    Examples
    --------
    >>> priority_score(5, 3, [AffectedGroup.DISABLED])
    24.0
    >>> priority_score(2, 0, [])
    2.0
    """
    if not (MIN_SEVERITY <= severity <= MAX_SEVERITY):
        raise ValidationError(
            f"Severity must be in [{MIN_SEVERITY}, {MAX_SEVERITY}], got {severity}",
            field="severity",
        )
    if confirmations_count < 0:
        raise ValidationError(
            f"confirmations_count must be >= 0, got {confirmations_count}",
            field="confirmations_count",
        )

    confirmation_factor = max(1, confirmations_count)
    return severity * confirmation_factor * vulnerability_multiplier(affected_groups)


def priority_badge(score: float) -> PriorityBadge:
    """Map a priority score to its display badge."""
    if score >= HIGH_PRIORITY_THRESHOLD:
        return PriorityBadge.HIGH
    if score >= MEDIUM_PRIORITY_THRESHOLD:
        return PriorityBadge.MEDIUM
    return PriorityBadge.LOW


def format_score(score: float) -> str:
    """
    >>> format_score(23.96)
    '24.0'
    """
    return f"{round(score * 10) / 10:.1f}"
