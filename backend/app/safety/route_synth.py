"""
route_synth.py — Free-space route synthesis around danger zones.

There is no street graph: candidate paths are built from waypoints on the
straight start → end corridor, deflected sideways by the danger zones they
fall into, then smoothed and scored.

═══════════════════════════════════════════════════════════════════════════
ALGORITHM
═══════════════════════════════════════════════════════════════════════════

Work in a local planar frame (metres) centred on the start point.

    1. Validate: start ≠ end, every overlay has ≥ 2 points.
    2. n = max(3, ⌊|end − start| / step⌋) interior waypoints, widened
       step when the path would exceed ROUTE_MAX_WAYPOINTS in total.
    3. pᵢ = start + (i / (n + 1)) · (end − start),  i = 1 … n
    4. Deflection — for every zone z with d(pᵢ, z) < r_z:

            push_z = avoidance × (r_z − d(pᵢ, z))

       Only the strongest push is applied (no summation). It acts along
       the corridor normal, away from the side the zone centre lies on
       (left when the centre sits on the corridor itself).
    5. Path = [start, p₁ … pₙ, end]
    6. Smoothing of interior points:  p'ᵢ = (pᵢ₋₁ + 2·pᵢ + pᵢ₊₁) / 4
    7. Scoring, per waypoint w:

            local(w) = Σ_z weight_z × (1 − d(w, z) / r_z)     for d < r_z
                     + Σ unsafe overlays within 50 m:  20 × (6 − rating) / 5
                     − Σ safe overlays within 50 m:     5 × rating / 5

            danger_score      = max(0, Σ_w local(w))
            danger_zones_count = #zones within r_z of any waypoint

    8. One candidate per profile (direct, balanced, avoidant). The lowest
       danger score is tagged "safest"; the shortest route is tagged
       "fastest" when it is a different route.

The single-strongest-push rule keeps the detour close to the corridor;
a waypoint squeezed between two zones is pushed by the stronger one only.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from backend.app.core.config import settings
from backend.app.core.errors import ValidationError
from backend.app.safety.danger_zones import DangerZone
from backend.app.safety.geo import (
    LatLng,
    from_local_xy,
    path_length_m,
    point_to_polyline_distance_m,
    to_local_xy,
)
from backend.app.safety.models import AdvisoryOverlay, OverlayType, validate_polyline

logger = logging.getLogger(__name__)

MIN_INTERIOR_WAYPOINTS = 3
UNSAFE_OVERLAY_PENALTY = 20.0
SAFE_OVERLAY_BONUS = 5.0
HIGH_RISK_WAYPOINT_DANGER = 10.0
_EPS = 1e-9


class Recommendation(str, Enum):
    SAFEST  = "safest"
    FASTEST = "fastest"


@dataclass(frozen=True)
class RouteProfile:
    """How hard a candidate route pushes away from danger zones."""
    name: str
    avoidance: float


DEFAULT_PROFILES: Tuple[RouteProfile, ...] = (
    RouteProfile("direct", 0.0),
    RouteProfile("balanced", 1.0),
    RouteProfile("avoidant", 2.0),
)


@dataclass
class CandidateRoute:
    profile: str
    waypoints: List[LatLng]
    distance_m: float
    duration_s: float
    danger_score: float
    safety_score: float
    danger_zones_count: int
    high_risk_spans: List[Tuple[int, int]] = field(default_factory=list)
    recommendation: Optional[Recommendation] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile,
            "waypoints": [p.to_dict() for p in self.waypoints],
            "distance_m": round(self.distance_m, 1),
            "duration_s": round(self.duration_s, 1),
            "danger_score": self.danger_score,
            "safety_score": self.safety_score,
            "danger_zones_count": self.danger_zones_count,
            "high_risk_spans": [list(span) for span in self.high_risk_spans],
            "recommendation": self.recommendation.value if self.recommendation else None,
        }


@dataclass
class RoutePlan:
    routes: List[CandidateRoute]
    start: LatLng
    end: LatLng

    @property
    def safest(self) -> Optional[CandidateRoute]:
        return next((r for r in self.routes if r.recommendation == Recommendation.SAFEST), None)

    @property
    def fastest(self) -> CandidateRoute:
        tagged = next((r for r in self.routes if r.recommendation == Recommendation.FASTEST), None)
        return tagged or self.safest or self.routes[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "routes": [r.to_dict() for r in self.routes],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════════════════

def plan_route(
    start: LatLng,
    end: LatLng,
    danger_zones: Sequence[DangerZone],
    overlays: Optional[Sequence[AdvisoryOverlay]] = None,
    *,
    step_m: Optional[float] = None,
    profiles: Sequence[RouteProfile] = DEFAULT_PROFILES,
) -> RoutePlan:
    """
    Synthesize and rank candidate routes from `start` to `end`.

    Parameters
    ----------
    start, end : LatLng
    danger_zones : sequence of DangerZone
        Usually the output of aggregate_danger_zones(). May be empty.
    overlays : sequence of AdvisoryOverlay | None
        Admin-drawn safe / unsafe corridors, used for scoring only.
    step_m : float | None
        Waypoint spacing. Defaults to settings.ROUTE_STEP_M; widened when
        the route would exceed settings.ROUTE_MAX_WAYPOINTS.
    profiles : sequence of RouteProfile
        At least two; one candidate route per profile.

    Returns
    -------
    RoutePlan
        Routes ranked by danger score, then distance.
    """
    overlays = list(overlays or [])
    step = settings.ROUTE_STEP_M if step_m is None else step_m
    _validate(start, end, overlays, step, profiles)

    end_xy = np.array(to_local_xy(end, start))
    length = float(np.hypot(*end_xy))
    if length < _EPS:
        raise ValidationError("Route start and end coincide", field="end")

    cap = max(MIN_INTERIOR_WAYPOINTS, settings.ROUTE_MAX_WAYPOINTS - 2)
    if length / step > cap:
        logger.info(
            "Route step %g m over %.0f m exceeds %d waypoints; widening to %.2f m",
            step, length, cap + 2, length / cap,
        )
        n = cap
    else:
        n = max(MIN_INTERIOR_WAYPOINTS, int(math.floor(length / step)))
    fractions = np.arange(1, n + 1, dtype=float) / (n + 1)
    corridor = fractions[:, None] * end_xy[None, :]

    unit = end_xy / length
    normal = np.array([-unit[1], unit[0]])  # left of travel direction

    centers, radii, weights = _zone_arrays(danger_zones, start)
    push_side = _push_sides(centers, normal)

    routes: List[CandidateRoute] = []
    for profile in profiles:
        interior = _deflect(corridor, centers, radii, push_side, normal, profile.avoidance)
        path = np.vstack([np.zeros(2), interior, end_xy])
        path = _smooth(path)
        routes.append(_score(profile.name, path, start, centers, radii, weights, overlays))

    _rank_and_tag(routes)

    logger.info(
        "Planned %d routes over %.0f m with %d zones; safest=%s (danger %.1f)",
        len(routes), length, len(danger_zones), routes[0].profile, routes[0].danger_score,
        extra={"route_count": len(routes), "zone_count": len(danger_zones)},
    )
    return RoutePlan(routes=routes, start=start, end=end)


# ═══════════════════════════════════════════════════════════════════════════
# Steps
# ═══════════════════════════════════════════════════════════════════════════

def _validate(
    start: LatLng,
    end: LatLng,
    overlays: Sequence[AdvisoryOverlay],
    step: float,
    profiles: Sequence[RouteProfile],
) -> None:
    if start == end:
        raise ValidationError("Route start and end coincide", field="end")
    if step <= 0:
        raise ValidationError(f"step_m must be positive, got {step}", field="step_m")
    if len(profiles) < 2:
        raise ValidationError(
            f"At least two route profiles are required, got {len(profiles)}",
            field="profiles",
        )
    for i, overlay in enumerate(overlays):
        validate_polyline(overlay.polyline, what="Advisory overlay", ident=overlay.name or str(i))


def _zone_arrays(
    zones: Sequence[DangerZone],
    origin: LatLng,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Zone centres (k, 2) in the local frame, radii (k,), weights (k,)."""
    if not zones:
        return np.zeros((0, 2)), np.zeros(0), np.zeros(0)
    centers = np.array([to_local_xy(z.center, origin) for z in zones], dtype=float)
    radii = np.array([max(z.radius_m, _EPS) for z in zones], dtype=float)
    weights = np.array([z.weight for z in zones], dtype=float)
    return centers, radii, weights


def _push_sides(centers: np.ndarray, normal: np.ndarray) -> np.ndarray:
    """+1 pushes left, −1 pushes right: always away from the zone's side."""
    offsets = centers @ normal
    return np.where(offsets > _EPS, -1.0, 1.0)


def _deflect(
    points: np.ndarray,
    centers: np.ndarray,
    radii: np.ndarray,
    push_side: np.ndarray,
    normal: np.ndarray,
    avoidance: float,
) -> np.ndarray:
    """Apply the single strongest zone push to every point."""
    if len(centers) == 0 or avoidance <= 0:
        return points.copy()

    dist = np.linalg.norm(points[:, None, :] - centers[None, :, :], axis=2)  # (n, k)
    push = np.where(dist < radii[None, :], avoidance * (radii[None, :] - dist), 0.0)

    strongest = np.argmax(push, axis=1)
    rows = np.arange(len(points))
    magnitude = push[rows, strongest] * push_side[strongest]
    return points + magnitude[:, None] * normal[None, :]


def _smooth(path: np.ndarray) -> np.ndarray:
    """3-point weighted moving average; endpoints stay fixed."""
    smoothed = path.copy()
    smoothed[1:-1] = (path[:-2] + 2.0 * path[1:-1] + path[2:]) / 4.0
    return smoothed


def _score(
    profile: str,
    path: np.ndarray,
    origin: LatLng,
    centers: np.ndarray,
    radii: np.ndarray,
    weights: np.ndarray,
    overlays: Sequence[AdvisoryOverlay],
) -> CandidateRoute:
    waypoints = [from_local_xy(float(x), float(y), origin) for x, y in path]
    local = np.zeros(len(path))
    zones_touched = 0

    if len(centers):
        dist = np.linalg.norm(path[:, None, :] - centers[None, :, :], axis=2)
        inside = dist < radii[None, :]
        pressure = np.where(inside, weights[None, :] * (1.0 - dist / radii[None, :]), 0.0)
        local += pressure.sum(axis=1)
        zones_touched = int(inside.any(axis=0).sum())

    if overlays:
        local += np.array([_overlay_term(w, overlays) for w in waypoints])

    danger = max(0.0, float(local.sum()))
    distance = path_length_m(waypoints)

    return CandidateRoute(
        profile=profile,
        waypoints=waypoints,
        distance_m=distance,
        duration_s=distance / settings.WALKING_SPEED_M_S,
        danger_score=round(danger, 1),
        safety_score=round(distance / (1.0 + danger), 1),
        danger_zones_count=zones_touched,
        high_risk_spans=_high_risk_spans(local),
    )


def _overlay_term(point: LatLng, overlays: Sequence[AdvisoryOverlay]) -> float:
    term = 0.0
    for overlay in overlays:
        if point_to_polyline_distance_m(point, overlay.polyline) > settings.OVERLAY_PROXIMITY_M:
            continue
        if overlay.overlay_type == OverlayType.UNSAFE:
            term += UNSAFE_OVERLAY_PENALTY * (6 - overlay.safety_rating) / 5.0
        else:
            term -= SAFE_OVERLAY_BONUS * overlay.safety_rating / 5.0
    return term


def _high_risk_spans(local: np.ndarray) -> List[Tuple[int, int]]:
    """Merge consecutive high-danger waypoint indices into (first, last) spans."""
    spans: List[Tuple[int, int]] = []
    for i in np.flatnonzero(local >= HIGH_RISK_WAYPOINT_DANGER).tolist():
        if spans and spans[-1][1] == i - 1:
            spans[-1] = (spans[-1][0], i)
        else:
            spans.append((i, i))
    return spans


def _rank_and_tag(routes: List[CandidateRoute]) -> None:
    """Sort safest-first and attach recommendation tags in place."""
    order = {id(r): i for i, r in enumerate(routes)}
    routes.sort(key=lambda r: (r.danger_score, r.distance_m, order[id(r)]))

    safest = routes[0]
    safest.recommendation = Recommendation.SAFEST

    fastest = min(routes, key=lambda r: (r.distance_m, order[id(r)]))
    if fastest is not safest:
        fastest.recommendation = Recommendation.FASTEST
