"""
geo.py — Geographic primitives shared by the night-safety engine.

Provides:
    - LatLng / BBox value types
    - Haversine distance between two points (metres)
    - Expanded bounding-box membership (segment matching)
    - Local planar projection used by the route synthesizer
    - Point-to-polyline distance
    - Night-hour classification of event timestamps

Coordinates are in **decimal degrees**; distances are in **metres**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Local planar projection
=======================
Route synthesis works over a few kilometres, where an equirectangular
projection around an origin is accurate to well under a metre:

    x = (λ − λ₀) · cos(φ₀) · R · π / 180
    y = (φ − φ₀) · R · π / 180
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence, Tuple

EARTH_RADIUS_M: float = 6_371_000.0
METERS_PER_DEGREE: float = EARTH_RADIUS_M * math.pi / 180.0

# Local night window: 19:00 (inclusive) → 05:00 (exclusive)
NIGHT_START_HOUR = 19
NIGHT_END_HOUR = 5


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LatLng:
    """A geographic point in decimal degrees."""
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.lat <= 90.0):
            raise ValueError(f"Latitude must be in [-90, 90], got {self.lat}")
        if not (-180.0 <= self.lng <= 180.0):
            raise ValueError(f"Longitude must be in [-180, 180], got {self.lng}")

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class BBox:
    """Axis-aligned lat/lng box."""
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def expanded(self, delta: float) -> "BBox":
        return BBox(
            self.min_lat - delta,
            self.max_lat + delta,
            self.min_lng - delta,
            self.max_lng + delta,
        )

    def contains(self, point: LatLng) -> bool:
        return (
            self.min_lat <= point.lat <= self.max_lat
            and self.min_lng <= point.lng <= self.max_lng
        )

    def to_dict(self) -> dict:
        return {
            "min_lat": self.min_lat,
            "max_lat": self.max_lat,
            "min_lng": self.min_lng,
            "max_lng": self.max_lng,
        }


# ---------------------------------------------------------------------------
# Distances
# ---------------------------------------------------------------------------

def haversine_m(p1: LatLng, p2: LatLng) -> float:
    """
    Great-circle distance between two points in metres.

    >>> round(haversine_m(LatLng(0, 0), LatLng(0, 0)), 1)
    0.0
    """
    phi1, phi2 = math.radians(p1.lat), math.radians(p2.lat)
    d_phi = phi2 - phi1
    d_lambda = math.radians(p2.lng - p1.lng)

    a = (
        math.sin(d_phi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def path_length_m(points: Sequence[LatLng]) -> float:
    """Sum of haversine legs along a polyline."""
    return sum(haversine_m(a, b) for a, b in zip(points, points[1:]))


# ---------------------------------------------------------------------------
# Bounding boxes
# ---------------------------------------------------------------------------

def compute_bbox(polyline: Sequence[LatLng]) -> BBox:
    """Tight bounding box around a polyline (at least one point)."""
    if not polyline:
        raise ValueError("Cannot compute the bounding box of an empty polyline")
    lats = [p.lat for p in polyline]
    lngs = [p.lng for p in polyline]
    return BBox(min(lats), max(lats), min(lngs), max(lngs))


def point_in_expanded_bbox(point: LatLng, bbox: BBox, delta: float) -> bool:
    """Is the point inside the box grown by `delta` degrees on every side?"""
    return bbox.expanded(delta).contains(point)


# ---------------------------------------------------------------------------
# Local planar projection
# ---------------------------------------------------------------------------

def wrap_lng(lng: float) -> float:
    """Fold a longitude (or longitude difference) into [-180, 180)."""
    return (lng + 180.0) % 360.0 - 180.0


def to_local_xy(point: LatLng, origin: LatLng) -> Tuple[float, float]:
    """
    Project a point to metres east (x) / north (y) of `origin`.

    The longitude difference takes the short way round, so points just
    across the antimeridian land a few metres away rather than a planet away.
    """
    cos_lat = max(math.cos(math.radians(origin.lat)), 1e-10)
    x = wrap_lng(point.lng - origin.lng) * cos_lat * METERS_PER_DEGREE
    y = (point.lat - origin.lat) * METERS_PER_DEGREE
    return x, y


def from_local_xy(x: float, y: float, origin: LatLng) -> LatLng:
    """Inverse of `to_local_xy`; latitude is clamped, longitude wrapped."""
    cos_lat = max(math.cos(math.radians(origin.lat)), 1e-10)
    lat = origin.lat + y / METERS_PER_DEGREE
    lng = origin.lng + x / (cos_lat * METERS_PER_DEGREE)
    if not -180.0 <= lng <= 180.0:
        lng = wrap_lng(lng)
    return LatLng(max(-90.0, min(90.0, lat)), lng)


def point_to_segment_distance_m(point: LatLng, a: LatLng, b: LatLng) -> float:
    """Shortest distance from `point` to the segment a→b (planar, metres)."""
    px, py = to_local_xy(point, a)
    bx, by = to_local_xy(b, a)
    seg_len_sq = bx * bx + by * by
    if seg_len_sq <= 1e-12:
        return math.hypot(px, py)
    t = max(0.0, min(1.0, (px * bx + py * by) / seg_len_sq))
    return math.hypot(px - t * bx, py - t * by)


def point_to_polyline_distance_m(point: LatLng, polyline: Sequence[LatLng]) -> float:
    """Shortest distance from `point` to any leg of `polyline`."""
    if len(polyline) == 1:
        return haversine_m(point, polyline[0])
    return min(
        (point_to_segment_distance_m(point, a, b) for a, b in zip(polyline, polyline[1:])),
        default=math.inf,
    )


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

def is_night_time_local(ts: datetime) -> bool:
    """
    True when the wall-clock hour of `ts` is in the night window.

    The hour is read as-is: callers pass timestamps already in the
    reporting area's local time zone.
    """
    return ts.hour >= NIGHT_START_HOUR or ts.hour < NIGHT_END_HOUR


def align_tz(ts: datetime, reference: datetime) -> datetime:
    """Make `ts` comparable with `reference` when only one of them is tz-aware."""
    if ts.tzinfo is None and reference.tzinfo is not None:
        return ts.replace(tzinfo=reference.tzinfo)
    if ts.tzinfo is not None and reference.tzinfo is None:
        return ts.replace(tzinfo=None)
    return ts
