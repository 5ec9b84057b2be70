"""
FastAPI endpoints for night-safety scoring, heatmaps and routing.

Endpoints:
    POST /api/v1/night-safety/score                       — Priority score + badge
    POST /api/v1/night-safety/heatmap                     — Density grid cells
    POST /api/v1/night-safety/danger-zones                — Risk-weighted clusters
    POST /api/v1/night-safety/segments/evaluate           — Ranked segment risks
    POST /api/v1/night-safety/routes/plan                 — Safest / fastest routes
    POST /api/v1/night-safety/reports/{report_id}/confirm — Confirm a report
    GET  /api/v1/night-safety/reports/{report_id}/confirmations/{user_id}

Every computation endpoint is stateless: the caller sends the report
snapshot it wants evaluated. Only confirmation touches storage.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from backend.app.core.config import settings
from backend.app.core.database import get_session_factory
from backend.app.safety.confirmations import (
    ConfirmationStore,
    SqlAlchemyConfirmationStore,
    confirm_report,
    has_confirmed,
)
from backend.app.safety.danger_zones import aggregate_danger_zones
from backend.app.safety.density_grid import build_grid
from backend.app.safety.geo import LatLng
from backend.app.safety.models import (
    AdvisoryOverlay,
    AffectedGroup,
    OverlayType,
    Report,
    ReportCategory,
    ReportStatus,
    RouteSegment,
)
from backend.app.safety.route_synth import plan_route
from backend.app.safety.scoring import (
    format_score,
    priority_badge,
    priority_score,
    vulnerability_multiplier,
)
from backend.app.safety.segment_risk import evaluate_segments, route_risk_totals

router = APIRouter(prefix="/api/v1/night-safety", tags=["night-safety"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class LatLngIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90, examples=[13.0827])
    lng: float = Field(..., ge=-180, le=180, examples=[80.2707])

    def to_domain(self) -> LatLng:
        return LatLng(self.lat, self.lng)


class ReportIn(BaseModel):
    id: str
    category: ReportCategory
    severity: int = Field(..., ge=1, le=5)
    location: LatLngIn
    event_time: datetime
    affected_groups: List[AffectedGroup] = Field(default_factory=list)
    status: ReportStatus = ReportStatus.NEW
    confirmations_count: int = Field(0, ge=0)

    def to_domain(self) -> Report:
        return Report(
            id=self.id,
            category=self.category,
            severity=self.severity,
            location=self.location.to_domain(),
            event_time=self.event_time,
            affected_groups=frozenset(self.affected_groups),
            status=self.status,
            confirmations_count=self.confirmations_count,
        )


class ScoreRequest(BaseModel):
    severity: int = Field(..., ge=1, le=5, description="Reported severity 1–5")
    confirmations_count: int = Field(0, ge=0)
    affected_groups: List[AffectedGroup] = Field(default_factory=list)


class ScoreResponse(BaseModel):
    priority_score: float
    formatted: str
    badge: str
    vulnerability_multiplier: float


class HeatmapRequest(BaseModel):
    reports: List[ReportIn] = Field(default_factory=list)
    cell_size_deg: Optional[float] = Field(None, gt=0, description="Defaults to ~200 m cells")


class DangerZonesRequest(BaseModel):
    reports: List[ReportIn] = Field(default_factory=list)
    now: Optional[datetime] = None
    lookback_days: Optional[int] = Field(None, ge=0)
    cell_size_deg: Optional[float] = Field(None, gt=0)
    base_radius_m: Optional[float] = Field(None, gt=0)


class SegmentIn(BaseModel):
    id: str
    route_id: str
    polyline: List[LatLngIn]
    name: Optional[str] = None

    def to_domain(self) -> RouteSegment:
        return RouteSegment(
            id=self.id,
            route_id=self.route_id,
            polyline=tuple(p.to_domain() for p in self.polyline),
            name=self.name,
        )


class SegmentEvaluateRequest(BaseModel):
    segments: List[SegmentIn]
    reports: List[ReportIn] = Field(default_factory=list)
    now: Optional[datetime] = None
    lookback_days: Optional[int] = Field(None, ge=0)
    bbox_delta: Optional[float] = Field(None, ge=0)


class OverlayIn(BaseModel):
    polyline: List[LatLngIn]
    overlay_type: OverlayType
    safety_rating: int = Field(3, ge=1, le=5)
    name: Optional[str] = None

    def to_domain(self) -> AdvisoryOverlay:
        return AdvisoryOverlay(
            polyline=tuple(p.to_domain() for p in self.polyline),
            overlay_type=self.overlay_type,
            safety_rating=self.safety_rating,
            name=self.name,
        )


class RoutePlanRequest(BaseModel):
    start: LatLngIn
    end: LatLngIn
    reports: List[ReportIn] = Field(
        default_factory=list,
        description="Report snapshot; danger zones are aggregated from it",
    )
    overlays: List[OverlayIn] = Field(default_factory=list)
    step_m: Optional[float] = Field(None, gt=0)
    now: Optional[datetime] = None


class ConfirmRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_confirmation_store(request: Request) -> ConfirmationStore:
    """Store installed on app.state at startup, else the configured database."""
    store = getattr(request.app.state, "confirmation_store", None)
    if store is None:
        store = SqlAlchemyConfirmationStore(get_session_factory())
        request.app.state.confirmation_store = store
    return store


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/score", response_model=ScoreResponse)
async def score_endpoint(req: ScoreRequest):
    """Priority score of a single report and its display badge."""
    score = priority_score(req.severity, req.confirmations_count, req.affected_groups)
    return ScoreResponse(
        priority_score=round(score, 4),
        formatted=format_score(score),
        badge=priority_badge(score).value,
        vulnerability_multiplier=round(vulnerability_multiplier(req.affected_groups), 4),
    )


@router.post("/heatmap")
async def heatmap_endpoint(req: HeatmapRequest) -> Dict[str, Any]:
    cell_size = req.cell_size_deg or settings.HEATMAP_CELL_SIZE_DEG
    cells = build_grid([r.to_domain() for r in req.reports], cell_size)
    return {
        "cell_size_deg": cell_size,
        "cell_count": len(cells),
        "cells": [c.to_dict() for c in cells],
    }


@router.post("/danger-zones")
async def danger_zones_endpoint(req: DangerZonesRequest) -> Dict[str, Any]:
    zones = aggregate_danger_zones(
        [r.to_domain() for r in req.reports],
        now=req.now,
        lookback_days=req.lookback_days,
        cell_size_deg=req.cell_size_deg,
        base_radius_m=req.base_radius_m,
    )
    return {"zone_count": len(zones), "zones": [z.to_dict() for z in zones]}


@router.post("/segments/evaluate")
async def evaluate_segments_endpoint(req: SegmentEvaluateRequest) -> Dict[str, Any]:
    """
    Rank catalogued route segments by night-time risk.

    Also returns every route's total (sum of its segments), riskiest first.
    """
    risks = evaluate_segments(
        [s.to_domain() for s in req.segments],
        [r.to_domain() for r in req.reports],
        lookback_days=req.lookback_days,
        bbox_delta=req.bbox_delta,
        now=req.now,
    )
    return {
        "segments": [r.to_dict() for r in risks],
        "routes": [
            {"route_id": route_id, "total_risk": total}
            for route_id, total in route_risk_totals(risks)
        ],
    }


@router.post("/routes/plan")
async def plan_route_endpoint(req: RoutePlanRequest) -> Dict[str, Any]:
    """
    Synthesize candidate walking routes that bend around danger zones.

    Zones are aggregated from the submitted reports first; admin overlays
    only affect scoring.
    """
    zones = aggregate_danger_zones([r.to_domain() for r in req.reports], now=req.now)
    plan = plan_route(
        req.start.to_domain(),
        req.end.to_domain(),
        zones,
        [o.to_domain() for o in req.overlays],
        step_m=req.step_m,
    )
    return {
        **plan.to_dict(),
        "danger_zones": [z.to_dict() for z in zones],
    }


@router.post("/reports/{report_id}/confirm")
async def confirm_endpoint(
    report_id: str,
    req: ConfirmRequest,
    store: ConfirmationStore = Depends(get_confirmation_store),
) -> Dict[str, Any]:
    """Confirm a report once per user; repeats report `already_confirmed`."""
    result = await confirm_report(store, report_id, req.user_id)
    return result.to_dict()


@router.get("/reports/{report_id}/confirmations/{user_id}")
async def has_confirmed_endpoint(
    report_id: str,
    user_id: str,
    store: ConfirmationStore = Depends(get_confirmation_store),
) -> Dict[str, Any]:
    return {
        "report_id": report_id,
        "user_id": user_id,
        "confirmed": await has_confirmed(store, report_id, user_id),
    }
