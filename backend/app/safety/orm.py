"""
ORM rows for the confirmation transaction.

`reports.version` is bumped on every write; a commit only lands when the
version it read is still current. The unique (report_id, user_id) pair on
`report_confirmations` backs the one-confirmation-per-user rule at the
storage level as well.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base
from backend.app.safety.geo import LatLng
from backend.app.safety.models import Report


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReportRow(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[int] = mapped_column(Integer, nullable=False)
    affected_groups: Mapped[List[str]] = mapped_column(JSON, default=list)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="new")

    # Mutated only by the confirmation transaction
    confirmations_count: Mapped[int] = mapped_column(Integer, default=0)
    priority_score: Mapped[float] = mapped_column(Float, default=0.0)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    event_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def to_report(self) -> Report:
        return Report(
            id=self.id,
            category=self.category,
            severity=self.severity,
            location=LatLng(self.lat, self.lng),
            event_time=self.event_time,
            affected_groups=frozenset(self.affected_groups or ()),
            status=self.status,
            confirmations_count=self.confirmations_count,
        )

    @classmethod
    def from_report(cls, report: Report) -> "ReportRow":
        return cls(
            id=report.id,
            category=report.category.value,
            severity=report.severity,
            affected_groups=sorted(g.value for g in report.affected_groups),
            lat=report.location.lat,
            lng=report.location.lng,
            status=report.status.value,
            confirmations_count=report.confirmations_count,
            priority_score=report.priority_score,
            version=0,
            event_time=report.event_time,
        )


class ConfirmationRow(Base):
    __tablename__ = "report_confirmations"
    __table_args__ = (
        UniqueConstraint("report_id", "user_id", name="uq_confirmation_report_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    report_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
