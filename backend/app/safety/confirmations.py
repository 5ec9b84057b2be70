"""
confirmations.py — One-confirmation-per-user report confirmation.

A confirmation is identified by (report_id, user_id). Confirming:

    1. Read the report's count, severity, groups and version
    2. If the pair already exists → already_confirmed (no write), reporting
       the count as re-read after the pair check
    3. count' = count + 1;  score' = priority_score(severity, count', groups)
    4. Conditional write of {confirmation record, count', score', version + 1}
       that only lands when the version read in (1) is still current
    5. On a stale version, back off and redo 1–4

Retry schedule (attempt is 1-based):

    exponential:  delay = min(base × 2^(attempt − 1), max)
    linear:       delay = min(base × attempt, max)

After `max_attempts` stale writes, ConfirmationConflictError (409) is raised
and nothing has been written. N concurrent confirmations from N distinct
users therefore produce exactly N increments; a repeat from a user who
already confirmed is a no-op.

Two stores ship:
    • InMemoryConfirmationStore   — asyncio.Lock compare-and-set
    • SqlAlchemyConfirmationStore — `UPDATE … WHERE version = :expected`
                                    plus a unique (report_id, user_id) row
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Optional, Set, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.config import settings
from backend.app.core.errors import ConfirmationConflictError, NotFoundError
from backend.app.safety.models import AffectedGroup, Report
from backend.app.safety.orm import ConfirmationRow, ReportRow
from backend.app.safety.scoring import priority_score

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Data Classes
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ReportSnapshot:
    """The fields a confirmation reads, plus the version it was read at."""
    report_id: str
    severity: int
    affected_groups: FrozenSet[AffectedGroup]
    confirmations_count: int
    version: int


@dataclass(frozen=True)
class ConfirmResult:
    report_id: str
    user_id: str
    already_confirmed: bool
    confirmations_count: int
    priority_score: float
    attempts: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_id": self.report_id,
            "user_id": self.user_id,
            "already_confirmed": self.already_confirmed,
            "confirmations_count": self.confirmations_count,
            "priority_score": round(self.priority_score, 4),
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class ConfirmPolicy:
    """Optimistic-retry parameters."""
    max_attempts: int
    backoff_base_seconds: float
    backoff_max_seconds: float
    backoff_type: str = "exponential"  # or "linear"

    @classmethod
    def from_settings(cls) -> "ConfirmPolicy":
        return cls(
            max_attempts=settings.CONFIRM_MAX_ATTEMPTS,
            backoff_base_seconds=settings.CONFIRM_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=settings.CONFIRM_BACKOFF_MAX_SECONDS,
        )


class StaleVersionError(Exception):
    """Raised by a store when a conditional commit lost the race."""


def _compute_backoff(policy: ConfirmPolicy, attempt: int) -> float:
    """Delay in seconds before the next attempt (`attempt` is 1-based)."""
    if policy.backoff_type == "exponential":
        delay = policy.backoff_base_seconds * (2 ** (attempt - 1))
    else:  # linear
        delay = policy.backoff_base_seconds * attempt
    return min(delay, policy.backoff_max_seconds)


# ═══════════════════════════════════════════════════════════════════════════
# Stores
# ═══════════════════════════════════════════════════════════════════════════

class ConfirmationStore(ABC):
    """Storage contract for the confirmation transaction."""

    @abstractmethod
    async def load(self, report_id: str) -> ReportSnapshot:
        """Current snapshot; NotFoundError when the report does not exist."""

    @abstractmethod
    async def has_confirmation(self, report_id: str, user_id: str) -> bool:
        ...

    @abstractmethod
    async def commit(
        self,
        report_id: str,
        user_id: str,
        expected_version: int,
        confirmations_count: int,
        priority_score: float,
    ) -> None:
        """
        Atomically record the confirmation and the new count / score.

        Raises StaleVersionError, writing nothing, when the stored version is
        no longer `expected_version` or the pair was recorded meanwhile.
        """


class InMemoryConfirmationStore(ConfirmationStore):
    """Process-local store; every commit is a compare-and-set under one lock."""

    def __init__(self, reports: Iterable[Report] = ()):
        self._reports: Dict[str, Report] = {}
        self._versions: Dict[str, int] = {}
        self._scores: Dict[str, float] = {}
        self._confirmations: Set[Tuple[str, str]] = set()
        self._lock = asyncio.Lock()
        for report in reports:
            self.add_report(report)

    def add_report(self, report: Report) -> None:
        self._reports[report.id] = report
        self._versions[report.id] = 0
        self._scores[report.id] = report.priority_score

    def get_report(self, report_id: str) -> Report:
        try:
            return self._reports[report_id]
        except KeyError:
            raise NotFoundError("Report", report_id=report_id) from None

    def stored_score(self, report_id: str) -> float:
        return self._scores[report_id]

    async def load(self, report_id: str) -> ReportSnapshot:
        async with self._lock:
            report = self.get_report(report_id)
            return ReportSnapshot(
                report_id=report.id,
                severity=report.severity,
                affected_groups=report.affected_groups,
                confirmations_count=report.confirmations_count,
                version=self._versions[report_id],
            )

    async def has_confirmation(self, report_id: str, user_id: str) -> bool:
        async with self._lock:
            return (report_id, user_id) in self._confirmations

    async def commit(
        self,
        report_id: str,
        user_id: str,
        expected_version: int,
        confirmations_count: int,
        priority_score: float,
    ) -> None:
        async with self._lock:
            report = self.get_report(report_id)
            if self._versions[report_id] != expected_version:
                raise StaleVersionError(
                    f"report {report_id}: version {self._versions[report_id]} != {expected_version}"
                )
            if (report_id, user_id) in self._confirmations:
                raise StaleVersionError(f"report {report_id}: {user_id} confirmed meanwhile")

            self._confirmations.add((report_id, user_id))
            self._reports[report_id] = dataclasses.replace(
                report, confirmations_count=confirmations_count,
            )
            self._scores[report_id] = priority_score
            self._versions[report_id] = expected_version + 1


class SqlAlchemyConfirmationStore(ConfirmationStore):
    """Async SQLAlchemy store: versioned UPDATE + unique confirmation row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add_report(self, report: Report) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(ReportRow.from_report(report))

    async def get_report(self, report_id: str) -> Report:
        async with self._session_factory() as session:
            row = await session.get(ReportRow, report_id)
            if row is None:
                raise NotFoundError("Report", report_id=report_id)
            return row.to_report()

    async def load(self, report_id: str) -> ReportSnapshot:
        async with self._session_factory() as session:
            row = await session.get(ReportRow, report_id)
            if row is None:
                raise NotFoundError("Report", report_id=report_id)
            return ReportSnapshot(
                report_id=row.id,
                severity=row.severity,
                affected_groups=frozenset(AffectedGroup(g) for g in row.affected_groups or ()),
                confirmations_count=row.confirmations_count,
                version=row.version,
            )

    async def has_confirmation(self, report_id: str, user_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConfirmationRow.id)
                .where(ConfirmationRow.report_id == report_id, ConfirmationRow.user_id == user_id)
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def commit(
        self,
        report_id: str,
        user_id: str,
        expected_version: int,
        confirmations_count: int,
        priority_score: float,
    ) -> None:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    result = await session.execute(
                        update(ReportRow)
                        .where(ReportRow.id == report_id, ReportRow.version == expected_version)
                        .values(
                            confirmations_count=confirmations_count,
                            priority_score=priority_score,
                            version=expected_version + 1,
                        )
                    )
                    if result.rowcount != 1:
                        raise StaleVersionError(
                            f"report {report_id}: version moved past {expected_version}"
                        )
                    session.add(ConfirmationRow(report_id=report_id, user_id=user_id))
                    await session.flush()
            except IntegrityError as exc:
                raise StaleVersionError(
                    f"report {report_id}: {user_id} confirmed meanwhile"
                ) from exc


# ═══════════════════════════════════════════════════════════════════════════
# Transaction
# ═══════════════════════════════════════════════════════════════════════════

async def confirm_report(
    store: ConfirmationStore,
    report_id: str,
    user_id: str,
    *,
    policy: Optional[ConfirmPolicy] = None,
) -> ConfirmResult:
    """
    Record `user_id`'s confirmation of `report_id`.

    Parameters
    ----------
    store : ConfirmationStore
    report_id, user_id : str
    policy : ConfirmPolicy | None
        Defaults to ConfirmPolicy.from_settings().

    Returns
    -------
    ConfirmResult
        `already_confirmed=True` (and unchanged count) for a repeat.

    Raises
    ------
    NotFoundError
        Unknown report.
    ConfirmationConflictError
        Every attempt lost to a concurrent writer.
    """
    policy = policy or ConfirmPolicy.from_settings()

    for attempt in range(1, policy.max_attempts + 1):
        snapshot = await store.load(report_id)

        if await store.has_confirmation(report_id, user_id):
            # writers may have landed since the first read
            current = await store.load(report_id)
            logger.info(
                "Report %s already confirmed by %s", report_id, user_id,
                extra={"report_id": report_id, "user_id": user_id},
            )
            return ConfirmResult(
                report_id=report_id,
                user_id=user_id,
                already_confirmed=True,
                confirmations_count=current.confirmations_count,
                priority_score=priority_score(
                    current.severity, current.confirmations_count, current.affected_groups,
                ),
                attempts=attempt,
            )

        new_count = snapshot.confirmations_count + 1
        new_score = priority_score(snapshot.severity, new_count, snapshot.affected_groups)

        try:
            await store.commit(report_id, user_id, snapshot.version, new_count, new_score)
        except StaleVersionError as exc:
            logger.debug(
                "Confirmation attempt %d/%d for %s lost: %s",
                attempt, policy.max_attempts, report_id, exc,
                extra={"report_id": report_id, "user_id": user_id, "attempt": attempt},
            )
            if attempt < policy.max_attempts:
                await asyncio.sleep(_compute_backoff(policy, attempt))
            continue

        logger.info(
            "Report %s confirmed by %s → count=%d score=%.2f",
            report_id, user_id, new_count, new_score,
            extra={"report_id": report_id, "user_id": user_id, "attempt": attempt},
        )
        return ConfirmResult(
            report_id=report_id,
            user_id=user_id,
            already_confirmed=False,
            confirmations_count=new_count,
            priority_score=new_score,
            attempts=attempt,
        )

    logger.warning(
        "Confirmation of %s by %s gave up after %d attempts",
        report_id, user_id, policy.max_attempts,
        extra={"report_id": report_id, "user_id": user_id, "attempt": policy.max_attempts},
    )
    raise ConfirmationConflictError(report_id, user_id, policy.max_attempts)


async def has_confirmed(store: ConfirmationStore, report_id: str, user_id: str) -> bool:
    """Read-only check: has `user_id` already confirmed `report_id`?"""
    return await store.has_confirmation(report_id, user_id)
