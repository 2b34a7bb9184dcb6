"""Exclusive claiming of queued work shared by all workers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Type
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from .contracts import JobStatus, RunStatus
from .db import Job, Run, RunDB, RunEvent, utcnow

logger = logging.getLogger(__name__)

OnClaim = Callable[[AsyncSession, Any], Awaitable[None]]


@dataclass(frozen=True)
class ClaimSpec:
    """Table plus the status a row waits in and the status it is worked in."""

    model: Type[SQLModel]
    eligible_status: str
    active_status: str


RUN_CLAIM = ClaimSpec(Run, RunStatus.QUEUED.value, RunStatus.RUNNING.value)
JOB_CLAIM = ClaimSpec(Job, JobStatus.PENDING.value, JobStatus.PROCESSING.value)


def run_claimed_event(worker_id: str) -> OnClaim:
    """``on_claim`` hook that logs the claiming worker on the run."""

    async def _hook(session: AsyncSession, run: Run) -> None:
        session.add(
            RunEvent(
                run_id=run.id,
                message="Worker claimed run",
                data={"worker_id": worker_id},
            )
        )

    return _hook


class ClaimQueue:
    """Reserve the oldest eligible row of one table for a single worker.

    A row is eligible when it waits in ``eligible_status`` or when it has sat
    in ``active_status`` for longer than the stale threshold (its worker is
    presumed dead). Reservation is a single ``UPDATE ... RETURNING`` whose
    target is chosen by a ``FOR UPDATE SKIP LOCKED`` subquery, so concurrent
    claimers on PostgreSQL never block on or receive the same row. SQLite
    serialises the statement under its database write lock.
    """

    def __init__(self, db: RunDB, spec: ClaimSpec, on_claim: Optional[OnClaim] = None) -> None:
        self._db = db
        self._spec = spec
        self._on_claim = on_claim

    async def claim(self, stale_threshold_ms: int) -> Optional[Any]:
        spec = self._spec
        table = spec.model.__table__
        candidate = table.alias("candidate")
        now = utcnow()
        cutoff = now - timedelta(milliseconds=stale_threshold_ms)

        target_id = (
            select(candidate.c.id)
            .where(
                or_(
                    candidate.c.status == spec.eligible_status,
                    and_(
                        candidate.c.status == spec.active_status,
                        candidate.c.updated_at < cutoff,
                    ),
                )
            )
            .order_by(candidate.c.created_at, candidate.c.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(table)
            .where(table.c.id == target_id)
            .values(status=spec.active_status, updated_at=now)
            .returning(table.c.id)
        )

        async with self._db.session() as session:
            result = await session.execute(stmt)
            claimed_id = result.scalar_one_or_none()
            if claimed_id is None:
                await session.rollback()
                return None
            row = await session.get(spec.model, claimed_id)
            if self._on_claim is not None:
                await self._on_claim(session, row)
            await session.commit()
        logger.info(f"Claimed {table.name} {claimed_id}")
        return row

    async def release(self, item_id: UUID, status: str, **values: Any) -> bool:
        """Move a claimed row to a terminal ``status``.

        Returns ``False`` when the row is no longer held in the active status,
        for example after it was cancelled.
        """
        table = self._spec.model.__table__
        async with self._db.session() as session:
            result = await session.execute(
                update(table)
                .where(table.c.id == item_id, table.c.status == self._spec.active_status)
                .values(status=getattr(status, "value", status), updated_at=utcnow(), **values)
            )
            await session.commit()
        return result.rowcount == 1
