"""
SqlJobStore — Portable SQL job store for PostgreSQL and SQLite.

The claim is one statement:

    UPDATE notification_jobs
       SET status='processing', attempts=attempts+1, claimed_at=:now
     WHERE id IN (SELECT id FROM notification_jobs
                   WHERE status='pending' AND scheduled_for <= :now
                   ORDER BY priority, created_at LIMIT :n)
       AND status='pending'
    RETURNING *

The outer status re-check makes a row claimable by exactly one statement even
when two engines pick the same candidates; on PostgreSQL the candidate
subquery also takes FOR UPDATE SKIP LOCKED so concurrent engines split the
batch instead of queueing on each other's row locks.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import select, update, delete, func, and_
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import get_settings
from database.models import NotificationJobRow
from database.session import (
    create_engine_for, create_session_factory, create_tables, session_scope,
)
from database.store_base import BaseJobStore, STALE_CLAIM_ERROR, check_fields
from models.schemas import JobStatus, NotificationJob

logger = structlog.get_logger()

Job = NotificationJobRow


class SqlJobStore(BaseJobStore):
    """
    Persistent job store backed by any SQLAlchemy-supported database
    that can UPDATE … RETURNING (PostgreSQL, SQLite 3.35+).
    """

    def __init__(self, db_url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        self._owns_engine = engine is None
        if engine is None:
            engine = create_engine_for(db_url or get_settings().database.url)
        self._engine = engine
        self._session_factory = create_session_factory(engine)

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    def _session(self):
        return session_scope(self._session_factory)

    async def initialize(self) -> None:
        await create_tables(self._engine)

    async def close(self) -> None:
        if self._owns_engine:
            await self._engine.dispose()

    # ── Writes ────────────────────────────────────────────

    async def insert(self, job: NotificationJob) -> None:
        async with self._session() as db:
            db.add(NotificationJobRow.from_job(job))

    async def claim_batch(self, limit: int, now: datetime) -> list[NotificationJob]:
        if limit <= 0:
            return []

        candidates = (
            select(Job.id)
            .where(and_(
                Job.status == JobStatus.PENDING.value,
                Job.scheduled_for <= now,
            ))
            .order_by(Job.priority.asc(), Job.created_at.asc())
            .limit(limit)
        )
        if self.dialect == "postgresql":
            candidates = candidates.with_for_update(skip_locked=True)

        stmt = (
            update(Job)
            .where(and_(
                Job.id.in_(candidates),
                Job.status == JobStatus.PENDING.value,
            ))
            .values(
                status=JobStatus.PROCESSING.value,
                attempts=Job.attempts + 1,
                claimed_at=now,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )

        async with self._session() as db:
            result = await db.execute(stmt)
            claimed = [row.to_job() for row in result.scalars().all()]

        # RETURNING order is unspecified
        claimed.sort(key=lambda j: j.sort_key)
        return claimed

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        expected: Optional[Iterable[JobStatus]] = None,
        **fields: Any,
    ) -> bool:
        check_fields(fields)
        conditions = [Job.id == job_id]
        if expected is not None:
            conditions.append(Job.status.in_([s.value for s in expected]))

        stmt = (
            update(Job)
            .where(and_(*conditions))
            .values(status=status.value, updated_at=datetime.now(timezone.utc), **fields)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return result.rowcount == 1

    async def delete_older_than(self, status: JobStatus, cutoff: datetime) -> int:
        stmt = (
            delete(Job)
            .where(and_(
                Job.status == status.value,
                Job.completed_at.is_not(None),
                Job.completed_at < cutoff,
            ))
            .execution_options(synchronize_session=False)
        )
        async with self._session() as db:
            result = await db.execute(stmt)
            return result.rowcount or 0

    async def requeue_stale(self, cutoff: datetime, now: datetime) -> int:
        stale = and_(
            Job.status == JobStatus.PROCESSING.value,
            Job.claimed_at.is_not(None),
            Job.claimed_at < cutoff,
        )
        exhausted = (
            update(Job)
            .where(and_(stale, Job.attempts >= Job.max_attempts))
            .values(
                status=JobStatus.FAILED.value,
                last_error=STALE_CLAIM_ERROR,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        retryable = (
            update(Job)
            .where(and_(stale, Job.attempts < Job.max_attempts))
            .values(
                status=JobStatus.PENDING.value,
                last_error=STALE_CLAIM_ERROR,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session() as db:
            failed = (await db.execute(exhausted)).rowcount or 0
            requeued = (await db.execute(retryable)).rowcount or 0
        return failed + requeued

    # ── Reads ─────────────────────────────────────────────

    async def get(self, job_id: str) -> Optional[NotificationJob]:
        async with self._session() as db:
            row = await db.get(Job, job_id)
            return row.to_job() if row else None

    async def count_by_status(self) -> dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        async with self._session() as db:
            stmt = select(Job.status, func.count()).group_by(Job.status)
            result = await db.execute(stmt)
            for status, count in result.all():
                counts[JobStatus(status)] = count
        return counts

    async def list_by_status(self, status: JobStatus, limit: int = 100) -> list[NotificationJob]:
        async with self._session() as db:
            stmt = (
                select(Job)
                .where(Job.status == status.value)
                .order_by(Job.created_at.desc())
                .limit(max(limit, 0))
            )
            result = await db.execute(stmt)
            return [row.to_job() for row in result.scalars().all()]
