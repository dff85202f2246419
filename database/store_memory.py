"""
InMemoryJobStore — Dict-backed store for development and testing.

Features:
  - Zero dependencies (no database server)
  - Full interface compatibility with SqlJobStore
  - Claims and conditional updates serialized by one asyncio.Lock, with no
    await between reading a row and writing it back
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from database.store_base import BaseJobStore, STALE_CLAIM_ERROR, check_fields
from models.schemas import JobStatus, NotificationJob

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryJobStore(BaseJobStore):
    """
    Full-featured in-memory store with the same interface as SqlJobStore.
    Hands out copies so callers never mutate stored rows directly.
    """

    def __init__(self):
        self._jobs: dict[str, NotificationJob] = {}     # id → job
        self._lock = asyncio.Lock()
        logger.info("inmemory_job_store_initialized")

    def _changed(self) -> None:
        """Hook called after every mutation while the lock is held."""

    def _snapshot(self) -> Optional[dict[str, NotificationJob]]:
        """State to restore if `_changed` fails. Nothing to persist here."""
        return None

    def _commit(self, snapshot: Optional[dict[str, NotificationJob]]) -> None:
        try:
            self._changed()
        except Exception:
            if snapshot is not None:
                self._jobs = snapshot
            raise

    # ── Writes ────────────────────────────────────────────

    async def insert(self, job: NotificationJob) -> None:
        async with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job '{job.id}' already exists")
            snapshot = self._snapshot()
            self._jobs[job.id] = job.model_copy(deep=True)
            self._commit(snapshot)

    async def claim_batch(self, limit: int, now: datetime) -> list[NotificationJob]:
        if limit <= 0:
            return []
        async with self._lock:
            snapshot = self._snapshot()
            eligible = [
                j for j in self._jobs.values()
                if j.status == JobStatus.PENDING and j.scheduled_for <= now
            ]
            eligible.sort(key=lambda j: j.sort_key)
            claimed = []
            for job in eligible[:limit]:
                job.status = JobStatus.PROCESSING
                job.attempts += 1
                job.claimed_at = now
                job.updated_at = now
                claimed.append(job.model_copy(deep=True))
            if claimed:
                self._commit(snapshot)
            return claimed

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        expected: Optional[Iterable[JobStatus]] = None,
        **fields: Any,
    ) -> bool:
        check_fields(fields)
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if expected is not None and job.status not in set(expected):
                return False
            snapshot = self._snapshot()
            job.status = status
            for key, value in fields.items():
                setattr(job, key, value)
            job.updated_at = _utcnow()
            self._commit(snapshot)
            return True

    async def delete_older_than(self, status: JobStatus, cutoff: datetime) -> int:
        async with self._lock:
            snapshot = self._snapshot()
            doomed = [
                j.id for j in self._jobs.values()
                if j.status == status
                and j.completed_at is not None
                and j.completed_at < cutoff
            ]
            for job_id in doomed:
                del self._jobs[job_id]
            if doomed:
                self._commit(snapshot)
            return len(doomed)

    async def requeue_stale(self, cutoff: datetime, now: datetime) -> int:
        async with self._lock:
            snapshot = self._snapshot()
            touched = 0
            for job in self._jobs.values():
                if job.status != JobStatus.PROCESSING:
                    continue
                if job.claimed_at is None or job.claimed_at >= cutoff:
                    continue
                if job.attempts_exhausted:
                    job.status = JobStatus.FAILED
                    job.completed_at = now
                else:
                    job.status = JobStatus.PENDING
                job.last_error = STALE_CLAIM_ERROR
                job.updated_at = now
                touched += 1
            if touched:
                self._commit(snapshot)
            return touched

    # ── Reads ─────────────────────────────────────────────

    async def get(self, job_id: str) -> Optional[NotificationJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def count_by_status(self) -> dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        return counts

    async def list_by_status(self, status: JobStatus, limit: int = 100) -> list[NotificationJob]:
        matching = [j for j in self._jobs.values() if j.status == status]
        matching.sort(key=lambda j: j.created_at, reverse=True)
        return [j.model_copy(deep=True) for j in matching[:max(limit, 0)]]
