"""
Abstract Job Store — Interface for all job record backends.

Implementations:
  - SqlJobStore      (PostgreSQL / SQLite via SQLAlchemy)
  - InMemoryJobStore (dict-based, single-process, no persistence)
  - FileJobStore     (JSON file on disk, single-process, durable)

The store is the sole source of truth for job state. Every mutation the
engine relies on is a conditional update: it only applies while the row is
still in one of the expected statuses, and reports whether it applied.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, Optional

from models.schemas import JobStatus, NotificationJob

STALE_CLAIM_ERROR = "claim expired while processing"

# Columns a status update may touch besides status/updated_at
UPDATABLE_FIELDS = frozenset({
    "attempts", "max_attempts", "last_error", "scheduled_for",
    "claimed_at", "completed_at",
})


def check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")


class BaseJobStore(ABC):
    """Interface that all job store backends must implement."""

    async def initialize(self) -> None:
        """Prepare the backend (create tables, load files)."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def insert(self, job: NotificationJob) -> None:
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[NotificationJob]:
        ...

    @abstractmethod
    async def claim_batch(self, limit: int, now: datetime) -> list[NotificationJob]:
        """
        Atomically move up to `limit` eligible jobs from pending to processing.

        Eligible: status=pending and scheduled_for <= now, taken in
        (priority rank, created_at) order. Each claimed job has attempts
        incremented and claimed_at set to `now`. A job is returned by at most
        one concurrent caller. Returned jobs reflect the post-claim state.
        """
        ...

    @abstractmethod
    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        expected: Optional[Iterable[JobStatus]] = None,
        **fields: Any,
    ) -> bool:
        """
        Set `status` plus the given column values.

        When `expected` is given the update only applies while the current
        status is one of them. Returns True if a row was changed.
        """
        ...

    @abstractmethod
    async def count_by_status(self) -> dict[JobStatus, int]:
        ...

    @abstractmethod
    async def list_by_status(self, status: JobStatus, limit: int = 100) -> list[NotificationJob]:
        """Jobs in `status`, most recently created first."""
        ...

    @abstractmethod
    async def delete_older_than(self, status: JobStatus, cutoff: datetime) -> int:
        """Delete jobs in `status` whose completed_at is before `cutoff`."""
        ...

    @abstractmethod
    async def requeue_stale(self, cutoff: datetime, now: datetime) -> int:
        """
        Resolve processing jobs claimed before `cutoff`.

        Jobs with attempts remaining go back to pending; exhausted ones become
        failed. Returns the number of jobs touched.
        """
        ...

