"""
Queue Observer — Read-side view of queue health plus retention cleanup.

Usage:
    observer = QueueObserver(store)
    stats = await observer.stats()          # QueueStats
    failed = await observer.list_failed(20)
    removed = await observer.cleanup(30)    # delete completed jobs > 30 days old
"""
from __future__ import annotations

import structlog
from datetime import timedelta

from database.store_base import BaseJobStore
from models.schemas import JobStatus, NotificationJob, QueueStats, utcnow

logger = structlog.get_logger()


class QueueObserver:
    """Only `cleanup` mutates the store."""

    def __init__(self, store: BaseJobStore):
        self.store = store

    async def stats(self) -> QueueStats:
        counts = await self.store.count_by_status()
        return QueueStats.from_counts(counts)

    async def list_failed(self, limit: int = 100) -> list[NotificationJob]:
        """Failed jobs, most recently created first."""
        return await self.store.list_by_status(JobStatus.FAILED, limit=limit)

    async def cleanup(self, older_than_days: int = 30) -> int:
        """Delete completed jobs whose completion is older than the horizon."""
        if older_than_days < 0:
            raise ValueError("older_than_days must be >= 0")
        cutoff = utcnow() - timedelta(days=older_than_days)
        removed = await self.store.delete_older_than(JobStatus.COMPLETED, cutoff)
        logger.info("jobs_cleaned_up", removed=removed, older_than_days=older_than_days,
                    cutoff=cutoff.isoformat())
        return removed
