"""
SQLAlchemy ORM models — Cross-database compatible.

Supports: PostgreSQL, SQLite.

Key design decisions:
  - JSON type instead of PostgreSQL-specific JSONB — on PG the dialect maps
    JSON to jsonb automatically; on SQLite it serializes to TEXT.
  - Priority is persisted as its integer rank so claim ordering is a plain
    ORDER BY.
  - String primary keys (uuid hex) — no database-specific sequences.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import String, Integer, DateTime, Text, Index, JSON
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from models.schemas import (
    JobPriority, JobStatus, JobType, NotificationJob, new_job_id,
)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; every stored value is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ──────────────────────────────────────────────────────────────
#  Notification jobs
# ──────────────────────────────────────────────────────────────

class NotificationJobRow(Base):
    __tablename__ = "notification_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_job_id)
    job_type: Mapped[str] = mapped_column(String(32), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(64), default="")
    priority: Mapped[int] = mapped_column(Integer, default=JobPriority.NORMAL.rank)
    payload: Mapped[Any] = mapped_column(JSON, default=dict)

    status: Mapped[str] = mapped_column(String(16), default=JobStatus.PENDING.value)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_notification_jobs_claim", "status", "scheduled_for", "priority", "created_at"),
        Index("ix_notification_jobs_status_completed", "status", "completed_at"),
        Index("ix_notification_jobs_tenant", "tenant_id"),
    )

    @classmethod
    def from_job(cls, job: NotificationJob) -> NotificationJobRow:
        return cls(
            id=job.id,
            job_type=job.type.value,
            recipient=job.recipient,
            tenant_id=job.tenant_id,
            priority=job.priority.rank,
            payload=job.payload,
            status=job.status.value,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            last_error=job.last_error,
            scheduled_for=job.scheduled_for,
            created_at=job.created_at,
            updated_at=job.updated_at,
            claimed_at=job.claimed_at,
            completed_at=job.completed_at,
        )

    def to_job(self) -> NotificationJob:
        return NotificationJob(
            id=self.id,
            type=JobType(self.job_type),
            recipient=self.recipient,
            tenant_id=self.tenant_id or "",
            priority=JobPriority.from_rank(self.priority),
            payload=self.payload or {},
            status=JobStatus(self.status),
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            last_error=self.last_error,
            scheduled_for=_aware(self.scheduled_for),
            created_at=_aware(self.created_at),
            updated_at=_aware(self.updated_at),
            claimed_at=_aware(self.claimed_at),
            completed_at=_aware(self.completed_at),
        )
