"""
Core data models for the notification queue.
These are the universal types shared by the store, engine, senders and tooling.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class JobType(str, Enum):
    CONFIRMATION = "confirmation"
    REMINDER = "reminder"
    CANCELLATION = "cancellation"
    RESCHEDULE = "reschedule"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class JobPriority(str, Enum):
    """
    Three-level delivery priority.

    Ordering is explicit through `rank`: high jobs are served before normal,
    normal before low. Stores persist the rank so they can sort on it.
    """
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def from_rank(cls, rank: int) -> JobPriority:
        for priority, value in _PRIORITY_RANK.items():
            if value == rank:
                return priority
        raise ValueError(f"Unknown priority rank: {rank}")

    def __lt__(self, other):
        if not isinstance(other, JobPriority):
            return NotImplemented
        return self.rank < other.rank


_PRIORITY_RANK = {JobPriority.HIGH: 0, JobPriority.NORMAL: 1, JobPriority.LOW: 2}


# ──────────────────────────────────────────────────────────────
#  Errors
# ──────────────────────────────────────────────────────────────

class QueueError(Exception):
    """Base exception for queue operations."""


class JobValidationError(QueueError, ValueError):
    """Rejected at enqueue time; nothing is persisted."""


# ──────────────────────────────────────────────────────────────
#  Job — one unit of outbound notification work
# ──────────────────────────────────────────────────────────────

class NotificationJob(BaseModel):
    id: str = Field(default_factory=new_job_id)
    type: JobType
    recipient: str                            # email or phone, opaque to the engine
    tenant_id: str = ""
    priority: JobPriority = JobPriority.NORMAL
    payload: dict[str, Any] = {}
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    scheduled_for: datetime = Field(default_factory=utcnow)
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    claimed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    @property
    def sort_key(self) -> tuple[int, datetime]:
        """Claim order: priority rank first, then oldest first."""
        return (self.priority.rank, self.created_at)


# ──────────────────────────────────────────────────────────────
#  Delivery result & queue health
# ──────────────────────────────────────────────────────────────

class SendResult(BaseModel):
    success: bool
    error: str = ""
    message_id: str = ""
    metadata: dict[str, Any] = {}

    @classmethod
    def ok(cls, message_id: str = "", **metadata) -> SendResult:
        return cls(success=True, message_id=message_id, metadata=metadata)

    @classmethod
    def failure(cls, error: str, **metadata) -> SendResult:
        return cls(success=False, error=error or "unknown error", metadata=metadata)


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, counts: dict[JobStatus, int]) -> QueueStats:
        values = {status.value: counts.get(status, 0) for status in JobStatus}
        return cls(**values, total=sum(values.values()))
