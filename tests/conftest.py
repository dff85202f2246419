"""Shared test fixtures for the notification queue."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio

from config.settings import QueueConfig
from models.schemas import (
    JobPriority, JobStatus, JobType, NotificationJob, SendResult,
)


class FakeSender:
    """
    Scripted sender for engine tests.

    Each call pops the next scripted outcome: a SendResult is returned, an
    exception is raised. With an empty script every send succeeds. When
    `gate` is set, sends wait on it before resolving.
    """

    def __init__(self, *outcomes):
        self.outcomes: list[Any] = list(outcomes)
        self.calls: list[dict[str, Any]] = []
        self.delay: float = 0.0
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0

    def script(self, *outcomes):
        self.outcomes.extend(outcomes)

    async def send(self, job_type, recipient, tenant_id, payload) -> SendResult:
        self.calls.append({
            "type": JobType(job_type), "recipient": recipient,
            "tenant_id": tenant_id, "payload": payload,
        })
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.outcomes.pop(0) if self.outcomes else SendResult.ok("fake-id")
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1


def make_job(
    type: JobType = JobType.REMINDER,
    recipient: str = "ana@example.com",
    status: JobStatus = JobStatus.PENDING,
    priority: JobPriority = JobPriority.NORMAL,
    created_ago: timedelta = timedelta(0),
    **fields,
) -> NotificationJob:
    """Build a job directly (bypassing enqueue) for store-level setups."""
    now = datetime.now(timezone.utc)
    created = now - created_ago
    fields.setdefault("scheduled_for", created)
    return NotificationJob(
        type=type,
        recipient=recipient,
        tenant_id=fields.pop("tenant_id", "clinic-1"),
        status=status,
        priority=priority,
        created_at=created,
        updated_at=created,
        **fields,
    )


@pytest.fixture
def appointment_payload() -> dict[str, Any]:
    return {
        "patient_name": "Ana Moreau",
        "appointment_date": "2026-11-03",
        "appointment_time": "09:30",
        "practitioner": "Dr. Laurent",
        "location": "Cabinet Lyon 3",
    }


@pytest.fixture
def queue_config() -> QueueConfig:
    return QueueConfig(
        poll_interval_seconds=0.01,
        batch_size=10,
        concurrency=5,
        send_timeout_seconds=1.0,
        default_max_attempts=3,
        stale_after_minutes=0,
        retention_days=30,
    )


@pytest_asyncio.fixture
async def store():
    from database.store_memory import InMemoryJobStore
    s = InMemoryJobStore()
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def queue(store, sender, queue_config):
    from job_queue.engine import NotificationQueue
    return NotificationQueue(store, sender, queue_config)
