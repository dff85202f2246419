"""Tests for queue data models."""
from datetime import datetime, timedelta, timezone

import pytest
from models.schemas import (
    JobPriority, JobStatus, JobType, JobValidationError, NotificationJob,
    QueueError, QueueStats, SendResult, TERMINAL_STATUSES,
)


class TestJobPriority:
    def test_rank_order(self):
        assert JobPriority.HIGH.rank < JobPriority.NORMAL.rank < JobPriority.LOW.rank

    def test_sorting_uses_rank_not_name(self):
        ordered = sorted([JobPriority.LOW, JobPriority.HIGH, JobPriority.NORMAL])
        assert ordered == [JobPriority.HIGH, JobPriority.NORMAL, JobPriority.LOW]

    def test_from_rank(self):
        for priority in JobPriority:
            assert JobPriority.from_rank(priority.rank) is priority

    def test_from_unknown_rank(self):
        with pytest.raises(ValueError):
            JobPriority.from_rank(7)


class TestJobStatus:
    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
        assert not JobStatus.PENDING.is_terminal
        assert not JobStatus.PROCESSING.is_terminal
        assert JobStatus.CANCELLED.is_terminal


class TestNotificationJob:
    def test_defaults(self):
        job = NotificationJob(type=JobType.CONFIRMATION, recipient="ana@example.com")
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.priority == JobPriority.NORMAL
        assert job.scheduled_for.tzinfo is not None
        assert len(job.id) == 32

    def test_ids_are_unique(self):
        ids = {NotificationJob(type="reminder", recipient="x").id for _ in range(100)}
        assert len(ids) == 100

    def test_attempts_exhausted(self):
        job = NotificationJob(type="reminder", recipient="x", attempts=2, max_attempts=3)
        assert not job.attempts_exhausted
        job.attempts = 3
        assert job.attempts_exhausted

    def test_sort_key_priority_then_age(self):
        now = datetime.now(timezone.utc)
        old_low = NotificationJob(type="reminder", recipient="x", priority="low",
                                  created_at=now - timedelta(hours=1))
        new_high = NotificationJob(type="reminder", recipient="x", priority="high", created_at=now)
        old_normal = NotificationJob(type="reminder", recipient="x",
                                     created_at=now - timedelta(minutes=5))
        new_normal = NotificationJob(type="reminder", recipient="x", created_at=now)

        ordered = sorted([old_low, new_normal, new_high, old_normal], key=lambda j: j.sort_key)
        assert [j.id for j in ordered] == [new_high.id, old_normal.id, new_normal.id, old_low.id]

    def test_json_round_trip_keeps_timezone(self):
        job = NotificationJob(type="reschedule", recipient="+33600000000",
                              payload={"old": {"appointment_date": "2026-11-03"}})
        restored = NotificationJob.model_validate(job.model_dump(mode="json"))
        assert restored == job
        assert restored.created_at.tzinfo is not None


class TestSendResult:
    def test_ok(self):
        result = SendResult.ok("msg-1", channel="email")
        assert result.success
        assert result.message_id == "msg-1"
        assert result.metadata == {"channel": "email"}

    def test_failure_never_has_empty_error(self):
        result = SendResult.failure("")
        assert not result.success
        assert result.error


class TestQueueStats:
    def test_total_is_sum_of_statuses(self):
        stats = QueueStats.from_counts({
            JobStatus.PENDING: 4, JobStatus.PROCESSING: 1, JobStatus.COMPLETED: 10,
            JobStatus.FAILED: 2, JobStatus.CANCELLED: 3,
        })
        assert stats.total == 20
        assert stats.pending + stats.processing + stats.completed + stats.failed + stats.cancelled == stats.total

    def test_missing_statuses_count_as_zero(self):
        stats = QueueStats.from_counts({JobStatus.FAILED: 2})
        assert stats.failed == 2
        assert stats.pending == 0
        assert stats.total == 2


class TestErrors:
    def test_validation_error_hierarchy(self):
        assert issubclass(JobValidationError, QueueError)
        assert issubclass(JobValidationError, ValueError)
