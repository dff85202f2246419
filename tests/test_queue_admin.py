"""Tests for the queue_admin operator commands."""
from datetime import datetime, timedelta, timezone

import pytest

from config.settings import Settings
from models.schemas import JobStatus, JobType
from scripts.queue_admin import build_parser, execute
from conftest import make_job


@pytest.fixture
def settings():
    return Settings()


def _args(*argv):
    return build_parser().parse_args(list(argv))


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_retry_options(self):
        args = _args("retry", "abc", "--max-attempts", "5")
        assert args.job_id == "abc"
        assert args.max_attempts == 5

    @pytest.mark.parametrize("argv", [
        ("retry", "abc", "--max-attempts", "0"),
        ("retry", "abc", "--max-attempts", "many"),
        ("cleanup", "--days", "-1"),
        ("failed", "--limit", "0"),
    ])
    def test_rejects_out_of_range_numbers(self, argv, capsys):
        with pytest.raises(SystemExit) as exc:
            _args(*argv)
        assert exc.value.code == 2
        assert "argument --" in capsys.readouterr().err

    def test_cleanup_accepts_zero_days(self):
        assert _args("cleanup", "--days", "0").days == 0

    def test_worker_once(self):
        assert _args("worker", "--once").once is True


class TestCommands:
    @pytest.mark.asyncio
    async def test_stats(self, store, settings):
        await store.insert(make_job())
        await store.insert(make_job(status=JobStatus.FAILED))
        result = await execute(_args("stats"), store, settings)
        assert result == {
            "pending": 1, "processing": 0, "completed": 0,
            "failed": 1, "cancelled": 0, "total": 2,
        }

    @pytest.mark.asyncio
    async def test_failed_listing_is_json_ready(self, store, settings):
        job = make_job(status=JobStatus.FAILED, last_error="smtp down")
        await store.insert(job)
        result = await execute(_args("failed", "--limit", "5"), store, settings)
        assert result["count"] == 1
        assert result["jobs"][0]["id"] == job.id
        assert result["jobs"][0]["status"] == "failed"
        assert isinstance(result["jobs"][0]["created_at"], str)

    @pytest.mark.asyncio
    async def test_retry_and_cancel(self, store, settings):
        failed = make_job(status=JobStatus.FAILED, attempts=3, max_attempts=3)
        pending = make_job()
        await store.insert(failed)
        await store.insert(pending)

        result = await execute(_args("retry", failed.id, "--max-attempts", "5"), store, settings)
        assert result == {"job_id": failed.id, "retried": True}
        assert (await store.get(failed.id)).max_attempts == 5

        result = await execute(_args("cancel", pending.id), store, settings)
        assert result == {"job_id": pending.id, "cancelled": True}

        result = await execute(_args("cancel", pending.id), store, settings)
        assert result["cancelled"] is False

    @pytest.mark.asyncio
    async def test_cleanup_uses_retention_default(self, store, settings):
        old = datetime.now(timezone.utc) - timedelta(days=settings.queue.retention_days + 1)
        await store.insert(make_job(status=JobStatus.COMPLETED, completed_at=old))
        result = await execute(_args("cleanup"), store, settings)
        assert result == {"removed": 1, "older_than_days": settings.queue.retention_days}

    @pytest.mark.asyncio
    async def test_worker_once_dispatches(self, store, settings):
        job = make_job(type=JobType.CONFIRMATION, recipient="ana@example.com")
        await store.insert(job)
        result = await execute(_args("worker", "--once"), store, settings)
        assert result["dispatched"] == 1
        assert result["stats"]["completed"] == 1
