"""
Notification Queue — Durable, priority-aware dispatch of notification jobs.

Producers enqueue jobs into the job store. A background loop wakes on a fixed
interval (or at once for a due high-priority job), claims a bounded batch of
eligible jobs, hands each one to the sender and writes the outcome back.

Topology:
  ┌──────────────┐  enqueue   ┌─────────────┐   claim_batch   ┌────────────┐
  │  Producers   │───────────▶│  Job store  │◀───────────────▶│  tick()    │
  │  / operator  │ cancel /   │ (memory /   │  conditional    │  (loop)    │
  └──────────────┘ retry      │ file / sql) │  write-back     └─────┬──────┘
                              └─────────────┘                       │ send
                                                             ┌──────▼──────┐
                                                             │   Sender    │
                                                             └─────────────┘

Usage:
    queue = NotificationQueue(store, ChannelRouter(), settings.queue)
    await queue.start()
    job_id = await queue.queue_confirmation("ana@example.com", "clinic-1", {...})
    ...
    await queue.stop()
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timedelta
from typing import Any, Optional

from channels.base import NotificationSender
from config.settings import QueueConfig
from database.store_base import BaseJobStore
from models.schemas import (
    JobPriority, JobStatus, JobType, JobValidationError, NotificationJob,
    SendResult, utcnow,
)

logger = structlog.get_logger()

_IN_FLIGHT = (JobStatus.PROCESSING,)
_CANCELLABLE = (JobStatus.PENDING, JobStatus.PROCESSING)


class NotificationQueue:
    """
    Queue engine bound to one store and one sender.

    Every state change goes through a conditional store update, so several
    engines (or an engine plus an operator) can share a store safely. A
    cancel that lands while a job is being sent wins over the send's outcome.
    """

    def __init__(
        self,
        store: BaseJobStore,
        sender: NotificationSender,
        config: Optional[QueueConfig] = None,
    ):
        self.store = store
        self.sender = sender
        self.config = config or QueueConfig()
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._wake = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ──────────────────────────────────────────────────────────
    #  Producer API
    # ──────────────────────────────────────────────────────────

    async def enqueue(
        self,
        type: JobType | str,
        recipient: str,
        tenant_id: str,
        payload: Optional[dict[str, Any]] = None,
        priority: JobPriority | str = JobPriority.NORMAL,
        scheduled_for: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
    ) -> str:
        """Validate and persist a new pending job. Returns its id."""
        try:
            job_type = JobType(type)
        except ValueError:
            raise JobValidationError(f"Unknown job type: {type!r}") from None
        try:
            job_priority = JobPriority(priority)
        except ValueError:
            raise JobValidationError(f"Unknown priority: {priority!r}") from None

        if not isinstance(recipient, str) or not recipient.strip():
            raise JobValidationError("recipient must be a non-empty string")

        if max_attempts is None:
            max_attempts = self.config.default_max_attempts
        if max_attempts < 1:
            raise JobValidationError("max_attempts must be >= 1")

        if scheduled_for is not None and scheduled_for.tzinfo is None:
            raise JobValidationError("scheduled_for must be timezone-aware")

        now = utcnow()
        job = NotificationJob(
            type=job_type,
            recipient=recipient.strip(),
            tenant_id=tenant_id or "",
            priority=job_priority,
            payload=dict(payload or {}),
            max_attempts=max_attempts,
            scheduled_for=scheduled_for or now,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert(job)
        if job.priority == JobPriority.HIGH and job.scheduled_for <= now:
            self._wake.set()

        logger.info("job_enqueued",
                    job_id=job.id,
                    type=job.type.value,
                    tenant_id=job.tenant_id,
                    priority=job.priority.value,
                    scheduled_for=job.scheduled_for.isoformat())
        return job.id

    async def queue_confirmation(self, recipient: str, tenant_id: str, payload: dict[str, Any],
                                 priority: JobPriority = JobPriority.NORMAL) -> str:
        return await self.enqueue(JobType.CONFIRMATION, recipient, tenant_id, payload,
                                  priority=priority)

    async def queue_reminder(self, recipient: str, tenant_id: str, payload: dict[str, Any],
                             scheduled_for: datetime,
                             priority: JobPriority = JobPriority.NORMAL) -> str:
        return await self.enqueue(JobType.REMINDER, recipient, tenant_id, payload,
                                  priority=priority, scheduled_for=scheduled_for)

    async def queue_cancellation(self, recipient: str, tenant_id: str, payload: dict[str, Any],
                                 priority: JobPriority = JobPriority.NORMAL) -> str:
        return await self.enqueue(JobType.CANCELLATION, recipient, tenant_id, payload,
                                  priority=priority)

    async def queue_reschedule(self, recipient: str, tenant_id: str,
                               old_payload: dict[str, Any], new_payload: dict[str, Any],
                               priority: JobPriority = JobPriority.NORMAL) -> str:
        return await self.enqueue(JobType.RESCHEDULE, recipient, tenant_id,
                                  {"old": old_payload, "new": new_payload},
                                  priority=priority)

    # ──────────────────────────────────────────────────────────
    #  Operator API
    # ──────────────────────────────────────────────────────────

    async def cancel(self, job_id: str) -> bool:
        """pending|processing → cancelled. False if the job is terminal or unknown."""
        now = utcnow()
        cancelled = await self.store.update_status(
            job_id, JobStatus.CANCELLED, expected=_CANCELLABLE, completed_at=now,
        )
        if cancelled:
            logger.info("job_cancelled", job_id=job_id)
        else:
            logger.info("job_cancel_rejected", job_id=job_id)
        return cancelled

    async def retry(self, job_id: str, max_attempts: Optional[int] = None) -> bool:
        """
        failed → pending. Attempts are kept, so the job gets one more dispatch
        unless `max_attempts` raises the ceiling in the same write.
        """
        fields: dict[str, Any] = {"last_error": None, "completed_at": None}
        if max_attempts is not None:
            if max_attempts < 1:
                raise JobValidationError("max_attempts must be >= 1")
            fields["max_attempts"] = max_attempts

        retried = await self.store.update_status(
            job_id, JobStatus.PENDING, expected=(JobStatus.FAILED,), **fields,
        )
        if retried:
            logger.info("job_retried", job_id=job_id, max_attempts=max_attempts)
        else:
            logger.info("job_retry_rejected", job_id=job_id)
        return retried

    async def get(self, job_id: str) -> Optional[NotificationJob]:
        return await self.store.get(job_id)

    # ──────────────────────────────────────────────────────────
    #  Lifecycle
    # ──────────────────────────────────────────────────────────

    async def start(self) -> asyncio.Task:
        """Spawn the background loop. Returns the task handle."""
        if self.running:
            return self._task
        self._stopping.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("notification_queue_started",
                    poll_interval=self.config.poll_interval_seconds,
                    batch_size=self.config.batch_size,
                    concurrency=self.config.concurrency)
        return self._task

    async def stop(self) -> None:
        """Signal the loop and wait for the in-flight tick to finish."""
        if self._task is None:
            return
        self._stopping.set()
        self._wake.set()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("notification_queue_stopped")

    async def _run(self):
        while not self._stopping.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._wake.wait(),
                                       timeout=self.config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    # ──────────────────────────────────────────────────────────
    #  Processing
    # ──────────────────────────────────────────────────────────

    async def tick(self) -> int:
        """
        One loop iteration: reap stale claims, claim a batch, dispatch it.
        Returns the number of jobs dispatched.
        """
        now = utcnow()
        try:
            if self.config.stale_after_minutes > 0:
                await self._reap_stale(now)
            jobs = await self.store.claim_batch(self.config.batch_size, now)
        except Exception as e:
            logger.error("queue_tick_failed", error=str(e), exc_info=True)
            return 0

        if not jobs:
            return 0

        semaphore = asyncio.Semaphore(self.config.concurrency)
        await asyncio.gather(*(self._process(job, semaphore) for job in jobs))
        return len(jobs)

    async def _reap_stale(self, now: datetime) -> None:
        cutoff = now - timedelta(minutes=self.config.stale_after_minutes)
        touched = await self.store.requeue_stale(cutoff, now)
        if touched:
            logger.warning("stale_jobs_requeued", count=touched, cutoff=cutoff.isoformat())

    async def _process(self, job: NotificationJob, semaphore: asyncio.Semaphore):
        async with semaphore:
            logger.info("job_claimed",
                        job_id=job.id,
                        type=job.type.value,
                        attempt=job.attempts,
                        max_attempts=job.max_attempts,
                        priority=job.priority.value)

            result = await self._dispatch(job)
            try:
                await self._resolve(job, result)
            except Exception as e:
                # Left in processing; the stale-claim reaper recovers it
                logger.error("job_writeback_failed", job_id=job.id, error=str(e), exc_info=True)

    async def _dispatch(self, job: NotificationJob) -> SendResult:
        timeout = self.config.send_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self.sender.send(job.type, job.recipient, job.tenant_id, job.payload),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return SendResult.failure(f"send timed out after {timeout}s")
        except Exception as e:
            return SendResult.failure(f"{type(e).__name__}: {e}")

        if result is None:
            return SendResult.failure("sender returned no result")
        return result

    async def _resolve(self, job: NotificationJob, result: SendResult) -> None:
        now = utcnow()

        if result.success:
            applied = await self.store.update_status(
                job.id, JobStatus.COMPLETED, expected=_IN_FLIGHT,
                completed_at=now, last_error=None,
            )
            event, level = "job_completed", "info"

        elif job.attempts_exhausted:
            applied = await self.store.update_status(
                job.id, JobStatus.FAILED, expected=_IN_FLIGHT,
                completed_at=now, last_error=result.error,
            )
            event, level = "job_failed", "error"

        else:
            applied = await self.store.update_status(
                job.id, JobStatus.PENDING, expected=_IN_FLIGHT,
                last_error=result.error,
            )
            event, level = "job_retry_scheduled", "warning"

        if not applied:
            logger.info("job_outcome_discarded",
                        job_id=job.id,
                        success=result.success,
                        reason="job left processing during dispatch")
            return

        getattr(logger, level)(event,
                               job_id=job.id,
                               type=job.type.value,
                               attempt=job.attempts,
                               max_attempts=job.max_attempts,
                               message_id=result.message_id or None,
                               error=result.error or None,
                               retryable=result.metadata.get("retryable"))
