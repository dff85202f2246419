"""
Notification Senders — Base infrastructure shared by every delivery channel.

Provides:
- ChannelError: structured error hierarchy
- CircuitBreaker: failure-counting breaker with half-open probe
- ChannelMetrics: per-channel send/fail/latency tracking
- NotificationSender: abstract base with one operation per job type; wraps
  every send with the circuit breaker and metrics and turns transport
  exceptions into failed SendResults
"""
from __future__ import annotations

import abc
import time
import structlog
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from models.schemas import JobType, SendResult

logger = structlog.get_logger()

# Delivers one rendered message and returns the provider's message id.
Transport = Callable[[dict[str, Any]], Awaitable[str]]


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class CircuitOpenError(ChannelError):
    def __init__(self, channel: str = ""):
        super().__init__(f"Circuit breaker open for {channel}", channel, retryable=True)


# ══════════════════════════════════════════════════════════════
#  CIRCUIT BREAKER
# ══════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Synchronous circuit breaker with failure counting.

    closed → open (after threshold failures) → half_open (after timeout) →
    closed (on success) or open (on failure).
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = "closed"
        self._failure_count = 0
        self._opened_at: float = 0.0
        self._total_failures = 0
        self._total_successes = 0

    @property
    def state(self) -> str:
        if self._state == "open":
            if time.monotonic() - self._opened_at >= self.recovery_timeout:
                return "half_open"
        return self._state

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    def record_failure(self):
        self._total_failures += 1
        self._failure_count += 1
        if self.state == "half_open" or self._failure_count >= self.failure_threshold:
            self._open()

    def record_success(self):
        self._total_successes += 1
        if self.state == "half_open":
            self._close()
        else:
            self._failure_count = 0

    def _open(self):
        self._state = "open"
        self._opened_at = time.monotonic()
        logger.warning("circuit_opened", failures=self._failure_count)

    def _close(self):
        self._state = "closed"
        self._failure_count = 0

    def reset(self):
        self._close()

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "failure_count": self._failure_count,
            "total_failures": self._total_failures,
            "total_successes": self._total_successes,
        }


# ══════════════════════════════════════════════════════════════
#  CHANNEL METRICS
# ══════════════════════════════════════════════════════════════

class ChannelMetrics:
    """Tracks per-channel send, failure, and latency metrics over a sliding window."""

    def __init__(self, channel: str, window: int = 1000, max_errors: int = 10):
        self.channel = channel
        self.messages_sent: int = 0
        self.messages_failed: int = 0
        self._latencies: deque[float] = deque(maxlen=window)
        self._errors: deque[str] = deque(maxlen=max_errors)

    def record_send(self, latency_ms: float = 0.0):
        self.messages_sent += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)

    def record_failure(self, error: str = ""):
        self.messages_failed += 1
        if error:
            self._errors.append(error)

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    @property
    def failure_rate(self) -> float:
        total = self.messages_sent + self.messages_failed
        return self.messages_failed / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "sent": self.messages_sent,
            "failed": self.messages_failed,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "failure_rate": round(self.failure_rate, 4),
            "recent_errors": list(self._errors),
        }


# ══════════════════════════════════════════════════════════════
#  NOTIFICATION SENDER — Abstract Base
# ══════════════════════════════════════════════════════════════

class NotificationSender(abc.ABC):
    """
    Base class for all notification senders.

    Subclasses implement one coroutine per job type. `send()` picks the
    operation for the job type and wraps it with the circuit breaker and
    metrics. Any exception raised by a subclass or its transport becomes a
    failed SendResult; the queue decides whether to retry.
    """

    channel: str = ""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
    ):
        self._transport = transport
        self._config: dict[str, Any] = {}
        self._breaker = CircuitBreaker(failure_threshold, recovery_timeout)
        self._metrics = ChannelMetrics(self.channel)

    def configure(self, config: dict[str, Any]) -> None:
        """Apply channel credentials (ChannelConfig.credentials)."""
        self._config = dict(config or {})

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def send_confirmation(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        ...

    @abc.abstractmethod
    async def send_reminder(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        ...

    @abc.abstractmethod
    async def send_cancellation(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        ...

    @abc.abstractmethod
    async def send_reschedule(self, recipient: str, tenant_id: str, payload: dict[str, Any]) -> SendResult:
        ...

    # ── Public send ───────────────────────────────────────────

    def _operation(self, job_type: JobType):
        return {
            JobType.CONFIRMATION: self.send_confirmation,
            JobType.REMINDER: self.send_reminder,
            JobType.CANCELLATION: self.send_cancellation,
            JobType.RESCHEDULE: self.send_reschedule,
        }[job_type]

    async def send(
        self,
        job_type: JobType | str,
        recipient: str,
        tenant_id: str,
        payload: dict[str, Any],
    ) -> SendResult:
        job_type = JobType(job_type)

        if self._breaker.is_open:
            error = CircuitOpenError(self.channel)
            self._metrics.record_failure("circuit_open")
            return SendResult.failure(str(error), channel=self.channel, retryable=error.retryable)

        start = time.monotonic()
        try:
            result = await self._operation(job_type)(recipient, tenant_id, payload or {})
        except Exception as e:
            self._breaker.record_failure()
            self._metrics.record_failure(str(e))
            logger.warning("send_raised", channel=self.channel, type=job_type.value,
                           recipient=recipient, error=str(e))
            retryable = e.retryable if isinstance(e, ChannelError) else True
            return SendResult.failure(str(e) or type(e).__name__, channel=self.channel,
                                      retryable=retryable)

        latency = (time.monotonic() - start) * 1000
        if result.success:
            self._breaker.record_success()
            self._metrics.record_send(latency)
        else:
            self._breaker.record_failure()
            self._metrics.record_failure(result.error)
        return result

    async def _deliver(self, message: dict[str, Any]) -> Optional[str]:
        """Hand a rendered message to the transport; None means no transport is wired."""
        if self._transport is None:
            return None
        return await self._transport(message)

    # ── Health ────────────────────────────────────────────────

    async def health_check(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "circuit_breaker": self._breaker.stats,
            "metrics": self._metrics.to_dict(),
        }
