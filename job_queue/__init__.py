"""
Job Queue — Durable dispatch of appointment notifications.

- NotificationQueue: enqueue/cancel/retry plus the polling dispatch loop
- QueueObserver: queue health counts, failed-job listing, retention cleanup
"""
from job_queue.engine import NotificationQueue
from job_queue.observer import QueueObserver

__all__ = ["NotificationQueue", "QueueObserver"]
