#!/usr/bin/env python3
"""
Queue Admin — Operator commands for the notification job queue.

Uses the store configured in settings.yaml (database.store_backend).
Every command prints JSON.

Usage:
    python scripts/queue_admin.py stats
    python scripts/queue_admin.py failed --limit 20
    python scripts/queue_admin.py retry <job_id> [--max-attempts 5]
    python scripts/queue_admin.py cancel <job_id>
    python scripts/queue_admin.py cleanup --days 30
    python scripts/queue_admin.py worker            # run the dispatch loop
    python scripts/queue_admin.py worker --once     # single tick
"""
import argparse
import asyncio
import json
import os
import signal
import sys
from typing import Any

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

logger = structlog.get_logger()


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return number


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Notification queue administration")
    parser.add_argument("--config", default=None, help="Path to settings.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("stats", help="Job counts per status")

    failed = sub.add_parser("failed", help="List failed jobs, newest first")
    failed.add_argument("--limit", type=_positive_int, default=100)

    retry = sub.add_parser("retry", help="Move a failed job back to pending")
    retry.add_argument("job_id")
    retry.add_argument("--max-attempts", type=_positive_int, default=None,
                       help="Raise the attempt ceiling in the same update")

    cancel = sub.add_parser("cancel", help="Cancel a pending or processing job")
    cancel.add_argument("job_id")

    cleanup = sub.add_parser("cleanup", help="Delete old completed jobs")
    cleanup.add_argument("--days", type=_non_negative_int, default=None,
                         help="Retention horizon (default: queue.retention_days)")

    worker = sub.add_parser("worker", help="Run the dispatch loop")
    worker.add_argument("--once", action="store_true", help="Run a single tick and exit")

    return parser


async def execute(args: argparse.Namespace, store, settings) -> dict[str, Any]:
    """Run one command against an initialized store. Returns the JSON-able result."""
    from channels.router import ChannelRouter
    from job_queue.engine import NotificationQueue
    from job_queue.observer import QueueObserver

    observer = QueueObserver(store)
    queue = NotificationQueue(store, ChannelRouter.from_settings(settings.channels), settings.queue)

    if args.command == "stats":
        return (await observer.stats()).model_dump()

    if args.command == "failed":
        jobs = await observer.list_failed(limit=args.limit)
        return {"count": len(jobs), "jobs": [j.model_dump(mode="json") for j in jobs]}

    if args.command == "retry":
        ok = await queue.retry(args.job_id, max_attempts=args.max_attempts)
        return {"job_id": args.job_id, "retried": ok}

    if args.command == "cancel":
        ok = await queue.cancel(args.job_id)
        return {"job_id": args.job_id, "cancelled": ok}

    if args.command == "cleanup":
        days = args.days if args.days is not None else settings.queue.retention_days
        removed = await observer.cleanup(older_than_days=days)
        return {"removed": removed, "older_than_days": days}

    if args.command == "worker":
        if args.once:
            dispatched = await queue.tick()
            return {"dispatched": dispatched, "stats": (await observer.stats()).model_dump()}
        await _run_worker(queue)
        return {"stopped": True, "stats": (await observer.stats()).model_dump()}

    raise ValueError(f"Unknown command: {args.command}")


async def _run_worker(queue) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # Windows
            pass

    await queue.start()
    logger.info("queue_worker_running")
    try:
        await stop.wait()
    finally:
        await queue.stop()


async def run(args: argparse.Namespace) -> dict[str, Any]:
    from dotenv import load_dotenv
    load_dotenv()

    from config.settings import load_settings
    from database.store_factory import create_store

    settings = load_settings(args.config)
    store = create_store(settings.database)
    await store.initialize()
    try:
        return await execute(args, store, settings)
    finally:
        await store.close()


def main():
    args = build_parser().parse_args()
    result = asyncio.run(run(args))
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
