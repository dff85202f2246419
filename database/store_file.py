"""
FileJobStore — JSON file-backed job store with persistence across restarts.

Data layout:
  {data_dir}/
    notification_jobs.json      {job_id: job}

Features:
  - Survives process restarts (unlike InMemoryJobStore)
  - No external dependencies (no database server)
  - Every mutation is flushed before the store lock is released
    (write to .tmp, then atomic replace)
  - A mutation whose flush fails is rolled back in memory too
  - Single-process only (no cross-process claim safety)

Best for: small deployments, demos, edge devices, air-gapped environments.
"""
from __future__ import annotations

import json
import structlog
from pathlib import Path

from database.store_memory import InMemoryJobStore
from models.schemas import NotificationJob

logger = structlog.get_logger()

_JOBS_FILE = "notification_jobs.json"


class FileJobStore(InMemoryJobStore):
    """
    Extends InMemoryJobStore with JSON file persistence.

    On init: loads all jobs from disk into memory.
    On every write: flushes the whole job table to disk.
    """

    def __init__(self, data_dir: str = "./data"):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._load()
        logger.info("file_job_store_initialized",
                    data_dir=str(self._data_dir),
                    jobs=len(self._jobs))

    # ── Load / Save ───────────────────────────────────────

    @property
    def path(self) -> Path:
        return self._data_dir / _JOBS_FILE

    def _load(self):
        path = self.path
        if not path.exists():
            return
        try:
            with open(path, "r") as f:
                data = json.load(f)
            self._jobs = {
                job_id: NotificationJob.model_validate(raw)
                for job_id, raw in (data or {}).items()
            }
        except (json.JSONDecodeError, ValueError) as e:
            # Keep the unreadable file for inspection rather than overwriting it
            backup = path.with_suffix(".corrupt")
            path.replace(backup)
            logger.warning("file_job_store_load_error",
                           path=str(path), backup=str(backup), error=str(e))
            self._jobs = {}

    def _snapshot(self) -> dict[str, NotificationJob]:
        return {job_id: job.model_copy(deep=True) for job_id, job in self._jobs.items()}

    def _changed(self) -> None:
        self.flush()

    def flush(self) -> None:
        """Write the job table to disk."""
        path = self.path
        data = {job_id: job.model_dump(mode="json") for job_id, job in self._jobs.items()}
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        tmp_path.replace(path)  # atomic on POSIX
