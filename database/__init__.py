"""
Database layer — Multi-backend job persistence.

Backends:
  - SQL (PostgreSQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)
  - File (JSON file on disk, for small deployments)

Quick start:
  from database import create_store
  store = create_store({"store_backend": "memory"})
  await store.initialize()
  jobs = await store.claim_batch(10, now)
"""
from database.models import Base, NotificationJobRow
from database.session import create_engine_for, create_tables
from database.store_base import BaseJobStore, STALE_CLAIM_ERROR
from database.store import SqlJobStore
from database.store_memory import InMemoryJobStore
from database.store_file import FileJobStore
from database.store_factory import create_store

__all__ = [
    # ORM models
    "Base", "NotificationJobRow",
    # Session management
    "create_engine_for", "create_tables",
    # Store interface
    "BaseJobStore", "STALE_CLAIM_ERROR",
    # Store backends
    "SqlJobStore", "InMemoryJobStore", "FileJobStore",
    # Factory
    "create_store",
]
