"""
Configuration loader for the notification queue.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class ChannelConfig:
    enabled: bool = False
    credentials: dict[str, Any] = field(default_factory=dict)


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./notification_queue.db"    # postgresql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory" | "file"
    store_file_dir: str = "./data"                     # directory for file backend


@dataclass
class QueueConfig:
    poll_interval_seconds: float = 10.0   # wake-up interval of the processing loop
    batch_size: int = 10                  # max jobs claimed per tick
    concurrency: int = 5                  # max concurrent sends within a tick
    send_timeout_seconds: float = 30.0    # a slower send counts as a failed attempt
    default_max_attempts: int = 3
    stale_after_minutes: float = 0        # 0 disables the stale-claim reaper
    retention_days: int = 30              # cleanup horizon for completed jobs


@dataclass
class Settings:
    app_name: str = "NotificationQueue"
    debug: bool = False
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    channels: dict[str, ChannelConfig] = field(default_factory=dict)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _queue_config(raw: dict[str, Any]) -> QueueConfig:
    defaults = QueueConfig()
    cfg = QueueConfig(
        poll_interval_seconds=float(raw.get("poll_interval_seconds", defaults.poll_interval_seconds)),
        batch_size=int(raw.get("batch_size", defaults.batch_size)),
        concurrency=int(raw.get("concurrency", defaults.concurrency)),
        send_timeout_seconds=float(raw.get("send_timeout_seconds", defaults.send_timeout_seconds)),
        default_max_attempts=int(raw.get("default_max_attempts", defaults.default_max_attempts)),
        stale_after_minutes=float(raw.get("stale_after_minutes", defaults.stale_after_minutes)),
        retention_days=int(raw.get("retention_days", defaults.retention_days)),
    )
    if cfg.batch_size < 1 or cfg.concurrency < 1:
        raise ValueError("queue.batch_size and queue.concurrency must be >= 1")
    if cfg.default_max_attempts < 1:
        raise ValueError("queue.default_max_attempts must be >= 1")
    return cfg


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "NOTIFY_QUEUE_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)

        if "database" in raw:
            db = raw["database"] or {}
            settings.database = DatabaseConfig(
                url=db.get("url", settings.database.url),
                store_backend=db.get("store_backend", settings.database.store_backend),
                store_file_dir=db.get("store_file_dir", settings.database.store_file_dir),
            )

        if "queue" in raw:
            settings.queue = _queue_config(raw["queue"] or {})

        if "channels" in raw:
            for ch_name, ch_data in (raw["channels"] or {}).items():
                ch_data = ch_data or {}
                settings.channels[ch_name] = ChannelConfig(
                    enabled=ch_data.get("enabled", False),
                    credentials=ch_data.get("credentials", {}),
                )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
