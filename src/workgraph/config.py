"""Runtime configuration for the work graph store and coordination engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class StoreSettings:
    """SQLite store policy."""

    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class CoordinationSettings:
    """Worker coordination policy."""

    sync_requires_ready: bool = False


@dataclass(slots=True)
class DashboardSettings:
    """Settings for aggregate dashboard queries."""

    recent_activity_limit: int = 8


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".workgraph.db")
    store: StoreSettings = field(default_factory=StoreSettings)
    coordination: CoordinationSettings = field(default_factory=CoordinationSettings)
    dashboard: DashboardSettings = field(default_factory=DashboardSettings)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("WORKGRAPH_DB_PATH", ".workgraph.db")),
            store=StoreSettings(
                busy_timeout_ms=int(os.getenv("WORKGRAPH_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            ),
            coordination=CoordinationSettings(
                sync_requires_ready=_env_bool("WORKGRAPH_SYNC_REQUIRES_READY", default=False),
            ),
            dashboard=DashboardSettings(
                recent_activity_limit=int(
                    os.getenv("WORKGRAPH_DASHBOARD_RECENT_ACTIVITY", "8"),
                ),
            ),
            log_level=os.getenv("WORKGRAPH_LOG_LEVEL", "WARNING").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot run with."""

        if self.store.busy_timeout_ms <= 0:
            raise ValueError("WORKGRAPH_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.dashboard.recent_activity_limit <= 0:
            raise ValueError("WORKGRAPH_DASHBOARD_RECENT_ACTIVITY must be a positive integer.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid WORKGRAPH_LOG_LEVEL: {self.log_level!r}. "
                f"Expected one of {', '.join(_LOG_LEVELS)}.",
            )

    @property
    def logging_level(self) -> int:
        """Numeric stdlib logging level."""

        return logging.getLevelNamesMapping()[self.log_level]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
