"""
SignflowConfig schema.

Typed, frozen view of the runtime configuration.  YAML documents are parsed
into these types by the loader; nothing outside ``signflow_config`` reads
YAML or environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Entity Store connection settings."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    lock_timeout_ms: int = 5000


@dataclass(frozen=True)
class RetryConfig:
    """TransactionRunner retry budget for ConflictError / BusyError."""

    max_attempts: int = 5
    backoff_base_seconds: float = 0.05
    backoff_max_seconds: float = 1.0


@dataclass(frozen=True)
class SweepScheduleConfig:
    name: str
    kind: str  # expiration | archival
    cron: str
    enabled: bool = True


@dataclass(frozen=True)
class SweepsConfig:
    """Reconciliation sweep settings."""

    tick_interval_seconds: float = 60
    archive_retention_days: int = 7
    batch_size: int | None = None
    schedules: tuple[SweepScheduleConfig, ...] = ()


@dataclass(frozen=True)
class StorageConfig:
    """Artifact store location."""

    artifact_root: str = "./artifacts"
    archive_subdir: str = "archives"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SignflowConfig:
    """The effective configuration.

    ``checksum`` is the SHA-256 of the merged source document, so two
    processes can confirm they run with identical settings.
    """

    database: DatabaseConfig
    retry: RetryConfig = field(default_factory=RetryConfig)
    sweeps: SweepsConfig = field(default_factory=SweepsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
