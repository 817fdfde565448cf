"""
Configuration Loader (``signflow_config.loader``).

Responsibility
--------------
Loads YAML documents, merges overrides, applies environment variables and
parses the result into the frozen ``signflow_config.schema`` dataclasses.
The single public entry point for runtime config is
``signflow_config.get_active_config()``.

Invariants enforced
-------------------
* Every parse error raises ``ValueError`` with the offending key path; no
  silent defaults for malformed values.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the merged
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad value  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from signflow_config.schema import (
    DatabaseConfig,
    LoggingConfig,
    RetryConfig,
    SignflowConfig,
    StorageConfig,
    SweepScheduleConfig,
    SweepsConfig,
)

SWEEP_KINDS = frozenset({"expiration", "archival"})

# env var -> (section, key, converter)
ENV_OVERRIDES: tuple[tuple[str, str, str, type], ...] = (
    ("DATABASE_URL", "database", "url", str),
    ("SIGNFLOW_DATABASE_URL", "database", "url", str),
    ("SIGNFLOW_LOG_LEVEL", "logging", "level", str),
    ("SIGNFLOW_ARTIFACT_ROOT", "storage", "artifact_root", str),
    ("SIGNFLOW_ARCHIVE_RETENTION_DAYS", "sweeps", "archive_retention_days", int),
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` merged in; nested mappings merge, lists replace."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Apply ``ENV_OVERRIDES`` in order; later entries win."""
    result = copy.deepcopy(data)
    for env_name, section, key, convert in ENV_OVERRIDES:
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as exc:
            raise ValueError(f"{env_name}: invalid value {raw!r}") from exc
        result.setdefault(section, {})[key] = value
    return result


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{name}: expected a mapping")
    return value


def _int(section: Mapping[str, Any], key: str, path: str, default: int, minimum: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path}.{key}: expected an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"{path}.{key}: must be >= {minimum}, got {value}")
    return value


def _float(section: Mapping[str, Any], key: str, path: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"{path}.{key}: expected a number, got {value!r}")
    if value < 0:
        raise ValueError(f"{path}.{key}: must be >= 0, got {value}")
    return float(value)


def _bool(section: Mapping[str, Any], key: str, path: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{path}.{key}: expected true/false, got {value!r}")
    return value


def parse_database(data: Mapping[str, Any]) -> DatabaseConfig:
    url = data.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValueError("database.url: required")
    return DatabaseConfig(
        url=url.strip(),
        echo=_bool(data, "echo", "database", False),
        pool_size=_int(data, "pool_size", "database", 20, 1),
        max_overflow=_int(data, "max_overflow", "database", 10, 0),
        lock_timeout_ms=_int(data, "lock_timeout_ms", "database", 5000, 1),
    )


def parse_retry(data: Mapping[str, Any]) -> RetryConfig:
    return RetryConfig(
        max_attempts=_int(data, "max_attempts", "retry", 5, 1),
        backoff_base_seconds=_float(data, "backoff_base_seconds", "retry", 0.05),
        backoff_max_seconds=_float(data, "backoff_max_seconds", "retry", 1.0),
    )


def parse_schedule(data: Mapping[str, Any], index: int) -> SweepScheduleConfig:
    path = f"sweeps.schedules[{index}]"
    kind = str(data.get("kind", "")).lower()
    if kind not in SWEEP_KINDS:
        raise ValueError(f"{path}.kind: expected one of {sorted(SWEEP_KINDS)}, got {data.get('kind')!r}")
    cron = data.get("cron")
    if not isinstance(cron, str) or len(cron.split()) != 5:
        raise ValueError(f"{path}.cron: expected a 5-field cron expression, got {cron!r}")
    return SweepScheduleConfig(
        name=str(data.get("name") or kind),
        kind=kind,
        cron=cron,
        enabled=_bool(data, "enabled", path, True),
    )


def parse_sweeps(data: Mapping[str, Any]) -> SweepsConfig:
    batch_size = data.get("batch_size")
    if batch_size is not None:
        batch_size = _int(data, "batch_size", "sweeps", 0, 1)
    raw_schedules = data.get("schedules") or []
    if not isinstance(raw_schedules, list):
        raise ValueError("sweeps.schedules: expected a list")
    schedules = tuple(parse_schedule(s, i) for i, s in enumerate(raw_schedules))
    names = [s.name for s in schedules]
    if len(names) != len(set(names)):
        raise ValueError(f"sweeps.schedules: duplicate schedule names {names}")
    return SweepsConfig(
        tick_interval_seconds=_float(data, "tick_interval_seconds", "sweeps", 60),
        archive_retention_days=_int(data, "archive_retention_days", "sweeps", 7, 0),
        batch_size=batch_size,
        schedules=schedules,
    )


def parse_storage(data: Mapping[str, Any]) -> StorageConfig:
    root = data.get("artifact_root", "./artifacts")
    subdir = data.get("archive_subdir", "archives")
    if not isinstance(root, str) or not root:
        raise ValueError("storage.artifact_root: required")
    if not isinstance(subdir, str) or not subdir or "/" in subdir:
        raise ValueError(f"storage.archive_subdir: expected a directory name, got {subdir!r}")
    return StorageConfig(artifact_root=root, archive_subdir=subdir)


def parse_logging(data: Mapping[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in logging.getLevelNamesMapping():
        raise ValueError(f"logging.level: unknown level {level!r}")
    return LoggingConfig(level=level)


def parse_config(data: Mapping[str, Any]) -> SignflowConfig:
    """Parse a merged configuration document into a SignflowConfig."""
    return SignflowConfig(
        database=parse_database(_section(data, "database")),
        retry=parse_retry(_section(data, "retry")),
        sweeps=parse_sweeps(_section(data, "sweeps")),
        storage=parse_storage(_section(data, "storage")),
        logging=parse_logging(_section(data, "logging")),
        checksum=compute_checksum(dict(data)),
    )
