"""
signflow_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  It layers the packaged ``defaults.yaml``, an optional YAML
    override file and environment variables, validates the result and
    returns a frozen ``SignflowConfig``.

Architecture position:
    Configuration -- sits beside ``signflow_kernel`` and below
    ``signflow_batch``.  The kernel never imports from ``signflow_config``;
    callers pass plain values (URLs, retry budgets) into kernel constructors.

Audit relevance:
    Every successful call logs ``signflow_config_loaded`` with the checksum
    of the effective configuration.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from signflow_kernel.logging_config import get_logger

from signflow_config.loader import (
    apply_env_overrides,
    deep_merge,
    load_yaml_file,
    parse_config,
)
from signflow_config.schema import (
    DatabaseConfig,
    LoggingConfig,
    RetryConfig,
    SignflowConfig,
    StorageConfig,
    SweepScheduleConfig,
    SweepsConfig,
)

__all__ = [
    "DEFAULTS_PATH",
    "DatabaseConfig",
    "LoggingConfig",
    "RetryConfig",
    "SignflowConfig",
    "StorageConfig",
    "SweepScheduleConfig",
    "SweepsConfig",
    "get_active_config",
]

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> SignflowConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Optional YAML override file.  Defaults to ``$SIGNFLOW_CONFIG``
            when set.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        Frozen SignflowConfig.

    Raises:
        FileNotFoundError: If the override file does not exist.
        ValueError: If any value fails validation.
    """
    env = os.environ if environ is None else environ
    override_path = path or env.get("SIGNFLOW_CONFIG") or None

    data = load_yaml_file(DEFAULTS_PATH)
    if override_path:
        data = deep_merge(data, load_yaml_file(Path(override_path)))
    data = apply_env_overrides(data, env)

    config = parse_config(data)

    _logger.info(
        "signflow_config_loaded",
        extra={
            "checksum": config.checksum,
            "override_path": str(override_path) if override_path else None,
            "dialect": config.database.url.split(":", 1)[0],
            "schedule_count": len(config.sweeps.schedules),
        },
    )
    return config
