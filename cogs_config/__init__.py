"""
cogs_config -- single public entrypoint for engine settings.

Responsibility:
    Provides the one way to obtain runtime settings,
    ``get_active_settings()``.  Services receive an ``EngineSettings``
    through their constructors; they never read files or environment
    variables themselves.

Architecture position:
    Configuration -- sits beside ``cogs_services``, above ``cogs_kernel``.
    The kernel never imports from ``cogs_config``.

Failure modes:
    - ``FileNotFoundError`` -- COGS_CONFIG_FILE names a missing file.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from cogs_config.loader import CONFIG_FILE_ENV, load_settings
from cogs_config.schema import EngineSettings
from cogs_kernel.logging_config import get_logger

_logger = get_logger("config")


def get_active_settings(environ: Mapping[str, str] | None = None) -> EngineSettings:
    """
    Load settings from ``COGS_CONFIG_FILE`` (when set) plus ``COGS_*``
    overrides, and log a COGS_CONFIG_TRACE record.
    """
    env = os.environ if environ is None else environ
    path = env.get(CONFIG_FILE_ENV) or None
    settings = load_settings(path, env)

    _logger.info(
        "COGS_CONFIG_TRACE",
        extra={
            "trace_type": "COGS_CONFIG_TRACE",
            "config_file": path,
            "default_costing_method": settings.default_costing_method.value,
            "max_conflict_retries": settings.max_conflict_retries,
            "summary_period_types": [p.value for p in settings.summary_period_types],
        },
    )
    return settings


__all__ = [
    "EngineSettings",
    "get_active_settings",
    "load_settings",
]
