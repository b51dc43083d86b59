"""
Settings loader (``cogs_config.loader``).

Responsibility
--------------
Read an optional YAML settings file, apply ``COGS_*`` environment
overrides on top, coerce every value to its declared type, and return a
frozen ``EngineSettings``.

Invariants enforced
-------------------
* Unknown keys (in YAML or in ``COGS_*`` variables) raise ``ValueError``;
  a typo never silently falls back to a default.
* Precedence: defaults < YAML file < environment.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad value  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from cogs_config.schema import EngineSettings
from cogs_kernel.domain.costing import CostingMethod
from cogs_kernel.domain.records import PeriodType
from cogs_kernel.exceptions import InvalidCostingMethodError

ENV_PREFIX = "COGS_"

# Read by get_active_settings(), not a settings field.
CONFIG_FILE_ENV = "COGS_CONFIG_FILE"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML settings file.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"{key}: cannot parse boolean from {value!r}")


def _parse_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key}: expected an integer, got {value!r}") from exc


def _parse_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key}: expected a number, got {value!r}") from exc


def _parse_method(key: str, value: Any) -> CostingMethod:
    try:
        return CostingMethod.parse(str(value))
    except InvalidCostingMethodError as exc:
        raise ValueError(f"{key}: {exc}") from exc


def _parse_period_types(key: str, value: Any) -> tuple[PeriodType, ...]:
    items = value.split(",") if isinstance(value, str) else value
    if not isinstance(items, (list, tuple)):
        raise ValueError(f"{key}: expected a list of period types, got {value!r}")
    try:
        return tuple(PeriodType(str(item).strip().lower()) for item in items if str(item).strip())
    except ValueError as exc:
        raise ValueError(f"{key}: {exc}") from exc


def _parse_str(key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected a string, got {value!r}")
    return value


_PARSERS = {
    "database_url": _parse_str,
    "echo_sql": _parse_bool,
    "default_costing_method": _parse_method,
    "max_conflict_retries": _parse_int,
    "retry_backoff_seconds": _parse_float,
    "retry_backoff_multiplier": _parse_float,
    "summary_period_types": _parse_period_types,
    "log_level": lambda key, value: _parse_str(key, value).upper(),
}


def _coerce(raw: Mapping[str, Any], source: str) -> dict[str, Any]:
    unknown = sorted(set(raw) - EngineSettings.field_names())
    if unknown:
        raise ValueError(f"Unknown setting(s) in {source}: {unknown}")
    return {key: _PARSERS[key](key, value) for key, value in raw.items()}


def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX) or name == CONFIG_FILE_ENV:
            continue
        overrides[name[len(ENV_PREFIX):].lower()] = value
    return overrides


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Build EngineSettings from defaults, an optional YAML file and the
    environment.

    Args:
        path: YAML file with any subset of the EngineSettings keys.
        environ: Environment mapping; defaults to ``os.environ``.
    """
    values: dict[str, Any] = {}
    if path is not None:
        values.update(_coerce(load_yaml_file(Path(path)), str(path)))

    env = os.environ if environ is None else environ
    values.update(_coerce(_env_overrides(env), "environment"))

    return EngineSettings(**values)
