"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads a YAML settings file, applies ``BILLING_*`` environment overrides and
parses the result into a frozen ``BillingConfig``.  Callers use
``billing_config.get_active_config()``; the functions here are its
building blocks.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys, wrong types or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingConfig

# Environment variable -> BillingConfig field
ENV_OVERRIDES: dict[str, str] = {
    "BILLING_DATABASE_URL": "database_url",
    "BILLING_SEQUENCE_STRATEGY": "sequence_strategy",
    "BILLING_MAX_ATTEMPTS": "max_attempts",
    "BILLING_LOG_LEVEL": "log_level",
    "BILLING_RESET_SECRET": "reset_secret",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE | _FALSE:
        return value.strip().lower() in _TRUE
    raise ValueError(f"{key}: expected a boolean, got {value!r}")


def parse_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValueError(f"{key}: expected an integer, got {value!r}")


def parse_float(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected a number, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise ValueError(f"{key}: expected a number, got {value!r}")


def parse_optional_str(value: Any, key: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected a string, got {value!r}")
    return value.strip() or None


def parse_config(data: Mapping[str, Any]) -> BillingConfig:
    """
    Parse a BillingConfig from a dict.

    Missing keys take the dataclass defaults.

    Raises:
        ValueError: unknown keys or invalid values.
    """
    known = {f.name for f in fields(BillingConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    if "database_url" in data:
        kwargs["database_url"] = parse_optional_str(data["database_url"], "database_url") or ""
    if "echo_sql" in data:
        kwargs["echo_sql"] = parse_bool(data["echo_sql"], "echo_sql")
    if "sequence_strategy" in data:
        kwargs["sequence_strategy"] = str(data["sequence_strategy"]).strip()
    for key in ("max_attempts", "retry_backoff_ms", "retry_jitter_ms"):
        if key in data:
            kwargs[key] = parse_int(data[key], key)
    if "require_line_items" in data:
        kwargs["require_line_items"] = parse_bool(data["require_line_items"], "require_line_items")
    if "sqlite_busy_timeout_s" in data:
        kwargs["sqlite_busy_timeout_s"] = parse_float(
            data["sqlite_busy_timeout_s"], "sqlite_busy_timeout_s"
        )
    if "log_level" in data:
        kwargs["log_level"] = str(data["log_level"]).strip().upper()
    if "reset_secret" in data:
        kwargs["reset_secret"] = parse_optional_str(data["reset_secret"], "reset_secret")

    return BillingConfig(**kwargs)


def apply_env_overrides(data: Mapping[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Copy of ``data`` with every set ``BILLING_*`` override applied."""
    merged = dict(data)
    for env_name, key in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is not None and value != "":
            merged[key] = value
    return merged
