"""
billing_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component may read configuration
    files or ``BILLING_*`` environment variables directly.

Architecture position:
    Configuration -- sits above ``billing_kernel`` and below
    ``billing_services``.  The kernel MUST NEVER import from
    ``billing_config``; outer surfaces pass the relevant settings into
    kernel constructors.

Failure modes:
    - ``FileNotFoundError`` -- the selected YAML file does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from billing_config.loader import apply_env_overrides, load_yaml_file, parse_config
from billing_config.schema import BillingConfig

_logger = logging.getLogger("billing_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "BILLING_CONFIG"


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> BillingConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the settings file: ``config_path``, then the
    ``BILLING_CONFIG`` environment variable, then the packaged
    ``sets/default.yaml``.  Environment overrides are applied on top of
    the file.

    Args:
        config_path: Explicit settings file.
        environ: Environment mapping; defaults to ``os.environ``.

    Raises:
        FileNotFoundError, yaml.YAMLError, ValueError.
    """
    env = os.environ if environ is None else environ

    if config_path is not None:
        path = Path(config_path)
    elif env.get(CONFIG_PATH_ENV):
        path = Path(env[CONFIG_PATH_ENV])
    else:
        path = _DEFAULT_CONFIG_FILE

    data = apply_env_overrides(load_yaml_file(path), env)
    config = parse_config(data)

    _logger.info(
        "config_loaded",
        extra={
            "config_path": str(path),
            "sequence_strategy": config.sequence_strategy,
            "max_attempts": config.max_attempts,
            "backend": config.database_url.split(":", 1)[0],
            "reset_secret_configured": config.reset_requires_secret,
        },
    )
    return config


__all__ = ["BillingConfig", "get_active_config"]
