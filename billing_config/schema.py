"""
BillingConfig schema.

The runtime settings of the billing service as one frozen dataclass.  YAML
files are parsed into it by ``billing_config.loader``; nothing else in the
system reads configuration files or environment variables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

SEQUENCE_STRATEGIES = ("counter_table", "query_count")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class BillingConfig:
    """Runtime settings for the billing kernel and its outer surfaces."""

    database_url: str = "sqlite:///billing.db"
    echo_sql: bool = False
    sequence_strategy: str = "counter_table"
    max_attempts: int = 6
    retry_backoff_ms: int = 0
    retry_jitter_ms: int = 0
    require_line_items: bool = False
    sqlite_busy_timeout_s: float = 30.0
    log_level: str = "INFO"
    reset_secret: str | None = None

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if self.sequence_strategy not in SEQUENCE_STRATEGIES:
            raise ValueError(
                f"sequence_strategy must be one of {SEQUENCE_STRATEGIES}, "
                f"got {self.sequence_strategy!r}"
            )
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.retry_backoff_ms < 0:
            raise ValueError(f"retry_backoff_ms must be >= 0, got {self.retry_backoff_ms}")
        if self.retry_jitter_ms < 0:
            raise ValueError(f"retry_jitter_ms must be >= 0, got {self.retry_jitter_ms}")
        if self.sqlite_busy_timeout_s <= 0:
            raise ValueError(
                f"sqlite_busy_timeout_s must be > 0, got {self.sqlite_busy_timeout_s}"
            )
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {LOG_LEVELS}, got {self.log_level!r}")

    @property
    def log_level_value(self) -> int:
        """Numeric ``logging`` level for ``log_level``."""
        return logging.getLevelName(self.log_level)

    @property
    def reset_requires_secret(self) -> bool:
        return bool(self.reset_secret)
