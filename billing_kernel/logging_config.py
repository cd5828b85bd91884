"""
Module: billing_kernel.logging_config
Responsibility: One-JSON-object-per-line logging for the billing kernel.

Every record carries the envelope (ts, level, logger, message), then the
request context bound through LogContext (correlation_id, operation,
invoice_no, invoice_id), then the ``extra`` fields of the call.  Context
wins over ``extra`` when both name the same key, so an invoice_no bound for
a create attempt is the one every record of that attempt reports.

Amounts are logged as decimal strings, dates as ISO strings and enums by
value.  Kernel exceptions contribute ``exc_code`` and their structured
attributes as ``exc_<name>``.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar, Token
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

CONTEXT_FIELDS = ("correlation_id", "operation", "invoice_no", "invoice_id")

_EMPTY: Mapping[str, Any] = MappingProxyType({})

_context: ContextVar[Mapping[str, Any]] = ContextVar("billing_log_context", default=_EMPTY)


def _merged(fields: dict[str, Any]) -> Mapping[str, Any]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
    current = dict(_context.get())
    current.update({k: v for k, v in fields.items() if v is not None})
    return MappingProxyType(current)


class LogContext:
    """
    Request-scoped log fields, held in a single ContextVar.

    Each thread and each asyncio task sees its own copy, so concurrent
    invoice creations never mix their correlation ids.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Add or overwrite fields; ``None`` values are ignored."""
        _context.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, Any]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    def bind(**fields: Any) -> "_Binding":
        """
        Context manager: fields apply inside the block only.

        On exit the context is restored exactly, including fields that were
        absent before.
        """
        return _Binding(fields)


class _Binding:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._token: Token | None = None

    def __enter__(self) -> type[LogContext]:
        self._token = _context.set(_merged(self._fields))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        if self._token is not None:
            _context.reset(self._token)
            self._token = None


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())

        for key, val in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, val)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for name, val in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = val
        return fields


_ROOT = "billing_kernel"


def get_logger(name: str) -> logging.Logger:
    """Logger named ``billing_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT}.{name}")


_installed: logging.Handler | None = None
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Install the JSON handler on the ``billing_kernel`` logger.

    Only the first call installs anything; later calls return the handler
    already in place.  Handlers added by others (pytest's caplog, an
    application's own) are left alone.
    """
    global _installed
    with _lock:
        if _installed is not None:
            return _installed

        root = logging.getLogger(_ROOT)
        root.setLevel(level)
        root.propagate = False

        installed = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        installed.setFormatter(StructuredFormatter())
        root.addHandler(installed)
        _installed = installed
        return installed


def reset_logging() -> None:
    """Remove the handler configure_logging() installed.  For tests."""
    global _installed
    with _lock:
        root = logging.getLogger(_ROOT)
        if _installed is not None:
            root.removeHandler(_installed)
            _installed = None
        root.setLevel(logging.WARNING)
        root.propagate = True
