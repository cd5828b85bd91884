"""
Invoice number formatting.

Issued numbers have the shape ``INV-YYYYMMDD-NNNN``: a day prefix followed by
the per-day counter, zero-padded to four digits (wider counters are printed
in full).  Previously issued numbers depend on this shape, so it must not
change.
"""

from datetime import date, datetime

from billing_kernel.exceptions import ValidationError

INVOICE_PREFIX = "INV"
SEQUENCE_WIDTH = 4


def coerce_date(value: date | str, field: str = "date") -> date:
    """
    Accept a ``date`` (a ``datetime`` is truncated) or an ISO ``YYYY-MM-DD``
    string.

    Raises:
        ValidationError: for anything else, including impossible dates.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(field, f"not an ISO date: {value!r}") from None
    raise ValidationError(field, f"not a date: {value!r}")


def day_prefix(on_date: date | str) -> str:
    """Return the ``INV-YYYYMMDD`` prefix that scopes the day's counter."""
    d = coerce_date(on_date)
    return f"{INVOICE_PREFIX}-{d:%Y%m%d}"


def format_invoice_number(on_date: date | str, seq: int) -> str:
    """
    Return the invoice number for ``seq`` on ``on_date``.

    >>> format_invoice_number(date(2024, 3, 7), 7)
    'INV-20240307-0007'
    """
    return f"{day_prefix(on_date)}-{seq:0{SEQUENCE_WIDTH}d}"
