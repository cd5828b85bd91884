"""
Module: billing_kernel.db.types
Responsibility: Column type and helpers for monetary values.
    Centralizes precision and rounding so that every model and service uses
    identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    No floats for money.  money_from_value() is the single entry point that
    turns untrusted input into a Decimal, and it refuses NaN and infinity.
    check_money_range() refuses anything the column cannot hold exactly:
    more than MONEY_DECIMAL_PLACES decimals or more than
    MONEY_INTEGER_DIGITS integer digits.  Stored amounts are never rounded.

Failure modes:
    - ValueError from money_from_value() / check_money_range().
    - The same ValueError surfaces from a flush (wrapped by SQLAlchemy as
      StatementError) if an out-of-range amount bypassed validation.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

MONEY_DECIMAL_PLACES = 4
MONEY_INTEGER_DIGITS = 14
DEFAULT_ROUNDING = ROUND_HALF_UP

_MONEY_LIMIT = Decimal(10) ** MONEY_INTEGER_DIGITS


class MoneyType(TypeDecorator):
    """
    Exact Decimal storage: NUMERIC(18, 4), or fixed-point TEXT on SQLite.

    SQLite has no decimal storage class; its NUMERIC affinity keeps values
    as REAL, so amounts are written there as canonical ``"123.4500"`` text
    and read back with ``Decimal(text)``.
    """

    impl = Numeric(MONEY_INTEGER_DIGITS + MONEY_DECIMAL_PLACES, MONEY_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(MONEY_INTEGER_DIGITS + MONEY_DECIMAL_PLACES + 2))
        return dialect.type_descriptor(self.impl)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = check_money_range(money_from_value(value))
        amount = amount.quantize(Decimal(1).scaleb(-MONEY_DECIMAL_PLACES))
        if dialect.name == "sqlite":
            return format(amount, "f")
        return amount

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))


# Column type for every monetary amount
MoneyColumn = MoneyType()


def money_from_value(value: Any) -> Decimal:
    """
    Create a Decimal amount from str, int, float or Decimal input.

    Floats go through ``str()`` first so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Raises:
        ValueError: if the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a monetary amount: {value!r}") from exc
    else:
        raise ValueError(f"Not a monetary amount: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return amount


def check_money_range(amount: Decimal) -> Decimal:
    """
    Return ``amount`` unchanged if MoneyColumn can store it exactly.

    Trailing zeros do not count: ``1.50000`` is accepted, ``0.12345`` is not.

    Raises:
        ValueError: too many integer digits or decimal places.
    """
    if abs(amount) >= _MONEY_LIMIT:
        raise ValueError(f"more than {MONEY_INTEGER_DIGITS} integer digits")
    if amount != round_money(amount):
        raise ValueError(f"more than {MONEY_DECIMAL_PLACES} decimal places")
    return amount


def round_money(amount: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round to the stored precision using ROUND_HALF_UP."""
    quantum = Decimal(1).scaleb(-places)
    return amount.quantize(quantum, rounding=DEFAULT_ROUNDING)
