"""Database layer - engine, base classes, column types."""

from billing_kernel.db.base import Base, TrackedBase
from billing_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from billing_kernel.db.types import MoneyType, check_money_range, money_from_value, round_money

__all__ = [
    "Base",
    "MoneyType",
    "TrackedBase",
    "check_money_range",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "money_from_value",
    "round_money",
    "session_scope",
]
