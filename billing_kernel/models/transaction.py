"""
Module: billing_kernel.models.transaction
Responsibility: ORM persistence for income / expense ledger transactions.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - type is one of ``income`` / ``expense`` (CHECK ck_transactions_type).
    - Invoice-derived rows carry the invoice number in ``reference``.  This
      is a lookup-only back-reference: no foreign key, no ownership.  The
      invoice store removes the matching income row when the invoice is
      deleted.
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class TransactionType(str, Enum):
    """Direction of a ledger transaction."""

    INCOME = "income"
    EXPENSE = "expense"


class LedgerTransaction(TrackedBase):
    """A single income or expense record in the running ledger."""

    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("type IN ('income', 'expense')", name="ck_transactions_type"),
        Index("idx_transactions_reference", "reference", "type"),
    )

    type: Mapped[str] = mapped_column(String(10), nullable=False)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    # Booking date; the column keeps the name "date"
    entry_date: Mapped[date] = mapped_column("date", nullable=False, index=True)

    reference: Mapped[str | None] = mapped_column(String(64), nullable=True)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    def __repr__(self) -> str:
        return f"<LedgerTransaction {self.id} {self.type} {self.amount}>"
