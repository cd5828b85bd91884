"""
Module: billing_kernel.selectors.transaction_selector
Responsibility: Read-only listing of ledger transactions.
Architecture position: Kernel > Selectors.

Failure modes:
    - Returns an empty list when nothing matches (never raises on absence).
"""

from datetime import date

from sqlalchemy import select

from billing_kernel.domain.dtos import LedgerEntryRecord
from billing_kernel.models.transaction import LedgerTransaction, TransactionType
from billing_kernel.selectors.base import BaseSelector


class TransactionSelector(BaseSelector):
    """Selector for income / expense ledger rows."""

    def list_transactions(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        type: TransactionType | None = None,
    ) -> list[LedgerEntryRecord]:
        """
        Ledger rows newest first (date desc, id desc).

        The date range applies only when both bounds are given.
        """
        stmt = select(LedgerTransaction)
        if date_from is not None and date_to is not None:
            stmt = stmt.where(LedgerTransaction.entry_date.between(date_from, date_to))
        if type is not None:
            stmt = stmt.where(LedgerTransaction.type == TransactionType(type).value)
        stmt = stmt.order_by(LedgerTransaction.entry_date.desc(), LedgerTransaction.id.desc())
        return [
            LedgerEntryRecord.from_model(txn)
            for txn in self.session.execute(stmt).scalars().all()
        ]

    def find_by_reference(
        self,
        reference: str,
        type: TransactionType | None = None,
    ) -> list[LedgerEntryRecord]:
        """Rows whose reference equals ``reference`` (e.g. an invoice number)."""
        stmt = select(LedgerTransaction).where(LedgerTransaction.reference == reference)
        if type is not None:
            stmt = stmt.where(LedgerTransaction.type == TransactionType(type).value)
        stmt = stmt.order_by(LedgerTransaction.id)
        return [
            LedgerEntryRecord.from_model(txn)
            for txn in self.session.execute(stmt).scalars().all()
        ]
