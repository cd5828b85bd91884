"""
Module: billing_kernel.selectors.report_selector
Responsibility: Income / expense / profit summary over ledger transactions.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Figures are derived from the transactions table on every call; no
      stored balances.
    - profit = income - expense; every figure is Decimal("0") when empty.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from billing_kernel.db.types import round_money
from billing_kernel.models.transaction import LedgerTransaction, TransactionType
from billing_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class SummaryReport:
    income: Decimal
    expense: Decimal

    @property
    def profit(self) -> Decimal:
        return self.income - self.expense


class ReportSelector(BaseSelector):
    """Selector for the summary report."""

    def summary(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> SummaryReport:
        """
        Totals by transaction type.

        The date range applies only when both bounds are given.
        """
        stmt = select(LedgerTransaction.type, LedgerTransaction.amount)
        if date_from is not None and date_to is not None:
            stmt = stmt.where(LedgerTransaction.entry_date.between(date_from, date_to))

        # Summed in Python: SQL SUM over SQLite text amounts would go through REAL
        totals: dict[str, Decimal] = {}
        for txn_type, amount in self.session.execute(stmt):
            totals[txn_type] = totals.get(txn_type, Decimal("0")) + amount
        totals = {k: round_money(v) for k, v in totals.items()}
        return SummaryReport(
            income=totals.get(TransactionType.INCOME.value, Decimal("0")),
            expense=totals.get(TransactionType.EXPENSE.value, Decimal("0")),
        )
