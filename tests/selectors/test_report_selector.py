"""Summary report tests: income, expense and profit derived from ledger rows."""

from datetime import date
from decimal import Decimal

from billing_kernel.domain.dtos import LedgerEntrySpec
from billing_kernel.models.transaction import TransactionType
from billing_kernel.selectors.report_selector import ReportSelector, SummaryReport
from billing_kernel.services.invoice_store import InvoiceStore


def _entry(session, type: TransactionType, amount: str, on: date) -> None:
    InvoiceStore(session).create_ledger_entry(
        LedgerEntrySpec(type=type, amount=Decimal(amount), entry_date=on)
    )


class TestSummary:

    def test_empty_ledger(self, session):
        report = ReportSelector(session).summary()
        assert report == SummaryReport(income=Decimal("0"), expense=Decimal("0"))
        assert report.profit == Decimal("0")

    def test_totals_and_profit(self, session):
        _entry(session, TransactionType.INCOME, "110.00", date(2024, 3, 1))
        _entry(session, TransactionType.INCOME, "40.25", date(2024, 3, 2))
        _entry(session, TransactionType.EXPENSE, "30.10", date(2024, 3, 3))

        report = ReportSelector(session).summary()
        assert report.income == Decimal("150.25")
        assert report.expense == Decimal("30.10")
        assert report.profit == Decimal("120.15")

    def test_negative_profit(self, session):
        _entry(session, TransactionType.EXPENSE, "75", date(2024, 3, 3))
        report = ReportSelector(session).summary()
        assert report.income == Decimal("0")
        assert report.profit == Decimal("-75")

    def test_date_range(self, session):
        _entry(session, TransactionType.INCOME, "100", date(2024, 2, 28))
        _entry(session, TransactionType.INCOME, "50", date(2024, 3, 1))
        _entry(session, TransactionType.EXPENSE, "20", date(2024, 3, 31))
        _entry(session, TransactionType.EXPENSE, "5", date(2024, 4, 1))

        report = ReportSelector(session).summary(date(2024, 3, 1), date(2024, 3, 31))
        assert report.income == Decimal("50")
        assert report.expense == Decimal("20")

    def test_single_bound_ignored(self, session):
        _entry(session, TransactionType.INCOME, "100", date(2024, 2, 28))
        _entry(session, TransactionType.INCOME, "50", date(2024, 3, 1))
        assert ReportSelector(session).summary(date_from=date(2024, 3, 1)).income == Decimal("150")
