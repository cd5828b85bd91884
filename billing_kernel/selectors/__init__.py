"""Read-only query selectors."""

from billing_kernel.selectors.base import BaseSelector
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.selectors.report_selector import ReportSelector, SummaryReport
from billing_kernel.selectors.transaction_selector import TransactionSelector

__all__ = [
    "BaseSelector",
    "InvoiceSelector",
    "ReportSelector",
    "SummaryReport",
    "TransactionSelector",
]
