"""ORM models for the billing kernel."""

from billing_kernel.models.invoice import Invoice, InvoiceItem
from billing_kernel.models.transaction import LedgerTransaction, TransactionType

__all__ = [
    "Invoice",
    "InvoiceItem",
    "LedgerTransaction",
    "TransactionType",
]
