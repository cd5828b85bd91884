"""
Pure domain layer: clock, invoice number formatting, DTOs and payload
validation.  Nothing here opens a session or performs I/O.
"""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.dtos import (
    InvoiceCreated,
    InvoiceDeleted,
    InvoiceDraft,
    InvoiceHeader,
    InvoiceLineRecord,
    InvoiceRecord,
    LedgerEntryRecord,
    LedgerEntrySpec,
    LineItemSpec,
)
from billing_kernel.domain.invoice_number import day_prefix, format_invoice_number

__all__ = [
    "Clock",
    "DeterministicClock",
    "InvoiceCreated",
    "InvoiceDeleted",
    "InvoiceDraft",
    "InvoiceHeader",
    "InvoiceLineRecord",
    "InvoiceRecord",
    "LedgerEntryRecord",
    "LedgerEntrySpec",
    "LineItemSpec",
    "SystemClock",
    "day_prefix",
    "format_invoice_number",
]
