"""
JSON-ready views of kernel DTOs.

Monetary values are rendered as decimal strings and dates as ISO strings,
so no precision is lost on the way out.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from billing_kernel.domain.dtos import (
    InvoiceLineRecord,
    InvoiceRecord,
    LedgerEntryRecord,
)
from billing_kernel.selectors.report_selector import SummaryReport


def money(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(value)


def iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def line_to_dict(line: InvoiceLineRecord) -> dict[str, Any]:
    return {
        "id": line.id,
        "description": line.description,
        "qty": line.qty,
        "unit_price": money(line.unit_price),
        "discount": money(line.discount),
        "line_total": money(line.line_total),
    }


def invoice_to_dict(invoice: InvoiceRecord, *, include_items: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": invoice.id,
        "invoice_no": invoice.invoice_no,
        "date": iso(invoice.issue_date),
        "customer_name": invoice.customer_name,
        "subtotal": money(invoice.subtotal),
        "tax": money(invoice.tax),
        "total": money(invoice.total),
        "notes": invoice.notes,
    }
    if include_items:
        data["items"] = [line_to_dict(line) for line in invoice.items]
    return data


def transaction_to_dict(txn: LedgerEntryRecord) -> dict[str, Any]:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "category": txn.category,
        "amount": money(txn.amount),
        "date": iso(txn.entry_date),
        "reference": txn.reference,
        "notes": txn.notes,
    }


def summary_to_dict(report: SummaryReport) -> dict[str, Any]:
    return {
        "income": money(report.income),
        "expense": money(report.expense),
        "profit": money(report.profit),
    }
