"""
ExportService -- CSV and JSON exports of the billing store.

Responsibility:
    Writes invoice headers and ledger transactions as CSV, and the whole
    store (invoices with lines, transactions) as one JSON backup document.

Architecture position:
    Services -- outer surface.  Reads through the kernel selectors only;
    never writes.
"""

import csv
import json
from datetime import date
from typing import IO, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import InvoiceRecord
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import Invoice
from billing_kernel.models.transaction import TransactionType
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.selectors.transaction_selector import TransactionSelector
from billing_services.serialization import (
    invoice_to_dict,
    iso,
    money,
    transaction_to_dict,
)

logger = get_logger("services.export")

INVOICE_CSV_COLUMNS = (
    "id", "invoice_no", "date", "customer_name", "subtotal", "tax", "total", "notes",
)
TRANSACTION_CSV_COLUMNS = (
    "id", "type", "category", "amount", "date", "reference", "notes",
)

BACKUP_FORMAT_VERSION = 1


class ExportService:
    """Read-only exports."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def export_invoices_csv(
        self,
        stream: IO[str],
        date_from: date | None = None,
        date_to: date | None = None,
        q: str | None = None,
    ) -> int:
        """Write invoice headers as CSV; returns the number of data rows."""
        invoices = InvoiceSelector(self._session).list_invoices(date_from, date_to, q)
        writer = csv.writer(stream)
        writer.writerow(INVOICE_CSV_COLUMNS)
        for inv in invoices:
            writer.writerow([
                inv.id,
                inv.invoice_no,
                iso(inv.issue_date),
                inv.customer_name or "",
                money(inv.subtotal),
                money(inv.tax),
                money(inv.total),
                inv.notes or "",
            ])
        logger.info("invoices_exported", extra={"format": "csv", "rows": len(invoices)})
        return len(invoices)

    def export_transactions_csv(
        self,
        stream: IO[str],
        date_from: date | None = None,
        date_to: date | None = None,
        type: TransactionType | None = None,
    ) -> int:
        """Write ledger transactions as CSV; returns the number of data rows."""
        txns = TransactionSelector(self._session).list_transactions(date_from, date_to, type)
        writer = csv.writer(stream)
        writer.writerow(TRANSACTION_CSV_COLUMNS)
        for txn in txns:
            writer.writerow([
                txn.id,
                txn.type.value,
                txn.category or "",
                money(txn.amount),
                iso(txn.entry_date),
                txn.reference or "",
                txn.notes or "",
            ])
        logger.info("transactions_exported", extra={"format": "csv", "rows": len(txns)})
        return len(txns)

    def build_backup(self) -> dict[str, Any]:
        """The whole store as a JSON-ready dict, invoices in id order."""
        invoices = self._session.execute(select(Invoice).order_by(Invoice.id)).scalars().all()
        txns = TransactionSelector(self._session).list_transactions()
        return {
            "version": BACKUP_FORMAT_VERSION,
            "exported_at": self._clock.now().isoformat(),
            "invoices": [invoice_to_dict(InvoiceRecord.from_model(inv)) for inv in invoices],
            "transactions": [
                transaction_to_dict(txn) for txn in sorted(txns, key=lambda t: t.id)
            ],
        }

    def export_backup(self, stream: IO[str]) -> dict[str, int]:
        """Write the JSON backup document; returns row counts."""
        backup = self.build_backup()
        json.dump(backup, stream, indent=2)
        counts = {
            "invoices": len(backup["invoices"]),
            "transactions": len(backup["transactions"]),
        }
        logger.info("backup_exported", extra={"format": "json", **counts})
        return counts
