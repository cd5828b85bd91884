"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the persistence
    boundary: validated input (LineItemSpec, InvoiceHeader, InvoiceDraft,
    LedgerEntrySpec) and read-back records (InvoiceLineRecord, InvoiceRecord,
    LedgerEntryRecord, InvoiceCreated, InvoiceDeleted).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from
    the service and selector layers.

Data flow:
    payload -> InvoiceDraft -> (InvoiceHeader + LineItemSpec[] + LedgerEntrySpec)
            -> InvoiceStore -> InvoiceCreated -> InvoiceRecord
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from billing_kernel.models.transaction import TransactionType

if TYPE_CHECKING:
    from billing_kernel.models.invoice import Invoice as InvoiceModel
    from billing_kernel.models.invoice import InvoiceItem as InvoiceItemModel
    from billing_kernel.models.transaction import LedgerTransaction as LedgerTransactionModel

SALES_CATEGORY = "sales"


@dataclass(frozen=True)
class LineItemSpec:
    """One validated invoice line."""

    description: str
    qty: int
    unit_price: Decimal
    line_total: Decimal
    discount: Decimal | None = None


@dataclass(frozen=True)
class InvoiceHeader:
    """Invoice record excluding its line items."""

    invoice_no: str
    issue_date: date
    total: Decimal
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    customer_name: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class InvoiceDraft:
    """
    Validated create-invoice request.

    ``invoice_no`` is None when the caller left numbering to the kernel.
    """

    issue_date: date
    total: Decimal
    items: tuple[LineItemSpec, ...] = ()
    invoice_no: str | None = None
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    customer_name: str | None = None
    notes: str | None = None

    def header(self, invoice_no: str) -> InvoiceHeader:
        """Header for a persistence attempt under ``invoice_no``."""
        return InvoiceHeader(
            invoice_no=invoice_no,
            issue_date=self.issue_date,
            total=self.total,
            subtotal=self.subtotal,
            tax=self.tax,
            customer_name=self.customer_name,
            notes=self.notes,
        )

    def income_entry(self, invoice_no: str) -> LedgerEntrySpec | None:
        """
        Ledger entry that accompanies the invoice.

        Only invoices with a positive total produce one; a zero or negative
        total yields an invoice without a ledger row.
        """
        if self.total <= 0:
            return None
        return LedgerEntrySpec(
            type=TransactionType.INCOME,
            amount=self.total,
            entry_date=self.issue_date,
            category=SALES_CATEGORY,
            reference=invoice_no,
            notes=f"Invoice #{invoice_no}",
        )


@dataclass(frozen=True)
class LedgerEntrySpec:
    """One validated ledger transaction to insert."""

    type: TransactionType
    amount: Decimal
    entry_date: date
    category: str | None = None
    reference: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class InvoiceCreated:
    """Identifiers of a committed-or-about-to-commit invoice unit."""

    invoice_id: int
    invoice_no: str
    ledger_entry_id: int | None = None


@dataclass(frozen=True)
class InvoiceLineRecord:
    id: int
    description: str
    qty: int
    unit_price: Decimal
    discount: Decimal | None
    line_total: Decimal

    @classmethod
    def from_model(cls, item: InvoiceItemModel) -> InvoiceLineRecord:
        return cls(
            id=item.id,
            description=item.description,
            qty=item.qty,
            unit_price=item.unit_price,
            discount=item.discount,
            line_total=item.line_total,
        )


@dataclass(frozen=True)
class InvoiceRecord:
    """Persisted invoice header with its lines in insertion order."""

    id: int
    invoice_no: str
    issue_date: date
    customer_name: str | None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    notes: str | None
    items: tuple[InvoiceLineRecord, ...] = ()

    @classmethod
    def from_model(cls, invoice: InvoiceModel, *, include_items: bool = True) -> InvoiceRecord:
        items: tuple[InvoiceLineRecord, ...] = ()
        if include_items:
            items = tuple(InvoiceLineRecord.from_model(i) for i in invoice.items)
        return cls(
            id=invoice.id,
            invoice_no=invoice.invoice_no,
            issue_date=invoice.issue_date,
            customer_name=invoice.customer_name,
            subtotal=invoice.subtotal,
            tax=invoice.tax,
            total=invoice.total,
            notes=invoice.notes,
            items=items,
        )


@dataclass(frozen=True)
class LedgerEntryRecord:
    id: int
    type: TransactionType
    category: str | None
    amount: Decimal
    entry_date: date
    reference: str | None
    notes: str | None

    @classmethod
    def from_model(cls, txn: LedgerTransactionModel) -> LedgerEntryRecord:
        return cls(
            id=txn.id,
            type=TransactionType(txn.type),
            category=txn.category,
            amount=txn.amount,
            entry_date=txn.entry_date,
            reference=txn.reference,
            notes=txn.notes,
        )


@dataclass(frozen=True)
class InvoiceDeleted:
    """Outcome of removing an invoice together with its ledger entries."""

    invoice_id: int
    invoice_no: str
    ledger_entries_removed: int
