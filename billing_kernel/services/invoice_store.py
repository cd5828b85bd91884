"""
InvoiceStore -- Invoice persistence transaction.

Responsibility:
    Writes an invoice header, its line items and the derived ledger entry
    as one atomic unit, reads invoices back, and removes an invoice together
    with its income entry.  This is the only module that turns SQLAlchemy
    errors into kernel errors for invoice writes.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by InvoiceService.  Depends on models/ and domain/dtos.

Invariants enforced:
    - All-or-nothing: every write runs inside a SAVEPOINT; on any failure
      the savepoint is rolled back, so no header, line or ledger row from
      the failed unit survives in the caller's transaction.
    - invoice_no uniqueness is enforced by the database
      (uq_invoices_invoice_no); a violation surfaces as
      DuplicateInvoiceNumberError, everything else as PersistenceError.
    - Deleting an invoice removes its lines (cascade) and the income
      entries whose reference equals its invoice_no, in the same unit.

Failure modes:
    - DuplicateInvoiceNumberError: the number is held by another invoice.
    - PersistenceError: connectivity, unrelated constraint, disk/IO.

Audit relevance:
    invoice_persisted / invoice_deleted are logged at INFO with the invoice
    id and number.
"""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from billing_kernel.domain.dtos import (
    InvoiceCreated,
    InvoiceDeleted,
    InvoiceHeader,
    InvoiceRecord,
    LedgerEntrySpec,
    LineItemSpec,
)
from billing_kernel.exceptions import DuplicateInvoiceNumberError, PersistenceError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import Invoice, InvoiceItem
from billing_kernel.models.transaction import LedgerTransaction, TransactionType

logger = get_logger("services.invoice_store")

# Substrings that identify a violation of the invoice_no unique constraint
# in PostgreSQL and SQLite driver messages.
_INVOICE_NO_CONFLICT_MARKERS = (
    "uq_invoices_invoice_no",
    "invoices.invoice_no",
)


class InvoiceStore:
    """
    Atomic persistence of invoices and their ledger entries.

    Contract:
        Every public write either completes in full inside the caller's
        transaction or leaves it exactly as it was.  The store never commits;
        the caller owns the outer transaction.

    Non-goals:
        - Does NOT allocate invoice numbers (see SequenceService).
        - Does NOT retry; the orchestrator decides what a conflict means.
    """

    def __init__(self, session: Session):
        self._session = session

    @contextmanager
    def _atomic(self, operation: str, invoice_no: str | None = None) -> Iterator[None]:
        savepoint = self._session.begin_nested()
        try:
            yield
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            if invoice_no is not None and self._is_invoice_no_conflict(exc, invoice_no):
                logger.info(
                    "invoice_number_conflict",
                    extra={"invoice_no": invoice_no, "operation": operation},
                )
                raise DuplicateInvoiceNumberError(invoice_no) from exc
            raise PersistenceError(operation, str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            savepoint.rollback()
            raise PersistenceError(operation, str(exc)) from exc
        except BaseException:
            if savepoint.is_active:
                savepoint.rollback()
            raise

    def _is_invoice_no_conflict(self, exc: IntegrityError, invoice_no: str) -> bool:
        message = str(exc.orig).lower()
        if any(marker in message for marker in _INVOICE_NO_CONFLICT_MARKERS):
            return True
        # Driver message did not name the constraint; check whether the
        # number is now taken.
        return self.find_invoice_id(invoice_no) is not None

    def _add_invoice(self, header: InvoiceHeader, items: Sequence[LineItemSpec]) -> Invoice:
        invoice = Invoice(
            invoice_no=header.invoice_no,
            issue_date=header.issue_date,
            customer_name=header.customer_name,
            subtotal=header.subtotal,
            tax=header.tax,
            total=header.total,
            notes=header.notes,
            items=[
                InvoiceItem(
                    position=position,
                    description=item.description,
                    qty=item.qty,
                    unit_price=item.unit_price,
                    discount=item.discount,
                    line_total=item.line_total,
                )
                for position, item in enumerate(items)
            ],
        )
        self._session.add(invoice)
        self._session.flush()
        return invoice

    def _add_ledger_entry(self, spec: LedgerEntrySpec) -> LedgerTransaction:
        txn = LedgerTransaction(
            type=spec.type.value,
            category=spec.category,
            amount=spec.amount,
            entry_date=spec.entry_date,
            reference=spec.reference,
            notes=spec.notes,
        )
        self._session.add(txn)
        self._session.flush()
        logger.debug(
            "ledger_entry_recorded",
            extra={
                "transaction_id": txn.id,
                "type": txn.type,
                "amount": txn.amount,
                "reference": txn.reference,
            },
        )
        return txn

    def create_invoice(self, header: InvoiceHeader, items: Sequence[LineItemSpec]) -> int:
        """
        Insert an invoice header and its lines.

        Returns:
            The engine-assigned invoice id.

        Raises:
            DuplicateInvoiceNumberError: header.invoice_no is taken.
            PersistenceError: any other storage fault.
        """
        with self._atomic("create_invoice", header.invoice_no):
            invoice = self._add_invoice(header, items)
        return invoice.id

    def create_ledger_entry(self, spec: LedgerEntrySpec) -> int:
        """
        Insert one ledger transaction.

        Raises:
            PersistenceError: on any storage fault.
        """
        with self._atomic("create_ledger_entry"):
            txn = self._add_ledger_entry(spec)
        return txn.id

    def create_invoice_with_ledger(
        self,
        header: InvoiceHeader,
        items: Sequence[LineItemSpec],
        derived_txn: LedgerEntrySpec | None,
    ) -> InvoiceCreated:
        """
        Insert header, lines and the derived ledger entry as one unit.

        Preconditions:
            - The caller is within an active transaction.
            - ``derived_txn`` is None when no ledger entry should be written
              (zero or negative total).

        Postconditions:
            - On success all rows are flushed but not committed.
            - On failure none of the rows exist in the caller's transaction.

        Raises:
            DuplicateInvoiceNumberError: header.invoice_no is taken.
            PersistenceError: any other storage fault.
        """
        with self._atomic("create_invoice_with_ledger", header.invoice_no):
            invoice = self._add_invoice(header, items)
            txn = self._add_ledger_entry(derived_txn) if derived_txn is not None else None

        created = InvoiceCreated(
            invoice_id=invoice.id,
            invoice_no=invoice.invoice_no,
            ledger_entry_id=txn.id if txn is not None else None,
        )
        logger.info(
            "invoice_persisted",
            extra={
                "invoice_id": created.invoice_id,
                "invoice_no": created.invoice_no,
                "item_count": len(items),
                "ledger_entry_id": created.ledger_entry_id,
            },
        )
        return created

    def get_invoice(self, invoice_id: int) -> InvoiceRecord | None:
        """Invoice with its lines in insertion order, or None if unknown."""
        invoice = self._session.get(Invoice, invoice_id, populate_existing=True)
        if invoice is None:
            return None
        return InvoiceRecord.from_model(invoice)

    def find_invoice_id(self, invoice_no: str) -> int | None:
        return self._session.execute(
            select(Invoice.id).where(Invoice.invoice_no == invoice_no)
        ).scalar_one_or_none()

    def delete_invoice_with_ledger(self, invoice_id: int) -> InvoiceDeleted | None:
        """
        Remove an invoice, its lines and its income ledger entries.

        Returns:
            What was removed, or None if the invoice does not exist.

        Raises:
            PersistenceError: on any storage fault; nothing is removed.
        """
        with self._atomic("delete_invoice"):
            invoice = self._session.get(Invoice, invoice_id)
            if invoice is None:
                return None
            invoice_no = invoice.invoice_no
            result = self._session.execute(
                delete(LedgerTransaction)
                .where(LedgerTransaction.reference == invoice_no)
                .where(LedgerTransaction.type == TransactionType.INCOME.value)
            )
            self._session.delete(invoice)
            self._session.flush()

        deleted = InvoiceDeleted(
            invoice_id=invoice_id,
            invoice_no=invoice_no,
            ledger_entries_removed=result.rowcount,
        )
        logger.info(
            "invoice_deleted",
            extra={
                "invoice_id": invoice_id,
                "invoice_no": invoice_no,
                "ledger_entries_removed": deleted.ledger_entries_removed,
            },
        )
        return deleted
