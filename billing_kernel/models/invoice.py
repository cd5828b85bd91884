"""
Module: billing_kernel.models.invoice
Responsibility: ORM persistence for invoice headers and their line items.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - invoice_no uniqueness (UNIQUE constraint uq_invoices_invoice_no).  This
      constraint is the hard safety net for numbering; allocators only make
      collisions rare.
    - Line items are owned exclusively by their invoice: ORM cascade
      ``all, delete-orphan`` plus ``ON DELETE CASCADE`` on the foreign key.
    - Line order is insertion order, recorded in ``position``.

Failure modes:
    - IntegrityError on duplicate invoice_no (translated by InvoiceStore to
      DuplicateInvoiceNumberError).
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import IdType, TrackedBase


class Invoice(TrackedBase):
    """
    Invoice header.

    Contract:
        invoice_no is assigned once at creation and never updated.  Monetary
        fields are stored exactly as supplied by the caller; the kernel does
        not recompute them from the lines.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_no", name="uq_invoices_invoice_no"),
    )

    invoice_no: Mapped[str] = mapped_column(String(64), nullable=False)

    # Issue date; the column keeps the name "date"
    issue_date: Mapped[date] = mapped_column("date", nullable=False, index=True)

    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    total: Mapped[Decimal] = mapped_column(nullable=False)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    items: Mapped[list["InvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
        lazy="selectin",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.id} {self.invoice_no}>"


class InvoiceItem(TrackedBase):
    """A single line on an invoice."""

    __tablename__ = "invoice_items"

    __table_args__ = (
        Index("idx_invoice_items_invoice", "invoice_id", "position"),
    )

    invoice_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    # 0-based insertion order within the invoice
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    discount: Mapped[Decimal | None] = mapped_column(nullable=True)

    line_total: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped["Invoice"] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<InvoiceItem {self.description[:30]}>"
