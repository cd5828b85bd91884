"""
Module: billing_kernel.selectors.invoice_selector
Responsibility: Read-only invoice listing and search.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Newest first: ordered by issue date, then id, both descending.
    - The date range applies only when both bounds are given; a single
      bound is ignored.

Failure modes:
    - Returns an empty list when nothing matches (never raises on absence).
"""

from datetime import date

from sqlalchemy import func, or_, select
from sqlalchemy.orm import lazyload

from billing_kernel.domain.dtos import InvoiceRecord
from billing_kernel.models.invoice import Invoice
from billing_kernel.selectors.base import BaseSelector


class InvoiceSelector(BaseSelector):
    """Selector for invoice headers."""

    def list_invoices(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        q: str | None = None,
    ) -> list[InvoiceRecord]:
        """
        Invoice headers (without lines), newest first.

        Args:
            date_from: Inclusive lower bound on the issue date.
            date_to: Inclusive upper bound on the issue date.
            q: Case-insensitive substring of invoice_no or customer_name.
        """
        stmt = select(Invoice).options(lazyload(Invoice.items))

        if date_from is not None and date_to is not None:
            stmt = stmt.where(Invoice.issue_date.between(date_from, date_to))

        if q and q.strip():
            pattern = f"%{q.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Invoice.invoice_no).like(pattern),
                    func.lower(Invoice.customer_name).like(pattern),
                )
            )

        stmt = stmt.order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        invoices = self.session.execute(stmt).scalars().all()
        return [InvoiceRecord.from_model(inv, include_items=False) for inv in invoices]

    def count_for_prefix(self, prefix: str) -> int:
        """Number of invoices whose invoice_no starts with ``prefix-``."""
        return self.session.execute(
            select(func.count(Invoice.id)).where(Invoice.invoice_no.like(f"{prefix}-%"))
        ).scalar_one()
