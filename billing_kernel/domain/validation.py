"""
Boundary validation for inbound payloads.

Turns loosely-typed request bodies (JSON-decoded dicts) into frozen DTOs.
Every problem raises ValidationError naming the offending field; nothing in
this module touches the database, so a rejected request leaves no trace.
"""

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any

from billing_kernel.db.types import check_money_range, money_from_value, round_money
from billing_kernel.domain.dtos import InvoiceDraft, LedgerEntrySpec, LineItemSpec
from billing_kernel.domain.invoice_number import coerce_date
from billing_kernel.exceptions import ValidationError
from billing_kernel.models.invoice import Invoice, InvoiceItem
from billing_kernel.models.transaction import LedgerTransaction, TransactionType

# Largest qty an INTEGER column holds on every backend
MAX_QTY = 2**31 - 1


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _max_length(column) -> int:
    return column.property.columns[0].type.length


def _storable_money(amount: Decimal, field: str) -> Decimal:
    try:
        return check_money_range(amount)
    except ValueError as exc:
        raise ValidationError(field, str(exc)) from None


def parse_money(value: Any, field: str) -> Decimal:
    """Decimal from a payload value, or ValidationError; never rounded."""
    try:
        amount = money_from_value(value)
    except ValueError:
        raise ValidationError(field, f"not a number: {value!r}") from None
    return _storable_money(amount, field)


def parse_optional_money(value: Any, field: str, default: Decimal | None) -> Decimal | None:
    if _is_blank(value):
        return default
    return parse_money(value, field)


def parse_optional_text(value: Any, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(field, f"longer than {max_length} characters")
    return value or None


def parse_date_or_today(value: Any, today: date, field: str = "date") -> date:
    if _is_blank(value):
        return today
    return coerce_date(value, field)


def parse_optional_date(value: Any, field: str) -> date | None:
    if _is_blank(value):
        return None
    return coerce_date(value, field)


def _parse_qty(value: Any, field: str) -> int:
    if _is_blank(value):
        return 1
    if isinstance(value, bool):
        raise ValidationError(field, "must be a whole number")
    if isinstance(value, int):
        qty = value
    else:
        amount = parse_money(value, field)
        if amount != amount.to_integral_value():
            raise ValidationError(field, "must be a whole number")
        qty = int(amount)
    if qty < 0:
        raise ValidationError(field, "must not be negative")
    if qty > MAX_QTY:
        raise ValidationError(field, f"must not exceed {MAX_QTY}")
    return qty


def parse_line_item(raw: Any, index: int) -> LineItemSpec:
    """
    Validate one invoice line.

    ``line_total`` is taken as supplied; it is computed as
    ``qty * unit_price - discount`` only when the caller omitted it.
    """
    prefix = f"items[{index}]"
    if not isinstance(raw, Mapping):
        raise ValidationError(prefix, "must be an object")

    description = parse_optional_text(
        raw.get("description"), f"{prefix}.description", _max_length(InvoiceItem.description)
    )
    if description is None:
        raise ValidationError(f"{prefix}.description", "is required")

    qty = _parse_qty(raw.get("qty"), f"{prefix}.qty")
    unit_price = parse_optional_money(raw.get("unit_price"), f"{prefix}.unit_price", Decimal("0"))
    discount = parse_optional_money(raw.get("discount"), f"{prefix}.discount", None)

    line_total = parse_optional_money(raw.get("line_total"), f"{prefix}.line_total", None)
    if line_total is None:
        line_total = _storable_money(
            round_money(qty * unit_price - (discount or Decimal("0"))), f"{prefix}.line_total"
        )

    return LineItemSpec(
        description=description,
        qty=qty,
        unit_price=unit_price,
        discount=discount,
        line_total=line_total,
    )


def parse_invoice_payload(
    payload: Mapping[str, Any],
    *,
    today: date,
    require_items: bool = False,
) -> InvoiceDraft:
    """
    Validate a create-invoice request body.

    Rules:
        - ``date`` defaults to ``today``.
        - ``invoice_no`` is optional; blank counts as absent.
        - ``total`` is required; when absent, ``subtotal`` stands in.
        - ``items`` may be empty unless ``require_items`` is set.

    Raises:
        ValidationError: on the first offending field.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("body", "must be an object")

    issue_date = parse_date_or_today(payload.get("date"), today)

    invoice_no = payload.get("invoice_no")
    if not _is_blank(invoice_no):
        if not isinstance(invoice_no, str):
            raise ValidationError("invoice_no", "must be a string")
        invoice_no = invoice_no.strip()
        limit = _max_length(Invoice.invoice_no)
        if len(invoice_no) > limit:
            raise ValidationError("invoice_no", f"longer than {limit} characters")
    else:
        invoice_no = None

    subtotal = parse_optional_money(payload.get("subtotal"), "subtotal", None)
    tax = parse_optional_money(payload.get("tax"), "tax", Decimal("0"))

    total = parse_optional_money(payload.get("total"), "total", subtotal)
    if total is None:
        raise ValidationError("total", "is required")

    raw_items = payload.get("items")
    if raw_items is None:
        raw_items = []
    if not isinstance(raw_items, list):
        raise ValidationError("items", "must be a list")
    if require_items and not raw_items:
        raise ValidationError("items", "at least one line item is required")
    items = tuple(parse_line_item(raw, i) for i, raw in enumerate(raw_items))

    return InvoiceDraft(
        issue_date=issue_date,
        total=total,
        items=items,
        invoice_no=invoice_no,
        subtotal=subtotal if subtotal is not None else Decimal("0"),
        tax=tax,
        customer_name=parse_optional_text(
            payload.get("customer_name"), "customer_name", _max_length(Invoice.customer_name)
        ),
        notes=parse_optional_text(payload.get("notes"), "notes", _max_length(Invoice.notes)),
    )


def parse_transaction_payload(payload: Mapping[str, Any], *, today: date) -> LedgerEntrySpec:
    """
    Validate a manual income / expense entry.

    Raises:
        ValidationError: unknown type, missing / non-numeric / non-positive
            amount, or a malformed date.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("body", "must be an object")

    raw_type = payload.get("type")
    try:
        txn_type = TransactionType(raw_type)
    except ValueError:
        raise ValidationError("type", "must be income or expense") from None

    if _is_blank(payload.get("amount")):
        raise ValidationError("amount", "is required")
    amount = parse_money(payload["amount"], "amount")
    if amount <= 0:
        raise ValidationError("amount", "must be greater than zero")

    return LedgerEntrySpec(
        type=txn_type,
        amount=amount,
        entry_date=parse_date_or_today(payload.get("date"), today),
        category=parse_optional_text(
            payload.get("category"), "category", _max_length(LedgerTransaction.category)
        ),
        reference=parse_optional_text(
            payload.get("reference"), "reference", _max_length(LedgerTransaction.reference)
        ),
        notes=parse_optional_text(payload.get("notes"), "notes", _max_length(LedgerTransaction.notes)),
    )
