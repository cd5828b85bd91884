"""
TransactionService -- manual income / expense entries.

Responsibility:
    Validates and records ledger transactions entered by hand, and lists
    them.  Invoice-derived income entries are written by InvoiceStore, not
    here.

Architecture position:
    Kernel > Services -- imperative shell.

Failure modes:
    - ValidationError: bad type, missing or non-positive amount, bad date.
    - PersistenceError: storage fault.
"""

from collections.abc import Mapping
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import LedgerEntryRecord
from billing_kernel.domain.validation import parse_optional_date, parse_transaction_payload
from billing_kernel.exceptions import PersistenceError, ValidationError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.transaction import LedgerTransaction, TransactionType
from billing_kernel.selectors.transaction_selector import TransactionSelector
from billing_kernel.services.invoice_store import InvoiceStore

logger = get_logger("services.transaction")


class TransactionService:
    """
    Contract:
        ``record(payload)`` inserts one validated ledger row in the caller's
        transaction and returns it.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record(self, payload: Mapping[str, Any]) -> LedgerEntryRecord:
        """
        Raises:
            ValidationError, PersistenceError.
        """
        with LogContext.bind(operation="record_transaction"):
            spec = parse_transaction_payload(payload, today=self._clock.today())
            txn_id = InvoiceStore(self._session).create_ledger_entry(spec)
            txn = self._session.get(LedgerTransaction, txn_id)
            if txn is None:
                raise PersistenceError("read_back", f"transaction {txn_id} vanished after insert")
            logger.info(
                "transaction_recorded",
                extra={"transaction_id": txn_id, "type": spec.type.value, "amount": spec.amount},
            )
            return LedgerEntryRecord.from_model(txn)

    def list_transactions(
        self,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
        type: str | None = None,
    ) -> list[LedgerEntryRecord]:
        """
        Raises:
            ValidationError: malformed date bound or unknown type.
        """
        txn_type = None
        if type:
            try:
                txn_type = TransactionType(type)
            except ValueError:
                raise ValidationError("type", "must be income or expense") from None
        return TransactionSelector(self._session).list_transactions(
            date_from=parse_optional_date(date_from, "from"),
            date_to=parse_optional_date(date_to, "to"),
            type=txn_type,
        )
