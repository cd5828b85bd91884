"""
InvoiceService -- Create-invoice orchestrator.

Responsibility:
    Coordinates payload validation, number allocation, atomic persistence
    and read-back for invoice creation, and exposes the companion get /
    delete / list operations.

Architecture position:
    Kernel > Services -- imperative shell.
    Calls: parse_invoice_payload, the configured sequence allocator,
    format_invoice_number, InvoiceStore, InvoiceSelector.

Retry policy:
    A DuplicateInvoiceNumberError from the store discards the candidate
    number (a caller-supplied one included) and the next attempt allocates
    a fresh one.  Attempts are bounded by ``max_attempts``; exhausting them
    raises RetryLimitExceededError.  Retries are immediate unless a backoff
    is configured.  Every other error propagates on the first occurrence.

Invariants enforced:
    - A returned invoice is complete: header, lines and (for total > 0)
      exactly one income ledger entry referencing its invoice_no.
    - A failed request leaves no rows behind (InvoiceStore savepoints).

Failure modes:
    - ValidationError: malformed payload; nothing is written.
    - RetryLimitExceededError: numbering contention.
    - PersistenceError: storage fault.
    - InvoiceNotFoundError: get / delete of an unknown id.

Audit relevance:
    Every creation runs under a fresh correlation_id; start, each retry,
    completion and failure are logged with duration_ms.
"""

import random
import time
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any, Protocol
from uuid import uuid4

from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import (
    InvoiceCreated,
    InvoiceDeleted,
    InvoiceDraft,
    InvoiceHeader,
    InvoiceRecord,
    LedgerEntrySpec,
    LineItemSpec,
)
from billing_kernel.domain.invoice_number import format_invoice_number
from billing_kernel.domain.validation import parse_invoice_payload, parse_optional_date
from billing_kernel.exceptions import (
    BillingKernelError,
    DuplicateInvoiceNumberError,
    InvoiceNotFoundError,
    PersistenceError,
    RetryLimitExceededError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.services.invoice_store import InvoiceStore
from billing_kernel.services.sequence_service import (
    STRATEGY_COUNTER_TABLE,
    build_allocator,
)

logger = get_logger("services.invoice")

DEFAULT_MAX_ATTEMPTS = 6


class SequenceAllocator(Protocol):
    def next_sequence(self, on_date: date) -> int: ...


class InvoiceRepository(Protocol):
    def create_invoice_with_ledger(
        self,
        header: InvoiceHeader,
        items: tuple[LineItemSpec, ...],
        derived_txn: LedgerEntrySpec | None,
    ) -> InvoiceCreated: ...

    def get_invoice(self, invoice_id: int) -> InvoiceRecord | None: ...

    def delete_invoice_with_ledger(self, invoice_id: int) -> InvoiceDeleted | None: ...


class InvoiceService:
    """
    Invoice creation, read-back, deletion and listing.

    Contract:
        ``create_invoice(payload)`` returns the full persisted invoice or
        raises a BillingKernelError; it never returns a partial result.

    Guarantees:
        - The allocator is asked for exactly one number per attempt that
          needs one.
        - At most ``max_attempts`` persistence attempts are made.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT recompute monetary fields supplied by the caller.
    """

    def __init__(
        self,
        session: Session | None,
        clock: Clock | None = None,
        *,
        sequence_strategy: str = STRATEGY_COUNTER_TABLE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff_ms: int = 0,
        retry_jitter_ms: int = 0,
        require_items: bool = False,
        allocator: SequenceAllocator | None = None,
        store: InvoiceRepository | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session; may be None only when both
                ``allocator`` and ``store`` are supplied.
            clock: Source of the default invoice date.
            sequence_strategy: ``counter_table`` or ``query_count``.
            max_attempts: Persistence attempts before giving up (>= 1).
            retry_backoff_ms: Base delay before attempt n+1, times n.
            retry_jitter_ms: Upper bound of an extra random delay.
            require_items: Reject invoices without line items.
            allocator: Override for the strategy's allocator.
            store: Override for InvoiceStore.
            sleep: Delay function, replaceable in tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session = session
        self._clock = clock or SystemClock()
        self._allocator = allocator or build_allocator(sequence_strategy, session)
        self._store = store or InvoiceStore(session)
        self._max_attempts = max_attempts
        self._retry_backoff_ms = retry_backoff_ms
        self._retry_jitter_ms = retry_jitter_ms
        self._require_items = require_items
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def create_invoice(self, payload: Mapping[str, Any]) -> InvoiceRecord:
        """
        Validate, number, persist and read back one invoice.

        Preconditions:
            - The caller is within an active transaction and commits it
              after this returns.

        Postconditions:
            - The returned record's items are in payload order.
            - For total > 0 exactly one income entry references the
              returned invoice_no.

        Raises:
            ValidationError, RetryLimitExceededError, PersistenceError.
        """
        with LogContext.bind(correlation_id=str(uuid4()), operation="create_invoice"):
            t0 = time.monotonic()
            supplied = isinstance(payload, Mapping) and bool(payload.get("invoice_no"))
            logger.info("invoice_create_started", extra={"caller_supplied_number": supplied})
            try:
                draft = parse_invoice_payload(
                    payload,
                    today=self._clock.today(),
                    require_items=self._require_items,
                )
                created = self._persist_with_retry(draft)
                record = self._store.get_invoice(created.invoice_id)
                if record is None:
                    raise PersistenceError(
                        "read_back", f"invoice {created.invoice_id} vanished after insert"
                    )
            except BillingKernelError as exc:
                logger.warning(
                    "invoice_create_failed",
                    extra={
                        "error_code": exc.code,
                        "error": str(exc),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise
            except Exception:
                logger.error(
                    "invoice_create_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            logger.info(
                "invoice_create_completed",
                extra={
                    "invoice_id": record.id,
                    "invoice_no": record.invoice_no,
                    "ledger_entry_id": created.ledger_entry_id,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return record

    def _allocate_number(self, issue_date: date) -> str:
        seq = self._allocator.next_sequence(issue_date)
        invoice_no = format_invoice_number(issue_date, seq)
        logger.debug(
            "invoice_number_allocated",
            extra={"invoice_no": invoice_no, "sequence": seq},
        )
        return invoice_no

    def _persist_with_retry(self, draft: InvoiceDraft) -> InvoiceCreated:
        candidate = draft.invoice_no
        rejected: str | None = None

        for attempt in range(1, self._max_attempts + 1):
            if candidate is None:
                candidate = self._allocate_number(draft.issue_date)
            try:
                with LogContext.bind(invoice_no=candidate):
                    created = self._store.create_invoice_with_ledger(
                        draft.header(candidate),
                        draft.items,
                        draft.income_entry(candidate),
                    )
            except DuplicateInvoiceNumberError:
                rejected, candidate = candidate, None
                if attempt < self._max_attempts:
                    logger.info(
                        "invoice_create_retry",
                        extra={"attempt": attempt, "rejected_invoice_no": rejected},
                    )
                    self._pause(attempt)
                continue

            return created

        logger.warning(
            "invoice_retry_limit_exceeded",
            extra={"attempts": self._max_attempts, "last_invoice_no": rejected},
        )
        raise RetryLimitExceededError(self._max_attempts, rejected)

    def _pause(self, attempt: int) -> None:
        delay_ms = self._retry_backoff_ms * attempt
        if self._retry_jitter_ms:
            delay_ms += random.uniform(0, self._retry_jitter_ms)
        if delay_ms > 0:
            self._sleep(delay_ms / 1000)

    def get_invoice(self, invoice_id: int) -> InvoiceRecord:
        """
        Raises:
            InvoiceNotFoundError: unknown id.
        """
        record = self._store.get_invoice(invoice_id)
        if record is None:
            raise InvoiceNotFoundError(invoice_id)
        return record

    def delete_invoice(self, invoice_id: int) -> InvoiceDeleted:
        """
        Delete an invoice, its lines and its income ledger entry.

        Raises:
            InvoiceNotFoundError: unknown id; nothing is removed.
            PersistenceError: storage fault; nothing is removed.
        """
        with LogContext.bind(operation="delete_invoice", invoice_id=invoice_id):
            deleted = self._store.delete_invoice_with_ledger(invoice_id)
            if deleted is None:
                raise InvoiceNotFoundError(invoice_id)
            return deleted

    def list_invoices(
        self,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
        q: str | None = None,
    ) -> list[InvoiceRecord]:
        return InvoiceSelector(self._session).list_invoices(
            date_from=parse_optional_date(date_from, "from"),
            date_to=parse_optional_date(date_to, "to"),
            q=q,
        )
