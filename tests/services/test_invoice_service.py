"""
InvoiceService orchestration tests.

Verifies:
- Retry on DuplicateInvoiceNumberError with a fresh number per attempt
- RetryLimitExceededError after max_attempts, carrying the last candidate
- Caller-supplied numbers are used first and regenerated on conflict
- Backoff delays go through the injected sleep function
- Non-duplicate errors are not retried
- End-to-end creation, read-back, deletion and listing on a real database
- Structured log events for the create lifecycle
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select, text

from billing_kernel.domain.dtos import InvoiceCreated, InvoiceRecord
from billing_kernel.exceptions import (
    DuplicateInvoiceNumberError,
    InvoiceNotFoundError,
    PersistenceError,
    RetryLimitExceededError,
    ValidationError,
)
from billing_kernel.models.invoice import Invoice
from billing_kernel.models.transaction import LedgerTransaction
from billing_kernel.selectors.report_selector import ReportSelector
from billing_kernel.selectors.transaction_selector import TransactionSelector
from billing_kernel.services.invoice_service import InvoiceService
from billing_kernel.services.sequence_service import STRATEGY_QUERY_COUNT
from tests.conftest import TEST_DAY, TEST_DAY_PREFIX


class StubAllocator:
    """Hands out 1, 2, 3, ... and records every call."""

    def __init__(self):
        self.calls: list[date] = []

    def next_sequence(self, on_date: date) -> int:
        self.calls.append(on_date)
        return len(self.calls)


class StubStore:
    """Rejects the first ``conflicts`` attempts as duplicates."""

    def __init__(self, conflicts: int = 0, error: Exception | None = None):
        self.conflicts = conflicts
        self.error = error
        self.attempted: list[str] = []
        self.persisted: dict[int, InvoiceRecord] = {}

    def create_invoice_with_ledger(self, header, items, derived_txn) -> InvoiceCreated:
        self.attempted.append(header.invoice_no)
        if self.error is not None:
            raise self.error
        if len(self.attempted) <= self.conflicts:
            raise DuplicateInvoiceNumberError(header.invoice_no)
        invoice_id = len(self.persisted) + 1
        self.persisted[invoice_id] = InvoiceRecord(
            id=invoice_id,
            invoice_no=header.invoice_no,
            issue_date=header.issue_date,
            customer_name=header.customer_name,
            subtotal=header.subtotal,
            tax=header.tax,
            total=header.total,
            notes=header.notes,
        )
        return InvoiceCreated(
            invoice_id=invoice_id,
            invoice_no=header.invoice_no,
            ledger_entry_id=100 + invoice_id if derived_txn is not None else None,
        )

    def get_invoice(self, invoice_id):
        return self.persisted.get(invoice_id)

    def delete_invoice_with_ledger(self, invoice_id):
        return None


def _stub_service(store, allocator=None, clock=None, **kwargs) -> InvoiceService:
    return InvoiceService(
        None,
        clock,
        allocator=allocator or StubAllocator(),
        store=store,
        **kwargs,
    )


# =============================================================================
# Retry loop
# =============================================================================


class TestRetryLoop:

    def test_no_conflict_single_attempt(self, make_invoice_payload, deterministic_clock):
        allocator, store = StubAllocator(), StubStore()
        record = _stub_service(store, allocator, deterministic_clock).create_invoice(
            make_invoice_payload()
        )
        assert record.invoice_no == f"{TEST_DAY_PREFIX}-0001"
        assert allocator.calls == [TEST_DAY]

    def test_two_conflicts_then_success(self, make_invoice_payload):
        allocator, store = StubAllocator(), StubStore(conflicts=2)
        record = _stub_service(store, allocator).create_invoice(make_invoice_payload())

        assert len(allocator.calls) == 3
        assert store.attempted == [
            f"{TEST_DAY_PREFIX}-0001",
            f"{TEST_DAY_PREFIX}-0002",
            f"{TEST_DAY_PREFIX}-0003",
        ]
        assert record.invoice_no == f"{TEST_DAY_PREFIX}-0003"

    def test_always_conflicting_gives_up(self, make_invoice_payload):
        allocator, store = StubAllocator(), StubStore(conflicts=1000)

        with pytest.raises(RetryLimitExceededError) as exc_info:
            _stub_service(store, allocator).create_invoice(make_invoice_payload())

        assert exc_info.value.attempts == 6
        assert exc_info.value.last_invoice_no == f"{TEST_DAY_PREFIX}-0006"
        assert len(store.attempted) == 6
        assert store.persisted == {}

    def test_custom_attempt_limit(self, make_invoice_payload):
        store = StubStore(conflicts=1000)
        with pytest.raises(RetryLimitExceededError) as exc_info:
            _stub_service(store, max_attempts=2).create_invoice(make_invoice_payload())
        assert exc_info.value.attempts == 2
        assert len(store.attempted) == 2

    def test_single_attempt_no_retry(self, make_invoice_payload):
        store = StubStore(conflicts=1)
        with pytest.raises(RetryLimitExceededError):
            _stub_service(store, max_attempts=1).create_invoice(make_invoice_payload())
        assert len(store.attempted) == 1

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            _stub_service(StubStore(), max_attempts=0)

    def test_persistence_error_not_retried(self, make_invoice_payload):
        allocator = StubAllocator()
        store = StubStore(error=PersistenceError("create_invoice_with_ledger", "disk full"))

        with pytest.raises(PersistenceError):
            _stub_service(store, allocator).create_invoice(make_invoice_payload())
        assert len(allocator.calls) == 1
        assert len(store.attempted) == 1

    def test_validation_error_allocates_nothing(self):
        allocator, store = StubAllocator(), StubStore()
        with pytest.raises(ValidationError):
            _stub_service(store, allocator).create_invoice({"customer_name": "no total"})
        assert allocator.calls == []
        assert store.attempted == []


class TestCallerSuppliedNumber:

    def test_supplied_number_used_without_allocation(self, make_invoice_payload):
        allocator, store = StubAllocator(), StubStore()
        record = _stub_service(store, allocator).create_invoice(
            make_invoice_payload(invoice_no="LEGACY-42")
        )
        assert record.invoice_no == "LEGACY-42"
        assert allocator.calls == []

    def test_conflicting_supplied_number_is_regenerated(self, make_invoice_payload):
        allocator, store = StubAllocator(), StubStore(conflicts=1)
        record = _stub_service(store, allocator).create_invoice(
            make_invoice_payload(invoice_no="LEGACY-42")
        )
        assert store.attempted == ["LEGACY-42", f"{TEST_DAY_PREFIX}-0001"]
        assert record.invoice_no == f"{TEST_DAY_PREFIX}-0001"
        assert len(allocator.calls) == 1


class TestBackoff:

    def test_immediate_retry_by_default(self, make_invoice_payload):
        delays: list[float] = []
        _stub_service(StubStore(conflicts=2), sleep=delays.append).create_invoice(
            make_invoice_payload()
        )
        assert delays == []

    def test_linear_backoff(self, make_invoice_payload):
        delays: list[float] = []
        _stub_service(
            StubStore(conflicts=3), retry_backoff_ms=20, sleep=delays.append
        ).create_invoice(make_invoice_payload())
        assert delays == pytest.approx([0.02, 0.04, 0.06])

    def test_jitter_bounded(self, make_invoice_payload):
        delays: list[float] = []
        _stub_service(
            StubStore(conflicts=2), retry_jitter_ms=10, sleep=delays.append
        ).create_invoice(make_invoice_payload())
        assert len(delays) <= 2
        assert all(0 <= d <= 0.01 for d in delays)

    def test_no_pause_after_last_attempt(self, make_invoice_payload):
        delays: list[float] = []
        with pytest.raises(RetryLimitExceededError):
            _stub_service(
                StubStore(conflicts=1000),
                max_attempts=3,
                retry_backoff_ms=5,
                sleep=delays.append,
            ).create_invoice(make_invoice_payload())
        assert len(delays) == 2


class TestCreateLogging:

    def test_lifecycle_events(self, make_invoice_payload, captured_logs):
        _stub_service(StubStore(conflicts=1)).create_invoice(make_invoice_payload())
        logs = captured_logs()
        messages = [r["message"] for r in logs]

        assert messages[0] == "invoice_create_started"
        assert "invoice_create_retry" in messages
        assert "invoice_create_completed" in messages

        correlation_ids = {r.get("correlation_id") for r in logs}
        assert len(correlation_ids) == 1
        assert None not in correlation_ids

        completed = next(r for r in logs if r["message"] == "invoice_create_completed")
        assert completed["invoice_no"] == f"{TEST_DAY_PREFIX}-0002"
        assert "duration_ms" in completed

    def test_failure_logged_with_code(self, make_invoice_payload, captured_logs):
        with pytest.raises(RetryLimitExceededError):
            _stub_service(StubStore(conflicts=1000)).create_invoice(make_invoice_payload())

        logs = captured_logs()
        assert any(r["message"] == "invoice_retry_limit_exceeded" for r in logs)
        failed = next(r for r in logs if r["message"] == "invoice_create_failed")
        assert failed["error_code"] == "RETRY_LIMIT_EXCEEDED"

    def test_each_request_gets_own_correlation_id(self, make_invoice_payload, captured_logs):
        service = _stub_service(StubStore())
        service.create_invoice(make_invoice_payload())
        service.create_invoice(make_invoice_payload())

        started = [r for r in captured_logs() if r["message"] == "invoice_create_started"]
        assert len(started) == 2
        assert started[0]["correlation_id"] != started[1]["correlation_id"]


# =============================================================================
# Against the database
# =============================================================================


def _service(session, clock, **kwargs) -> InvoiceService:
    return InvoiceService(session, clock, **kwargs)


def _count(session, model) -> int:
    return session.execute(select(func.count()).select_from(model)).scalar_one()


class TestCreateInvoicePersisted:

    @pytest.mark.parametrize("strategy", ["counter_table", "query_count"])
    def test_sequential_numbers(self, session, deterministic_clock, make_invoice_payload, strategy):
        service = _service(session, deterministic_clock, sequence_strategy=strategy)
        numbers = [service.create_invoice(make_invoice_payload()).invoice_no for _ in range(3)]
        assert numbers == [f"{TEST_DAY_PREFIX}-{n:04d}" for n in (1, 2, 3)]

    def test_full_record_returned(self, session, deterministic_clock, make_invoice_payload):
        record = _service(session, deterministic_clock).create_invoice(make_invoice_payload())

        assert record.id is not None
        assert record.customer_name == "Acme Traders"
        assert record.total == Decimal("110.00")
        assert record.notes == "Net 30"
        assert len(record.items) == 1
        assert record.items[0].description == "Consulting hours"
        assert record.items[0].qty == 2

    def test_income_entry_written(self, session, deterministic_clock, make_invoice_payload):
        record = _service(session, deterministic_clock).create_invoice(make_invoice_payload())

        (entry,) = TransactionSelector(session).find_by_reference(record.invoice_no)
        assert entry.type.value == "income"
        assert entry.category == "sales"
        assert entry.amount == Decimal("110.00")
        assert entry.entry_date == TEST_DAY
        assert entry.notes == f"Invoice #{record.invoice_no}"

    def test_zero_total_writes_no_ledger_row(self, session, deterministic_clock, make_invoice_payload):
        _service(session, deterministic_clock).create_invoice(
            make_invoice_payload(total="0", subtotal="0", tax="0")
        )
        assert _count(session, Invoice) == 1
        assert _count(session, LedgerTransaction) == 0

    def test_date_defaults_to_clock(self, session, deterministic_clock, make_invoice_payload):
        payload = make_invoice_payload()
        del payload["date"]
        record = _service(session, deterministic_clock).create_invoice(payload)
        assert record.issue_date == TEST_DAY
        assert record.invoice_no.startswith(TEST_DAY_PREFIX)

    def test_prefix_follows_invoice_date(self, session, deterministic_clock, make_invoice_payload):
        record = _service(session, deterministic_clock).create_invoice(
            make_invoice_payload(date="2023-12-31")
        )
        assert record.invoice_no == "INV-20231231-0001"

    def test_taken_supplied_number_regenerated(self, session, deterministic_clock, make_invoice_payload):
        service = _service(session, deterministic_clock)
        first = service.create_invoice(make_invoice_payload())
        second = service.create_invoice(make_invoice_payload(invoice_no=first.invoice_no))

        assert second.invoice_no != first.invoice_no
        assert second.invoice_no == f"{TEST_DAY_PREFIX}-0002"

    def test_conflict_log_carries_attempt_context(
        self, session, deterministic_clock, make_invoice_payload, captured_logs
    ):
        service = _service(session, deterministic_clock)
        first = service.create_invoice(make_invoice_payload())
        service.create_invoice(make_invoice_payload(invoice_no=first.invoice_no))

        logs = captured_logs()
        (conflict,) = [r for r in logs if r["message"] == "invoice_number_conflict"]
        assert conflict["invoice_no"] == first.invoice_no
        assert conflict["operation"] == "create_invoice"

        second_started = [r for r in logs if r["message"] == "invoice_create_started"][1]
        assert conflict["correlation_id"] == second_started["correlation_id"]
        assert "invoice_no" not in second_started
        assert _count(session, Invoice) == 2
        assert _count(session, LedgerTransaction) == 2

    def test_counting_skips_imported_number(self, session, deterministic_clock, make_invoice_payload):
        # An externally numbered -0001 makes the count-based proposal collide once
        service = _service(session, deterministic_clock, sequence_strategy=STRATEGY_QUERY_COUNT)
        service.create_invoice(make_invoice_payload(invoice_no=f"{TEST_DAY_PREFIX}-0002"))
        record = service.create_invoice(make_invoice_payload())
        assert record.invoice_no == f"{TEST_DAY_PREFIX}-0003"

    def test_required_items_enforced(self, session, deterministic_clock, make_invoice_payload):
        service = _service(session, deterministic_clock, require_items=True)
        with pytest.raises(ValidationError):
            service.create_invoice(make_invoice_payload(items=[]))
        assert _count(session, Invoice) == 0


class TestAmountsStoredExactly:

    @pytest.mark.parametrize(
        "total", ["12345678901234.5678", "99999999999999.9999", "0.0001", "19.99"]
    )
    def test_round_trip(self, session, deterministic_clock, make_invoice_payload, total):
        payload = make_invoice_payload(
            total=total,
            items=[{"description": "x", "qty": 1, "unit_price": total, "line_total": total}],
        )
        created = _service(session, deterministic_clock).create_invoice(payload)
        session.commit()
        session.expire_all()

        record = _service(session, deterministic_clock).get_invoice(created.id)
        (entry,) = TransactionSelector(session).find_by_reference(record.invoice_no)
        summary = ReportSelector(session).summary()

        assert record.total == Decimal(total)
        assert record.items[0].unit_price == Decimal(total)
        assert record.items[0].line_total == Decimal(total)
        assert entry.amount == Decimal(total)
        assert summary.income == Decimal(total)

    def test_summary_adds_without_drift(self, session, deterministic_clock, make_invoice_payload):
        service = _service(session, deterministic_clock)
        for _ in range(10):
            service.create_invoice(make_invoice_payload(total="0.1", items=[]))
        session.commit()

        assert ReportSelector(session).summary().income == Decimal("1.0000")

    def test_sqlite_stores_text_not_real(self, session, deterministic_clock, make_invoice_payload):
        if session.get_bind().dialect.name != "sqlite":
            pytest.skip("storage class check applies to SQLite only")
        _service(session, deterministic_clock).create_invoice(
            make_invoice_payload(total="12345678901234.5678")
        )
        session.flush()

        stored = session.execute(text("SELECT typeof(total), total FROM invoices")).one()
        assert tuple(stored) == ("text", "12345678901234.5678")

    @pytest.mark.parametrize("total", ["0.12345", "123456789012345.6789", "99999999999999999999"])
    def test_unstorable_amount_rejected_before_writing(
        self, session, deterministic_clock, make_invoice_payload, total
    ):
        with pytest.raises(ValidationError) as exc_info:
            _service(session, deterministic_clock).create_invoice(make_invoice_payload(total=total))

        assert exc_info.value.field == "total"
        assert _count(session, Invoice) == 0
        assert _count(session, LedgerTransaction) == 0


class TestGetDeleteList:

    def test_get_invoice(self, session, deterministic_clock, make_invoice_payload):
        service = _service(session, deterministic_clock)
        created = service.create_invoice(make_invoice_payload())
        assert service.get_invoice(created.id) == created

    def test_get_unknown(self, session, deterministic_clock):
        with pytest.raises(InvoiceNotFoundError) as exc_info:
            _service(session, deterministic_clock).get_invoice(77)
        assert exc_info.value.invoice_id == 77

    def test_delete_invoice(self, session, deterministic_clock, make_invoice_payload):
        service = _service(session, deterministic_clock)
        created = service.create_invoice(make_invoice_payload())

        deleted = service.delete_invoice(created.id)

        assert deleted.invoice_no == created.invoice_no
        assert deleted.ledger_entries_removed == 1
        with pytest.raises(InvoiceNotFoundError):
            service.get_invoice(created.id)
        assert _count(session, LedgerTransaction) == 0

    def test_delete_unknown(self, session, deterministic_clock):
        with pytest.raises(InvoiceNotFoundError):
            _service(session, deterministic_clock).delete_invoice(5)

    def test_list_accepts_string_dates(self, session, deterministic_clock, make_invoice_payload):
        service = _service(session, deterministic_clock)
        service.create_invoice(make_invoice_payload(date="2024-03-01"))
        service.create_invoice(make_invoice_payload(date="2024-04-01"))

        march = service.list_invoices(date_from="2024-03-01", date_to="2024-03-31")
        assert [r.issue_date for r in march] == [date(2024, 3, 1)]

    def test_list_rejects_bad_date(self, session, deterministic_clock):
        with pytest.raises(ValidationError) as exc_info:
            _service(session, deterministic_clock).list_invoices(date_from="yesterday", date_to="2024-03-01")
        assert exc_info.value.field == "from"
