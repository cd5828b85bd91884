"""
Sequence allocation tests.

Verifies:
- SequenceService counters start at 1, increase by one and are isolated
  per name
- reset() / current_value() bookkeeping
- CounterTableAllocator keys counters by the day prefix
- CountingAllocator proposes count + 1 and never repeats a value within
  one instance
- build_allocator() rejects unknown strategy names
"""

from datetime import date
from decimal import Decimal

import pytest

from billing_kernel.domain.dtos import InvoiceHeader
from billing_kernel.services.invoice_store import InvoiceStore
from billing_kernel.services.sequence_service import (
    STRATEGY_COUNTER_TABLE,
    STRATEGY_QUERY_COUNT,
    CounterTableAllocator,
    CountingAllocator,
    SequenceService,
    build_allocator,
)

DAY = date(2024, 3, 7)
OTHER_DAY = date(2024, 3, 8)


def _insert_invoice(session, invoice_no: str, issue_date: date = DAY) -> int:
    header = InvoiceHeader(invoice_no=invoice_no, issue_date=issue_date, total=Decimal("1"))
    return InvoiceStore(session).create_invoice(header, ())


class TestSequenceService:

    def test_first_value_is_one(self, session):
        assert SequenceService(session).next_value("INV-20240307") == 1

    def test_values_increase_by_one(self, session):
        service = SequenceService(session)
        values = [service.next_value("INV-20240307") for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_names_are_independent(self, session):
        service = SequenceService(session)
        service.next_value("INV-20240307")
        service.next_value("INV-20240307")
        assert service.next_value("INV-20240308") == 1
        assert service.next_value("INV-20240307") == 3

    def test_current_value(self, session):
        service = SequenceService(session)
        assert service.current_value("INV-20240307") is None
        service.next_value("INV-20240307")
        service.next_value("INV-20240307")
        assert service.current_value("INV-20240307") == 2

    def test_reset_existing_counter(self, session):
        service = SequenceService(session)
        for _ in range(3):
            service.next_value("INV-20240307")
        service.reset("INV-20240307", 10)
        assert service.next_value("INV-20240307") == 11

    def test_reset_creates_counter(self, session):
        service = SequenceService(session)
        service.reset("INV-20240309", 41)
        assert service.current_value("INV-20240309") == 41
        assert service.next_value("INV-20240309") == 42

    def test_value_survives_commit(self, session_factory):
        with session_factory() as first:
            SequenceService(first).next_value("INV-20240307")
            first.commit()
        with session_factory() as second:
            assert SequenceService(second).next_value("INV-20240307") == 2
            second.commit()

    def test_rolled_back_value_is_returned(self, session_factory):
        with session_factory() as first:
            SequenceService(first).next_value("INV-20240307")
            first.commit()
        with session_factory() as second:
            assert SequenceService(second).next_value("INV-20240307") == 2
            second.rollback()
        with session_factory() as third:
            assert SequenceService(third).next_value("INV-20240307") == 2
            third.commit()


class TestCounterTableAllocator:

    def test_counter_named_after_day_prefix(self, session):
        allocator = CounterTableAllocator(session)
        assert allocator.next_sequence(DAY) == 1
        assert allocator.next_sequence(DAY) == 2
        assert SequenceService(session).current_value("INV-20240307") == 2

    def test_days_are_independent(self, session):
        allocator = CounterTableAllocator(session)
        allocator.next_sequence(DAY)
        allocator.next_sequence(DAY)
        assert allocator.next_sequence(OTHER_DAY) == 1

    def test_ignores_existing_invoices(self, session):
        # Counter rows are authoritative; imported invoice numbers do not move them
        _insert_invoice(session, "INV-20240307-0001")
        assert CounterTableAllocator(session).next_sequence(DAY) == 1


class TestCountingAllocator:

    def test_empty_day_proposes_one(self, session):
        assert CountingAllocator(session).next_sequence(DAY) == 1

    def test_proposes_count_plus_one(self, session):
        _insert_invoice(session, "INV-20240307-0001")
        _insert_invoice(session, "INV-20240307-0002")
        _insert_invoice(session, "INV-20240308-0001", OTHER_DAY)
        assert CountingAllocator(session).next_sequence(DAY) == 3

    def test_floor_prevents_repeats_within_instance(self, session):
        allocator = CountingAllocator(session)
        # Nothing is inserted between calls, so the count stays at zero
        assert [allocator.next_sequence(DAY) for _ in range(3)] == [1, 2, 3]

    def test_floor_is_per_day(self, session):
        allocator = CountingAllocator(session)
        allocator.next_sequence(DAY)
        allocator.next_sequence(DAY)
        assert allocator.next_sequence(OTHER_DAY) == 1

    def test_count_overtakes_floor(self, session):
        allocator = CountingAllocator(session)
        assert allocator.next_sequence(DAY) == 1
        for n in range(1, 5):
            _insert_invoice(session, f"INV-20240307-{n:04d}")
        assert allocator.next_sequence(DAY) == 5

    def test_fresh_instance_has_no_floor(self, session):
        CountingAllocator(session).next_sequence(DAY)
        assert CountingAllocator(session).next_sequence(DAY) == 1


class TestBuildAllocator:

    def test_counter_table(self, session):
        assert isinstance(build_allocator(STRATEGY_COUNTER_TABLE, session), CounterTableAllocator)

    def test_query_count(self, session):
        assert isinstance(build_allocator(STRATEGY_QUERY_COUNT, session), CountingAllocator)

    def test_unknown_strategy(self, session):
        with pytest.raises(ValueError, match="Unknown sequence strategy"):
            build_allocator("uuid", session)
