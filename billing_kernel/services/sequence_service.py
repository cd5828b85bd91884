"""
SequenceService -- per-day invoice sequence allocation.

Responsibility:
    Hands out the ``NNNN`` part of ``INV-YYYYMMDD-NNNN``.  Two strategies
    are available behind a common ``next_sequence(on_date)`` interface:

    counter_table (default)
        A dedicated counter row per day prefix, incremented under a
        row-level lock (``SELECT ... FOR UPDATE``; ``BEGIN IMMEDIATE`` on
        SQLite).  The increment joins the caller's transaction, so a rolled
        back insert also returns its number.

    query_count
        Counts the invoices already carrying the day prefix and adds one.
        Concurrent callers can compute the same value; the UNIQUE
        constraint on ``invoices.invoice_no`` and the orchestrator's retry
        loop resolve the collision.  Each allocator instance keeps a floor
        (last returned value + 1) so a retry within one request always
        proposes a new number.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by InvoiceService once per persistence attempt.

Invariants enforced:
    - Values are strictly positive.
    - counter_table: strictly increasing per day prefix across all callers.
    - query_count: strictly increasing per day prefix within one allocator
      instance; uniqueness across callers is delegated to the database.

Failure modes:
    - IntegrityError: concurrent creation of the same day's counter row
      (handled via savepoint rollback and re-read under lock).

Audit relevance:
    Allocation is logged at DEBUG level with sequence_name and value.
"""

from datetime import date

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from billing_kernel.db.base import Base
from billing_kernel.domain.invoice_number import day_prefix
from billing_kernel.logging_config import get_logger
from billing_kernel.selectors.invoice_selector import InvoiceSelector

logger = get_logger("services.sequence")

STRATEGY_COUNTER_TABLE = "counter_table"
STRATEGY_QUERY_COUNT = "query_count"
SEQUENCE_STRATEGIES = (STRATEGY_COUNTER_TABLE, STRATEGY_QUERY_COUNT)


class SequenceCounter(Base):
    """
    Sequence counter table.

    One row per named sequence; invoice numbering uses the day prefix
    (``INV-YYYYMMDD``) as the name.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is transactional -- it is only
        committed when the caller's transaction commits.

    Guarantees:
        - Concurrency safety: the counter row is locked for the rest of the
          caller's transaction, serializing allocations for the same name.
        - On transaction rollback the value is returned.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - ``sequence_name`` is a non-empty string.
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0 that is strictly greater than any
              previously committed value for this sequence name.
            - The counter row is locked until the transaction completes.
        """
        # Counter rows may be cached from an earlier transaction on this session
        self._session.expire_all()

        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use of this name; another caller may be creating it too
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                self._session.expire_all()
                counter = self._session.execute(
                    select(SequenceCounter)
                    .where(SequenceCounter.name == sequence_name)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one()

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """
        Reset a sequence to a specific value.

        Only the admin reset path and tests use this.  Rewinding a day that
        already has invoices makes the next allocations collide.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=value)
            self._session.add(counter)
        else:
            counter.current_value = value

        self._session.flush()


class CounterTableAllocator:
    """Invoice sequence allocator backed by SequenceService counter rows."""

    strategy = STRATEGY_COUNTER_TABLE

    def __init__(self, session: Session):
        self._sequences = SequenceService(session)

    def next_sequence(self, on_date: date) -> int:
        return self._sequences.next_value(day_prefix(on_date))


class CountingAllocator:
    """
    Invoice sequence allocator that counts existing invoices for the day.

    The proposal is ``max(count + 1, floor)`` where ``floor`` is one past
    the last value this instance returned for the same day.  Numbering may
    be sparse after deletions or lost races; a collision is rejected by the
    unique constraint on invoice_no and retried by the caller.
    """

    strategy = STRATEGY_QUERY_COUNT

    def __init__(self, session: Session):
        self._invoices = InvoiceSelector(session)
        self._floor: dict[str, int] = {}

    def next_sequence(self, on_date: date) -> int:
        prefix = day_prefix(on_date)
        existing = self._invoices.count_for_prefix(prefix)

        value = max(existing + 1, self._floor.get(prefix, 1))
        self._floor[prefix] = value + 1
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": prefix, "value": value, "counted": existing},
        )
        return value


def build_allocator(strategy: str, session: Session) -> CounterTableAllocator | CountingAllocator:
    """
    Allocator for the configured ``sequence_strategy``.

    Raises:
        ValueError: for an unknown strategy name.
    """
    if strategy == STRATEGY_COUNTER_TABLE:
        return CounterTableAllocator(session)
    if strategy == STRATEGY_QUERY_COUNT:
        return CountingAllocator(session)
    raise ValueError(
        f"Unknown sequence strategy {strategy!r}; expected one of {SEQUENCE_STRATEGIES}"
    )
