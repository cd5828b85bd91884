"""Kernel services: the imperative shell around the domain."""

from billing_kernel.services.invoice_service import InvoiceService
from billing_kernel.services.invoice_store import InvoiceStore
from billing_kernel.services.sequence_service import (
    SEQUENCE_STRATEGIES,
    STRATEGY_COUNTER_TABLE,
    STRATEGY_QUERY_COUNT,
    CounterTableAllocator,
    CountingAllocator,
    SequenceCounter,
    SequenceService,
    build_allocator,
)
from billing_kernel.services.transaction_service import TransactionService

__all__ = [
    "SEQUENCE_STRATEGIES",
    "STRATEGY_COUNTER_TABLE",
    "STRATEGY_QUERY_COUNT",
    "CounterTableAllocator",
    "CountingAllocator",
    "InvoiceService",
    "InvoiceStore",
    "SequenceCounter",
    "SequenceService",
    "TransactionService",
    "build_allocator",
]
