"""
Billing Kernel

Invoice and ledger core of a small-business billing service:
- Collision-free, date-based sequential invoice numbers
- Atomic invoice + line items + income ledger entry writes
- Bounded retry on invoice-number conflicts
- Income / expense ledger and summary reporting
"""

__version__ = "0.1.0"
