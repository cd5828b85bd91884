"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers decide what to do with a failure by its TYPE, never by parsing its
message.  The invoice orchestrator retries on DuplicateInvoiceNumberError and
nothing else; the request boundary maps each class to a status code.

Every exception:
  1. Has a typed class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- ValidationError
    |
    +-- InvoiceError
    |   +-- DuplicateInvoiceNumberError
    |   +-- InvoiceNotFoundError
    |   +-- RetryLimitExceededError
    |
    +-- PersistenceError
    |
    +-- AdminError
        +-- ResetNotConfirmedError
        +-- ResetForbiddenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|--------------------------------------
Validation   | VALIDATION_ERROR          | Malformed or missing input field
-------------|---------------------------|--------------------------------------
Invoice      | DUPLICATE_INVOICE_NUMBER  | invoice_no UNIQUE constraint hit
             | INVOICE_NOT_FOUND         | No invoice with that id
             | RETRY_LIMIT_EXCEEDED      | Numbering contention outlasted retries
-------------|---------------------------|--------------------------------------
Persistence  | PERSISTENCE_ERROR         | Any other storage fault (not retried)
-------------|---------------------------|--------------------------------------
Admin        | RESET_NOT_CONFIRMED       | reset without confirm="RESET"
             | RESET_FORBIDDEN           | reset secret missing or wrong

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        record = invoice_service.create_invoice(payload)
    except ValidationError as e:
        reject(field=e.field, reason=e.reason)      # nothing persisted
    except RetryLimitExceededError as e:
        contention(attempts=e.attempts)             # numbering contention
    except PersistenceError as e:
        unavailable(operation=e.operation)          # database trouble

DuplicateInvoiceNumberError is handled inside the orchestrator's retry loop
and only reaches a caller that talks to InvoiceStore directly.
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


class ValidationError(BillingKernelError):
    """Malformed or missing required input. Nothing was persisted."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Invoice-related exceptions


class InvoiceError(BillingKernelError):
    """Base exception for invoice-related errors."""

    code: str = "INVOICE_ERROR"


class DuplicateInvoiceNumberError(InvoiceError):
    """
    The invoice number is already held by another invoice.

    Raised by the persistence layer after the whole unit (header, items,
    ledger entry) has been rolled back.
    """

    code: str = "DUPLICATE_INVOICE_NUMBER"

    def __init__(self, invoice_no: str):
        self.invoice_no = invoice_no
        super().__init__(f"Invoice number already in use: {invoice_no}")


class InvoiceNotFoundError(InvoiceError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: int):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice not found: {invoice_id}")


class RetryLimitExceededError(InvoiceError):
    """Every attempt to obtain a free invoice number collided."""

    code: str = "RETRY_LIMIT_EXCEEDED"

    def __init__(self, attempts: int, last_invoice_no: str | None):
        self.attempts = attempts
        self.last_invoice_no = last_invoice_no
        super().__init__(
            f"Failed to generate a unique invoice number after {attempts} attempts "
            f"(last tried {last_invoice_no})"
        )


class PersistenceError(BillingKernelError):
    """Storage fault other than an invoice-number conflict."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


# Administrative exceptions


class AdminError(BillingKernelError):
    """Base exception for administrative operations."""

    code: str = "ADMIN_ERROR"


class ResetNotConfirmedError(AdminError):
    """Reset requested without the explicit confirmation token."""

    code: str = "RESET_NOT_CONFIRMED"

    def __init__(self):
        super().__init__("You must provide confirm: 'RESET' to proceed.")


class ResetForbiddenError(AdminError):
    """Reset secret is configured and the caller did not present it."""

    code: str = "RESET_FORBIDDEN"

    def __init__(self):
        super().__init__("Missing or invalid reset secret.")
