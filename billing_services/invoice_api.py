"""
Request / response boundary of the billing service.

Responsibility:
    Plain functions that take a decoded request body (or query parameters),
    run one kernel operation inside its own ``session_scope()`` and return an
    ``ApiResponse`` with an HTTP-style status and a JSON-ready body.  An
    HTTP framework only has to route requests to these functions.

Architecture position:
    Services -- outermost layer.  Reads configuration through
    ``billing_config`` and passes the relevant settings into kernel
    constructors.

Error mapping:
    ValidationError          400
    ResetNotConfirmedError   400
    ResetForbiddenError      403
    InvoiceNotFoundError     404
    RetryLimitExceededError  409
    PersistenceError         503  (also any SQLAlchemyError at commit)

    Error bodies are ``{"success": false, "error": <message>, "code": <code>}``.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_config import BillingConfig, get_active_config
from billing_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.validation import parse_optional_date
from billing_kernel.exceptions import (
    BillingKernelError,
    InvoiceNotFoundError,
    PersistenceError,
    ResetForbiddenError,
    ResetNotConfirmedError,
    RetryLimitExceededError,
    ValidationError,
)
from billing_kernel.logging_config import configure_logging, get_logger
from billing_kernel.selectors.report_selector import ReportSelector
from billing_kernel.services.invoice_service import InvoiceService
from billing_kernel.services.transaction_service import TransactionService
from billing_services.admin_service import AdminService
from billing_services.serialization import (
    invoice_to_dict,
    summary_to_dict,
    transaction_to_dict,
)

logger = get_logger("services.api")

# Most specific first
_STATUS_BY_ERROR: tuple[tuple[type[BillingKernelError], int], ...] = (
    (ValidationError, 400),
    (ResetNotConfirmedError, 400),
    (ResetForbiddenError, 403),
    (InvoiceNotFoundError, 404),
    (RetryLimitExceededError, 409),
    (PersistenceError, 503),
)


@dataclass(frozen=True)
class ApiResponse:
    status: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def status_for(exc: BillingKernelError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def error_response(exc: BillingKernelError) -> ApiResponse:
    return ApiResponse(
        status=status_for(exc),
        body={"success": False, "error": str(exc), "code": exc.code},
    )


def bootstrap(config: BillingConfig | None = None) -> BillingConfig:
    """
    Configure logging, initialize the engine and create missing tables.

    Returns:
        The configuration in effect.
    """
    config = config or get_active_config()
    configure_logging(level=config.log_level_value)
    init_engine_from_url(
        config.database_url,
        echo=config.echo_sql,
        sqlite_busy_timeout_s=config.sqlite_busy_timeout_s,
    )
    create_tables()
    return config


def _run(operation: str, work: Callable[[Session], dict[str, Any]]) -> ApiResponse:
    try:
        with session_scope() as session:
            body = work(session)
    except BillingKernelError as exc:
        return error_response(exc)
    except SQLAlchemyError as exc:
        logger.error("request_failed", extra={"operation": operation}, exc_info=True)
        return error_response(PersistenceError(operation, str(exc)))
    return ApiResponse(200, body)


def _invoice_service(session: Session, config: BillingConfig, clock: Clock | None) -> InvoiceService:
    return InvoiceService(
        session,
        clock,
        sequence_strategy=config.sequence_strategy,
        max_attempts=config.max_attempts,
        retry_backoff_ms=config.retry_backoff_ms,
        retry_jitter_ms=config.retry_jitter_ms,
        require_items=config.require_line_items,
    )


def create_invoice(
    payload: Mapping[str, Any],
    *,
    config: BillingConfig | None = None,
    clock: Clock | None = None,
) -> ApiResponse:
    """Create one invoice; body ``{success, invoice, id, invoice_no}``."""
    config = config or get_active_config()

    def work(session: Session) -> dict[str, Any]:
        record = _invoice_service(session, config, clock).create_invoice(payload)
        return {
            "success": True,
            "invoice": invoice_to_dict(record),
            "id": record.id,
            "invoice_no": record.invoice_no,
        }

    return _run("create_invoice", work)


def get_invoice(invoice_id: int, *, config: BillingConfig | None = None) -> ApiResponse:
    """Full invoice with items, or 404."""
    config = config or get_active_config()

    def work(session: Session) -> dict[str, Any]:
        record = _invoice_service(session, config, None).get_invoice(invoice_id)
        return invoice_to_dict(record)

    return _run("get_invoice", work)


def delete_invoice(invoice_id: int, *, config: BillingConfig | None = None) -> ApiResponse:
    """Delete an invoice with its lines and income entry, or 404."""
    config = config or get_active_config()

    def work(session: Session) -> dict[str, Any]:
        deleted = _invoice_service(session, config, None).delete_invoice(invoice_id)
        return {
            "success": True,
            "id": deleted.invoice_id,
            "invoice_no": deleted.invoice_no,
            "ledger_entries_removed": deleted.ledger_entries_removed,
        }

    return _run("delete_invoice", work)


def list_invoices(
    params: Mapping[str, Any] | None = None,
    *,
    config: BillingConfig | None = None,
) -> ApiResponse:
    """Invoice headers newest first; params ``from``, ``to``, ``q``."""
    config = config or get_active_config()
    params = params or {}

    def work(session: Session) -> dict[str, Any]:
        records = _invoice_service(session, config, None).list_invoices(
            date_from=params.get("from"),
            date_to=params.get("to"),
            q=params.get("q"),
        )
        return {
            "success": True,
            "invoices": [invoice_to_dict(r, include_items=False) for r in records],
        }

    return _run("list_invoices", work)


def create_transaction(
    payload: Mapping[str, Any],
    *,
    clock: Clock | None = None,
) -> ApiResponse:
    """Record a manual income / expense entry."""

    def work(session: Session) -> dict[str, Any]:
        record = TransactionService(session, clock).record(payload)
        return {"success": True, "id": record.id, "transaction": transaction_to_dict(record)}

    return _run("create_transaction", work)


def list_transactions(params: Mapping[str, Any] | None = None) -> ApiResponse:
    """Ledger rows newest first; params ``from``, ``to``, ``type``."""
    params = params or {}

    def work(session: Session) -> dict[str, Any]:
        records = TransactionService(session).list_transactions(
            date_from=params.get("from"),
            date_to=params.get("to"),
            type=params.get("type"),
        )
        return {"success": True, "transactions": [transaction_to_dict(r) for r in records]}

    return _run("list_transactions", work)


def report_summary(params: Mapping[str, Any] | None = None) -> ApiResponse:
    """Income, expense and profit; params ``from``, ``to``."""
    params = params or {}

    def work(session: Session) -> dict[str, Any]:
        report = ReportSelector(session).summary(
            date_from=parse_optional_date(params.get("from"), "from"),
            date_to=parse_optional_date(params.get("to"), "to"),
        )
        return {"success": True, **summary_to_dict(report)}

    return _run("report_summary", work)


def reset_store(
    payload: Mapping[str, Any] | None,
    *,
    config: BillingConfig | None = None,
    clock: Clock | None = None,
) -> ApiResponse:
    """Wipe the store; body ``{confirm: "RESET", secret?}``."""
    config = config or get_active_config()
    payload = payload or {}

    def work(session: Session) -> dict[str, Any]:
        result = AdminService(
            session,
            database_url=config.database_url,
            reset_secret=config.reset_secret,
            clock=clock,
        ).reset(payload.get("confirm"), payload.get("secret"))
        return {"success": True, "backup": result.backup_path, "deleted": result.deleted}

    return _run("reset_store", work)
