"""
AdminService -- administrative reset of the billing store.

Responsibility:
    Wipes every invoice, line item, ledger transaction and sequence
    counter in one unit so numbering restarts at 0001.  A file-backed
    SQLite store is copied to ``<db>.bak.<timestamp>`` first.

Architecture position:
    Services -- outer surface.  Uses the kernel's db helpers; never called
    by the kernel.

Failure modes:
    - ResetNotConfirmedError: ``confirm`` is not exactly ``"RESET"``.
    - ResetForbiddenError: a reset secret is configured and the caller
      did not present it.
    - PersistenceError: the backup copy could not be written; nothing is
      deleted.
"""

import hmac
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session

from billing_kernel.db.engine import clear_tables
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import (
    PersistenceError,
    ResetForbiddenError,
    ResetNotConfirmedError,
)
from billing_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.admin")

RESET_CONFIRMATION = "RESET"


@dataclass(frozen=True)
class ResetResult:
    backup_path: str | None
    deleted: dict[str, int] = field(default_factory=dict)


def sqlite_database_path(database_url: str | None) -> Path | None:
    """Filesystem path of a file-backed SQLite URL, else None."""
    if not database_url:
        return None
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
        return None
    return Path(url.database)


class AdminService:
    """
    Contract:
        ``reset()`` either deletes everything (after a successful backup,
        when one applies) or raises without touching any row.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT drop or recreate tables.
    """

    def __init__(
        self,
        session: Session,
        *,
        database_url: str | None = None,
        reset_secret: str | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._database_url = database_url
        self._reset_secret = reset_secret
        self._clock = clock or SystemClock()

    def _check_authorized(self, confirm: str | None, secret: str | None) -> None:
        if confirm != RESET_CONFIRMATION:
            raise ResetNotConfirmedError()
        if self._reset_secret:
            if not isinstance(secret, str) or not hmac.compare_digest(
                secret.encode("utf-8"), self._reset_secret.encode("utf-8")
            ):
                raise ResetForbiddenError()

    def _backup(self) -> str | None:
        path = sqlite_database_path(self._database_url)
        if path is None or not path.exists():
            return None
        if self._session.get_bind().dialect.name != "sqlite":
            return None
        ts = self._clock.now().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        backup = path.with_name(f"{path.name}.bak.{ts}")

        # Copied through the session's own connection, inside the BEGIN IMMEDIATE
        # transaction that also covers the deletes.
        source = self._session.connection().connection.driver_connection
        try:
            target = sqlite3.connect(backup)
            try:
                source.backup(target)
            finally:
                target.close()
        except sqlite3.Error as exc:
            raise PersistenceError("reset_backup", str(exc)) from exc
        return str(backup)

    def reset(self, confirm: str | None, secret: str | None = None) -> ResetResult:
        """
        Delete all rows from every billing table.

        Raises:
            ResetNotConfirmedError, ResetForbiddenError, PersistenceError.
        """
        with LogContext.bind(operation="reset"):
            self._check_authorized(confirm, secret)
            backup_path = self._backup()
            deleted = clear_tables(self._session)
            self._session.expunge_all()
            logger.warning(
                "store_reset",
                extra={"backup_path": backup_path, "deleted": deleted},
            )
            return ResetResult(backup_path=backup_path, deleted=deleted)
