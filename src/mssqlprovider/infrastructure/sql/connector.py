"""
SQL Server session module.

Handles:
- ODBC driver detection and fallback
- Connection string building per credential kind
- Opening authenticated pyodbc connections (SQL auth or access token)
- Statement execution with timeouts, cancellation and error classification
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import pyodbc

from mssqlprovider.domain.config import (
    ConnectionTarget,
    CredentialDescriptor,
    Scope,
    UsernamePassword,
)
from mssqlprovider.domain.errors import OperationCancelledError, ProviderError
from mssqlprovider.infrastructure.sql.errors import classify
from mssqlprovider.infrastructure.sql.queries import SqlCommand
from mssqlprovider.infrastructure.sql.retry import CancelToken
from mssqlprovider.infrastructure.sql.tokens import TokenSource

logger = logging.getLogger(__name__)

# Preferred drivers (newest first)
PREFERRED_DRIVERS = [
    "ODBC Driver 18 for SQL Server",
    "ODBC Driver 17 for SQL Server",
]

# Older drivers cannot carry access tokens
FALLBACK_DRIVERS = [
    "ODBC Driver 13 for SQL Server",
    "SQL Server Native Client 11.0",
]


def detect_odbc_driver(override: Optional[str] = None) -> str:
    """
    Pick the ODBC driver to use.

    Args:
        override: Driver name from configuration, used as-is when set

    Raises:
        ProviderError: If no suitable driver is installed
    """
    if override:
        return override

    drivers = pyodbc.drivers()
    logger.debug("Available ODBC drivers: %s", drivers)

    for driver in PREFERRED_DRIVERS:
        if driver in drivers:
            return driver

    for driver in FALLBACK_DRIVERS:
        if driver in drivers:
            logger.warning("Using fallback ODBC driver: %s", driver)
            return driver

    raise ProviderError("No SQL Server ODBC driver found. Please install ODBC Driver 17 or 18.")


def _odbc_value(value: str) -> str:
    """Brace-quote a connection string value when it needs it."""
    if any(ch in value for ch in ";{}=") or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


def build_connection_string(
    target: ConnectionTarget,
    credential: CredentialDescriptor,
    driver: str,
    encrypt: bool = True,
    trust_server_certificate: bool = False,
) -> str:
    """
    Build the ODBC connection string for a target.

    Access tokens are not part of the string; they travel as a pre-connect
    attribute (see tokens.py).
    """
    parts = [
        f"DRIVER={{{driver}}}",
        f"SERVER={target.server}",
        f"DATABASE={_odbc_value(target.database or 'master')}",
        f"Encrypt={'yes' if encrypt else 'no'}",
        f"TrustServerCertificate={'yes' if trust_server_certificate else 'no'}",
        "APP=mssqlprovider",
    ]

    if isinstance(credential, UsernamePassword):
        parts.append(f"UID={_odbc_value(credential.username)}")
        parts.append(f"PWD={_odbc_value(credential.get_password())}")

    return ";".join(parts)


class SqlSession:
    """
    An authenticated connection scoped to the server or one database.

    A session serves one operation at a time: callers hold ``borrow()`` for
    the duration of their operation. Statements run with the configured
    timeout and can be aborted through the borrowing CancelToken.
    """

    def __init__(
        self,
        connection: Any,
        target: ConnectionTarget,
        scope: Scope,
        command_timeout: float = 30.0,
    ) -> None:
        self.connection = connection
        self.target = target
        self.scope = scope
        self.broken = False
        self.closed = False
        self._borrow_lock = threading.Lock()
        self._cursor: Any = None
        self._cursor_lock = threading.Lock()
        self.connection.timeout = int(command_timeout)

    def __repr__(self) -> str:
        return f"SqlSession({self.scope.value} {self.target})"

    @contextmanager
    def borrow(self, cancel: Optional[CancelToken] = None) -> Iterator[SqlSession]:
        """
        Hold the session exclusively for one operation.

        If ``cancel`` fires while the session is held, the running statement
        is cancelled and the borrow is released when the caller unwinds.
        """
        self._borrow_lock.acquire()
        unregister = cancel.on_cancel(self.cancel) if cancel is not None else None
        try:
            if cancel is not None:
                cancel.raise_if_cancelled()
            yield self
        finally:
            if unregister is not None:
                unregister()
            self._borrow_lock.release()

    def cancel(self) -> None:
        """Abort the statement in flight, if any."""
        with self._cursor_lock:
            cursor = self._cursor
        if cursor is not None:
            logger.debug("Cancelling statement on %r", self)
            cursor.cancel()

    def query_one(self, command: SqlCommand, *params: Any) -> Optional[Dict[str, Any]]:
        """First row of a query as a dictionary, or None."""
        rows = self._run(command, params, fetch=True)
        return rows[0] if rows else None

    def query_all(self, command: SqlCommand, *params: Any) -> List[Dict[str, Any]]:
        """All rows of a query as dictionaries."""
        return self._run(command, params, fetch=True)

    def execute(self, command: SqlCommand, *params: Any) -> None:
        """Run a statement that returns no rows."""
        self._run(command, params, fetch=False)

    def _run(self, command: SqlCommand, params: tuple, fetch: bool) -> List[Dict[str, Any]]:
        if self.closed:
            raise OperationCancelledError(f"{self!r} is closed")
        logger.debug("Executing %s on %r", command.name, self)
        try:
            cursor = self.connection.cursor()
        except pyodbc.Error as e:
            raise self._failed(e, command) from e

        with self._cursor_lock:
            self._cursor = cursor
        try:
            cursor.execute(command.sql, *params)
            if not fetch:
                return []
            # Skip row counts of the DECLARE/SET statements in a batch
            while cursor.description is None and cursor.nextset():
                pass
            columns = [column[0] for column in cursor.description] if cursor.description else []
            results = []
            for row in cursor.fetchall():
                results.append({column: row[i] for i, column in enumerate(columns)})
            logger.debug("%s returned %d rows", command.name, len(results))
            return results
        except pyodbc.Error as e:
            raise self._failed(e, command) from e
        finally:
            with self._cursor_lock:
                self._cursor = None
            cursor.close()

    def _failed(self, error: pyodbc.Error, command: SqlCommand) -> ProviderError:
        failure = classify(error, f"{command.name} on {self.target}")
        if getattr(failure, "broken_session", False):
            self.broken = True
        return failure

    def close(self) -> None:
        """Close the underlying connection; errors on close are logged only."""
        if self.closed:
            return
        self.closed = True
        try:
            self.connection.close()
        except pyodbc.Error as e:
            logger.debug("Ignoring error while closing %r: %s", self, e)


def open_session(
    target: ConnectionTarget,
    scope: Scope,
    credential: CredentialDescriptor,
    *,
    driver: Optional[str] = None,
    timeout: float = 30.0,
    encrypt: bool = True,
    trust_server_certificate: bool = False,
    token_source: Optional[TokenSource] = None,
) -> SqlSession:
    """
    Open one authenticated session (a single attempt, no retry).

    Raises:
        AuthenticationError: Credentials or token rejected
        DatabaseConnectionError: Endpoint unreachable
        DatabaseTimeoutError: Login timeout exceeded
    """
    conn_str = build_connection_string(
        target, credential, detect_odbc_driver(driver), encrypt, trust_server_certificate
    )
    options: Dict[str, Any] = {"autocommit": True, "timeout": int(timeout)}
    if token_source is not None:
        options["attrs_before"] = token_source.attrs_before()

    logger.debug("Connecting to %s (%s scope)", target, scope.value)
    try:
        connection = pyodbc.connect(conn_str, **options)
    except pyodbc.Error as e:
        raise classify(e, f"connecting to {target}") from e

    return SqlSession(connection, target, scope, command_timeout=timeout)
