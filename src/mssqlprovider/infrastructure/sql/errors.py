"""
Classification of pyodbc errors into the provider error taxonomy.

pyodbc raises ``pyodbc.Error`` subclasses whose first argument is the ODBC
SQLSTATE and whose message ends with the SQL Server native error number in
parentheses, e.g.::

    ('28000', "[28000] [Microsoft][ODBC Driver 18 for SQL Server][SQL Server]
     Login failed for user 'svc'. (18456) (SQLDriverConnect)")
"""

from __future__ import annotations

import re

import pyodbc

from mssqlprovider.domain.errors import (
    AuthenticationError,
    DatabaseConnectionError,
    DatabaseTimeoutError,
    OperationCancelledError,
    ProviderError,
    SqlCommandError,
)

TIMEOUT_SQLSTATES = {"HYT00", "HYT01"}
CANCELLED_SQLSTATES = {"HY008"}
AUTH_SQLSTATES = {"28000"}

# Login failures and token rejections
AUTH_NATIVE_ERRORS = {18452, 18456, 18470, 18486, 18487, 18488, 33155, 40532}

# Azure SQL transient conditions and TCP resets
TRANSIENT_NATIVE_ERRORS = {
    233, 4060, 10053, 10054, 10060, 10928, 10929, 40143,
    40197, 40501, 40540, 40613, 49918, 49919, 49920,
}

_NATIVE_RE = re.compile(r"\((\d+)\)")


def sqlstate(error: pyodbc.Error) -> str:
    """SQLSTATE of a pyodbc error (empty when absent)."""
    if error.args and isinstance(error.args[0], str) and len(error.args[0]) == 5:
        return error.args[0]
    return ""


def native_code(error: pyodbc.Error) -> int | None:
    """SQL Server native error number embedded in the message, if any."""
    message = str(error.args[1]) if len(error.args) > 1 else str(error)
    codes = _NATIVE_RE.findall(message)
    return int(codes[0]) if codes else None


def message_of(error: pyodbc.Error) -> str:
    """Human-readable message without the driver prefixes."""
    message = str(error.args[1]) if len(error.args) > 1 else str(error)
    return message.split("]")[-1].strip() or message


def classify(error: pyodbc.Error, during: str) -> ProviderError:
    """
    Map a pyodbc error to a provider error.

    Args:
        error: Error raised by pyodbc
        during: Short description of what was being done (for the message)

    Returns:
        ProviderError subclass instance (not raised)
    """
    state = sqlstate(error)
    code = native_code(error)
    text = f"{during}: {message_of(error)}"

    if state in TIMEOUT_SQLSTATES:
        return DatabaseTimeoutError(text)
    if state in CANCELLED_SQLSTATES:
        return OperationCancelledError(text)
    if state in AUTH_SQLSTATES or code in AUTH_NATIVE_ERRORS:
        return AuthenticationError(text)
    if state.startswith("08") or code in TRANSIENT_NATIVE_ERRORS:
        # 08S01 / 08003 mean the link to an established session is gone
        return DatabaseConnectionError(text, broken_session=state in ("08S01", "08003"))
    if isinstance(error, pyodbc.OperationalError):
        return DatabaseConnectionError(text)
    return SqlCommandError(text)
