"""
SQL Server connectivity package.

Sessions over pyodbc, the cached connector factory, retry and cancellation
primitives, Azure AD token handling and the T-SQL command catalogue.
"""

from .connector import SqlSession, detect_odbc_driver, open_session
from .factory import ConnectorFactory
from .retry import CancelToken, RetryPolicy, call_with_retry

__all__ = [
    "CancelToken",
    "ConnectorFactory",
    "RetryPolicy",
    "SqlSession",
    "call_with_retry",
    "detect_odbc_driver",
    "open_session",
]
