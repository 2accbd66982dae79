"""
Infrastructure layer package.

Contains all I/O and external system integrations:
- SQL Server connectivity (sql/)
- Azure AD access tokens
- Logging setup
- Railway result types
"""

from mssqlprovider.infrastructure.logging_config import (
    PROVIDER_LOG_FILE,
    ContextLogger,
    new_provider_logger,
    setup_logging,
    with_context,
)
from mssqlprovider.infrastructure.results import Failure, Result, Success

__all__ = [
    # Logging
    "PROVIDER_LOG_FILE",
    "ContextLogger",
    "new_provider_logger",
    "setup_logging",
    "with_context",
    # Results
    "Failure",
    "Result",
    "Success",
]
