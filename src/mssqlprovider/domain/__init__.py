"""
Domain layer package.

Contains pure data models and the error taxonomy, with no I/O dependencies.
"""

from mssqlprovider.domain.errors import (
    ConfigError,
    ProviderError,
    ReconcileError,
    TransientError,
)
from mssqlprovider.domain.principals import (
    Diagnostic,
    Login,
    PrincipalId,
    PrincipalKind,
    Severity,
    User,
    UserAuthType,
)

__all__ = [
    # Errors
    "ConfigError",
    "ProviderError",
    "ReconcileError",
    "TransientError",
    # Principals
    "Diagnostic",
    "Login",
    "PrincipalId",
    "PrincipalKind",
    "Severity",
    "User",
    "UserAuthType",
]
