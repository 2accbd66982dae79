"""
Error taxonomy for the provider.

Every failure raised by the provider derives from ProviderError so the
resource boundary can turn it into a diagnostic for the orchestration engine.

Families:
    - ConfigError: bad provider configuration, raised before any network I/O
    - TransientError: connection/timeout failures, retried by the factory only
    - AuthenticationError: rejected credentials or tokens, never retried
    - ReconcileError: domain outcomes of a principal operation
"""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for all provider errors."""

    summary = "Provider error"

    @property
    def detail(self) -> str:
        return str(self)


# =============================================================================
# Configuration
# =============================================================================

class ConfigError(ProviderError):
    """Provider configuration is invalid."""

    summary = "Invalid provider configuration"


class NoAuthMethodError(ConfigError):
    """None of the login blocks is populated."""

    summary = "No authentication method configured"

    def __init__(self, methods: tuple[str, ...]) -> None:
        self.methods = methods
        super().__init__(f"exactly one of {', '.join(methods)} must be specified")


class AmbiguousAuthMethodError(ConfigError):
    """More than one login block is populated."""

    summary = "Ambiguous authentication method"

    def __init__(self, populated: list[str]) -> None:
        self.populated = populated
        super().__init__(
            f"only one authentication method may be specified, got: {', '.join(populated)}"
        )


class IncompleteAuthConfigError(ConfigError):
    """A populated login block is missing a required field."""

    summary = "Incomplete authentication configuration"

    def __init__(self, method: str, field: str) -> None:
        self.method = method
        self.field = field
        super().__init__(f"'{field}' is required when '{method}' is used")


class InvalidConfigError(ConfigError):
    """A configuration field failed validation."""


# =============================================================================
# Connectivity
# =============================================================================

class TransientError(ProviderError):
    """Failure that may succeed on a later attempt."""


class DatabaseConnectionError(TransientError):
    """Network-level failure while connecting or talking to the server."""

    summary = "Unable to connect to SQL Server"

    def __init__(self, message: str, broken_session: bool = False) -> None:
        super().__init__(message)
        self.broken_session = broken_session


class DatabaseTimeoutError(TransientError):
    """A network call exceeded its configured timeout."""

    summary = "SQL Server operation timed out"


class AuthenticationError(ProviderError):
    """Credentials or token were rejected."""

    summary = "Authentication failed"


class OperationCancelledError(ProviderError):
    """The caller cancelled an in-flight operation."""

    summary = "Operation cancelled"


class SqlCommandError(ProviderError):
    """A statement failed for a reason that is not connectivity related."""

    summary = "SQL command failed"


# =============================================================================
# Reconciliation outcomes
# =============================================================================

class ReconcileError(ProviderError):
    """Domain-level outcome of a principal operation."""


class AlreadyExistsError(ReconcileError):
    """A principal with the same name already exists outside of management."""

    summary = "Principal already exists"

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(
            f"{kind} [{name}] already exists; import it instead of creating it"
        )


class DependencyError(ReconcileError):
    """A referenced principal does not exist."""

    summary = "Missing dependency"


class ImmutableFieldError(ReconcileError):
    """The requested change cannot be applied in place."""

    summary = "Field cannot be changed in place"

    def __init__(self, kind: str, fields: list[str]) -> None:
        self.kind = kind
        self.fields = fields
        super().__init__(
            f"{kind} attribute(s) {', '.join(fields)} cannot be updated in place; "
            "the principal must be replaced"
        )


class PrincipalNotFoundError(ReconcileError):
    """The durable id or name no longer resolves to a principal."""

    summary = "Principal not found"
