"""
Railway-oriented result types for resource operations.

Every operation handed back to the orchestration engine is either a Success
carrying the state to persist (plus any warning diagnostics) or a Failure
carrying the diagnostics that explain why the operation was aborted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Optional, TypeVar

from mssqlprovider.domain.principals import Diagnostic, Severity

T = TypeVar('T')
E = TypeVar('E')


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful operation result."""
    value: T
    diagnostics: list[Diagnostic] = field(default_factory=list)
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            object.__setattr__(self, 'timestamp', datetime.now())

    def is_success(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure(Generic[E]):
    """Failed operation result."""
    error: E
    recoverable: bool = False
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            object.__setattr__(self, 'timestamp', datetime.now())

    def is_success(self) -> bool:
        return False


# Type alias for Railway Result
Result = Success[T] | Failure[E]

# Result of one resource operation: state (None when gone) or error diagnostics
ResourceResult = Result[Optional[dict], list[Diagnostic]]


def diagnostics_of(result: ResourceResult) -> list[Diagnostic]:
    """All diagnostics attached to a result, whichever track it is on."""
    if isinstance(result, Failure):
        return list(result.error)
    return list(result.diagnostics)


def has_errors(diagnostics: list[Diagnostic]) -> bool:
    return any(d.severity == Severity.ERROR for d in diagnostics)
