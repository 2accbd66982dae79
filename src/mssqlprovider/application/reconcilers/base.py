"""
Base class for principal reconcilers.

A reconciler implements the lifecycle of one principal kind::

    Unmanaged -> Creating -> Managed -> Updating -> Managed -> Deleting -> Unmanaged
    (existing principal) -> Importing -> Managed

Sessions are borrowed from the provider for a single operation. If the
session turns out to be broken mid-operation, it is evicted and the
operation is retried once on a freshly opened session.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, ClassVar, Generic, Optional, TypeVar

from mssqlprovider.domain.config import Scope
from mssqlprovider.domain.errors import DatabaseConnectionError, ImmutableFieldError
from mssqlprovider.domain.principal_diff import PrincipalDiff
from mssqlprovider.domain.principals import Diagnostic, PrincipalId, PrincipalKind
from mssqlprovider.infrastructure.logging_config import ContextLogger
from mssqlprovider.infrastructure.sql.connector import SqlSession
from mssqlprovider.infrastructure.sql.retry import CancelToken

if TYPE_CHECKING:
    from mssqlprovider.application.provider import Provider

P = TypeVar("P")
R = TypeVar("R")


class PrincipalReconciler(ABC, Generic[P]):
    """
    Abstract Base Class for principal reconcilers.

    Subclasses declare ``kind``, ``scope`` and the fields that can never be
    changed in place, and implement the five operations.
    """

    kind: ClassVar[PrincipalKind]
    scope: ClassVar[Scope]
    immutable_fields: ClassVar[frozenset[str]] = frozenset()
    rename_field: ClassVar[str]

    def __init__(self, provider: Provider) -> None:
        self.provider = provider

    @property
    def supports_rename(self) -> bool:
        return self.provider.config.supports_rename

    def logger(self, func: str) -> ContextLogger:
        return self.provider.resource_logger(self.kind.value, func)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    @abstractmethod
    def create(self, desired: P, cancel: Optional[CancelToken] = None) -> tuple[PrincipalId, list[Diagnostic]]:
        """Create the principal; returns its durable id."""

    @abstractmethod
    def read(self, principal_id: PrincipalId, cancel: Optional[CancelToken] = None) -> Optional[P]:
        """Live state by durable id; None when it no longer exists."""

    @abstractmethod
    def update(
        self,
        principal_id: PrincipalId,
        desired: P,
        observed: P,
        cancel: Optional[CancelToken] = None,
    ) -> list[Diagnostic]:
        """Apply the minimal set of changes from observed to desired."""

    @abstractmethod
    def delete(self, principal_id: PrincipalId, cancel: Optional[CancelToken] = None) -> list[Diagnostic]:
        """Drop the principal; absence is success."""

    @abstractmethod
    def import_(self, name: str, database: Optional[str] = None,
                cancel: Optional[CancelToken] = None) -> tuple[PrincipalId, P]:
        """Adopt an existing principal by name."""

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def check_immutable(self, diff: PrincipalDiff) -> None:
        """
        Raises:
            ImmutableFieldError: If the diff touches a field that cannot change in place
        """
        fixed = set(self.immutable_fields)
        if not self.supports_rename:
            fixed.add(self.rename_field)
        touched = diff.touching(fixed)
        if touched:
            raise ImmutableFieldError(self.kind.value, touched)

    def with_session(
        self,
        func: Callable[[SqlSession], R],
        log: ContextLogger,
        database: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
        scope: Optional[Scope] = None,
    ) -> R:
        """
        Run ``func`` on a borrowed session, retrying once on a broken session.
        """
        scope = scope or self.scope
        for attempt in (1, 2):
            with self.provider.session(scope, database, cancel) as session:
                try:
                    return func(session)
                except DatabaseConnectionError as e:
                    if not (e.broken_session or session.broken) or attempt == 2:
                        raise
                    log.warning("Session %r broke mid-operation (%s); retrying on a new session", session, e)
                    broken = session
            self.provider.evict(scope, database, broken)
        raise AssertionError("unreachable")  # pragma: no cover
