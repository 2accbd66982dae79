"""
Connector Factory - lazily opened, cached sessions.

One factory belongs to one provider instance. Sessions are cached per
``(target, credential, scope)``; each cache key has its own lock so at most
one connection attempt per key is in flight while different keys connect in
parallel. Broken sessions are evicted explicitly by the caller and re-opened
on next use.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, Optional, Tuple

from mssqlprovider.domain.config import (
    ConnectionTarget,
    CredentialDescriptor,
    Scope,
    UsernamePassword,
)
from mssqlprovider.domain.errors import DatabaseConnectionError, ProviderError
from mssqlprovider.infrastructure.sql.connector import SqlSession, open_session
from mssqlprovider.infrastructure.sql.retry import CancelToken, RetryPolicy, call_with_retry
from mssqlprovider.infrastructure.sql.tokens import TokenSource, build_credential

logger = logging.getLogger(__name__)

CacheKey = Tuple[ConnectionTarget, CredentialDescriptor, Scope]

# (target, scope, credential, token_source) -> session; a single attempt
ConnectFunc = Callable[
    [ConnectionTarget, Scope, CredentialDescriptor, Optional[TokenSource]],
    SqlSession,
]


@dataclass
class _CacheEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    session: Optional[SqlSession] = None


class ConnectorFactory:
    """
    Session cache and connection establishment for one provider instance.

    Attributes:
        connection_attempts: Number of single connection attempts made
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        driver: Optional[str] = None,
        encrypt: bool = True,
        trust_server_certificate: bool = False,
        connect: Optional[ConnectFunc] = None,
        token_source_factory: Optional[Callable[[CredentialDescriptor], Optional[TokenSource]]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        log: Optional[logging.Logger | logging.LoggerAdapter] = None,
    ) -> None:
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.driver = driver
        self.encrypt = encrypt
        self.trust_server_certificate = trust_server_certificate
        self._connect = connect or self._open
        self._token_source_factory = token_source_factory or _default_token_source
        self._sleep = sleep
        self._log = log or logger

        self._entries: Dict[CacheKey, _CacheEntry] = {}
        self._entries_lock = threading.Lock()
        self._token_sources: Dict[CredentialDescriptor, Optional[TokenSource]] = {}
        self._token_lock = threading.Lock()
        self._closed = False
        self.connection_attempts = 0

    # -------------------------------------------------------------------------
    # Cache keys
    # -------------------------------------------------------------------------

    @staticmethod
    def scoped_target(scope: Scope, target: ConnectionTarget) -> ConnectionTarget:
        """Normalize a target for a scope (server scope always means master)."""
        if scope == Scope.SERVER:
            return target.for_database(None)
        if not target.database:
            raise ProviderError("A database is required for a database-scoped session")
        return target

    def cache_key(
        self, scope: Scope, target: ConnectionTarget, credential: CredentialDescriptor
    ) -> CacheKey:
        return (self.scoped_target(scope, target), credential, scope)

    def _entry(self, key: CacheKey) -> _CacheEntry:
        with self._entries_lock:
            if self._closed:
                raise ProviderError("Connector factory is closed")
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _CacheEntry()
            return entry

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def get_connector(
        self,
        scope: Scope,
        target: ConnectionTarget,
        credential: CredentialDescriptor,
        cancel: Optional[CancelToken] = None,
    ) -> SqlSession:
        """
        Cached session for the key, opening one if needed.

        Concurrent callers for the same key wait for a single connection
        attempt and share its result.

        Raises:
            AuthenticationError: Not retried
            DatabaseConnectionError / DatabaseTimeoutError: After retries
            OperationCancelledError: Cancelled between attempts
        """
        key = self.cache_key(scope, target, credential)
        entry = self._entry(key)
        with entry.lock:
            session = entry.session
            if session is not None and not session.broken and not session.closed:
                self._log.debug("Reusing cached session %r", session)
                return session
            if session is not None:
                self._log.info("Replacing stale session %r", session)
                session.close()
                entry.session = None

            target_for_scope = key[0]
            session = call_with_retry(
                lambda: self._attempt(target_for_scope, scope, credential),
                self.retry,
                description=f"connect to {target_for_scope}",
                sleep=self._sleep,
                cancel=cancel,
                log=self._log,
            )
            entry.session = session
            self._log.info("Opened session %r", session)
            return session

    @contextmanager
    def session(
        self,
        scope: Scope,
        target: ConnectionTarget,
        credential: CredentialDescriptor,
        cancel: Optional[CancelToken] = None,
    ) -> Iterator[SqlSession]:
        """
        Borrow the cached session for the duration of a ``with`` block.

        Another caller may evict the session between the cache lookup and
        the borrow; a session found closed or broken once held is replaced
        by a freshly opened one.

        Raises:
            DatabaseConnectionError: The replacement was lost the same way
        """
        for _ in range(2):
            session = self.get_connector(scope, target, credential, cancel)
            with session.borrow(cancel):
                if session.closed or session.broken:
                    self._log.info("Session %r was evicted before it could be borrowed", session)
                    continue
                yield session
                return
        raise DatabaseConnectionError(
            f"no usable session for {self.scoped_target(scope, target)}", broken_session=True
        )

    def evict(
        self,
        scope: Scope,
        target: ConnectionTarget,
        credential: CredentialDescriptor,
        session: Optional[SqlSession] = None,
    ) -> bool:
        """
        Drop the cached session for a key.

        When ``session`` is given, only that session is evicted; a newer one
        opened meanwhile by another caller is kept.

        Returns:
            True if a session was evicted
        """
        key = self.cache_key(scope, target, credential)
        with self._entries_lock:
            entry = self._entries.get(key)
        if entry is None:
            return False
        with entry.lock:
            current = entry.session
            if current is None or (session is not None and current is not session):
                return False
            entry.session = None
        current.close()
        self._log.info("Evicted session %r", current)
        return True

    def close(self) -> None:
        """Close every cached session; the factory cannot be used afterwards."""
        with self._entries_lock:
            self._closed = True
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            with entry.lock:
                if entry.session is not None:
                    entry.session.close()
                    entry.session = None
        self._log.debug("Connector factory closed (%d cache entries)", len(entries))

    def cached_sessions(self) -> list[SqlSession]:
        with self._entries_lock:
            entries = list(self._entries.values())
        return [entry.session for entry in entries if entry.session is not None]

    # -------------------------------------------------------------------------
    # Connection establishment
    # -------------------------------------------------------------------------

    def token_source(self, credential: CredentialDescriptor) -> Optional[TokenSource]:
        """Token source shared by every session of one credential."""
        with self._token_lock:
            if credential not in self._token_sources:
                self._token_sources[credential] = self._token_source_factory(credential)
            return self._token_sources[credential]

    def _attempt(
        self, target: ConnectionTarget, scope: Scope, credential: CredentialDescriptor
    ) -> SqlSession:
        with self._entries_lock:
            self.connection_attempts += 1
        return self._connect(target, scope, credential, self.token_source(credential))

    def _open(
        self,
        target: ConnectionTarget,
        scope: Scope,
        credential: CredentialDescriptor,
        token_source: Optional[TokenSource],
    ) -> SqlSession:
        return open_session(
            target,
            scope,
            credential,
            driver=self.driver,
            timeout=self.timeout,
            encrypt=self.encrypt,
            trust_server_certificate=self.trust_server_certificate,
            token_source=token_source,
        )


def _default_token_source(credential: CredentialDescriptor) -> Optional[TokenSource]:
    if isinstance(credential, UsernamePassword):
        return None
    return TokenSource(build_credential(credential))
