"""
Tests for the Connector Factory.

Caching per (target, credential, scope), single-flight connection under
concurrency, explicit eviction of broken sessions and retry behavior.
"""

import threading
import time

import pytest

from mssqlprovider.domain.config import ConnectionTarget, DefaultChainAuth, Scope, UsernamePassword
from mssqlprovider.domain.errors import (
    AuthenticationError,
    DatabaseConnectionError,
    DatabaseTimeoutError,
    OperationCancelledError,
    ProviderError,
)
from mssqlprovider.infrastructure.sql.factory import ConnectorFactory
from mssqlprovider.infrastructure.sql.retry import CancelToken, RetryPolicy

from fakes import FakeSession

TARGET = ConnectionTarget(host="DB01")
CREDENTIAL = UsernamePassword(username="sa", password="x")


class ScriptedConnect:
    """Connect callable that fails with the scripted errors, then succeeds."""

    def __init__(self, *errors, delay: float = 0.0):
        self.errors = list(errors)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, target, scope, credential, token_source):
        with self._lock:
            self.calls.append((target, scope))
            error = self.errors.pop(0) if self.errors else None
        if self.delay:
            time.sleep(self.delay)
        if error is not None:
            raise error
        return FakeSession(None, target, scope)


def factory(connect, **kwargs) -> ConnectorFactory:
    kwargs.setdefault("retry", RetryPolicy(attempts=3, base_delay=1.0, max_delay=10.0))
    kwargs.setdefault("sleep", lambda _: None)
    return ConnectorFactory(connect=connect, token_source_factory=lambda _: None, **kwargs)


class TestCaching:
    """Sessions are reused per cache key."""

    def test_reuses_cached_session(self):
        connect = ScriptedConnect()
        f = factory(connect)

        first = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)
        second = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)

        assert first is second
        assert len(connect.calls) == 1

    def test_scopes_are_separate_keys(self):
        connect = ScriptedConnect()
        f = factory(connect)

        server = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)
        database = f.get_connector(Scope.DATABASE, TARGET.for_database("appdb"), CREDENTIAL)

        assert server is not database
        assert database.target.database == "appdb"
        assert len(connect.calls) == 2

    def test_databases_are_separate_keys(self):
        connect = ScriptedConnect()
        f = factory(connect)

        a = f.get_connector(Scope.DATABASE, TARGET.for_database("a"), CREDENTIAL)
        b = f.get_connector(Scope.DATABASE, TARGET.for_database("b"), CREDENTIAL)

        assert a is not b

    def test_host_case_does_not_split_cache(self):
        connect = ScriptedConnect()
        f = factory(connect)

        f.get_connector(Scope.SERVER, ConnectionTarget(host="db01"), CREDENTIAL)
        f.get_connector(Scope.SERVER, ConnectionTarget(host="DB01"), CREDENTIAL)

        assert len(connect.calls) == 1

    def test_database_case_splits_cache(self):
        connect = ScriptedConnect()
        f = factory(connect)

        f.get_connector(Scope.DATABASE, TARGET.for_database("Sales"), CREDENTIAL)
        f.get_connector(Scope.DATABASE, TARGET.for_database("sales"), CREDENTIAL)

        assert len(connect.calls) == 2

    def test_credentials_are_separate_keys(self):
        connect = ScriptedConnect()
        f = factory(connect)

        f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)
        f.get_connector(Scope.SERVER, TARGET, DefaultChainAuth())

        assert len(connect.calls) == 2

    def test_server_scope_ignores_database(self):
        connect = ScriptedConnect()
        f = factory(connect)

        session = f.get_connector(Scope.SERVER, TARGET.for_database("appdb"), CREDENTIAL)

        assert session.target.database is None

    def test_database_scope_requires_database(self):
        f = factory(ScriptedConnect())

        with pytest.raises(ProviderError):
            f.get_connector(Scope.DATABASE, TARGET, CREDENTIAL)


class TestConcurrency:
    """One connection attempt per key, even under concurrent requests."""

    def test_concurrent_requests_share_one_attempt(self):
        connect = ScriptedConnect(delay=0.05)
        f = factory(connect)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(f.get_connector(Scope.SERVER, TARGET, CREDENTIAL))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(connect.calls) == 1
        assert f.connection_attempts == 1
        assert len({id(s) for s in results}) == 1


class TestEviction:
    """Broken sessions are evicted explicitly and re-opened on next use."""

    def test_evict_then_reopen(self):
        connect = ScriptedConnect()
        f = factory(connect)
        first = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)

        assert f.evict(Scope.SERVER, TARGET, CREDENTIAL, first) is True
        second = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)

        assert first.closed
        assert second is not first
        assert len(connect.calls) == 2

    def test_evict_only_given_session(self):
        """A newer session opened meanwhile is kept."""
        f = factory(ScriptedConnect())
        old = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)
        f.evict(Scope.SERVER, TARGET, CREDENTIAL)
        new = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)

        assert f.evict(Scope.SERVER, TARGET, CREDENTIAL, old) is False
        assert f.get_connector(Scope.SERVER, TARGET, CREDENTIAL) is new

    def test_evict_unknown_key(self):
        f = factory(ScriptedConnect())

        assert f.evict(Scope.SERVER, TARGET, CREDENTIAL) is False

    def test_broken_session_replaced(self):
        connect = ScriptedConnect()
        f = factory(connect)
        first = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)
        first.broken = True

        second = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)

        assert second is not first
        assert first.closed

    def test_session_evicted_while_waiting_for_borrow(self):
        """Two workers share one key; the holder evicts while the other waits."""
        connect = ScriptedConnect()
        f = factory(connect)
        fetched = threading.Event()
        borrowed = []
        get_connector = f.get_connector

        def fetch(*args, **kwargs):
            session = get_connector(*args, **kwargs)
            fetched.set()
            return session

        def waiter():
            with f.session(Scope.SERVER, TARGET, CREDENTIAL) as session:
                borrowed.append(session)

        with f.session(Scope.SERVER, TARGET, CREDENTIAL) as first:
            f.get_connector = fetch
            worker = threading.Thread(target=waiter)
            worker.start()
            assert fetched.wait(timeout=5)
            first.broken = True
            f.evict(Scope.SERVER, TARGET, CREDENTIAL, first)
        worker.join(timeout=5)

        assert first.closed
        assert len(borrowed) == 1
        assert borrowed[0] is not first
        assert not borrowed[0].closed
        assert len(connect.calls) == 2

    def test_close_closes_everything(self):
        f = factory(ScriptedConnect())
        a = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)
        b = f.get_connector(Scope.DATABASE, TARGET.for_database("appdb"), CREDENTIAL)

        f.close()

        assert a.closed and b.closed
        assert f.cached_sessions() == []
        with pytest.raises(ProviderError):
            f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)


class TestRetry:
    """Transient failures are retried with backoff; authentication is not."""

    def test_transient_failure_retried(self):
        delays = []
        connect = ScriptedConnect(DatabaseConnectionError("refused"), DatabaseTimeoutError("slow"))
        f = factory(connect, sleep=delays.append)

        session = f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)

        assert session is not None
        assert len(connect.calls) == 3
        assert delays == [1.0, 2.0]

    def test_gives_up_after_attempts(self):
        connect = ScriptedConnect(*[DatabaseConnectionError("refused")] * 5)
        f = factory(connect)

        with pytest.raises(DatabaseConnectionError):
            f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)

        assert len(connect.calls) == 3
        assert f.cached_sessions() == []

    def test_authentication_not_retried(self):
        connect = ScriptedConnect(AuthenticationError("Login failed for user 'sa'"))
        f = factory(connect)

        with pytest.raises(AuthenticationError):
            f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)

        assert len(connect.calls) == 1

    def test_cancel_during_backoff(self):
        token = CancelToken()
        connect = ScriptedConnect(*[DatabaseConnectionError("refused")] * 3)
        f = factory(connect, sleep=lambda _: token.cancel())

        with pytest.raises(OperationCancelledError):
            f.get_connector(Scope.SERVER, TARGET, CREDENTIAL, cancel=token)

        assert len(connect.calls) == 1

    def test_cancelled_before_borrow(self):
        token = CancelToken()
        f = factory(ScriptedConnect())
        f.get_connector(Scope.SERVER, TARGET, CREDENTIAL)
        token.cancel()

        with pytest.raises(OperationCancelledError):
            with f.session(Scope.SERVER, TARGET, CREDENTIAL, token):
                pytest.fail("borrow should not be granted")


class TestTokenSources:
    """Token sources are created once per credential."""

    def test_token_source_cached(self):
        created = []
        f = ConnectorFactory(
            connect=ScriptedConnect(),
            token_source_factory=lambda c: created.append(c) or object(),
        )

        assert f.token_source(DefaultChainAuth()) is f.token_source(DefaultChainAuth())
        assert len(created) == 1

    def test_sql_login_has_no_token_source(self):
        f = ConnectorFactory(connect=ScriptedConnect())

        assert f.token_source(CREDENTIAL) is None
