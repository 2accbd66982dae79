"""
Tests for SQL sessions over pyodbc.

pyodbc connections and cursors are replaced with MagicMock handles.
"""

from unittest.mock import MagicMock, patch

import pyodbc
import pytest

from mssqlprovider.domain.config import ConnectionTarget, DefaultChainAuth, Scope, UsernamePassword
from mssqlprovider.domain.errors import (
    AuthenticationError,
    DatabaseConnectionError,
    OperationCancelledError,
    ProviderError,
)
from mssqlprovider.infrastructure.sql import queries
from mssqlprovider.infrastructure.sql.connector import (
    SqlSession,
    build_connection_string,
    detect_odbc_driver,
    open_session,
)
from mssqlprovider.infrastructure.sql.retry import CancelToken
from mssqlprovider.infrastructure.sql.tokens import SQL_COPT_SS_ACCESS_TOKEN

TARGET = ConnectionTarget(host="db01.example.com", port="1433")
DRIVER = "ODBC Driver 18 for SQL Server"


def mock_connection(columns=(), rows=()):
    cursor = MagicMock()
    cursor.description = [(name, str, None, 0, 0, 0, True) for name in columns] or None
    cursor.fetchall.return_value = list(rows)
    connection = MagicMock()
    connection.cursor.return_value = cursor
    return connection, cursor


class TestConnectionString:
    """ODBC connection string assembly."""

    def test_sql_login(self):
        conn_str = build_connection_string(
            TARGET.for_database("appdb"), UsernamePassword(username="sa", password="p"), DRIVER
        )

        assert f"DRIVER={{{DRIVER}}}" in conn_str
        assert "SERVER=tcp:db01.example.com,1433" in conn_str
        assert "DATABASE=appdb" in conn_str
        assert "UID=sa" in conn_str
        assert "PWD=p" in conn_str
        assert "Encrypt=yes" in conn_str
        assert "TrustServerCertificate=no" in conn_str

    def test_server_scope_uses_master(self):
        conn_str = build_connection_string(TARGET, DefaultChainAuth(), DRIVER)

        assert "DATABASE=master" in conn_str

    def test_token_auth_has_no_credentials(self):
        conn_str = build_connection_string(TARGET, DefaultChainAuth(), DRIVER, encrypt=False,
                                           trust_server_certificate=True)

        assert "UID=" not in conn_str
        assert "PWD=" not in conn_str
        assert "Encrypt=no" in conn_str
        assert "TrustServerCertificate=yes" in conn_str

    def test_special_characters_are_braced(self):
        conn_str = build_connection_string(TARGET, UsernamePassword(username="sa", password="a;b}c"), DRIVER)

        assert "PWD={a;b}}c}" in conn_str


class TestDriverDetection:
    """Newest installed SQL Server driver wins."""

    def test_override(self):
        assert detect_odbc_driver("My Driver") == "My Driver"

    def test_prefers_18(self):
        with patch("pyodbc.drivers", return_value=["ODBC Driver 17 for SQL Server", DRIVER]):
            assert detect_odbc_driver() == DRIVER

    def test_no_driver(self):
        with patch("pyodbc.drivers", return_value=["PostgreSQL Unicode"]):
            with pytest.raises(ProviderError):
                detect_odbc_driver()


class TestSqlSession:
    """Statement execution, error classification and cancellation."""

    def test_query_returns_dict_rows(self):
        connection, cursor = mock_connection(["principal_id", "name"], [(257, "app_login")])
        session = SqlSession(connection, TARGET, Scope.SERVER, command_timeout=15)

        row = session.query_one(queries.LOGIN_BY_NAME, "app_login")

        assert row == {"principal_id": 257, "name": "app_login"}
        cursor.execute.assert_called_once_with(queries.LOGIN_BY_NAME.sql, "app_login")
        assert connection.timeout == 15
        cursor.close.assert_called_once()

    def test_query_one_none_when_empty(self):
        connection, _ = mock_connection(["principal_id"], [])
        session = SqlSession(connection, TARGET, Scope.SERVER)

        assert session.query_one(queries.LOGIN_BY_ID, 1) is None

    def test_skips_result_sets_without_rows(self):
        connection, cursor = mock_connection(["name"], [("db_owner",)])
        description = cursor.description
        cursor.description = None

        def nextset():
            cursor.description = description
            return True

        cursor.nextset.side_effect = nextset
        session = SqlSession(connection, TARGET, Scope.DATABASE)

        assert session.query_all(queries.USER_ROLES, 5) == [{"name": "db_owner"}]

    def test_execute_does_not_fetch(self):
        connection, cursor = mock_connection()
        session = SqlSession(connection, TARGET, Scope.SERVER)

        session.execute(queries.DROP_LOGIN, 257)

        cursor.execute.assert_called_once_with(queries.DROP_LOGIN.sql, 257)
        cursor.fetchall.assert_not_called()

    def test_link_failure_marks_session_broken(self):
        connection, cursor = mock_connection()
        cursor.execute.side_effect = pyodbc.Error("08S01", "[08S01] Communication link failure (10054)")
        session = SqlSession(connection, TARGET, Scope.SERVER)

        with pytest.raises(DatabaseConnectionError) as exc_info:
            session.execute(queries.DROP_LOGIN, 257)

        assert exc_info.value.broken_session
        assert session.broken

    def test_cancel_aborts_statement_in_flight(self):
        connection, cursor = mock_connection()
        token = CancelToken()

        def execute(*_args):
            token.cancel()
            raise pyodbc.Error("HY008", "[HY008] Operation canceled")

        cursor.execute.side_effect = execute
        session = SqlSession(connection, TARGET, Scope.SERVER)

        with pytest.raises(OperationCancelledError):
            with session.borrow(token):
                session.execute(queries.KILL_LOGIN_SESSIONS, 257)

        cursor.cancel.assert_called_once()
        assert not session.broken

    def test_borrow_released_after_cancel(self):
        connection, _ = mock_connection()
        session = SqlSession(connection, TARGET, Scope.SERVER)
        token = CancelToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            with session.borrow(token):
                pass

        with session.borrow():
            pass

    def test_closed_session_rejects_statements(self):
        connection, _ = mock_connection()
        session = SqlSession(connection, TARGET, Scope.SERVER)
        session.close()
        session.close()

        connection.close.assert_called_once()
        with pytest.raises(OperationCancelledError):
            session.execute(queries.DROP_LOGIN, 1)


class TestOpenSession:
    """Single connection attempts through pyodbc.connect."""

    def test_sql_login_connect(self):
        connection, _ = mock_connection()
        with patch("pyodbc.connect", return_value=connection) as connect:
            session = open_session(
                TARGET, Scope.SERVER, UsernamePassword(username="sa", password="p"),
                driver=DRIVER, timeout=20,
            )

        args, kwargs = connect.call_args
        assert "UID=sa" in args[0]
        assert kwargs == {"autocommit": True, "timeout": 20}
        assert session.scope == Scope.SERVER

    def test_token_passed_as_pre_connect_attribute(self):
        connection, _ = mock_connection()
        token_source = MagicMock()
        token_source.attrs_before.return_value = {SQL_COPT_SS_ACCESS_TOKEN: b"token"}
        with patch("pyodbc.connect", return_value=connection) as connect:
            open_session(TARGET, Scope.SERVER, DefaultChainAuth(), driver=DRIVER, token_source=token_source)

        assert connect.call_args.kwargs["attrs_before"] == {SQL_COPT_SS_ACCESS_TOKEN: b"token"}

    def test_login_failure(self):
        error = pyodbc.Error("28000", "[28000] Login failed for user 'sa'. (18456)")
        with patch("pyodbc.connect", side_effect=error):
            with pytest.raises(AuthenticationError):
                open_session(TARGET, Scope.SERVER, UsernamePassword(username="sa", password="p"), driver=DRIVER)
