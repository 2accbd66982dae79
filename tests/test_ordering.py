"""
Tests for dependency ordering of declared principals.
"""

import pytest

from mssqlprovider.application.ordering import creation_order, deletion_order, dependency_graph, key_of
from mssqlprovider.domain.errors import InvalidConfigError
from mssqlprovider.domain.principals import Login, User


def labels(principals):
    return [p.login_name if isinstance(p, Login) else p.username for p in principals]


class TestOrdering:
    """Logins before the users mapped to them, and the reverse for deletion."""

    def test_login_created_before_mapped_user(self):
        declared = [
            User(username="app_user", database="appdb", login_name="app_login"),
            Login(login_name="app_login", password="x"),
        ]

        assert labels(creation_order(declared)) == ["app_login", "app_user"]

    def test_user_deleted_before_login(self):
        declared = [
            Login(login_name="app_login", password="x"),
            User(username="app_user", database="appdb", login_name="app_login"),
        ]

        assert labels(deletion_order(declared)) == ["app_user", "app_login"]

    def test_login_reference_is_case_insensitive(self):
        declared = [
            User(username="app_user", database="appdb", login_name="APP_LOGIN"),
            Login(login_name="app_login", password="x"),
        ]

        assert labels(creation_order(declared)) == ["app_login", "app_user"]

    def test_independent_principals_keep_order(self):
        declared = [
            User(username="b", database="appdb", password="x"),
            Login(login_name="a", password="x"),
            User(username="c", database="appdb"),
        ]

        assert labels(creation_order(declared)) == ["b", "a", "c"]

    def test_undeclared_login_adds_no_edge(self):
        declared = [User(username="app_user", database="appdb", login_name="external_login")]

        assert dependency_graph(declared) == {key_of(declared[0]): set()}

    def test_duplicate_declaration(self):
        declared = [Login(login_name="a", password="x"), Login(login_name="A", password="y")]

        with pytest.raises(InvalidConfigError):
            creation_order(declared)

    def test_same_user_name_in_two_databases(self):
        declared = [
            User(username="svc", database="db1", password="x"),
            User(username="svc", database="db2", password="x"),
        ]

        assert len(creation_order(declared)) == 2
