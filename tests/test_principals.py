"""
Tests for the principal models and attribute diffing.
"""

import pytest
from pydantic import SecretStr, ValidationError

from mssqlprovider.domain.principal_diff import diff_login, diff_user
from mssqlprovider.domain.principals import (
    Diagnostic,
    Login,
    PrincipalId,
    PrincipalKind,
    Severity,
    User,
    UserAuthType,
)


class TestPrincipalId:
    """String form kept in the engine's state."""

    def test_login_round_trip(self):
        principal_id = PrincipalId.login(267)

        assert str(principal_id) == "login/267"
        assert PrincipalId.parse("login/267") == principal_id

    def test_user_round_trip(self):
        principal_id = PrincipalId.user("appdb", 5)

        assert str(principal_id) == "user/appdb/5"
        assert PrincipalId.parse("user/appdb/5") == principal_id

    def test_database_name_with_slash(self):
        principal_id = PrincipalId.parse("user/sales/eu/7")

        assert principal_id.database == "sales/eu"
        assert principal_id.principal_id == 7

    @pytest.mark.parametrize("value", ["", "login/", "login/abc", "user/5", "group/1", "user//3"])
    def test_malformed(self, value):
        with pytest.raises(ValueError):
            PrincipalId.parse(value)

    def test_login_cannot_carry_database(self):
        with pytest.raises(ValidationError):
            PrincipalId(kind=PrincipalKind.LOGIN, principal_id=1, database="appdb")


class TestModels:
    """Validation of declared attributes."""

    def test_login_defaults(self):
        login = Login(login_name="  app_login ", password="x")

        assert login.login_name == "app_login"
        assert login.default_database == "master"
        assert login.get_password() == "x"
        assert "x" not in repr(login)

    def test_empty_login_name(self):
        with pytest.raises(ValidationError):
            Login(login_name="   ")

    @pytest.mark.parametrize("attrs, expected", [
        ({"login_name": "l"}, UserAuthType.INSTANCE),
        ({"password": "p"}, UserAuthType.DATABASE),
        ({"object_id": "00000000-0000-0000-0000-000000000001"}, UserAuthType.EXTERNAL),
        ({}, UserAuthType.EXTERNAL),
    ])
    def test_auth_type_from_attributes(self, attrs, expected):
        assert User(username="u", **attrs).auth_type == expected

    def test_observed_auth_type_wins(self):
        user = User(username="u", authentication_type="database")

        assert user.auth_type == UserAuthType.DATABASE

    def test_only_one_auth_attribute(self):
        with pytest.raises(ValidationError) as exc_info:
            User(username="u", login_name="l", password="p")

        assert "login_name, password" in str(exc_info.value)

    def test_roles_are_a_set(self):
        user = User(username="u", roles=["db_datawriter", "DB_DataReader", "db_datareader "])

        assert user.roles == ["DB_DataReader", "db_datawriter"]

    def test_names_longer_than_sysname(self):
        long_name = "n" * 129

        with pytest.raises(ValidationError):
            Login(login_name=long_name)
        with pytest.raises(ValidationError):
            User(username=long_name)
        with pytest.raises(ValidationError):
            User(username="u", database=long_name)
        with pytest.raises(ValidationError):
            User(username="u", login_name=long_name)
        assert Login(login_name="n" * 128).login_name == "n" * 128

    def test_unknown_attributes_ignored(self):
        assert User(username="u", id="user/master/5").username == "u"

    def test_diagnostic_tuple(self):
        assert Diagnostic.warning("Gone").as_tuple() == ("warning", "Gone", "")
        assert Diagnostic.error("Bad", "why").severity == Severity.ERROR


class TestDiffLogin:
    """Minimal login diffs."""

    def test_equal(self):
        observed = Login(login_name="app", default_database="AppDB", default_language="us_english")

        assert diff_login(Login(login_name="app", default_database="appdb"), observed).is_empty()

    def test_unknown_password_counts_as_change(self):
        diff = diff_login(Login(login_name="app", password="x"), Login(login_name="app"))

        assert diff.changed_fields() == {"password"}

    def test_known_password_compared(self):
        observed = Login(login_name="app", password=SecretStr("x"))

        assert diff_login(Login(login_name="app", password="x"), observed).is_empty()

    def test_language_managed_when_declared(self):
        observed = Login(login_name="app", default_language="us_english")

        diff = diff_login(Login(login_name="app", default_language="Deutsch"), observed)

        assert diff.get("default_language").new == "Deutsch"

    def test_rename_is_case_sensitive(self):
        diff = diff_login(Login(login_name="App"), Login(login_name="app"))

        assert diff.changed_fields() == {"login_name"}


class TestDiffUser:
    """Minimal user diffs."""

    def test_roles(self):
        observed = User(username="u", password=SecretStr("p"), roles=["db_datareader", "db_owner"])
        desired = User(username="u", password="p", roles=["DB_DATAREADER", "db_datawriter"])

        diff = diff_user(desired, observed)

        assert diff.roles_to_add == ["db_datawriter"]
        assert diff.roles_to_remove == ["db_owner"]
        assert diff.changed_fields() == {"roles"}

    def test_auth_type_change(self):
        observed = User(username="u", login_name="l", authentication_type="INSTANCE")

        diff = diff_user(User(username="u", password="p"), observed)

        assert "authentication_type" in diff.changed_fields()

    def test_login_remap(self):
        observed = User(username="u", login_name="a", authentication_type="INSTANCE")

        diff = diff_user(User(username="u", login_name="b"), observed)

        assert diff.touching({"login_name", "object_id", "database"}) == ["login_name"]

    def test_unreported_object_id_not_diffed(self):
        observed = User(username="u", authentication_type="EXTERNAL")

        diff = diff_user(User(username="u", object_id="00000000-0000-0000-0000-000000000001"), observed)

        assert diff.is_empty()
