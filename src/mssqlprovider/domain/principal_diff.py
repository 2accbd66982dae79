"""
Principal Diff.

Computes the minimal attribute diff between desired and observed state of a
principal. The reconcilers turn each change into exactly one command, so an
empty diff means no command is issued.

Comparison rules:
    - Names of databases, languages, logins and roles compare case-insensitively
    - Passwords cannot be read back; they are compared against the last known
      value from the engine's state and always count as changed when unknown
    - An empty desired ``default_language`` means "server default" and is
      not managed
    - Attributes the database could not report (observed None) are not diffed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import SecretStr

from mssqlprovider.domain.principals import Login, User


@dataclass(frozen=True)
class FieldChange:
    """One attribute that differs between desired and observed state."""

    field: str
    old: Any
    new: Any

    def __str__(self) -> str:
        return f"{self.field}: {self.old!r} -> {self.new!r}"


@dataclass
class PrincipalDiff:
    """Result of diffing one principal."""

    changes: list[FieldChange] = field(default_factory=list)
    roles_to_add: list[str] = field(default_factory=list)
    roles_to_remove: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.changes or self.roles_to_add or self.roles_to_remove)

    def changed_fields(self) -> set[str]:
        fields = {change.field for change in self.changes}
        if self.roles_to_add or self.roles_to_remove:
            fields.add("roles")
        return fields

    def get(self, name: str) -> Optional[FieldChange]:
        for change in self.changes:
            if change.field == name:
                return change
        return None

    def touching(self, fields: set[str]) -> list[str]:
        """Changed fields that belong to ``fields``, sorted."""
        return sorted(self.changed_fields() & fields)


def _same_text(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").lower() == (b or "").lower()


def _exact(a: Any, b: Any) -> bool:
    return a == b


def _secret(value: Optional[SecretStr]) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


def _compare(
    diff: PrincipalDiff,
    name: str,
    desired: Any,
    observed: Any,
    equal: Callable[[Any, Any], bool] = _same_text,
) -> None:
    if not equal(desired, observed):
        diff.changes.append(FieldChange(name, observed, desired))


def _compare_if_known(
    diff: PrincipalDiff,
    name: str,
    desired: Any,
    observed: Any,
) -> None:
    # Presence changes show up as an authentication_type change instead
    if desired is None or observed is None:
        return
    _compare(diff, name, desired, observed)


def _compare_password(diff: PrincipalDiff, desired: Optional[SecretStr], observed: Optional[SecretStr]) -> None:
    if desired is None:
        return
    if _secret(desired) != _secret(observed):
        diff.changes.append(FieldChange("password", "***" if observed else None, "***"))


def diff_login(desired: Login, observed: Login) -> PrincipalDiff:
    """Diff a declared login against its observed state."""
    diff = PrincipalDiff()
    _compare(diff, "login_name", desired.login_name, observed.login_name, _exact)
    _compare_password(diff, desired.password, observed.password)
    _compare(diff, "default_database", desired.default_database, observed.default_database)
    if desired.default_language:
        _compare(diff, "default_language", desired.default_language, observed.default_language)
    return diff


def diff_user(desired: User, observed: User) -> PrincipalDiff:
    """Diff a declared user against its observed state."""
    diff = PrincipalDiff()
    _compare(diff, "username", desired.username, observed.username, _exact)
    _compare(diff, "database", desired.database, observed.database)
    _compare_if_known(diff, "login_name", desired.login_name, observed.login_name)
    _compare_if_known(diff, "object_id", desired.object_id, observed.object_id)
    if desired.auth_type != observed.auth_type:
        diff.changes.append(
            FieldChange("authentication_type", observed.auth_type.value, desired.auth_type.value)
        )
    _compare_password(diff, desired.password, observed.password)
    _compare(diff, "default_schema", desired.default_schema, observed.default_schema)
    if desired.default_language:
        _compare(diff, "default_language", desired.default_language, observed.default_language)

    current = {role.lower(): role for role in observed.roles}
    wanted = {role.lower(): role for role in desired.roles}
    diff.roles_to_add = sorted(wanted[key] for key in wanted.keys() - current.keys())
    diff.roles_to_remove = sorted(current[key] for key in current.keys() - wanted.keys())
    return diff
