"""
Reconciler for server logins (SQL authentication).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from mssqlprovider.domain.config import Scope
from mssqlprovider.domain.errors import (
    AlreadyExistsError,
    InvalidConfigError,
    PrincipalNotFoundError,
    SqlCommandError,
)
from mssqlprovider.domain.principal_diff import diff_login
from mssqlprovider.domain.principals import Diagnostic, Login, PrincipalId, PrincipalKind
from mssqlprovider.infrastructure.sql import queries
from mssqlprovider.infrastructure.sql.connector import SqlSession
from mssqlprovider.infrastructure.sql.retry import CancelToken

from .base import PrincipalReconciler

# Changed field -> command applying it (by principal_id)
_ALTER_COMMANDS = {
    "password": queries.ALTER_LOGIN_PASSWORD,
    "default_database": queries.ALTER_LOGIN_DEFAULT_DATABASE,
    "default_language": queries.ALTER_LOGIN_DEFAULT_LANGUAGE,
}


def login_from_row(row: Dict[str, Any]) -> Login:
    """Map a sys.server_principals row to observed login state."""
    return Login(
        login_name=row["name"],
        default_database=row.get("default_database_name") or "",
        default_language=row.get("default_language_name") or "",
        principal_id=row["principal_id"],
        sid=row.get("sid"),
    )


class LoginReconciler(PrincipalReconciler[Login]):
    """
    Handles server logins.

    Logins are addressed by ``sys.server_principals.principal_id``; the name
    can only change in place when the provider is configured with
    ``supports_rename``.
    """

    kind = PrincipalKind.LOGIN
    scope = Scope.SERVER
    rename_field = "login_name"

    def create(self, desired: Login, cancel: Optional[CancelToken] = None) -> tuple[PrincipalId, list[Diagnostic]]:
        """
        Raises:
            AlreadyExistsError: A login with this name already exists
            InvalidConfigError: No password was declared
        """
        log = self.logger("create")
        password = desired.get_password()
        if not password:
            raise InvalidConfigError(f"password is required to create login [{desired.login_name}]")

        issued = False

        def op(session: SqlSession) -> PrincipalId:
            nonlocal issued
            row = session.query_one(queries.LOGIN_BY_NAME, desired.login_name)
            if row is not None:
                if not issued:
                    raise AlreadyExistsError(self.kind.value, desired.login_name)
                # CREATE LOGIN went through before the previous session broke
                log.info("Resuming creation of login [%s]", desired.login_name)
                return PrincipalId.login(row["principal_id"])
            issued = True
            session.execute(
                queries.CREATE_LOGIN,
                desired.login_name,
                password,
                desired.default_database,
                desired.default_language,
            )
            row = session.query_one(queries.LOGIN_BY_NAME, desired.login_name)
            if row is None:
                raise SqlCommandError(f"login [{desired.login_name}] not found after creation")
            return PrincipalId.login(row["principal_id"])

        principal_id = self.with_session(op, log, cancel=cancel)
        log.info("Created login [%s] (%s)", desired.login_name, principal_id)
        return principal_id, []

    def read(self, principal_id: PrincipalId, cancel: Optional[CancelToken] = None) -> Optional[Login]:
        log = self.logger("read")
        row = self.with_session(
            lambda session: session.query_one(queries.LOGIN_BY_ID, principal_id.principal_id),
            log,
            cancel=cancel,
        )
        if row is None:
            log.info("Login %s no longer exists", principal_id)
            return None
        return login_from_row(row)

    def update(
        self,
        principal_id: PrincipalId,
        desired: Login,
        observed: Login,
        cancel: Optional[CancelToken] = None,
    ) -> list[Diagnostic]:
        """
        Raises:
            ImmutableFieldError: Name change without rename support
            PrincipalNotFoundError: The login disappeared
        """
        log = self.logger("update")
        diff = diff_login(desired, observed)
        if diff.is_empty():
            log.debug("Login %s is up to date", principal_id)
            return []
        self.check_immutable(diff)

        def op(session: SqlSession) -> None:
            if session.query_one(queries.LOGIN_BY_ID, principal_id.principal_id) is None:
                raise PrincipalNotFoundError(f"login {principal_id} does not exist")
            for change in diff.changes:
                if change.field in _ALTER_COMMANDS:
                    value = desired.get_password() if change.field == "password" else change.new
                    session.execute(_ALTER_COMMANDS[change.field], principal_id.principal_id, value)
            rename = diff.get("login_name")
            if rename is not None:
                session.execute(queries.RENAME_LOGIN, principal_id.principal_id, rename.new)

        self.with_session(op, log, cancel=cancel)
        log.info("Updated login %s: %s", principal_id, ", ".join(sorted(diff.changed_fields())))
        return []

    def delete(self, principal_id: PrincipalId, cancel: Optional[CancelToken] = None) -> list[Diagnostic]:
        log = self.logger("delete")

        def op(session: SqlSession) -> bool:
            if session.query_one(queries.LOGIN_BY_ID, principal_id.principal_id) is None:
                return False
            session.execute(queries.KILL_LOGIN_SESSIONS, principal_id.principal_id)
            session.execute(queries.DROP_LOGIN, principal_id.principal_id)
            return True

        if not self.with_session(op, log, cancel=cancel):
            log.info("Login %s already absent", principal_id)
            return [Diagnostic.warning("Login already absent", f"login {principal_id} was not found; nothing to drop")]
        log.info("Dropped login %s", principal_id)
        return []

    def import_(self, name: str, database: Optional[str] = None,
                cancel: Optional[CancelToken] = None) -> tuple[PrincipalId, Login]:
        """
        Raises:
            PrincipalNotFoundError: No login with this name
        """
        log = self.logger("import")
        row = self.with_session(
            lambda session: session.query_one(queries.LOGIN_BY_NAME, name), log, cancel=cancel
        )
        if row is None:
            raise PrincipalNotFoundError(f"login [{name}] does not exist")
        login = login_from_row(row)
        log.info("Imported login [%s] (principal_id=%s)", name, login.principal_id)
        return PrincipalId.login(login.principal_id), login

    def exists(self, name: str, cancel: Optional[CancelToken] = None) -> bool:
        """True when a server login with this name exists."""
        row = self.with_session(
            lambda session: session.query_one(queries.LOGIN_BY_NAME, name),
            self.logger("exists"),
            cancel=cancel,
        )
        return row is not None
