"""
Reconciler for database users.

Users come in three flavours, chosen by the declared attributes:

- INSTANCE: mapped to a server login (``login_name``); the login must exist
  before the user can be created
- DATABASE: contained user with its own password
- EXTERNAL: Azure AD principal, by display name or pinned by ``object_id``

Role memberships are managed as part of the user.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from mssqlprovider.domain.config import Scope
from mssqlprovider.domain.errors import (
    AlreadyExistsError,
    DependencyError,
    PrincipalNotFoundError,
    SqlCommandError,
)
from mssqlprovider.domain.principal_diff import diff_user
from mssqlprovider.domain.principals import (
    DEFAULT_DATABASE,
    Diagnostic,
    PrincipalId,
    PrincipalKind,
    User,
    UserAuthType,
)
from mssqlprovider.infrastructure.logging_config import ContextLogger
from mssqlprovider.infrastructure.sql import queries
from mssqlprovider.infrastructure.sql.connector import SqlSession
from mssqlprovider.infrastructure.sql.retry import CancelToken

from .base import PrincipalReconciler

_ALTER_COMMANDS = {
    "password": queries.ALTER_USER_PASSWORD,
    "default_schema": queries.ALTER_USER_DEFAULT_SCHEMA,
    "default_language": queries.ALTER_USER_DEFAULT_LANGUAGE,
}


def object_id_from_sid(sid: Optional[str]) -> Optional[str]:
    """Azure AD object id encoded in an external user's SID (``0x`` hex)."""
    if not sid:
        return None
    digits = sid[2:] if sid.lower().startswith("0x") else sid
    if len(digits) < 32:
        return None
    return str(uuid.UUID(bytes_le=bytes.fromhex(digits[:32])))


def user_from_row(row: Dict[str, Any], roles: List[str]) -> User:
    """Map a sys.database_principals row (plus role names) to observed user state."""
    auth = (row.get("authentication_type_desc") or "").upper()
    return User(
        username=row["name"],
        database=row["database_name"],
        login_name=row.get("login_name") if auth == UserAuthType.INSTANCE.value else None,
        object_id=object_id_from_sid(row.get("sid")) if auth == UserAuthType.EXTERNAL.value else None,
        default_schema=row.get("default_schema_name") or "",
        default_language=row.get("default_language_name") or "",
        roles=roles,
        principal_id=row["principal_id"],
        sid=row.get("sid"),
        authentication_type=auth or None,
    )


class UserReconciler(PrincipalReconciler[User]):
    """
    Handles database users.

    Users are addressed by database name plus
    ``sys.database_principals.principal_id``.
    """

    kind = PrincipalKind.USER
    scope = Scope.DATABASE
    immutable_fields = frozenset({"database", "login_name", "object_id", "authentication_type"})
    rename_field = "username"

    def create(self, desired: User, cancel: Optional[CancelToken] = None) -> tuple[PrincipalId, list[Diagnostic]]:
        """
        Raises:
            DependencyError: The mapped login or a declared role does not exist
            AlreadyExistsError: A user with this name already exists in the database
        """
        log = self.logger("create").bind(database=desired.database)

        if desired.auth_type == UserAuthType.INSTANCE:
            login = self.with_session(
                lambda session: session.query_one(queries.LOGIN_BY_NAME, desired.login_name),
                log,
                cancel=cancel,
                scope=Scope.SERVER,
            )
            if login is None:
                raise DependencyError(
                    f"login [{desired.login_name}] does not exist; "
                    f"it must be created before user [{desired.username}]"
                )

        issued = False

        def op(session: SqlSession) -> PrincipalId:
            nonlocal issued
            row = session.query_one(queries.USER_BY_NAME, desired.username)
            present: set[str] = set()
            if row is not None:
                if not issued:
                    raise AlreadyExistsError(self.kind.value, f"{desired.database}.{desired.username}")
                # CREATE USER went through before the previous session broke
                log.info("Resuming creation of user [%s]", desired.username)
                present = {
                    r["name"].lower() for r in session.query_all(queries.USER_ROLES, row["principal_id"])
                }
            else:
                self._check_roles(session, desired.roles, desired.database)
                issued = True
                self._create(session, desired)
                row = session.query_one(queries.USER_BY_NAME, desired.username)
                if row is None:
                    raise SqlCommandError(f"user [{desired.username}] not found after creation")
            for role in desired.roles:
                if role.lower() not in present:
                    session.execute(queries.ADD_ROLE_MEMBER, row["principal_id"], role)
            return PrincipalId.user(desired.database, row["principal_id"])

        principal_id = self.with_session(op, log, database=desired.database, cancel=cancel)
        log.info("Created %s user [%s] (%s)", desired.auth_type.value, desired.username, principal_id)
        return principal_id, []

    def _create(self, session: SqlSession, desired: User) -> None:
        auth = desired.auth_type
        if auth == UserAuthType.INSTANCE:
            session.execute(
                queries.CREATE_USER_FOR_LOGIN,
                desired.username, desired.login_name, desired.default_schema, desired.default_language,
            )
        elif auth == UserAuthType.DATABASE:
            session.execute(
                queries.CREATE_USER_WITH_PASSWORD,
                desired.username, desired.get_password(), desired.default_schema, desired.default_language,
            )
        elif desired.object_id:
            session.execute(
                queries.CREATE_USER_WITH_OBJECT_ID,
                desired.username, desired.object_id, desired.default_schema, desired.default_language,
            )
        else:
            session.execute(
                queries.CREATE_USER_FROM_EXTERNAL_PROVIDER,
                desired.username, desired.default_schema, desired.default_language,
            )

    def _check_roles(self, session: SqlSession, roles: List[str], database: str) -> None:
        missing = [role for role in roles if session.query_one(queries.ROLE_BY_NAME, role) is None]
        if missing:
            raise DependencyError(f"role(s) {', '.join(missing)} do not exist in database [{database}]")

    def _read(self, session: SqlSession, principal_id: PrincipalId) -> Optional[User]:
        row = session.query_one(queries.USER_BY_ID, principal_id.principal_id)
        if row is None:
            return None
        roles = [r["name"] for r in session.query_all(queries.USER_ROLES, principal_id.principal_id)]
        return user_from_row(row, roles)

    def read(self, principal_id: PrincipalId, cancel: Optional[CancelToken] = None) -> Optional[User]:
        log = self.logger("read").bind(database=principal_id.database)
        user = self.with_session(
            lambda session: self._read(session, principal_id),
            log,
            database=principal_id.database,
            cancel=cancel,
        )
        if user is None:
            log.info("User %s no longer exists", principal_id)
        return user

    def update(
        self,
        principal_id: PrincipalId,
        desired: User,
        observed: User,
        cancel: Optional[CancelToken] = None,
    ) -> list[Diagnostic]:
        """
        Raises:
            ImmutableFieldError: Database, login mapping, object id or authentication type changed
            DependencyError: A newly declared role does not exist
            PrincipalNotFoundError: The user disappeared
        """
        log: ContextLogger = self.logger("update").bind(database=principal_id.database)
        diff = diff_user(desired, observed)
        if diff.is_empty():
            log.debug("User %s is up to date", principal_id)
            return []
        self.check_immutable(diff)
        pid = principal_id.principal_id

        def op(session: SqlSession) -> None:
            if session.query_one(queries.USER_BY_ID, pid) is None:
                raise PrincipalNotFoundError(f"user {principal_id} does not exist")
            self._check_roles(session, diff.roles_to_add, principal_id.database)
            for change in diff.changes:
                if change.field in _ALTER_COMMANDS:
                    value = desired.get_password() if change.field == "password" else change.new
                    session.execute(_ALTER_COMMANDS[change.field], pid, value)
            for role in diff.roles_to_remove:
                session.execute(queries.DROP_ROLE_MEMBER, pid, role)
            for role in diff.roles_to_add:
                session.execute(queries.ADD_ROLE_MEMBER, pid, role)
            rename = diff.get("username")
            if rename is not None:
                session.execute(queries.RENAME_USER, pid, rename.new)

        self.with_session(op, log, database=principal_id.database, cancel=cancel)
        log.info("Updated user %s: %s", principal_id, ", ".join(sorted(diff.changed_fields())))
        return []

    def delete(self, principal_id: PrincipalId, cancel: Optional[CancelToken] = None) -> list[Diagnostic]:
        log = self.logger("delete").bind(database=principal_id.database)

        def op(session: SqlSession) -> bool:
            if session.query_one(queries.USER_BY_ID, principal_id.principal_id) is None:
                return False
            session.execute(queries.DROP_USER, principal_id.principal_id)
            return True

        if not self.with_session(op, log, database=principal_id.database, cancel=cancel):
            log.info("User %s already absent", principal_id)
            return [Diagnostic.warning("User already absent", f"user {principal_id} was not found; nothing to drop")]
        log.info("Dropped user %s", principal_id)
        return []

    def import_(self, name: str, database: Optional[str] = None,
                cancel: Optional[CancelToken] = None) -> tuple[PrincipalId, User]:
        """
        Raises:
            PrincipalNotFoundError: No user with this name in the database
        """
        database = database or DEFAULT_DATABASE
        log = self.logger("import").bind(database=database)

        def op(session: SqlSession) -> Optional[User]:
            row = session.query_one(queries.USER_BY_NAME, name)
            if row is None:
                return None
            return self._read(session, PrincipalId.user(database, row["principal_id"]))

        user = self.with_session(op, log, database=database, cancel=cancel)
        if user is None:
            raise PrincipalNotFoundError(f"user [{name}] does not exist in database [{database}]")
        log.info("Imported user [%s] (principal_id=%s)", name, user.principal_id)
        return PrincipalId.user(database, user.principal_id), user
