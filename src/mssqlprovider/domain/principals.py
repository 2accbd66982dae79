"""
Managed principal domain models.

Defines the declared/live attribute sets of the two principal kinds the
provider manages (server logins and database users), the durable id handed
back to the orchestration engine, and the diagnostics returned with every
operation.

Architecture Note:
    Pure domain module - no I/O. The same model carries desired state
    (from the engine) and observed state (from the database); fields that
    cannot be read back, such as passwords, are None in observed state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

DEFAULT_DATABASE = "master"
DEFAULT_SCHEMA = "dbo"

# SQL Server identifiers are sysname: nvarchar(128)
SYSNAME_MAX_LENGTH = 128


def _sysname(value: str) -> str:
    """Reject names SQL Server would silently truncate."""
    if len(value) > SYSNAME_MAX_LENGTH:
        raise ValueError(f"Name exceeds {SYSNAME_MAX_LENGTH} characters: '{value[:32]}...'")
    return value


class PrincipalKind(str, Enum):
    """Kinds of managed principals."""

    LOGIN = "login"
    USER = "user"


class UserAuthType(str, Enum):
    """How a database user authenticates (``authentication_type_desc``)."""

    INSTANCE = "INSTANCE"  # mapped to a server login
    DATABASE = "DATABASE"  # contained user with password
    EXTERNAL = "EXTERNAL"  # Azure AD principal


class Severity(str, Enum):
    """Diagnostic severity."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """One entry of the diagnostics list returned to the orchestration engine."""

    severity: Severity
    summary: str
    detail: str = ""

    @classmethod
    def error(cls, summary: str, detail: str = "") -> Diagnostic:
        return cls(Severity.ERROR, summary, detail)

    @classmethod
    def warning(cls, summary: str, detail: str = "") -> Diagnostic:
        return cls(Severity.WARNING, summary, detail)

    def as_tuple(self) -> tuple[str, str, str]:
        return (self.severity.value, self.summary, self.detail)


class PrincipalId(BaseModel):
    """
    Durable identity of a managed principal.

    ``principal_id`` is assigned by the engine (``sys.server_principals`` /
    ``sys.database_principals``) and survives renames.
    """

    model_config = ConfigDict(frozen=True)

    kind: PrincipalKind
    principal_id: int
    database: Optional[str] = None

    @model_validator(mode="after")
    def check_database(self) -> PrincipalId:
        """Users live in a database, logins do not."""
        if self.kind == PrincipalKind.USER and not self.database:
            raise ValueError("User ids require a database")
        if self.kind == PrincipalKind.LOGIN and self.database:
            raise ValueError("Login ids cannot carry a database")
        return self

    @classmethod
    def login(cls, principal_id: int) -> PrincipalId:
        return cls(kind=PrincipalKind.LOGIN, principal_id=principal_id)

    @classmethod
    def user(cls, database: str, principal_id: int) -> PrincipalId:
        return cls(kind=PrincipalKind.USER, database=database, principal_id=principal_id)

    @classmethod
    def parse(cls, value: str) -> PrincipalId:
        """
        Parse the string form kept in the engine's state.

        Formats: ``login/<principal_id>`` and ``user/<database>/<principal_id>``.
        """
        kind, _, rest = value.partition("/")
        try:
            if kind == PrincipalKind.LOGIN.value:
                return cls.login(int(rest))
            if kind == PrincipalKind.USER.value:
                database, _, principal_id = rest.rpartition("/")
                return cls.user(database, int(principal_id))
        except ValueError as e:
            raise ValueError(f"Malformed principal id '{value}'") from e
        raise ValueError(f"Malformed principal id '{value}'")

    def __str__(self) -> str:
        if self.kind == PrincipalKind.LOGIN:
            return f"login/{self.principal_id}"
        return f"user/{self.database}/{self.principal_id}"


class Login(BaseModel):
    """Server login (SQL authentication)."""

    model_config = ConfigDict(extra="ignore")

    login_name: str = Field(..., description="Name of the login")
    password: Optional[SecretStr] = Field(None, description="Login password (write-only)")
    default_database: str = Field(DEFAULT_DATABASE, description="Default database of the login")
    default_language: str = Field("", description="Default language (empty: server default)")

    # Read-only, assigned by the server
    principal_id: Optional[int] = None
    sid: Optional[str] = None

    @field_validator("login_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate login name is not empty."""
        if not v or not v.strip():
            raise ValueError("Login name cannot be empty")
        return _sysname(v.strip())

    def get_password(self) -> Optional[str]:
        """Get the plain text password."""
        return self.password.get_secret_value() if self.password else None  # pylint: disable=no-member


class User(BaseModel):
    """
    Database user.

    The authentication type follows from which of ``login_name``,
    ``password`` or ``object_id`` is set; none of them means an external
    principal resolved by name.
    """

    model_config = ConfigDict(extra="ignore")

    username: str = Field(..., description="Name of the database user")
    database: str = Field(DEFAULT_DATABASE, description="Database the user lives in")
    login_name: Optional[str] = Field(None, description="Server login the user maps to")
    password: Optional[SecretStr] = Field(None, description="Password of a contained user")
    object_id: Optional[str] = Field(None, description="Azure AD object id of an external user")
    default_schema: str = Field(DEFAULT_SCHEMA, description="Default schema of the user")
    default_language: str = Field("", description="Default language (contained databases)")
    roles: List[str] = Field(default_factory=list, description="Database roles the user belongs to")

    # Read-only, assigned by the database
    principal_id: Optional[int] = None
    sid: Optional[str] = None
    authentication_type: Optional[str] = None

    @field_validator("username", "database")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate names are not empty."""
        if not v or not v.strip():
            raise ValueError("Name cannot be empty")
        return _sysname(v.strip())

    @field_validator("login_name")
    @classmethod
    def validate_login_name(cls, v: Optional[str]) -> Optional[str]:
        return _sysname(v) if v is not None else v

    @field_validator("roles")
    @classmethod
    def normalize_roles(cls, v: List[str]) -> List[str]:
        """Roles are a set; keep one spelling of each, sorted."""
        seen = {}
        for role in v:
            seen.setdefault(role.strip().lower(), role.strip())
        return sorted(seen.values(), key=str.lower)

    @model_validator(mode="after")
    def check_auth_attributes(self) -> User:
        """At most one of login_name, password and object_id may be set."""
        given = [
            name for name in ("login_name", "password", "object_id")
            if getattr(self, name) is not None
        ]
        if len(given) > 1:
            raise ValueError(f"Only one of {', '.join(given)} can be set for a user")
        return self

    @property
    def auth_type(self) -> UserAuthType:
        """Authentication type, observed or derived from the declared attributes."""
        observed = (self.authentication_type or "").upper()
        if observed in UserAuthType.__members__:
            return UserAuthType[observed]
        # WINDOWS / NONE users fall through to the declared attributes
        if self.login_name is not None:
            return UserAuthType.INSTANCE
        if self.password is not None:
            return UserAuthType.DATABASE
        return UserAuthType.EXTERNAL

    def get_password(self) -> Optional[str]:
        """Get the plain text password."""
        return self.password.get_secret_value() if self.password else None  # pylint: disable=no-member
