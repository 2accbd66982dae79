"""
Connection Target domain model.

Hostnames are not case-sensitive identifiers, so equality and hashing use a
lower-cased host while the declared spelling is kept for display.
Database names keep their case: they are case-sensitive under a
case-sensitive collation.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PORT = "1433"


def normalize_port(v) -> str:
    """Accept int or str, default when blank, reject out of range values."""
    if v is None or (isinstance(v, str) and not v.strip()):
        return DEFAULT_PORT
    text = str(v).strip()
    if not text.isdigit() or not 1 <= int(text) <= 65535:
        raise ValueError("Port must be a number between 1 and 65535")
    return text


class ConnectionTarget(BaseModel):
    """A SQL Server endpoint, optionally narrowed to one database."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., description="FQDN or IP address of the SQL endpoint")
    port: str = Field(DEFAULT_PORT, description="TCP port of the SQL endpoint")
    database: Optional[str] = Field(None, description="Database to connect to (None for master)")

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Validate host is not empty."""
        if not v or not v.strip():
            raise ValueError("Host cannot be empty")
        return v.strip()

    @field_validator("port", mode="before")
    @classmethod
    def validate_port(cls, v) -> str:
        return normalize_port(v)

    def _key(self) -> tuple:
        return (self.host.lower(), self.port, self.database or "")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConnectionTarget):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def same_host(self, other: "ConnectionTarget") -> bool:
        """True when both targets point at the same endpoint."""
        return self.host.lower() == other.host.lower() and self.port == other.port

    def for_database(self, database: Optional[str]) -> "ConnectionTarget":
        """Copy of this target scoped to ``database``."""
        return self.model_copy(update={"database": database})

    @property
    def server(self) -> str:
        """ODBC ``SERVER`` value."""
        return f"tcp:{self.host},{self.port}"

    def __str__(self) -> str:
        base = f"{self.host}:{self.port}"
        return f"{base}/{self.database}" if self.database else base
