"""
Provider configuration domain model.

This module defines the configuration bundle the orchestration engine hands
to the provider once at initialization. Login blocks are kept loose here
(every field optional) so that the Auth Resolver can report exactly which
required field is missing; the bundle itself only checks shapes and types.
"""

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from mssqlprovider.domain.errors import InvalidConfigError

from .connection_target import DEFAULT_PORT, ConnectionTarget, normalize_port

# Environment variables that seed a field when the bundle leaves it unset.
TOP_LEVEL_ENV = {
    "host": "MSSQL_HOSTNAME",
    "port": "MSSQL_PORT",
}
BLOCK_ENV = {
    "login": {
        "username": "MSSQL_USERNAME",
        "password": "MSSQL_PASSWORD",
    },
    "azure_login": {
        "tenant_id": "MSSQL_TENANT_ID",
        "client_id": "MSSQL_CLIENT_ID",
        "client_secret": "MSSQL_CLIENT_SECRET",
    },
}


class LoginBlock(BaseModel):
    """``login`` block: SQL authentication."""

    model_config = ConfigDict(extra="forbid")

    username: Optional[str] = None
    password: Optional[SecretStr] = None


class AzureLoginBlock(BaseModel):
    """``azure_login`` block: Azure AD service principal."""

    model_config = ConfigDict(extra="forbid")

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[SecretStr] = None


class DefaultChainBlock(BaseModel):
    """``azuread_default_chain_auth`` block: no fields."""

    model_config = ConfigDict(extra="forbid")


class ManagedIdentityBlock(BaseModel):
    """``azuread_managed_identity_auth`` block."""

    model_config = ConfigDict(extra="forbid")

    user_id: Optional[str] = None


class RetrySettings(BaseModel):
    """Backoff policy for transient connection failures."""

    attempts: int = Field(3, ge=1, le=10, description="Total connection attempts")
    base_delay: float = Field(1.0, ge=0, description="Delay before the first retry (seconds)")
    max_delay: float = Field(10.0, ge=0, description="Upper bound for any single delay (seconds)")


class ProviderConfig(BaseModel):
    """
    Domain model for the provider configuration bundle.

    Contains the endpoint, exactly one login block (checked by the Auth
    Resolver) and the tuning knobs for timeouts, retries and driver options.
    """

    model_config = ConfigDict(extra="forbid")

    debug: bool = Field(False, description="Enable provider debug logging to file")
    host: str = Field(..., description="FQDN or IP address of the SQL endpoint")
    port: str = Field(DEFAULT_PORT, description="TCP port of the SQL endpoint")

    login: Optional[LoginBlock] = None
    azure_login: Optional[AzureLoginBlock] = None
    azuread_default_chain_auth: Optional[DefaultChainBlock] = None
    azuread_managed_identity_auth: Optional[ManagedIdentityBlock] = None

    timeout: float = Field(30.0, gt=0, description="Seconds allowed for each network call")
    retry: RetrySettings = Field(default_factory=RetrySettings)
    supports_rename: bool = Field(
        False,
        description="Rename principals in place instead of requiring replacement",
    )
    driver: Optional[str] = Field(None, description="ODBC driver name (detected when unset)")
    encrypt: bool = Field(True, description="Request an encrypted connection")
    trust_server_certificate: bool = Field(False, description="Skip server certificate validation")

    @field_validator(
        "login",
        "azure_login",
        "azuread_default_chain_auth",
        "azuread_managed_identity_auth",
        mode="before",
    )
    @classmethod
    def unwrap_block(cls, v: Any) -> Any:
        """Accept blocks encoded as a one-element list (set-typed blocks)."""
        return _single_block(v)

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        """Validate host is not empty."""
        if not v or not v.strip():
            raise ValueError("Host cannot be empty")
        return v.strip()

    @field_validator("port", mode="before")
    @classmethod
    def default_port(cls, v: Any) -> str:
        """Blank port falls back to the well-known SQL Server port."""
        return normalize_port(v)

    @property
    def target(self) -> ConnectionTarget:
        """Server-level connection target."""
        return ConnectionTarget(host=self.host, port=self.port)

    @classmethod
    def from_mapping(
        cls,
        bundle: Mapping[str, Any],
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ProviderConfig":
        """
        Build a validated configuration from a raw bundle.

        Args:
            bundle: Declared configuration
            environ: Environment to read defaults from (defaults to os.environ)

        Raises:
            InvalidConfigError: If the bundle fails validation
        """
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = dict(bundle)

        for field, var in TOP_LEVEL_ENV.items():
            if _is_unset(data.get(field)) and env.get(var):
                data[field] = env[var]

        # Environment variables only fill fields of blocks that were declared.
        for block_name, fields in BLOCK_ENV.items():
            try:
                block = _single_block(data.get(block_name))
            except ValueError as e:
                raise InvalidConfigError(f"{block_name}: {e}") from e
            if not isinstance(block, Mapping):
                continue
            block = dict(block)
            for field, var in fields.items():
                if _is_unset(block.get(field)) and env.get(var):
                    block[field] = env[var]
            data[block_name] = block

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise InvalidConfigError(f"{location}: {first['msg']}") from e


def _is_unset(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _single_block(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        if len(value) > 1:
            raise ValueError("At most one block may be specified")
        return value[0]
    return value
