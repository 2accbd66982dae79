"""
Credential Descriptor domain model.

A Credential Descriptor is the resolved, normalized form of exactly one
authentication method. Variants are discriminated on ``kind`` and frozen so
they can take part in the connector cache key.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class UsernamePassword(BaseModel):
    """SQL authentication with a login name and password."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["username_password"] = "username_password"
    username: str = Field(..., min_length=1, description="SQL login name")
    password: SecretStr = Field(..., description="SQL login password")

    def get_password(self) -> str:
        """Get the plain text password."""
        return self.password.get_secret_value()  # pylint: disable=no-member


class ServicePrincipal(BaseModel):
    """Azure AD application (client credentials flow)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["service_principal"] = "service_principal"
    tenant_id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    client_secret: SecretStr

    def get_client_secret(self) -> str:
        """Get the plain text client secret."""
        return self.client_secret.get_secret_value()  # pylint: disable=no-member


class DefaultChainAuth(BaseModel):
    """Defer to the ambient Azure credential chain."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["default_chain"] = "default_chain"


class ManagedIdentityAuth(BaseModel):
    """Azure managed identity, optionally a specific user-assigned one."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["managed_identity"] = "managed_identity"
    user_id: Optional[str] = Field(None, description="Client id of a user-assigned identity")


CredentialDescriptor = Annotated[
    Union[UsernamePassword, ServicePrincipal, DefaultChainAuth, ManagedIdentityAuth],
    Field(discriminator="kind"),
]


def describe(credential: CredentialDescriptor) -> str:
    """Short, secret-free label for logs and CLI output."""
    if isinstance(credential, UsernamePassword):
        return f"sql login '{credential.username}'"
    if isinstance(credential, ServicePrincipal):
        return f"service principal '{credential.client_id}' (tenant {credential.tenant_id})"
    if isinstance(credential, ManagedIdentityAuth):
        if credential.user_id:
            return f"managed identity '{credential.user_id}'"
        return "system-assigned managed identity"
    return "default azure credential chain"
