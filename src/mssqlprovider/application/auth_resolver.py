"""
Auth Resolver.

Turns the login blocks of a provider configuration into exactly one
Credential Descriptor. Pure validation: no I/O, no side effects, and every
failure is a ConfigError raised before any connection is attempted.
"""

from __future__ import annotations

from typing import Callable, Optional

from pydantic import BaseModel, SecretStr

from mssqlprovider.domain.config import (
    AuthMethod,
    AzureLoginBlock,
    CredentialDescriptor,
    DefaultChainAuth,
    LoginBlock,
    ManagedIdentityAuth,
    ManagedIdentityBlock,
    ProviderConfig,
    ServicePrincipal,
    UsernamePassword,
)
from mssqlprovider.domain.errors import (
    AmbiguousAuthMethodError,
    IncompleteAuthConfigError,
    NoAuthMethodError,
)

METHODS = tuple(method.value for method in AuthMethod)


def _require(method: AuthMethod, block: BaseModel, field: str) -> str:
    value = getattr(block, field)
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    if value is None or value == "":
        raise IncompleteAuthConfigError(method.value, field)
    return value


def _username_password(block: LoginBlock) -> UsernamePassword:
    return UsernamePassword(
        username=_require(AuthMethod.LOGIN, block, "username"),
        password=_require(AuthMethod.LOGIN, block, "password"),
    )


def _service_principal(block: AzureLoginBlock) -> ServicePrincipal:
    return ServicePrincipal(
        tenant_id=_require(AuthMethod.AZURE_LOGIN, block, "tenant_id"),
        client_id=_require(AuthMethod.AZURE_LOGIN, block, "client_id"),
        client_secret=_require(AuthMethod.AZURE_LOGIN, block, "client_secret"),
    )


def _default_chain(_block: BaseModel) -> DefaultChainAuth:
    return DefaultChainAuth()


def _managed_identity(block: ManagedIdentityBlock) -> ManagedIdentityAuth:
    return ManagedIdentityAuth(user_id=block.user_id or None)


_PARSERS: dict[AuthMethod, Callable[..., CredentialDescriptor]] = {
    AuthMethod.LOGIN: _username_password,
    AuthMethod.AZURE_LOGIN: _service_principal,
    AuthMethod.AZUREAD_DEFAULT_CHAIN_AUTH: _default_chain,
    AuthMethod.AZUREAD_MANAGED_IDENTITY_AUTH: _managed_identity,
}


def populated_methods(config: ProviderConfig) -> list[AuthMethod]:
    """Login blocks present in the configuration, in declaration order."""
    return [method for method in AuthMethod if getattr(config, method.value) is not None]


def resolve(config: ProviderConfig) -> CredentialDescriptor:
    """
    Select the single configured login method.

    Args:
        config: Validated provider configuration

    Returns:
        Immutable Credential Descriptor matching the populated block

    Raises:
        NoAuthMethodError: No login block is populated
        AmbiguousAuthMethodError: More than one login block is populated
        IncompleteAuthConfigError: The populated block misses a required field
    """
    populated = populated_methods(config)
    if not populated:
        raise NoAuthMethodError(METHODS)
    if len(populated) > 1:
        raise AmbiguousAuthMethodError([method.value for method in populated])

    method = populated[0]
    return _PARSERS[method](getattr(config, method.value))


def method_of(descriptor: CredentialDescriptor) -> Optional[AuthMethod]:
    """Login block a descriptor was resolved from."""
    mapping = {
        UsernamePassword: AuthMethod.LOGIN,
        ServicePrincipal: AuthMethod.AZURE_LOGIN,
        DefaultChainAuth: AuthMethod.AZUREAD_DEFAULT_CHAIN_AUTH,
        ManagedIdentityAuth: AuthMethod.AZUREAD_MANAGED_IDENTITY_AUTH,
    }
    return mapping.get(type(descriptor))
