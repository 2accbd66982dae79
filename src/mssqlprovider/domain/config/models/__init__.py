"""
Configuration domain models package.

This package contains the domain models of the provider configuration
surface: the declared bundle, the connection target and the resolved
Credential Descriptor variants.
"""

from .connection_target import DEFAULT_PORT, ConnectionTarget
from .credential import (
    CredentialDescriptor,
    DefaultChainAuth,
    ManagedIdentityAuth,
    ServicePrincipal,
    UsernamePassword,
    describe,
)
from .enums import AuthMethod, Scope
from .provider_config import (
    AzureLoginBlock,
    DefaultChainBlock,
    LoginBlock,
    ManagedIdentityBlock,
    ProviderConfig,
    RetrySettings,
)

__all__ = [
    "AuthMethod",
    "AzureLoginBlock",
    "ConnectionTarget",
    "CredentialDescriptor",
    "DEFAULT_PORT",
    "DefaultChainAuth",
    "DefaultChainBlock",
    "LoginBlock",
    "ManagedIdentityAuth",
    "ManagedIdentityBlock",
    "ProviderConfig",
    "RetrySettings",
    "Scope",
    "ServicePrincipal",
    "UsernamePassword",
    "describe",
]
