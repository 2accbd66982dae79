"""
Configuration domain package.

This package contains the domain layer for the provider configuration surface.
"""

from .models import (
    DEFAULT_PORT,
    AuthMethod,
    AzureLoginBlock,
    ConnectionTarget,
    CredentialDescriptor,
    DefaultChainAuth,
    DefaultChainBlock,
    LoginBlock,
    ManagedIdentityAuth,
    ManagedIdentityBlock,
    ProviderConfig,
    RetrySettings,
    Scope,
    ServicePrincipal,
    UsernamePassword,
    describe,
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
