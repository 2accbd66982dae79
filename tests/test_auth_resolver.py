"""
Tests for the Auth Resolver.

Selection of exactly one login method from the configuration blocks, and
the errors raised before any connection is attempted.
"""

import pytest
from pydantic import ValidationError

from mssqlprovider.application.auth_resolver import METHODS, method_of, populated_methods, resolve
from mssqlprovider.domain.config import (
    AuthMethod,
    DefaultChainAuth,
    ManagedIdentityAuth,
    ProviderConfig,
    ServicePrincipal,
    UsernamePassword,
)
from mssqlprovider.domain.errors import (
    AmbiguousAuthMethodError,
    ConfigError,
    IncompleteAuthConfigError,
    NoAuthMethodError,
)


def config(**blocks) -> ProviderConfig:
    return ProviderConfig.from_mapping({"host": "DB01", **blocks}, environ={})


class TestResolveSingleMethod:
    """Exactly one populated block yields the matching descriptor."""

    def test_login_block(self):
        """The DB01 example resolves to a UsernamePassword descriptor."""
        credential = resolve(config(login={"username": "svc", "password": "x"}))

        assert isinstance(credential, UsernamePassword)
        assert credential.username == "svc"
        assert credential.get_password() == "x"

    def test_azure_login_block(self):
        """Service principal fields are carried over."""
        credential = resolve(config(azure_login={
            "tenant_id": "t-1", "client_id": "c-1", "client_secret": "s-1",
        }))

        assert isinstance(credential, ServicePrincipal)
        assert (credential.tenant_id, credential.client_id) == ("t-1", "c-1")
        assert credential.get_client_secret() == "s-1"

    def test_default_chain_block(self):
        """The default chain block has no fields."""
        credential = resolve(config(azuread_default_chain_auth={}))

        assert isinstance(credential, DefaultChainAuth)

    def test_managed_identity_without_user_id(self):
        """System-assigned identity when no user id is given."""
        credential = resolve(config(azuread_managed_identity_auth={}))

        assert isinstance(credential, ManagedIdentityAuth)
        assert credential.user_id is None

    def test_managed_identity_with_user_id(self):
        credential = resolve(config(azuread_managed_identity_auth={"user_id": "mi-1"}))

        assert credential.user_id == "mi-1"

    def test_blank_user_id_means_system_assigned(self):
        credential = resolve(config(azuread_managed_identity_auth={"user_id": ""}))

        assert credential.user_id is None

    def test_single_element_list_block(self):
        """Blocks encoded as one-element lists are unwrapped."""
        credential = resolve(config(login=[{"username": "svc", "password": "x"}]))

        assert isinstance(credential, UsernamePassword)

    def test_descriptor_is_immutable(self):
        credential = resolve(config(login={"username": "svc", "password": "x"}))

        with pytest.raises(ValidationError):
            credential.username = "other"


class TestResolveErrors:
    """Zero, several or incomplete blocks are configuration errors."""

    def test_no_block(self):
        with pytest.raises(NoAuthMethodError) as exc_info:
            resolve(config())

        for method in METHODS:
            assert method in str(exc_info.value)

    def test_login_and_azure_login_is_ambiguous(self):
        with pytest.raises(AmbiguousAuthMethodError) as exc_info:
            resolve(config(
                login={"username": "svc", "password": "x"},
                azure_login={"tenant_id": "t", "client_id": "c", "client_secret": "s"},
            ))

        assert "login" in str(exc_info.value)
        assert "azure_login" in str(exc_info.value)

    def test_empty_blocks_still_count_as_populated(self):
        """Declaring two blocks is ambiguous even if one is empty."""
        with pytest.raises(AmbiguousAuthMethodError):
            resolve(config(azuread_default_chain_auth={}, azuread_managed_identity_auth={}))

    def test_missing_password(self):
        with pytest.raises(IncompleteAuthConfigError) as exc_info:
            resolve(config(login={"username": "svc"}))

        assert "password" in str(exc_info.value)

    def test_empty_username(self):
        with pytest.raises(IncompleteAuthConfigError) as exc_info:
            resolve(config(login={"username": "", "password": "x"}))

        assert "username" in str(exc_info.value)

    def test_missing_client_secret(self):
        with pytest.raises(IncompleteAuthConfigError):
            resolve(config(azure_login={"tenant_id": "t", "client_id": "c"}))

    def test_errors_are_config_errors(self):
        """Every resolution failure belongs to the ConfigError family."""
        for bad in ({}, {"login": {"username": "svc"}}):
            with pytest.raises(ConfigError):
                resolve(config(**bad))


class TestHelpers:
    """populated_methods and method_of."""

    def test_populated_methods_follow_method_order(self):
        cfg = config(
            azuread_managed_identity_auth={},
            login={"username": "svc", "password": "x"},
        )

        assert populated_methods(cfg) == [AuthMethod.LOGIN, AuthMethod.AZUREAD_MANAGED_IDENTITY_AUTH]

    def test_method_of_round_trip(self):
        credential = resolve(config(azuread_default_chain_auth={}))

        assert method_of(credential) == AuthMethod.AZUREAD_DEFAULT_CHAIN_AUTH
