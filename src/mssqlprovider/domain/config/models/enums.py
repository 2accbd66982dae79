"""
Domain enums for the provider configuration.
"""

from enum import Enum


class AuthMethod(str, Enum):
    """Login blocks accepted in the provider configuration, in precedence order."""

    LOGIN = "login"
    AZURE_LOGIN = "azure_login"
    AZUREAD_DEFAULT_CHAIN_AUTH = "azuread_default_chain_auth"
    AZUREAD_MANAGED_IDENTITY_AUTH = "azuread_managed_identity_auth"


class Scope(str, Enum):
    """What a cached session is connected to."""

    SERVER = "server"  # master, used for logins
    DATABASE = "database"  # a named database, used for users
