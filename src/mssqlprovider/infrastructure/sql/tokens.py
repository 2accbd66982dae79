"""
Azure AD access tokens for SQL Server connections.

The three Azure login methods all end up as an access token handed to the
ODBC driver before the connection is opened (``SQL_COPT_SS_ACCESS_TOKEN``).
Tokens come from azure-identity credentials and are cached per source until
shortly before they expire.
"""

from __future__ import annotations

import logging
import struct
import threading
import time
from typing import Callable, Optional

from azure.core.credentials import AccessToken, TokenCredential
from azure.core.exceptions import AzureError, ClientAuthenticationError
from azure.identity import (
    ClientSecretCredential,
    DefaultAzureCredential,
    ManagedIdentityCredential,
)

from mssqlprovider.domain.config import (
    CredentialDescriptor,
    DefaultChainAuth,
    ManagedIdentityAuth,
    ServicePrincipal,
)
from mssqlprovider.domain.errors import AuthenticationError, DatabaseConnectionError

logger = logging.getLogger(__name__)

# msodbcsql pre-connect attribute carrying the token
SQL_COPT_SS_ACCESS_TOKEN = 1256

DATABASE_SCOPE = "https://database.windows.net/.default"

# Refresh tokens this many seconds before they expire
REFRESH_MARGIN_SECONDS = 300


def encode_access_token(token: str) -> bytes:
    """Pack a token the way the ODBC driver expects (length-prefixed UTF-16-LE)."""
    raw = token.encode("utf-16-le")
    return struct.pack(f"<I{len(raw)}s", len(raw), raw)


def build_credential(descriptor: CredentialDescriptor) -> Optional[TokenCredential]:
    """
    azure-identity credential for a descriptor.

    Returns:
        TokenCredential, or None for SQL authentication
    """
    if isinstance(descriptor, ServicePrincipal):
        return ClientSecretCredential(
            tenant_id=descriptor.tenant_id,
            client_id=descriptor.client_id,
            client_secret=descriptor.get_client_secret(),
        )
    if isinstance(descriptor, DefaultChainAuth):
        return DefaultAzureCredential()
    if isinstance(descriptor, ManagedIdentityAuth):
        if descriptor.user_id:
            return ManagedIdentityCredential(client_id=descriptor.user_id)
        return ManagedIdentityCredential()
    return None


class TokenSource:
    """
    Cached access token from one credential.

    Thread-safe: concurrent callers share a single in-flight token request.
    """

    def __init__(
        self,
        credential: TokenCredential,
        scope: str = DATABASE_SCOPE,
        clock: Callable[[], float] = time.time,
        refresh_margin: float = REFRESH_MARGIN_SECONDS,
    ) -> None:
        self.credential = credential
        self.scope = scope
        self._clock = clock
        self._refresh_margin = refresh_margin
        self._lock = threading.Lock()
        self._token: Optional[AccessToken] = None

    def _needs_refresh(self) -> bool:
        if self._token is None:
            return True
        return self._token.expires_on - self._refresh_margin <= self._clock()

    def get_token(self) -> str:
        """
        Current token, fetching a new one when missing or about to expire.

        Raises:
            AuthenticationError: The identity platform rejected the credential
            DatabaseConnectionError: The identity endpoint could not be reached
        """
        with self._lock:
            if self._needs_refresh():
                self._token = self._fetch()
            return self._token.token

    def _fetch(self) -> AccessToken:
        try:
            token = self.credential.get_token(self.scope)
        except ClientAuthenticationError as e:
            raise AuthenticationError(f"token request rejected: {e.message}") from e
        except AzureError as e:
            raise DatabaseConnectionError(f"token endpoint unavailable: {e.message}") from e
        logger.debug("Acquired access token for %s (expires_on=%d)", self.scope, token.expires_on)
        return token

    def attrs_before(self) -> dict[int, bytes]:
        """pyodbc ``attrs_before`` carrying the current token."""
        return {SQL_COPT_SS_ACCESS_TOKEN: encode_access_token(self.get_token())}
