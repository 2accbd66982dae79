"""
Provider - the configuration surface and owner of per-instance state.

A Provider is built once from the configuration bundle. It owns the resolved
Credential Descriptor, the base logger and the connector factory, and hands
them to the reconcilers explicitly; nothing here is a module-level singleton,
so several providers can coexist in one process.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping, Optional

from mssqlprovider.application.auth_resolver import resolve
from mssqlprovider.application.reconcilers.login import LoginReconciler
from mssqlprovider.application.reconcilers.user import UserReconciler
from mssqlprovider.domain.config import (
    ConnectionTarget,
    CredentialDescriptor,
    ProviderConfig,
    Scope,
    describe,
)
from mssqlprovider.infrastructure.logging_config import (
    PROVIDER_LOG_FILE,
    ContextLogger,
    close_logger,
    new_provider_logger,
    with_context,
)
from mssqlprovider.infrastructure.sql.connector import SqlSession
from mssqlprovider.infrastructure.sql.factory import ConnectorFactory
from mssqlprovider.infrastructure.sql.retry import CancelToken, RetryPolicy


class Provider:
    """
    One configured provider instance.

    Provides the reconcilers with sessions (``session``), broken-session
    eviction (``evict``) and context loggers (``resource_logger``).
    """

    def __init__(
        self,
        config: ProviderConfig,
        credential: CredentialDescriptor,
        factory: ConnectorFactory,
        logger: logging.Logger,
    ) -> None:
        self.config = config
        self.credential = credential
        self.factory = factory
        self.logger = logger
        self._logins: Optional[LoginReconciler] = None
        self._users: Optional[UserReconciler] = None

    @classmethod
    def configure(
        cls,
        bundle: Mapping[str, Any],
        environ: Optional[Mapping[str, str]] = None,
        *,
        log_file: Optional[str] = PROVIDER_LOG_FILE,
        factory_builder: Optional[Callable[..., ConnectorFactory]] = None,
    ) -> Provider:
        """
        Build a provider from the declared configuration bundle.

        Configuration errors surface here, before any network activity.

        Args:
            bundle: Declared configuration (see ProviderConfig)
            environ: Environment for MSSQL_* defaults (defaults to os.environ)
            log_file: Debug log destination
            factory_builder: Alternative ConnectorFactory constructor (tests)

        Raises:
            ConfigError: Invalid bundle or authentication blocks
        """
        config = ProviderConfig.from_mapping(bundle, environ)
        credential = resolve(config)
        logger = new_provider_logger(config.debug, log_file)

        builder = factory_builder or ConnectorFactory
        factory = builder(
            timeout=config.timeout,
            retry=RetryPolicy.from_settings(config.retry),
            driver=config.driver,
            encrypt=config.encrypt,
            trust_server_certificate=config.trust_server_certificate,
            log=with_context(logger, component="connector"),
        )

        logger.info("Created provider for %s using %s", config.target, describe(credential))
        return cls(config, credential, factory, logger)

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    def resource_logger(self, resource: str, func: str) -> ContextLogger:
        """Logger stamping the resource kind and operation on every line."""
        return with_context(self.logger, resource=resource, func=func)

    def datasource_logger(self, datasource: str, func: str) -> ContextLogger:
        return with_context(self.logger, datasource=datasource, func=func)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    @property
    def target(self) -> ConnectionTarget:
        return self.config.target

    def target_for(self, scope: Scope, database: Optional[str] = None) -> ConnectionTarget:
        if scope == Scope.SERVER:
            return self.target
        return self.target.for_database(database)

    def get_connector(
        self,
        scope: Scope,
        database: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> SqlSession:
        """Cached (or newly opened) session for the scope."""
        return self.factory.get_connector(
            scope, self.target_for(scope, database), self.credential, cancel
        )

    @contextmanager
    def session(
        self,
        scope: Scope,
        database: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Iterator[SqlSession]:
        """Borrow a session for one operation."""
        with self.factory.session(
            scope, self.target_for(scope, database), self.credential, cancel
        ) as session:
            yield session

    def evict(self, scope: Scope, database: Optional[str], session: SqlSession) -> bool:
        """Drop a broken session from the cache."""
        return self.factory.evict(
            scope, self.target_for(scope, database), self.credential, session
        )

    # -------------------------------------------------------------------------
    # Reconcilers
    # -------------------------------------------------------------------------

    @property
    def logins(self) -> LoginReconciler:
        """Reconciler for server logins."""
        if self._logins is None:
            self._logins = LoginReconciler(self)
        return self._logins

    @property
    def users(self) -> UserReconciler:
        """Reconciler for database users."""
        if self._users is None:
            self._users = UserReconciler(self)
        return self._users

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close cached sessions and release the log file."""
        self.factory.close()
        self.logger.info("Provider closed")
        close_logger(self.logger)

    def __enter__(self) -> Provider:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
