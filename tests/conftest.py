"""
Shared fixtures.

Providers built here talk to an in-memory ``FakeServer`` (see fakes.py)
instead of a SQL Server instance, and never sleep between retries.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from mssqlprovider.application.provider import Provider
from mssqlprovider.infrastructure.sql.factory import ConnectorFactory

from fakes import BUNDLE, FakeServer


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def make_provider(server: FakeServer):
    """Build providers wired to the fake server; closed at teardown."""
    providers: List[Provider] = []

    def build(
        bundle: Optional[Dict[str, Any]] = None, log_file: Optional[str] = None, **overrides: Any
    ) -> Provider:
        def factory_builder(**kwargs: Any) -> ConnectorFactory:
            return ConnectorFactory(connect=server.connect, sleep=lambda _: None, **kwargs)

        provider = Provider.configure(
            {**(bundle or BUNDLE), **overrides},
            environ={},
            log_file=log_file,
            factory_builder=factory_builder,
        )
        providers.append(provider)
        return provider

    yield build
    for provider in providers:
        provider.close()


@pytest.fixture
def provider(make_provider) -> Provider:
    return make_provider()
