"""
mssqlprovider - SQL Server principal provider.

Manages server logins and database users on SQL Server and Azure SQL on
behalf of a declarative orchestration engine.

Usage:
    from mssqlprovider import Provider
    from mssqlprovider.application.resources import LoginResource

    with Provider.configure({"host": "DB01", "login": {"username": "sa", "password": "..."}}) as provider:
        result = LoginResource(provider).create({"login_name": "app_login", "password": "..."})
"""

__version__ = "0.1.0"

from mssqlprovider.application.provider import Provider

__all__ = ["Provider", "__version__"]
