"""
Application layer package.

Contains the provider surface, the principal reconcilers and the resource
handlers the orchestration engine calls.
"""

from mssqlprovider.application.provider import Provider
from mssqlprovider.application.resources import LoginResource, ResourceHandler, UserResource

__all__ = [
    "LoginResource",
    "Provider",
    "ResourceHandler",
    "UserResource",
]
