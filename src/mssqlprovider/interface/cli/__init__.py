"""
CLI package for mssqlprovider.
"""

from .cli import app, main

__all__ = ["app", "main"]
