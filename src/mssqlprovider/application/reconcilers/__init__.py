"""
Principal reconcilers.

One reconciler per managed principal kind; each drives live state towards
the declared state through the provider's sessions.
"""

from .base import PrincipalReconciler
from .login import LoginReconciler
from .user import UserReconciler

__all__ = ["LoginReconciler", "PrincipalReconciler", "UserReconciler"]
