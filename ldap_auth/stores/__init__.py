"""
Identity store backends.
"""

from .base import IdentityStore, IdentityStoreError, NotFoundError, PermissionDeniedError
from .memory import InMemoryIdentityStore
from .rest_store import RestIdentityStore

__all__ = [
    'IdentityStore',
    'IdentityStoreError',
    'NotFoundError',
    'PermissionDeniedError',
    'InMemoryIdentityStore',
    'RestIdentityStore',
]
