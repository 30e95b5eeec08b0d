"""Kestrel Delegation - Delegation Store implementations"""

from .base import DelegationStore
from .json_store import JsonDelegationStore
from .memory_store import InMemoryDelegationStore
from .store import Storage

__all__ = [
    "DelegationStore",
    "InMemoryDelegationStore",
    "JsonDelegationStore",
    "Storage",
]
