"""Kestrel Delegation - Sub-agent delegation coordinator"""

from kestrel_delegation.core.settings import get_settings
from kestrel_delegation.delegation import (
    AdmissionRejected,
    DelegationCoordinator,
    DelegationParams,
    DelegationResult,
    DelegationStatus,
    ParentContext,
)
from kestrel_delegation.storage import InMemoryDelegationStore, JsonDelegationStore

__version__ = "0.1.0"
__all__ = [
    "AdmissionRejected",
    "DelegationCoordinator",
    "DelegationParams",
    "DelegationResult",
    "DelegationStatus",
    "InMemoryDelegationStore",
    "JsonDelegationStore",
    "ParentContext",
    "get_settings",
]
