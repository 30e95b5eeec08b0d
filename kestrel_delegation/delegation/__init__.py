"""Sub-agent delegation.

Exports the DelegationCoordinator together with the types, errors and
tool schemas callers need to drive it.
"""

from .cancellation import AbortReason, CancellationHandle
from .coordinator import DelegationCoordinator
from .errors import (
    AdmissionRejected,
    AgentProfileNotFound,
    ConcurrencyLimitExceeded,
    DelegationAborted,
    DelegationDisabled,
    DepthLimitExceeded,
    InvalidDelegationParams,
)
from .profiles import BUILTIN_PROFILES, get_builtin_profiles
from .tools import (
    DELEGATE_TASK,
    GET_DELEGATION_RESULT,
    LIST_SUB_AGENTS,
    get_delegation_tools,
)
from .types import (
    AgentProfile,
    AgentProfileCreate,
    AgentProfileUpdate,
    DelegationMessage,
    DelegationParams,
    DelegationRecord,
    DelegationResult,
    DelegationStatus,
    ParentContext,
    ProfileType,
    SubAgentInfo,
    TokenUsageSummary,
)

__all__ = [
    # Coordinator
    "DelegationCoordinator",
    # Cancellation
    "AbortReason",
    "CancellationHandle",
    # Errors
    "AdmissionRejected",
    "AgentProfileNotFound",
    "ConcurrencyLimitExceeded",
    "DelegationAborted",
    "DelegationDisabled",
    "DepthLimitExceeded",
    "InvalidDelegationParams",
    # Profiles
    "BUILTIN_PROFILES",
    "get_builtin_profiles",
    # Tools
    "DELEGATE_TASK",
    "GET_DELEGATION_RESULT",
    "LIST_SUB_AGENTS",
    "get_delegation_tools",
    # Types
    "AgentProfile",
    "AgentProfileCreate",
    "AgentProfileUpdate",
    "DelegationMessage",
    "DelegationParams",
    "DelegationRecord",
    "DelegationResult",
    "DelegationStatus",
    "ParentContext",
    "ProfileType",
    "SubAgentInfo",
    "TokenUsageSummary",
]
