"""Delegation error types.

AdmissionRejected and its subclasses are raised to the direct caller of
delegate() before any record exists. Everything that goes wrong after
admission is converted into a terminal DelegationResult instead.
"""

from typing import Optional


class AdmissionRejected(Exception):
    """A delegation was refused before any resource was committed."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(message)


class DelegationDisabled(AdmissionRejected):
    """Kill-switch off or delegation feature disabled."""

    def __init__(self, message: str):
        super().__init__(message, code="DELEGATION_DISABLED")


class DepthLimitExceeded(AdmissionRejected):
    def __init__(self, depth: int, max_depth: int):
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Maximum delegation depth ({max_depth}) reached",
            code="DEPTH_LIMIT",
        )


class ConcurrencyLimitExceeded(AdmissionRejected):
    def __init__(self, max_concurrent: int):
        self.max_concurrent = max_concurrent
        super().__init__(
            f"Maximum concurrent delegations ({max_concurrent}) reached",
            code="CONCURRENCY_LIMIT",
        )


class InvalidDelegationParams(AdmissionRejected):
    """A request limit is out of range."""

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_PARAMS")


class AgentProfileNotFound(AdmissionRejected):
    def __init__(self, profile: str):
        self.profile = profile
        super().__init__(f"Agent profile not found: {profile}", code="PROFILE_NOT_FOUND")


class DelegationAborted(Exception):
    """Raised inside an executor when the cancellation handle has fired."""

    pass
