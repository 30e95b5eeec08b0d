"""Per-delegation execution state and the shared finaliser.

Every executor ends a delegation through ExecutionContext.finish(), which
persists the terminal state once, records the audit event and builds the
DelegationResult handed back to the caller.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from kestrel_delegation.delegation.cancellation import AbortReason, CancellationHandle
from kestrel_delegation.delegation.types import (
    ActiveDelegation,
    AgentProfile,
    DelegationParams,
    DelegationResult,
    DelegationStatus,
    TokenUsageSummary,
    now_ms,
)

if TYPE_CHECKING:
    from kestrel_delegation.core.audit import AuditSink
    from kestrel_delegation.storage.base import DelegationStore

logger = logging.getLogger(__name__)

AUDIT_COMPLETED = "delegation_completed"
AUDIT_FAILED = "delegation_failed"

ABORT_STATUSES = frozenset({DelegationStatus.CANCELLED, DelegationStatus.TIMEOUT})


@dataclass
class ExecutionContext:
    """Everything an executor needs to run one admitted delegation."""

    delegation_id: str
    profile: AgentProfile
    params: DelegationParams
    depth: int
    max_depth: int
    token_budget: int
    timeout_ms: int
    active: ActiveDelegation
    store: "DelegationStore"
    audit_sink: Optional["AuditSink"] = None
    started_at: float = field(default_factory=time.monotonic)
    # True once this context, not cancel(), claimed the terminal status
    claimed: bool = field(default=False, init=False)

    @property
    def handle(self) -> CancellationHandle:
        return self.active.handle

    @property
    def usage(self) -> TokenUsageSummary:
        return TokenUsageSummary(
            prompt=self.active.tokens_used_prompt,
            completion=self.active.tokens_used_completion,
        )

    def add_usage(self, prompt: int, completion: int) -> None:
        self.active.tokens_used_prompt += prompt
        self.active.tokens_used_completion += completion

    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    def abort_outcome(self) -> tuple[DelegationStatus, str]:
        """Terminal status and message for a fired cancellation handle."""
        if self.handle.reason == AbortReason.TIMEOUT:
            return (
                DelegationStatus.TIMEOUT,
                f"Delegation timed out after {self.timeout_ms}ms",
            )
        return DelegationStatus.CANCELLED, "Delegation cancelled"

    async def finish(
        self,
        status: DelegationStatus,
        result: Optional[str] = None,
        error: Optional[str] = None,
        sub_delegations: Optional[List[DelegationResult]] = None,
    ) -> DelegationResult:
        """Persist the terminal state and build the caller-facing result.

        Terminal statuses are write-once. The terminal status is claimed on
        the active entry before any await: if cancel() claimed it first, its
        status and error win and only the usage spent since is persisted.
        A fired handle turns any other outcome into its abort outcome.
        """
        active = self.active
        owner = self.claimed or active.terminal_status is None
        if not owner:
            logger.debug(
                f"Delegation {self.delegation_id} already {active.terminal_status.value}, "
                f"discarding {status.value}"
            )
            status, error = self.abort_outcome()
            result = None
        elif self.handle.is_set and status not in ABORT_STATUSES:
            status, error = self.abort_outcome()
            result = None
        if owner:
            self.claimed = True
            active.terminal_status = status

        usage = self.usage
        await self.store.update_delegation(
            self.delegation_id,
            status=status,
            result=result,
            error=error,
            tokens_used_prompt=usage.prompt,
            tokens_used_completion=usage.completion,
            completed_at=now_ms(),
        )
        if owner:
            await record_outcome(
                self.audit_sink,
                delegation_id=self.delegation_id,
                profile_name=self.profile.name,
                depth=self.depth,
                status=status,
                error=error,
                tokens_used=usage.total,
            )

        logger.info(
            f"Delegation {self.delegation_id} ({self.profile.name}) finished "
            f"status={status.value} tokens={usage.total}"
        )
        return DelegationResult(
            delegation_id=self.delegation_id,
            profile=self.profile.name,
            status=status,
            result=result,
            error=error,
            token_usage=usage,
            duration_ms=self.duration_ms(),
            sub_delegations=list(sub_delegations or []),
        )


async def record_outcome(
    sink: Optional["AuditSink"],
    delegation_id: str,
    profile_name: str,
    depth: int,
    status: DelegationStatus,
    error: Optional[str],
    tokens_used: int,
) -> None:
    """Best-effort audit of a terminal outcome. Sink failures are logged only."""
    if sink is None:
        return
    metadata = {
        "delegation_id": delegation_id,
        "profile": profile_name,
        "depth": depth,
        "status": status.value,
        "tokens_used": tokens_used,
    }
    if status == DelegationStatus.COMPLETED:
        event, level, message = AUDIT_COMPLETED, "info", "Delegation completed"
    else:
        metadata["error"] = error
        event, level, message = AUDIT_FAILED, "warning", "Delegation failed"
    try:
        await sink.record(event, level, message, metadata)
    except Exception as e:
        logger.warning(f"Audit record failed for {event}: {e}")
