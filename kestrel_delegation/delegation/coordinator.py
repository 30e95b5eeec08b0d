"""Delegation Coordinator.

Admits, tracks, dispatches and finalises sub-agent delegations. A
delegation is admitted only if the security kill-switch, the feature flag,
the depth limit, the concurrency limit and the profile lookup all pass, in
that order. Once admitted it always ends in a DelegationResult: execution
failures never escape delegate().
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from kestrel_delegation.core.settings import DelegationSettings, get_settings
from kestrel_delegation.providers.openai_compat import create_backend_factory

from .cancellation import AbortReason, CancellationHandle
from .errors import (
    AgentProfileNotFound,
    ConcurrencyLimitExceeded,
    DelegationDisabled,
    DepthLimitExceeded,
    InvalidDelegationParams,
)
from .executors.bridge import BridgeExecutor
from .executors.context import ExecutionContext, record_outcome
from .executors.process import ProcessExecutor
from .executors.reasoning import ReasoningLoopExecutor
from .types import (
    ActiveDelegation,
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
    new_id,
    now_ms,
)

if TYPE_CHECKING:
    from kestrel_delegation.core.audit import AuditSink
    from kestrel_delegation.core.hooks import HookEmitter
    from kestrel_delegation.providers.base import ReasoningBackendFactory
    from kestrel_delegation.providers.router import ModelRouter
    from kestrel_delegation.storage.base import DelegationStore
    from kestrel_delegation.tools.provider import ToolProvider

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Delegation cancelled"


class DelegationCoordinator:
    """Entry point for delegating tasks to sub-agents.

    Attributes:
        store: Persistence for profiles, records and transcripts.
        settings: Delegation settings (limits, budgets, security policy).
        backend_factory: Builds one reasoning backend client per llm delegation.
        tool_provider: Optional external tool aggregator.
        audit_sink: Optional best-effort audit recorder.
        hook_emitter: Optional lifecycle hook receiver for binary/bridge runs.
        model_router: Optional router consulted when no model override is given.
    """

    def __init__(
        self,
        store: "DelegationStore",
        settings: Optional[DelegationSettings] = None,
        backend_factory: Optional["ReasoningBackendFactory"] = None,
        tool_provider: Optional["ToolProvider"] = None,
        audit_sink: Optional["AuditSink"] = None,
        hook_emitter: Optional["HookEmitter"] = None,
        model_router: Optional["ModelRouter"] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.backend_factory = backend_factory or create_backend_factory(self.settings.provider)
        self.tool_provider = tool_provider
        self.audit_sink = audit_sink
        self.hook_emitter = hook_emitter
        self.model_router = model_router
        self._active: Dict[str, ActiveDelegation] = {}
        self._executors = {
            ProfileType.LLM: ReasoningLoopExecutor(self),
            ProfileType.BINARY: ProcessExecutor(self),
            ProfileType.MCP_BRIDGE: BridgeExecutor(self),
        }

    async def initialize(self) -> None:
        """Seed the built-in profiles into the store."""
        await self.store.seed_builtin_profiles()
        logger.info("Delegation coordinator initialized")

    def is_allowed_by_security_policy(self) -> bool:
        return self.settings.security.allow_sub_agents

    def get_config(self) -> Dict[str, Any]:
        return self.settings.model_dump(
            mode="json",
            include={
                "enabled",
                "max_depth",
                "max_concurrent",
                "token_budget_default",
                "token_budget_max",
                "default_timeout_ms",
                "seal_on_complete",
                "model_default",
                "security",
            },
        )

    # ── Delegation lifecycle ────────────────────────────────────────

    async def delegate(
        self, params: DelegationParams, parent: Optional[ParentContext] = None
    ) -> DelegationResult:
        """Run one delegation to a terminal state.

        Args:
            params: Profile (id or name), task and optional limits.
            parent: Set when called from inside another delegation.

        Returns:
            DelegationResult in a terminal status.

        Raises:
            AdmissionRejected: When the delegation is refused. No record is
                created in that case.
        """
        parent = parent or ParentContext()
        depth = parent.depth
        max_depth = self._effective_max_depth(params, parent)
        self._check_admission(params, depth, max_depth)

        # Claim the slot before the first await so concurrent callers see it.
        delegation_id = new_id()
        active = ActiveDelegation(
            delegation_id=delegation_id,
            handle=CancellationHandle(),
            task=params.task,
            depth=depth,
        )
        self._active[delegation_id] = active
        try:
            profile = await self._resolve_profile(params.profile)
            return await self._run(active, profile, params, parent, max_depth)
        finally:
            active.handle.disarm_deadline()
            self._active.pop(delegation_id, None)

    def _effective_max_depth(self, params: DelegationParams, parent: ParentContext) -> int:
        limits = [self.settings.max_depth]
        if params.max_depth is not None:
            limits.append(params.max_depth)
        if parent.max_depth is not None:
            limits.append(parent.max_depth)
        return min(limits)

    def _check_admission(self, params: DelegationParams, depth: int, max_depth: int) -> None:
        if not self.settings.security.allow_sub_agents:
            raise DelegationDisabled("Sub-agent delegation is disabled by security policy")
        if not self.settings.enabled:
            raise DelegationDisabled("Sub-agent delegation is disabled")
        if depth >= max_depth:
            logger.debug(f"Rejecting delegation at depth {depth} (max {max_depth})")
            raise DepthLimitExceeded(depth, max_depth)
        if len(self._active) >= self.settings.max_concurrent:
            logger.debug(f"Rejecting delegation, {len(self._active)} already in flight")
            raise ConcurrencyLimitExceeded(self.settings.max_concurrent)
        if params.timeout_ms is not None and params.timeout_ms <= 0:
            raise InvalidDelegationParams(f"timeout_ms must be positive, got {params.timeout_ms}")

    async def _resolve_profile(self, profile_ref: str) -> AgentProfile:
        profile = await self.store.get_profile(profile_ref)
        if profile is None:
            profile = await self.store.get_profile_by_name(profile_ref)
        if profile is None:
            raise AgentProfileNotFound(profile_ref)
        return profile

    def compute_budget(
        self, params: DelegationParams, profile: AgentProfile, parent: ParentContext
    ) -> int:
        requested = (
            params.max_token_budget
            if params.max_token_budget is not None
            else self.settings.token_budget_default
        )
        remaining = (
            parent.remaining_budget
            if parent.remaining_budget is not None
            else self.settings.token_budget_max
        )
        budget = min(requested, profile.max_token_budget, self.settings.token_budget_max, remaining)
        return max(budget, 0)

    async def _run(
        self,
        active: ActiveDelegation,
        profile: AgentProfile,
        params: DelegationParams,
        parent: ParentContext,
        max_depth: int,
    ) -> DelegationResult:
        budget = self.compute_budget(params, profile, parent)
        timeout_ms = (
            params.timeout_ms
            if params.timeout_ms is not None
            else self.settings.default_timeout_ms
        )
        active.profile_id = profile.id
        active.profile_name = profile.name
        active.token_budget = budget

        ctx = ExecutionContext(
            delegation_id=active.delegation_id,
            profile=profile,
            params=params,
            depth=active.depth,
            max_depth=max_depth,
            token_budget=budget,
            timeout_ms=timeout_ms,
            active=active,
            store=self.store,
            audit_sink=self.audit_sink,
        )
        try:
            record = DelegationRecord(
                id=active.delegation_id,
                parent_delegation_id=parent.delegation_id,
                profile_id=profile.id,
                task=params.task,
                context=params.context,
                status=DelegationStatus.PENDING,
                depth=active.depth,
                max_depth=max_depth,
                token_budget=budget,
                timeout_ms=timeout_ms,
                initiated_by="sub-agent" if parent.delegation_id else "user",
                correlation_id=parent.delegation_id,
            )
            await self.store.create_delegation(record)
            if active.handle.is_set:
                status, error = ctx.abort_outcome()
                return await ctx.finish(status, error=error)
            await self.store.update_delegation(
                active.delegation_id, status=DelegationStatus.RUNNING, started_at=now_ms()
            )
            active.handle.arm_deadline(timeout_ms / 1000.0)
            logger.info(
                f"Delegation {active.delegation_id} started: profile={profile.name} "
                f"type={profile.type.value} depth={active.depth} budget={budget}"
            )
            return await self._executors[profile.type].execute(ctx)
        except Exception as e:
            logger.error(f"Delegation {active.delegation_id} crashed: {e}", exc_info=True)
            return await self._finish_after_crash(ctx, e)

    async def _finish_after_crash(self, ctx: ExecutionContext, exc: Exception) -> DelegationResult:
        error = str(exc) or type(exc).__name__
        try:
            return await ctx.finish(DelegationStatus.FAILED, error=error)
        except Exception as e:
            logger.error(f"Could not persist failure of {ctx.delegation_id}: {e}")
            return DelegationResult(
                delegation_id=ctx.delegation_id,
                profile=ctx.profile.name,
                status=DelegationStatus.FAILED,
                error=error,
                token_usage=ctx.usage,
                duration_ms=ctx.duration_ms(),
            )

    async def cancel(self, delegation_id: str) -> bool:
        """Cancel an in-flight delegation.

        Returns:
            True if this call cancelled it. False if it was not in flight,
            had already been stopped by its deadline, or its executor had
            already settled on a terminal status.
        """
        active = self._active.get(delegation_id)
        if active is None or active.terminal_status is not None:
            return False
        if not active.handle.trigger(AbortReason.CANCELLED):
            return False
        active.terminal_status = DelegationStatus.CANCELLED

        await self.store.update_delegation(
            delegation_id,
            status=DelegationStatus.CANCELLED,
            error=CANCELLED_MESSAGE,
            tokens_used_prompt=active.tokens_used_prompt,
            tokens_used_completion=active.tokens_used_completion,
            completed_at=now_ms(),
        )
        await record_outcome(
            self.audit_sink,
            delegation_id=delegation_id,
            profile_name=active.profile_name,
            depth=active.depth,
            status=DelegationStatus.CANCELLED,
            error=CANCELLED_MESSAGE,
            tokens_used=active.tokens_used,
        )
        logger.info(f"Delegation {delegation_id} cancelled")
        return True

    def list_active(self) -> List[SubAgentInfo]:
        return [
            SubAgentInfo(
                delegation_id=active.delegation_id,
                profile_id=active.profile_id,
                profile_name=active.profile_name,
                task=active.task,
                status=DelegationStatus.RUNNING.value,
                depth=active.depth,
                tokens_used=active.tokens_used,
                token_budget=active.token_budget,
                started_at=active.started_at_ms,
                elapsed_ms=active.elapsed_ms(),
            )
            for active in self._active.values()
        ]

    async def get_result(self, delegation_id: str) -> Optional[DelegationResult]:
        """Rebuild the result tree of a delegation from its persisted records."""
        record = await self.store.get_delegation(delegation_id)
        if record is None:
            return None

        tree = await self.store.get_delegation_tree(delegation_id)
        children: Dict[Optional[str], List[DelegationRecord]] = {}
        for node in tree:
            children.setdefault(node.parent_delegation_id, []).append(node)

        names: Dict[str, str] = {}
        for node in tree:
            if node.profile_id not in names:
                profile = await self.store.get_profile(node.profile_id)
                names[node.profile_id] = profile.name if profile else node.profile_id

        def build(node: DelegationRecord) -> DelegationResult:
            duration = 0
            if node.started_at is not None and node.completed_at is not None:
                duration = node.completed_at - node.started_at
            return DelegationResult(
                delegation_id=node.id,
                profile=names.get(node.profile_id, node.profile_id),
                status=node.status,
                result=node.result,
                error=node.error,
                token_usage=TokenUsageSummary(
                    prompt=node.tokens_used_prompt,
                    completion=node.tokens_used_completion,
                ),
                duration_ms=duration,
                sub_delegations=[build(child) for child in children.get(node.id, [])],
            )

        return build(record)

    # ── Profile CRUD passthrough ────────────────────────────────────

    async def get_profile(self, profile_id: str) -> Optional[AgentProfile]:
        return await self.store.get_profile(profile_id)

    async def list_profiles(self) -> List[AgentProfile]:
        return await self.store.list_profiles()

    async def create_profile(self, data: AgentProfileCreate) -> AgentProfile:
        return await self.store.create_profile(data)

    async def update_profile(
        self, profile_id: str, data: AgentProfileUpdate
    ) -> Optional[AgentProfile]:
        return await self.store.update_profile(profile_id, data)

    async def delete_profile(self, profile_id: str) -> bool:
        return await self.store.delete_profile(profile_id)

    # ── Delegation queries ──────────────────────────────────────────

    async def get_delegation(self, delegation_id: str) -> Optional[DelegationRecord]:
        return await self.store.get_delegation(delegation_id)

    async def list_delegations(
        self,
        status: Optional[DelegationStatus] = None,
        profile_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[DelegationRecord], int]:
        return await self.store.list_delegations(
            status=status, profile_id=profile_id, limit=limit, offset=offset
        )

    async def get_active_delegations(self) -> List[DelegationRecord]:
        return await self.store.get_active_delegations()

    async def get_delegation_tree(self, root_id: str) -> List[DelegationRecord]:
        return await self.store.get_delegation_tree(root_id)

    async def get_delegation_messages(self, delegation_id: str) -> List[DelegationMessage]:
        return await self.store.get_delegation_messages(delegation_id)
