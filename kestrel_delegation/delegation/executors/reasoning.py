"""Reasoning loop executor for llm profiles.

Runs a bounded tool-use loop against a fresh backend client: each turn the
model either finishes or asks for tool calls, which are executed one by
one and fed back as tool messages until the token budget runs out.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from kestrel_delegation.delegation.errors import DelegationAborted
from kestrel_delegation.delegation.tools import (
    DELEGATE_TASK,
    GET_DELEGATION_RESULT,
    LIST_SUB_AGENTS,
    get_delegation_tools,
)
from kestrel_delegation.delegation.types import (
    DelegationMessage,
    DelegationParams,
    DelegationResult,
    DelegationStatus,
    ParentContext,
    now_ms,
)
from kestrel_delegation.providers.base import (
    STOP_END_TURN,
    ChatMessage,
    ReasoningBackend,
    ToolCall,
    ToolResultPayload,
    ToolSchema,
)
from kestrel_delegation.providers.router import MIN_CONFIDENCE
from kestrel_delegation.tools.provider import ExternalTool, filter_allowed, find_tool

from .context import ExecutionContext

if TYPE_CHECKING:
    from kestrel_delegation.delegation.coordinator import DelegationCoordinator

logger = logging.getLogger(__name__)

BUDGET_EXHAUSTED = "Token budget exhausted"


def build_user_message(task: str, context: Optional[str]) -> str:
    if context:
        return f"Context:\n{context}\n\nTask:\n{task}"
    return task


class ReasoningLoopExecutor:
    """Executes llm profiles through a ReasoningBackend."""

    def __init__(self, coordinator: "DelegationCoordinator"):
        self.coordinator = coordinator

    def resolve_model(self, ctx: ExecutionContext) -> str:
        """Pick the model: explicit override, confident router choice, profile, global."""
        if ctx.params.model_override:
            return ctx.params.model_override

        fallback = ctx.profile.default_model or self.coordinator.settings.model_default
        router = self.coordinator.model_router
        if router is not None:
            decision = router.route(
                ctx.params.task,
                default_model=fallback,
                token_budget=ctx.token_budget,
                context=ctx.params.context,
            )
            if decision.selected_model and decision.confidence >= MIN_CONFIDENCE:
                return decision.selected_model
            logger.debug(
                f"Router declined for {ctx.delegation_id} "
                f"(confidence={decision.confidence}), using {fallback}"
            )
        return fallback

    async def execute(self, ctx: ExecutionContext) -> DelegationResult:
        sub_delegations: List[DelegationResult] = []
        messages: List[ChatMessage] = []
        status = DelegationStatus.FAILED
        result: Optional[str] = None
        error: Optional[str] = None

        try:
            model = self.resolve_model(ctx)
            logger.debug(f"Delegation {ctx.delegation_id} using model {model}")
            backend = self.coordinator.backend_factory(model)
            provider_tools = await self._provider_tools(ctx)
            tools = get_delegation_tools(ctx.depth, ctx.max_depth) + [
                tool.to_schema() for tool in provider_tools
            ]

            if ctx.profile.system_prompt:
                messages.append(ChatMessage(role="system", content=ctx.profile.system_prompt))
            messages.append(
                ChatMessage(
                    role="user",
                    content=build_user_message(ctx.params.task, ctx.params.context),
                )
            )

            result = await self._run_loop(
                ctx, backend, messages, tools, provider_tools, sub_delegations
            )
            if result is None:
                error = BUDGET_EXHAUSTED
            else:
                status = DelegationStatus.COMPLETED
                if self.coordinator.settings.seal_on_complete:
                    await self._seal(ctx, messages)
        except DelegationAborted:
            status, error = ctx.abort_outcome()
            result = None
        except Exception as e:
            logger.error(f"Delegation {ctx.delegation_id} failed: {e}", exc_info=True)
            status, result, error = DelegationStatus.FAILED, None, str(e) or type(e).__name__

        return await ctx.finish(status, result=result, error=error, sub_delegations=sub_delegations)

    async def _run_loop(
        self,
        ctx: ExecutionContext,
        backend: ReasoningBackend,
        messages: List[ChatMessage],
        tools: List[ToolSchema],
        provider_tools: List[ExternalTool],
        sub_delegations: List[DelegationResult],
    ) -> Optional[str]:
        """Returns the final answer, or None when the budget ran out."""
        while ctx.usage.total < ctx.token_budget:
            self._check_abort(ctx)
            response = await backend.chat(messages, tools)
            ctx.add_usage(response.usage.input, response.usage.output)

            if response.stop_reason == STOP_END_TURN or not response.tool_calls:
                self._check_abort(ctx)
                messages.append(ChatMessage(role="assistant", content=response.content))
                return response.content

            messages.append(
                ChatMessage(
                    role="assistant",
                    content=response.content,
                    tool_calls=list(response.tool_calls),
                )
            )
            for call in response.tool_calls:
                content, is_error = await self._run_tool_call(
                    ctx, call, provider_tools, sub_delegations
                )
                messages.append(
                    ChatMessage(
                        role="tool",
                        content=content,
                        tool_result=ToolResultPayload(
                            tool_call_id=call.id, content=content, is_error=is_error
                        ),
                    )
                )
        return None

    @staticmethod
    def _check_abort(ctx: ExecutionContext) -> None:
        if ctx.handle.is_set:
            raise DelegationAborted(f"Delegation {ctx.delegation_id} aborted")

    async def _provider_tools(self, ctx: ExecutionContext) -> List[ExternalTool]:
        provider = self.coordinator.tool_provider
        if provider is None:
            return []
        try:
            tools = await provider.list_tools()
        except Exception as e:
            logger.warning(f"Could not list external tools for {ctx.delegation_id}: {e}")
            return []
        return filter_allowed(tools, ctx.profile.allowed_tools)

    async def _run_tool_call(
        self,
        ctx: ExecutionContext,
        call: ToolCall,
        provider_tools: List[ExternalTool],
        sub_delegations: List[DelegationResult],
    ) -> Tuple[str, bool]:
        """Execute one tool call. Failures become error payloads, never exceptions."""
        try:
            if call.name == DELEGATE_TASK:
                return await self._delegate(ctx, call.arguments, sub_delegations), False
            if call.name == LIST_SUB_AGENTS:
                infos = [info.to_dict() for info in self.coordinator.list_active()]
                return json.dumps(infos), False
            if call.name == GET_DELEGATION_RESULT:
                delegation_id = str(call.arguments.get("delegationId", ""))
                found = await self.coordinator.get_result(delegation_id)
                if found is None:
                    return json.dumps({"error": "Delegation not found"}), True
                return json.dumps(found.to_dict()), False
            return await self._call_external(call, provider_tools)
        except Exception as e:
            logger.warning(f"Tool call {call.name} failed in {ctx.delegation_id}: {e}")
            return json.dumps({"error": str(e) or "Tool execution failed"}), True

    async def _delegate(
        self,
        ctx: ExecutionContext,
        arguments: Dict[str, Any],
        sub_delegations: List[DelegationResult],
    ) -> str:
        budget = arguments.get("maxTokenBudget")
        params = DelegationParams(
            profile=str(arguments.get("profile", "")),
            task=str(arguments.get("task", "")),
            context=arguments.get("context"),
            max_token_budget=int(budget) if budget is not None else None,
        )
        parent = ParentContext(
            delegation_id=ctx.delegation_id,
            depth=ctx.depth + 1,
            remaining_budget=max(ctx.token_budget - ctx.usage.total, 0),
            max_depth=ctx.max_depth,
        )
        child = await self.coordinator.delegate(params, parent)
        sub_delegations.append(child)
        return json.dumps(
            {
                "delegation_id": child.delegation_id,
                "profile": child.profile,
                "status": child.status.value,
                "result": child.result,
                "error": child.error,
                "tokens_used": child.token_usage.total,
            }
        )

    async def _call_external(
        self, call: ToolCall, provider_tools: List[ExternalTool]
    ) -> Tuple[str, bool]:
        tool = find_tool(provider_tools, call.name)
        provider = self.coordinator.tool_provider
        if tool is None or provider is None:
            return json.dumps({"error": f"Unknown tool: {call.name}"}), True
        try:
            value = await provider.call_tool(tool.server_id, tool.name, call.arguments)
        except Exception as e:
            return json.dumps({"error": f"External tool error: {e}"}), True
        if isinstance(value, str):
            return value, False
        return json.dumps(value, default=str), False

    async def _seal(self, ctx: ExecutionContext, messages: List[ChatMessage]) -> None:
        """Persist the transcript of a completed delegation."""
        # 1ms apart so created_at ordering preserves transcript order
        sealed_at = now_ms()
        for index, message in enumerate(messages):
            await ctx.store.store_delegation_message(
                DelegationMessage(
                    delegation_id=ctx.delegation_id,
                    role=message.role,
                    content=message.content,
                    tool_calls=(
                        [call.to_dict() for call in message.tool_calls]
                        if message.tool_calls
                        else None
                    ),
                    tool_result=(
                        message.tool_result.to_dict() if message.tool_result else None
                    ),
                    created_at=sealed_at + index,
                )
            )
