"""Bridge executor for mcp-bridge profiles.

Calls one named external tool with arguments rendered from the profile's
input template. No model tokens are spent.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from kestrel_delegation.core.hooks import (
    MCP_BRIDGE_AFTER_EXECUTE,
    MCP_BRIDGE_BEFORE_EXECUTE,
    emit_safely,
)
from kestrel_delegation.core.result import Err, Ok, Result
from kestrel_delegation.delegation.cancellation import AbortReason
from kestrel_delegation.delegation.errors import DelegationAborted
from kestrel_delegation.delegation.types import DelegationResult, DelegationStatus
from kestrel_delegation.tools.provider import ExternalTool, find_tool

from .context import ExecutionContext

if TYPE_CHECKING:
    from kestrel_delegation.delegation.coordinator import DelegationCoordinator
    from kestrel_delegation.tools.provider import ToolProvider

logger = logging.getLogger(__name__)

DEFAULT_INPUT_TEMPLATE = '{"task":"{{task}}","context":"{{context}}"}'


def escape_json_string(value: str) -> str:
    """Escape a value for splicing between the quotes of a JSON string literal."""
    return json.dumps(value)[1:-1]


def render_input_template(
    template: str, task: str, context: Optional[str]
) -> Result[Dict[str, Any]]:
    """Substitute {{task}} and {{context}} and parse the result as a JSON object."""
    rendered = template.replace("{{task}}", escape_json_string(task)).replace(
        "{{context}}", escape_json_string(context or "")
    )
    try:
        parsed = json.loads(rendered)
    except json.JSONDecodeError as e:
        return Err(f"invalid JSON after interpolation: {e}", code="TEMPLATE_INVALID")
    if not isinstance(parsed, dict):
        return Err("template did not produce a JSON object", code="TEMPLATE_NOT_OBJECT")
    return Ok(parsed)


class BridgeExecutor:
    """Executes mcp-bridge profiles through the ToolProvider."""

    def __init__(self, coordinator: "DelegationCoordinator"):
        self.coordinator = coordinator

    async def execute(self, ctx: ExecutionContext) -> DelegationResult:
        profile = ctx.profile
        provider = self.coordinator.tool_provider
        if provider is None:
            return await ctx.finish(
                DelegationStatus.FAILED,
                error="No tool provider available, cannot execute mcp-bridge delegation",
            )
        if not profile.mcp_tool:
            return await ctx.finish(
                DelegationStatus.FAILED,
                error=f"mcp-bridge profile '{profile.name}' has no mcp_tool configured",
            )

        try:
            tool = find_tool(await provider.list_tools(), profile.mcp_tool)
        except Exception as e:
            return await ctx.finish(
                DelegationStatus.FAILED, error=f"Could not list external tools: {e}"
            )
        if tool is None:
            return await ctx.finish(
                DelegationStatus.FAILED,
                error=(
                    f"Tool '{profile.mcp_tool}' not found in any connected server. "
                    f"Ensure the server is running and the tool name is correct"
                ),
            )

        template = profile.mcp_tool_input or DEFAULT_INPUT_TEMPLATE
        rendered = render_input_template(template, ctx.params.task, ctx.params.context)
        if isinstance(rendered, Err):
            logger.warning(
                f"Bridge template for profile {profile.name} failed: {rendered.error}"
            )
            return await ctx.finish(
                DelegationStatus.FAILED,
                error=(
                    f"mcp-bridge profile '{profile.name}' mcp_tool_input produced "
                    f"{rendered.error}. Template: {template}"
                ),
            )
        arguments = rendered.unwrap()

        hooks = self.coordinator.hook_emitter
        await emit_safely(
            hooks,
            MCP_BRIDGE_BEFORE_EXECUTE,
            {
                "delegation_id": ctx.delegation_id,
                "profile_name": profile.name,
                "mcp_tool": tool.name,
                "server_id": tool.server_id,
                "arguments": arguments,
            },
        )

        result: Optional[str] = None
        error: Optional[str] = None
        try:
            value = await self._invoke(ctx, provider, tool, arguments)
            result = value if isinstance(value, str) else json.dumps(value, default=str)
            status = DelegationStatus.COMPLETED
        except asyncio.TimeoutError:
            status, error = DelegationStatus.TIMEOUT, f"MCP bridge timeout after {ctx.timeout_ms}ms"
        except DelegationAborted:
            status, error = ctx.abort_outcome()
        except Exception as e:
            status, error = DelegationStatus.FAILED, f"MCP tool error: {e}"

        await emit_safely(
            hooks,
            MCP_BRIDGE_AFTER_EXECUTE,
            {
                "delegation_id": ctx.delegation_id,
                "profile_name": profile.name,
                "mcp_tool": tool.name,
                "result": result,
                "status": status.value,
                "duration_ms": ctx.duration_ms(),
                "error": error,
            },
        )
        return await ctx.finish(status, result=result, error=error)

    async def _invoke(
        self,
        ctx: ExecutionContext,
        provider: "ToolProvider",
        tool: ExternalTool,
        arguments: Dict[str, Any],
    ) -> Any:
        """Race the tool call against the cancellation handle and the timeout."""
        if ctx.handle.is_set:
            raise DelegationAborted("Delegation aborted before tool invocation")

        call = asyncio.ensure_future(provider.call_tool(tool.server_id, tool.name, arguments))
        aborted = asyncio.ensure_future(ctx.handle.wait())
        try:
            done, _ = await asyncio.wait(
                {call, aborted},
                timeout=ctx.timeout_ms / 1000.0,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            losers = [task for task in (call, aborted) if not task.done()]
            for task in losers:
                task.cancel()
            await asyncio.gather(*losers, return_exceptions=True)

        if call in done:
            return call.result()
        if aborted in done:
            raise DelegationAborted("Delegation aborted during tool invocation")
        if ctx.handle.trigger(AbortReason.TIMEOUT):
            raise asyncio.TimeoutError()
        raise DelegationAborted("Delegation aborted during tool invocation")
