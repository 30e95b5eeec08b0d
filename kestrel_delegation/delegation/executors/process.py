"""Process executor for binary profiles.

The profile's command is spawned with one JSON line on stdin and its
stdout becomes the delegation result. No model tokens are spent.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import TYPE_CHECKING, Optional

from kestrel_delegation.core.hooks import BINARY_AFTER_EXECUTE, BINARY_BEFORE_EXECUTE, emit_safely
from kestrel_delegation.delegation.cancellation import AbortReason
from kestrel_delegation.delegation.errors import DelegationAborted
from kestrel_delegation.delegation.types import DelegationResult, DelegationStatus

from .context import ExecutionContext

if TYPE_CHECKING:
    from kestrel_delegation.delegation.coordinator import DelegationCoordinator

logger = logging.getLogger(__name__)

BINARY_DISABLED = (
    "Binary sub-agents are disabled by security policy (allow_binary_agents: false)"
)


class BinaryExecutionError(Exception):
    """The child process could not be started or exited unsuccessfully."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        self.message = message
        self.exit_code = exit_code
        super().__init__(message)


def parse_output(stdout: bytes) -> str:
    """Prefer a JSON object's "result" string, else the JSON itself, else raw text."""
    text = stdout.decode("utf-8", errors="replace").strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(parsed, dict) and isinstance(parsed.get("result"), str):
        return parsed["result"]
    return json.dumps(parsed)


class ProcessExecutor:
    """Executes binary profiles as child processes."""

    def __init__(self, coordinator: "DelegationCoordinator"):
        self.coordinator = coordinator

    async def execute(self, ctx: ExecutionContext) -> DelegationResult:
        settings = self.coordinator.settings
        if not settings.security.allow_binary_agents:
            logger.warning(f"Refusing binary delegation {ctx.delegation_id}: {BINARY_DISABLED}")
            return await ctx.finish(DelegationStatus.FAILED, error=BINARY_DISABLED)

        profile = ctx.profile
        if not profile.command:
            return await ctx.finish(
                DelegationStatus.FAILED,
                error=f"Binary profile '{profile.name}' has no command configured",
            )

        hooks = self.coordinator.hook_emitter
        await emit_safely(
            hooks,
            BINARY_BEFORE_EXECUTE,
            {
                "delegation_id": ctx.delegation_id,
                "profile_name": profile.name,
                "command": profile.command,
                "command_args": list(profile.command_args),
                "task": ctx.params.task,
            },
        )

        result: Optional[str] = None
        error: Optional[str] = None
        try:
            result = await self._run(ctx)
            status = DelegationStatus.COMPLETED
        except DelegationAborted:
            status, error = ctx.abort_outcome()
        except Exception as e:
            status, error = DelegationStatus.FAILED, str(e) or "Binary execution failed"

        await emit_safely(
            hooks,
            BINARY_AFTER_EXECUTE,
            {
                "delegation_id": ctx.delegation_id,
                "profile_name": profile.name,
                "result": result,
                "status": status.value,
                "duration_ms": ctx.duration_ms(),
                "error": error,
            },
        )
        return await ctx.finish(status, result=result, error=error)

    async def _run(self, ctx: ExecutionContext) -> str:
        if ctx.handle.is_set:
            raise DelegationAborted("Delegation aborted before binary execution")

        profile = ctx.profile
        payload = json.dumps(
            {
                "delegation_id": ctx.delegation_id,
                "task": ctx.params.task,
                "context": ctx.params.context,
                "token_budget": ctx.token_budget,
            }
        )
        try:
            process = await asyncio.create_subprocess_exec(
                profile.command,
                *profile.command_args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **profile.command_env},
            )
        except OSError as e:
            raise BinaryExecutionError(f"Failed to start binary '{profile.command}': {e}") from e

        logger.debug(f"Spawned {profile.command} (pid={process.pid}) for {ctx.delegation_id}")
        communicate = asyncio.ensure_future(process.communicate((payload + "\n").encode()))
        aborted = asyncio.ensure_future(ctx.handle.wait())
        try:
            done, _ = await asyncio.wait(
                {communicate, aborted},
                timeout=ctx.timeout_ms / 1000.0,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            aborted.cancel()
            await asyncio.gather(aborted, return_exceptions=True)

        if communicate not in done:
            # The local timer can beat the coordinator deadline; both mean timeout.
            ctx.handle.trigger(AbortReason.TIMEOUT)
            await self._kill(process)
            communicate.cancel()
            await asyncio.gather(communicate, return_exceptions=True)
            raise DelegationAborted(f"Binary agent {process.pid} stopped")

        stdout, stderr = communicate.result()
        if process.returncode != 0:
            raise BinaryExecutionError(
                f"Binary exited with code {process.returncode}: "
                f"{stderr.decode('utf-8', errors='replace').strip()}",
                exit_code=process.returncode,
            )
        return parse_output(stdout)

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL after the grace period. Safe to call twice."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(
                process.wait(), timeout=self.coordinator.settings.kill_grace_seconds
            )
            return
        except asyncio.TimeoutError:
            logger.warning(f"Binary pid={process.pid} ignored SIGTERM, killing")
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
