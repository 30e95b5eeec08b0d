"""Lifecycle hook emission for process- and bridge-backed delegations.

Extensions subscribe to named lifecycle events (for example
``agent:binary-before-execute``) and receive a HookEvent. Emission never
raises: a failing handler is logged and reported through an Err result so
the delegation that emitted the event is unaffected.
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from kestrel_delegation.core.result import Err, Ok, Result

logger = logging.getLogger(__name__)

BINARY_BEFORE_EXECUTE = "agent:binary-before-execute"
BINARY_AFTER_EXECUTE = "agent:binary-after-execute"
MCP_BRIDGE_BEFORE_EXECUTE = "agent:mcp-bridge-before-execute"
MCP_BRIDGE_AFTER_EXECUTE = "agent:mcp-bridge-after-execute"


@dataclass
class HookEvent:
    """A single lifecycle event delivered to hook handlers."""

    event: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


HookHandler = Callable[[HookEvent], Awaitable[None]]


@runtime_checkable
class HookEmitter(Protocol):
    """Protocol for the extension point that receives lifecycle events."""

    async def emit(self, event: str, data: dict[str, Any]) -> Result[None]:
        """Deliver an event to every subscribed handler.

        Returns:
            Result[None]: Ok when every handler ran, Err describing the first failure.
        """
        ...


class HookBus:
    """In-memory hook emitter.

    Maintains a mapping of event names to handlers. Handlers run in
    subscription order; one failing handler does not prevent the rest
    from running.

    Thread safety: NOT thread-safe. Suitable for single-process use in
    an async context.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[HookHandler]] = defaultdict(list)

    def subscribe(self, event: str, handler: HookHandler) -> None:
        self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: HookHandler) -> bool:
        """Remove the first matching handler.

        Returns:
            True if a handler was removed.
        """
        handlers = self._handlers.get(event, [])
        for idx, registered in enumerate(handlers):
            if registered == handler:
                handlers.pop(idx)
                return True
        return False

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def emit(self, event: str, data: dict[str, Any]) -> Result[None]:
        hook_event = HookEvent(event=event, data=dict(data))
        first_error: Err[None] | None = None
        for handler in list(self._handlers.get(event, [])):
            try:
                await handler(hook_event)
            except Exception as e:
                logger.warning(f"Hook handler failed for {event}: {e}")
                if first_error is None:
                    first_error = Err(f"Hook handler failed: {e}", code="HOOK_ERROR")
        if first_error is not None:
            return first_error
        return Ok(None)


async def emit_safely(emitter: HookEmitter | None, event: str, data: dict[str, Any]) -> None:
    """Emit through an optional emitter, isolating the caller from any failure."""
    if emitter is None:
        return
    try:
        result = await emitter.emit(event, data)
    except Exception as e:
        logger.warning(f"Hook emission raised for {event}: {e}")
        return
    if result.is_err():
        logger.warning(f"Hook emission reported failure for {event}: {result}")
