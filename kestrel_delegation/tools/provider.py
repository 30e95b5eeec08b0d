"""External tool provider protocol.

A provider aggregates tools from one or more connected tool servers.
Reasoning delegations forward tool calls to it; bridge delegations invoke
one named tool directly.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from kestrel_delegation.providers.base import ToolSchema


@dataclass
class ExternalTool:
    name: str
    server_id: str
    description: str = ""
    input_schema: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_schema(self) -> ToolSchema:
        return ToolSchema(
            name=self.name,
            description=self.description,
            parameters=self.input_schema,
        )


@runtime_checkable
class ToolProvider(Protocol):
    async def list_tools(self) -> List[ExternalTool]:
        """Return every tool currently available across connected servers."""
        ...

    async def call_tool(self, server_id: str, tool_name: str, arguments: Dict[str, Any]) -> Any:
        """Invoke a tool and return its raw value. May raise on tool failure."""
        ...


def filter_allowed(tools: List[ExternalTool], allowed: List[str]) -> List[ExternalTool]:
    """Apply a profile allow-list. An empty list allows every tool."""
    if not allowed:
        return list(tools)
    allowed_set = set(allowed)
    return [tool for tool in tools if tool.name in allowed_set]


def find_tool(tools: List[ExternalTool], name: str) -> Optional[ExternalTool]:
    for tool in tools:
        if tool.name == name:
            return tool
    return None
