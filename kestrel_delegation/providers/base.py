from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

STOP_END_TURN = "end_turn"
STOP_TOOL_USE = "tool_use"
STOP_MAX_TOKENS = "max_tokens"


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class ToolResultPayload:
    tool_call_id: str
    content: str
    is_error: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "content": self.content,
            "is_error": self.is_error,
        }


@dataclass
class ChatMessage:
    role: str
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_result: Optional[ToolResultPayload] = None


@dataclass
class ToolSchema:
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass
class ChatResponse:
    content: str
    usage: TokenUsage
    stop_reason: str = STOP_END_TURN
    tool_calls: List[ToolCall] = field(default_factory=list)


@runtime_checkable
class ReasoningBackend(Protocol):
    """Protocol for the model completion backend used by reasoning delegations."""

    async def chat(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolSchema]] = None,
    ) -> ChatResponse:
        """Run one turn over the message history and return the model's reply."""
        ...


# Builds a fresh backend client for one delegation; the argument is the
# resolved model name.
ReasoningBackendFactory = Callable[[str], ReasoningBackend]
