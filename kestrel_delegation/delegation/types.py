import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .cancellation import CancellationHandle


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


class ProfileType(str, Enum):
    LLM = "llm"
    BINARY = "binary"
    MCP_BRIDGE = "mcp-bridge"


class DelegationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        DelegationStatus.COMPLETED,
        DelegationStatus.FAILED,
        DelegationStatus.CANCELLED,
        DelegationStatus.TIMEOUT,
    }
)


class AgentProfile(BaseModel):
    """Persona configuration for a sub-agent.

    Read-only to the coordinator; mutated only through the store's CRUD.
    Binary profiles use command/command_args/command_env, mcp-bridge
    profiles use mcp_tool/mcp_tool_input.
    """

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    description: str = ""
    system_prompt: str = ""
    max_token_budget: int = Field(default=50000, ge=0)
    allowed_tools: List[str] = Field(default_factory=list)
    default_model: Optional[str] = None
    is_builtin: bool = False
    type: ProfileType = ProfileType.LLM
    command: Optional[str] = None
    command_args: List[str] = Field(default_factory=list)
    command_env: Dict[str, str] = Field(default_factory=dict)
    mcp_tool: Optional[str] = None
    mcp_tool_input: Optional[str] = None
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)


class AgentProfileCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    system_prompt: str = ""
    max_token_budget: int = Field(default=50000, ge=0)
    allowed_tools: List[str] = Field(default_factory=list)
    default_model: Optional[str] = None
    type: ProfileType = ProfileType.LLM
    command: Optional[str] = None
    command_args: List[str] = Field(default_factory=list)
    command_env: Dict[str, str] = Field(default_factory=dict)
    mcp_tool: Optional[str] = None
    mcp_tool_input: Optional[str] = None


class AgentProfileUpdate(BaseModel):
    """Partial profile update; only fields explicitly set are applied."""

    name: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    max_token_budget: Optional[int] = Field(default=None, ge=0)
    allowed_tools: Optional[List[str]] = None
    default_model: Optional[str] = None
    type: Optional[ProfileType] = None
    command: Optional[str] = None
    command_args: Optional[List[str]] = None
    command_env: Optional[Dict[str, str]] = None
    mcp_tool: Optional[str] = None
    mcp_tool_input: Optional[str] = None


class DelegationRecord(BaseModel):
    """Persisted row for one delegation. parent_delegation_id forms a forest."""

    id: str
    parent_delegation_id: Optional[str] = None
    profile_id: str
    task: str
    context: Optional[str] = None
    status: DelegationStatus = DelegationStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None
    depth: int = Field(default=0, ge=0)
    max_depth: int = Field(default=3, ge=1)
    token_budget: int = Field(default=0, ge=0)
    tokens_used_prompt: int = 0
    tokens_used_completion: int = 0
    timeout_ms: int = Field(default=300000, gt=0)
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    created_at: int = Field(default_factory=now_ms)
    initiated_by: Optional[str] = None
    correlation_id: Optional[str] = None


class DelegationMessage(BaseModel):
    """One entry of a sealed delegation transcript."""

    id: str = Field(default_factory=new_id)
    delegation_id: str
    role: str
    content: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_result: Optional[Dict[str, Any]] = None
    token_count: int = 0
    created_at: int = Field(default_factory=now_ms)


@dataclass
class DelegationParams:
    """Caller request for one delegation. profile is an id or a name."""

    profile: str
    task: str
    context: Optional[str] = None
    max_token_budget: Optional[int] = None
    max_depth: Optional[int] = None
    timeout_ms: Optional[int] = None
    model_override: Optional[str] = None


@dataclass
class ParentContext:
    """What a parent delegation passes down to a nested delegate call."""

    delegation_id: Optional[str] = None
    depth: int = 0
    remaining_budget: Optional[int] = None
    max_depth: Optional[int] = None


@dataclass
class TokenUsageSummary:
    prompt: int = 0
    completion: int = 0

    @property
    def total(self) -> int:
        return self.prompt + self.completion

    def to_dict(self) -> Dict[str, int]:
        return {"prompt": self.prompt, "completion": self.completion, "total": self.total}


@dataclass
class DelegationResult:
    delegation_id: str
    profile: str
    status: DelegationStatus
    result: Optional[str] = None
    error: Optional[str] = None
    token_usage: TokenUsageSummary = field(default_factory=TokenUsageSummary)
    duration_ms: int = 0
    sub_delegations: List["DelegationResult"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delegation_id": self.delegation_id,
            "profile": self.profile,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "token_usage": self.token_usage.to_dict(),
            "duration_ms": self.duration_ms,
            "sub_delegations": [child.to_dict() for child in self.sub_delegations],
        }


@dataclass
class ActiveDelegation:
    """In-memory state for one in-flight delegation.

    Inserted at admission, removed exactly once when delegate() exits.
    """

    delegation_id: str
    handle: "CancellationHandle"
    task: str
    depth: int
    started_at: float = field(default_factory=time.monotonic)
    started_at_ms: int = field(default_factory=now_ms)
    profile_id: str = ""
    profile_name: str = ""
    token_budget: int = 0
    tokens_used_prompt: int = 0
    tokens_used_completion: int = 0
    # Set synchronously by whichever of cancel() or the executor finalises first
    terminal_status: Optional[DelegationStatus] = None

    @property
    def tokens_used(self) -> int:
        return self.tokens_used_prompt + self.tokens_used_completion

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


@dataclass
class SubAgentInfo:
    delegation_id: str
    profile_id: str
    profile_name: str
    task: str
    status: str
    depth: int
    tokens_used: int
    token_budget: int
    started_at: int
    elapsed_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delegation_id": self.delegation_id,
            "profile_id": self.profile_id,
            "profile_name": self.profile_name,
            "task": self.task,
            "status": self.status,
            "depth": self.depth,
            "tokens_used": self.tokens_used,
            "token_budget": self.token_budget,
            "started_at": self.started_at,
            "elapsed_ms": self.elapsed_ms,
        }
