"""Kestrel Delegation - Reasoning backend providers"""

from .base import (
    STOP_END_TURN,
    STOP_MAX_TOKENS,
    STOP_TOOL_USE,
    ChatMessage,
    ChatResponse,
    ReasoningBackend,
    ReasoningBackendFactory,
    TokenUsage,
    ToolCall,
    ToolResultPayload,
    ToolSchema,
)
from .http_client import HTTPClientError, HTTPClientWrapper
from .openai_compat import OpenAICompatibleBackend, create_backend_factory
from .router import MIN_CONFIDENCE, ModelCandidate, ModelRouter, RoutingDecision

__all__ = [
    "STOP_END_TURN",
    "STOP_MAX_TOKENS",
    "STOP_TOOL_USE",
    "ChatMessage",
    "ChatResponse",
    "ReasoningBackend",
    "ReasoningBackendFactory",
    "TokenUsage",
    "ToolCall",
    "ToolResultPayload",
    "ToolSchema",
    "HTTPClientError",
    "HTTPClientWrapper",
    "OpenAICompatibleBackend",
    "create_backend_factory",
    "MIN_CONFIDENCE",
    "ModelCandidate",
    "ModelRouter",
    "RoutingDecision",
]
