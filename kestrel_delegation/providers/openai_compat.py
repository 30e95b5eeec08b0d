"""
OpenAI-compatible chat completions backend.

Non-streaming: one POST per reasoning turn. Translates the package's
ChatMessage/ToolSchema types to the OpenAI wire format and the reply back
into a ChatResponse with normalised stop reasons.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from kestrel_delegation.core.settings import ProviderSettings, get_settings

from .base import (
    STOP_END_TURN,
    STOP_MAX_TOKENS,
    STOP_TOOL_USE,
    ChatMessage,
    ChatResponse,
    ReasoningBackendFactory,
    TokenUsage,
    ToolCall,
    ToolSchema,
)
from .http_client import HTTPClientError, HTTPClientWrapper

logger = logging.getLogger(__name__)

_FINISH_REASONS = {
    "stop": STOP_END_TURN,
    "tool_calls": STOP_TOOL_USE,
    "function_call": STOP_TOOL_USE,
    "length": STOP_MAX_TOKENS,
}


class OpenAICompatibleBackend:
    """Reasoning backend for any /chat/completions endpoint"""

    def __init__(
        self,
        model: str,
        base_url: str,
        api_key: Optional[str] = None,
        http_client: Optional[HTTPClientWrapper] = None,
        timeout: Optional[float] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http_client = http_client or HTTPClientWrapper()
        self.timeout = timeout

    async def chat(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolSchema]] = None,
    ) -> ChatResponse:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [_message_to_wire(m) for m in messages],
            "stream": False,
        }
        if tools:
            payload["tools"] = [_tool_to_wire(t) for t in tools]

        response = await self.http_client.post(
            f"{self.base_url}/chat/completions",
            json=payload,
            headers=headers,
            timeout=self.timeout,
        )
        return self._parse_response(response)

    def _parse_response(self, response: httpx.Response) -> ChatResponse:
        try:
            body = response.json()
        except ValueError as e:
            raise HTTPClientError(
                f"Invalid JSON from reasoning backend: {e}", status_code=response.status_code
            ) from e

        if "error" in body:
            raise HTTPClientError(f"Reasoning backend error: {body['error']}")

        choices = body.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message", {})

        tool_calls = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function", {})
            arguments = function.get("arguments") or "{}"
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments)
                except json.JSONDecodeError:
                    logger.error(f"Failed to parse tool arguments for {function.get('name')}")
                    arguments = {"_raw": arguments}
            tool_calls.append(
                ToolCall(id=raw.get("id", ""), name=function.get("name", ""), arguments=arguments)
            )

        usage = body.get("usage", {})
        finish_reason = choice.get("finish_reason") or "stop"
        return ChatResponse(
            content=message.get("content") or "",
            usage=TokenUsage(
                input=usage.get("prompt_tokens", 0),
                output=usage.get("completion_tokens", 0),
            ),
            stop_reason=_FINISH_REASONS.get(finish_reason, finish_reason),
            tool_calls=tool_calls,
        )


def _message_to_wire(message: ChatMessage) -> Dict[str, Any]:
    wire: Dict[str, Any] = {"role": message.role, "content": message.content}
    if message.tool_calls:
        wire["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
            }
            for call in message.tool_calls
        ]
    if message.tool_result is not None:
        wire["tool_call_id"] = message.tool_result.tool_call_id
    return wire


def _tool_to_wire(tool: ToolSchema) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


def create_backend_factory(
    provider_settings: Optional[ProviderSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ReasoningBackendFactory:
    """Factory producing a fresh OpenAICompatibleBackend per delegation."""
    cfg = provider_settings or get_settings().provider
    api_key = cfg.api_key.get_secret_value() if cfg.api_key else None

    def factory(model: str) -> OpenAICompatibleBackend:
        return OpenAICompatibleBackend(
            model=model,
            base_url=cfg.base_url,
            api_key=api_key,
            http_client=HTTPClientWrapper(
                base_timeout=cfg.timeout_seconds,
                max_retries=cfg.max_retries,
                transport=transport,
            ),
        )

    return factory
