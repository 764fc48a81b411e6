"""
Gateway data model.

Everything the gateway exchanges with callers: lanes, chat messages, tool
calls, normalized usage, the typed stream events and the non-streaming
results. Wire-format (OpenAI/OpenRouter JSON) conversion lives next to each
type so callers never build raw dicts by hand.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

from llm_gateway.llm.content import normalize_message_content


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Lane(str, Enum):
    """Class of LLM operation; selects default models and reasoning policy."""
    TEXT         = "text"
    JSON         = "json"
    TOOL_CALLING = "tool_calling"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

_LANGCHAIN_ROLES = {"system": "system", "human": "user", "ai": "assistant", "tool": "tool"}


@dataclass
class ChatMessage:
    """
    One chat turn.

    content is opaque here: a string, a list of typed parts or a structured
    object. It is flattened to text only when the message is sent.
    """
    role:              str
    content:           Any = ""
    tool_calls:        list[dict[str, Any]] | None = None
    tool_call_id:      str | None = None
    reasoning_content: str | None = None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {
            "role":    self.role,
            "content": normalize_message_content(self.content),
        }
        if isinstance(self.tool_calls, list):
            wire["tool_calls"] = self.tool_calls
        if isinstance(self.tool_call_id, str):
            wire["tool_call_id"] = self.tool_call_id
        if isinstance(self.reasoning_content, str):
            wire["reasoning_content"] = self.reasoning_content
        return wire

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            role              = str(data.get("role", "user")),
            content           = data.get("content"),
            tool_calls        = data.get("tool_calls") if isinstance(data.get("tool_calls"), list) else None,
            tool_call_id      = data.get("tool_call_id") if isinstance(data.get("tool_call_id"), str) else None,
            reasoning_content = data.get("reasoning_content") if isinstance(data.get("reasoning_content"), str) else None,
        )

    @classmethod
    def from_langchain(cls, message: BaseMessage) -> "ChatMessage":
        tool_calls = None
        if isinstance(message, AIMessage) and message.tool_calls:
            tool_calls = [
                {
                    "id":       call.get("id") or f"tool_call_{i}",
                    "type":     "function",
                    "function": {"name": call["name"], "arguments": json.dumps(call.get("args") or {})},
                }
                for i, call in enumerate(message.tool_calls)
            ]
        reasoning = message.additional_kwargs.get("reasoning_content")
        return cls(
            role              = _LANGCHAIN_ROLES.get(message.type, message.type),
            content           = message.content,
            tool_calls        = tool_calls,
            tool_call_id      = message.tool_call_id if isinstance(message, ToolMessage) else None,
            reasoning_content = reasoning if isinstance(reasoning, str) else None,
        )


def normalize_messages(messages: Sequence[Any]) -> list[dict[str, Any]]:
    """Wire form of ChatMessage, plain dict or LangChain message inputs."""
    wire: list[dict[str, Any]] = []
    for message in messages:
        if isinstance(message, BaseMessage):
            message = ChatMessage.from_langchain(message)
        elif isinstance(message, dict):
            message = ChatMessage.from_dict(message)
        wire.append(message.to_wire())
    return wire


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------

@dataclass
class ToolCall:
    """
    An assembled tool invocation.

    arguments is the raw JSON text exactly as concatenated from the stream;
    use parsed_arguments() once it has been validated.
    """
    id:        str
    name:      str = ""
    arguments: str = ""
    type:      str = "function"

    def parsed_arguments(self) -> dict[str, Any]:
        return json.loads(self.arguments)

    def to_wire(self) -> dict[str, Any]:
        return {
            "id":       self.id,
            "type":     self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------

def _finite_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value == value and value not in (float("inf"), float("-inf")):
        return int(value)
    return None


@dataclass
class Usage:
    """
    Token usage normalized from the upstream ``usage`` object.

    prompt_tokens is None when the upstream omitted the count.
    """
    prompt_tokens:     int | None = 0
    completion_tokens: int = 0
    total_tokens:      int = 0
    cached_tokens:     int | None = None
    reasoning_tokens:  int | None = None

    @classmethod
    def from_openrouter(cls, usage: dict[str, Any] | None) -> "Usage | None":
        if not isinstance(usage, dict):
            return None
        prompt_details     = usage.get("prompt_tokens_details") or {}
        completion_details = usage.get("completion_tokens_details") or {}
        return cls(
            prompt_tokens     = _finite_int(usage.get("prompt_tokens")),
            completion_tokens = _finite_int(usage.get("completion_tokens")) or 0,
            total_tokens      = _finite_int(usage.get("total_tokens")) or 0,
            cached_tokens     = _finite_int(prompt_details.get("cached_tokens")) if isinstance(prompt_details, dict) else None,
            reasoning_tokens  = _finite_int(completion_details.get("reasoning_tokens")) if isinstance(completion_details, dict) else None,
        )


@dataclass
class UsageReport:
    """Passed to a caller's on_usage callback after a successful call."""
    model:             str
    prompt_tokens:     int
    completion_tokens: int
    total_tokens:      int
    input_cost:        float = 0.0
    output_cost:       float = 0.0
    total_cost:        float = 0.0


# ---------------------------------------------------------------------------
# Stream events: exactly one DoneEvent or ErrorEvent ends a stream
# ---------------------------------------------------------------------------

@dataclass
class TextEvent:
    content: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass
class ToolCallEvent:
    tool_call: ToolCall
    type: Literal["tool_call"] = field(default="tool_call", init=False)


@dataclass
class DoneEvent:
    finished_reason:    str = "stop"
    usage:              Usage | None = None
    model:              str | None = None
    provider:           str | None = None
    request_id:         str | None = None
    system_fingerprint: str | None = None
    reasoning_tokens:   int | None = None
    cache_status:       str | None = None
    type: Literal["done"] = field(default="done", init=False)


@dataclass
class ErrorEvent:
    error: str
    type: Literal["error"] = field(default="error", init=False)


StreamEvent = Union[TextEvent, ToolCallEvent, DoneEvent, ErrorEvent]


# ---------------------------------------------------------------------------
# Non-streaming results
# ---------------------------------------------------------------------------

@dataclass
class TextGenerationResult:
    text:  str
    model: str
    usage: Usage | None = None
