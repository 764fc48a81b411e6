"""
LLM Package

Lane-aware access to OpenRouter chat completions:
  - text          plain completions, reasoning excluded
  - json          parsed JSON objects with parse-error failover
  - tool_calling  streamed completions with assembled tool calls

Public API::

    from llm_gateway.llm import LLMGateway, LLMRateLimiter

    gateway = LLMGateway(rate_limiter=LLMRateLimiter.from_settings(get_settings()))
    data = await gateway.get_json_response(system_prompt, user_prompt)
    # or
    async for event in gateway.stream_text(messages, tools=tools):
        ...
"""

from llm_gateway.llm.client import ChatCompletionRequest, OpenRouterClient
from llm_gateway.llm.errors import (
    CircuitOpenError,
    EmptyContentError,
    GatewayError,
    GatewayExhaustedError,
    InvalidJSONResponseError,
    OpenRouterAPIError,
    RequestAbortedError,
    RequestTimeoutError,
    ToolCallOverflowError,
    is_abort_error,
)
from llm_gateway.llm.gateway import LLMGateway
from llm_gateway.llm.lanes import resolve_lane_models, resolve_lane_reasoning
from llm_gateway.llm.rate_limiter import LLMRateLimiter, RateLimitConfig
from llm_gateway.llm.tool_calls import ToolCallAssembler, is_valid_json_object
from llm_gateway.llm.types import (
    ChatMessage,
    DoneEvent,
    ErrorEvent,
    Lane,
    StreamEvent,
    TextEvent,
    TextGenerationResult,
    ToolCall,
    ToolCallEvent,
    Usage,
    UsageReport,
)

__all__ = [
    "ChatCompletionRequest",
    "ChatMessage",
    "CircuitOpenError",
    "DoneEvent",
    "EmptyContentError",
    "ErrorEvent",
    "GatewayError",
    "GatewayExhaustedError",
    "InvalidJSONResponseError",
    "LLMGateway",
    "LLMRateLimiter",
    "Lane",
    "OpenRouterAPIError",
    "OpenRouterClient",
    "RateLimitConfig",
    "RequestAbortedError",
    "RequestTimeoutError",
    "StreamEvent",
    "TextEvent",
    "TextGenerationResult",
    "ToolCall",
    "ToolCallAssembler",
    "ToolCallEvent",
    "ToolCallOverflowError",
    "Usage",
    "UsageReport",
    "is_abort_error",
    "is_valid_json_object",
    "resolve_lane_models",
    "resolve_lane_reasoning",
]
