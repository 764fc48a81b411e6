"""
LLM Gateway: Unified Entry Point for all LLM Requests

The gateway is the single call site for product code. It composes:

  ┌─────────────────────────────────────────────────────┐
  │  get_json_response() / generate_text() / stream_text│
  │       │                                             │
  │       ▼                                             │
  │  resolve_lane_models()      ← candidate list        │
  │       │                                             │
  │       ▼                                             │
  │  LLMRateLimiter.acquire()   ← optional admission    │
  │       │                                             │
  │       ▼                                             │
  │  FallbackChain              ← manual failover       │
  │       │                                             │
  │       ▼                                             │
  │  OpenRouterClient           ← HTTP + cancellation   │
  │       │                                             │
  │       ▼                                             │
  │  text / parsed JSON / typed stream events           │
  └─────────────────────────────────────────────────────┘

Usage::

    gateway = LLMGateway()
    plan = await gateway.get_json_response(
        system_prompt="Return a JSON plan.",
        user_prompt=brief,
    )

    async for event in gateway.stream_text(messages, tools=tools):
        if event.type == "text":
            ...
        elif event.type == "tool_call":
            ...

Streaming failover covers stream establishment only. Once a stream has
started emitting, a failure ends it with an ErrorEvent; it is never restarted
on another model because the caller already holds partial text.

Cancellation (the caller's asyncio.Event) is silent everywhere: non-streaming
calls return None, streams simply stop.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence, Union

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from llm_gateway.core.config import GatewaySettings, get_settings, load_settings
from llm_gateway.llm.client import ChatCompletionRequest, OpenRouterClient
from llm_gateway.llm.content import content_to_text, summarize_content
from llm_gateway.llm.errors import (
    CircuitOpenError,
    EmptyContentError,
    InvalidJSONResponseError,
    is_abort_error,
)
from llm_gateway.llm.fallback import Attempt, FallbackChain
from llm_gateway.llm.lanes import resolve_lane_models, resolve_lane_reasoning
from llm_gateway.llm.rate_limiter import LLMRateLimiter
from llm_gateway.llm.streaming import StreamMetadata, decode_event_stream
from llm_gateway.llm.types import (
    ErrorEvent,
    Lane,
    StreamEvent,
    TextGenerationResult,
    Usage,
    UsageReport,
    normalize_messages,
)
from llm_gateway.observability.cost_estimator import usage_cost
from llm_gateway.observability.tracing import traced

logger = logging.getLogger(__name__)

UsageCallback = Callable[[UsageReport], Union[None, Awaitable[None]]]

DEFAULT_SYSTEM_PROMPT = "You are a precise, concise assistant."

JSON_TEMPERATURE = 0.2
JSON_MAX_TOKENS  = 8192
TEXT_TEMPERATURE = 0.7
TEXT_MAX_TOKENS  = 4096
STREAM_MAX_TOKENS = 2000
STREAM_TOOL_TEMPERATURE = 0.2

_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


# ---------------------------------------------------------------------------
# Request shaping helpers
# ---------------------------------------------------------------------------

def normalize_tools(tools: Sequence[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
    """
    OpenAI function-tool shape for every named definition.

    Accepts {"type": "function", "function": {...}} or the flat
    {name, description, parameters} form. If nothing usable remains the
    input is passed through unchanged.
    """
    if not tools:
        return None
    normalized: list[dict[str, Any]] = []
    for tool in tools:
        if not isinstance(tool, dict):
            continue
        definition = tool.get("function") if isinstance(tool.get("function"), dict) else tool
        name = definition.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        function: dict[str, Any] = {
            "name":       name,
            "parameters": definition.get("parameters") or {"type": "object", "properties": {}},
        }
        if definition.get("description"):
            function["description"] = definition["description"]
        normalized.append({"type": "function", "function": function})
    return normalized or list(tools)


def clean_json_response(raw: str) -> str:
    """Strip markdown fences, prose around the outer object and trailing commas."""
    cleaned = raw.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    if cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]

    start = cleaned.find("{")
    if start > 0:
        cleaned = cleaned[start:]
    end = cleaned.rfind("}")
    if -1 < end < len(cleaned) - 1:
        cleaned = cleaned[: end + 1]

    return _TRAILING_COMMA.sub(r"\1", cleaned).strip()


def _estimate_tokens(messages: list[dict[str, Any]], max_tokens: int | None) -> int:
    """
    Rough admission estimate: 4 chars ≈ 1 token for the prompt, plus the
    full completion budget. Billing always uses the API's real counts.
    """
    prompt_chars = sum(len(m.get("content") or "") for m in messages)
    return prompt_chars // 4 + (max_tokens or 0)


def _never_retry(exc: Exception) -> bool:
    return False


def _first_choice(body: dict[str, Any]) -> dict[str, Any] | None:
    choices = body.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return None


def extract_text_from_response(body: dict[str, Any]) -> str:
    """Plain text of the first choice, from message content or legacy `text`."""
    choice = _first_choice(body)
    if choice is None:
        return ""
    message = choice.get("message")
    if isinstance(message, dict):
        text = content_to_text(message.get("content"))
        if text.strip():
            return text
    if isinstance(choice.get("text"), str):
        return choice["text"]
    return ""


def _infer_empty_cause(choice: dict[str, Any] | None) -> str:
    message = (choice or {}).get("message") or {}
    if isinstance(message.get("tool_calls"), list) and message["tool_calls"]:
        return "tool_calls_without_text"
    summary = summarize_content(message.get("content"))
    if summary["content_type"] == "null":
        return "null_content"
    if summary["content_type"] == "string" and summary["trimmed_string_length"] == 0:
        return "empty_string"
    if (
        summary["content_type"] == "array"
        and summary["non_reasoning_text_length"] == 0
        and summary["reasoning_text_length"] > 0
    ):
        return "reasoning_only"
    if (choice or {}).get("finish_reason") == "length":
        return "length_without_text"
    return "unknown"


def _empty_content_error(operation: str, requested_model: str, body: dict[str, Any]) -> EmptyContentError:
    choice  = _first_choice(body)
    message = (choice or {}).get("message") or {}
    details = {
        "operation":          operation,
        "inferred_cause":     _infer_empty_cause(choice),
        "requested_model":    requested_model,
        "actual_model":       body.get("model") or requested_model,
        "provider":           body.get("provider"),
        "request_id":         body.get("id"),
        "finish_reason":      (choice or {}).get("finish_reason"),
        "system_fingerprint": body.get("system_fingerprint"),
        "content_summary":    summarize_content(message.get("content")),
    }
    return EmptyContentError(
        f"OpenRouter returned empty content for {operation} "
        f"(model={details['actual_model']}, cause={details['inferred_cause']})",
        details=details,
    )


# ---------------------------------------------------------------------------
# LLMGateway
# ---------------------------------------------------------------------------

class LLMGateway:
    """
    Lane-aware LLM interface with fallback, cancellation and usage reporting.

    Instantiate once per application and share it; all public methods are
    async and safe for concurrent use. Pass an LLMRateLimiter to put every
    upstream attempt under a shared budget and circuit breaker.
    """

    def __init__(
        self,
        client:          OpenRouterClient | None = None,
        rate_limiter:    LLMRateLimiter | None = None,
        settings_loader: Callable[[], GatewaySettings] = load_settings,
    ) -> None:
        self._client   = client or OpenRouterClient.from_settings(get_settings())
        self._limiter  = rate_limiter
        self._settings = settings_loader

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def build_messages(system_prompt: str | None, user_prompt: str) -> list[BaseMessage]:
        messages: list[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=user_prompt))
        return messages

    def resolve_models(
        self,
        lane:     Lane | str,
        model:    str | None = None,
        models:   Sequence[str] | None = None,
        settings: GatewaySettings | None = None,
    ) -> list[str]:
        return resolve_lane_models(lane, model=model, models=models, settings=settings or self._settings())

    # -----------------------------------------------------------------------
    # Shared attempt plumbing
    # -----------------------------------------------------------------------

    async def _complete(self, request: ChatCompletionRequest) -> dict[str, Any]:
        """One non-streaming upstream call under the limiter, if any."""
        if self._limiter is not None:
            await self._limiter.acquire(_estimate_tokens(request.messages, request.max_tokens))
        try:
            body = await self._client.create_chat_completion(request)
        except Exception as exc:
            if self._limiter is not None and not is_abort_error(exc):
                self._limiter.record_error()
            raise
        if self._limiter is not None:
            self._limiter.record_success()
        return body

    async def _report_usage(
        self,
        on_usage: UsageCallback | None,
        model:    str,
        usage:    Usage | None,
    ) -> None:
        if on_usage is None or usage is None:
            return
        prompt_tokens = usage.prompt_tokens or 0
        input_cost, output_cost = usage_cost(model, prompt_tokens, usage.completion_tokens)
        report = UsageReport(
            model             = model,
            prompt_tokens     = prompt_tokens,
            completion_tokens = usage.completion_tokens,
            total_tokens      = usage.total_tokens,
            input_cost        = input_cost,
            output_cost       = output_cost,
            total_cost        = round(input_cost + output_cost, 4),
        )
        result = on_usage(report)
        if inspect.isawaitable(result):
            await result

    def _log_success(self, operation: str, body: dict[str, Any], requested: str, t0: float) -> None:
        usage = body.get("usage") if isinstance(body.get("usage"), dict) else {}
        logger.info(
            "LLMGateway | %s ok model=%s provider=%s tokens=%s latency_ms=%.0f",
            operation, body.get("model") or requested, body.get("provider"),
            usage.get("total_tokens"), (time.perf_counter() - t0) * 1000,
        )

    # -----------------------------------------------------------------------
    # JSON lane
    # -----------------------------------------------------------------------

    @traced("gateway.get_json_response")
    async def get_json_response(
        self,
        system_prompt:        str,
        user_prompt:          str,
        *,
        model:                str | None = None,
        models:               Sequence[str] | None = None,
        temperature:          float = JSON_TEMPERATURE,
        max_tokens:           int = JSON_MAX_TOKENS,
        retry_on_parse_error: bool = True,
        timeout_s:            float | None = None,
        cancel_event:         asyncio.Event | None = None,
        on_usage:             UsageCallback | None = None,
    ) -> Any:
        """
        Ask for a JSON object and return it parsed.

        Empty content and unparseable content count as failed attempts and
        move on to the next candidate. With retry_on_parse_error=False the
        first failed attempt of any kind ends the loop.

        Returns:
            The parsed JSON value, or None if cancel_event fired.

        Raises:
            GatewayExhaustedError: every attempt failed.
            CircuitOpenError:      the rate limiter rejected the call.
        """
        settings = self._settings()
        messages = normalize_messages(self.build_messages(system_prompt, user_prompt))
        chain    = FallbackChain(
            self.resolve_models(Lane.JSON, model, models, settings),
            operation="get JSON response",
        )
        reasoning = resolve_lane_reasoning(Lane.JSON)
        timeout_s = timeout_s or settings.timeout_seconds

        async def call(attempt: Attempt) -> tuple[Any, dict[str, Any], str]:
            t0 = time.perf_counter()
            body = await self._complete(ChatCompletionRequest(
                model           = attempt.model,
                models          = attempt.models,
                messages        = messages,
                temperature     = temperature,
                max_tokens      = max_tokens,
                response_format = {"type": "json_object"},
                reasoning       = reasoning,
                timeout_s       = timeout_s,
                cancel_event    = cancel_event,
            ))
            text = extract_text_from_response(body)
            if not text.strip():
                raise _empty_content_error("get_json_response", attempt.model, body)
            try:
                value = json.loads(clean_json_response(text))
            except ValueError as exc:
                raise InvalidJSONResponseError(
                    f"Model {body.get('model') or attempt.model} returned invalid JSON: {exc}"
                ) from exc
            self._log_success("json", body, attempt.model, t0)
            return value, body, body.get("model") or attempt.model

        try:
            value, body, answered_by = await chain.ainvoke(
                call, should_retry=None if retry_on_parse_error else _never_retry,
            )
        except Exception as exc:
            if is_abort_error(exc):
                logger.debug("LLMGateway | get_json_response cancelled by caller")
                return None
            raise

        await self._report_usage(on_usage, answered_by, Usage.from_openrouter(body.get("usage")))
        return value

    # -----------------------------------------------------------------------
    # Text lane
    # -----------------------------------------------------------------------

    @traced("gateway.generate_text")
    async def generate_text_detailed(
        self,
        prompt:        str,
        system_prompt: str | None = None,
        *,
        model:         str | None = None,
        models:        Sequence[str] | None = None,
        temperature:   float = TEXT_TEMPERATURE,
        max_tokens:    int = TEXT_MAX_TOKENS,
        timeout_s:     float | None = None,
        cancel_event:  asyncio.Event | None = None,
        on_usage:      UsageCallback | None = None,
    ) -> TextGenerationResult | None:
        """Plain-text completion with the model that answered and its usage."""
        settings = self._settings()
        messages = normalize_messages(self.build_messages(system_prompt or DEFAULT_SYSTEM_PROMPT, prompt))
        chain    = FallbackChain(
            self.resolve_models(Lane.TEXT, model, models, settings),
            operation="generate text",
        )
        reasoning = resolve_lane_reasoning(Lane.TEXT)
        timeout_s = timeout_s or settings.timeout_seconds

        async def call(attempt: Attempt) -> TextGenerationResult:
            t0 = time.perf_counter()
            body = await self._complete(ChatCompletionRequest(
                model        = attempt.model,
                models       = attempt.models,
                messages     = messages,
                temperature  = temperature,
                max_tokens   = max_tokens,
                reasoning    = reasoning,
                timeout_s    = timeout_s,
                cancel_event = cancel_event,
            ))
            text = extract_text_from_response(body)
            if not text.strip():
                raise _empty_content_error("generate_text", attempt.model, body)
            self._log_success("text", body, attempt.model, t0)
            return TextGenerationResult(
                text  = text,
                model = body.get("model") or attempt.model,
                usage = Usage.from_openrouter(body.get("usage")),
            )

        try:
            result = await chain.ainvoke(call)
        except Exception as exc:
            if is_abort_error(exc):
                logger.debug("LLMGateway | generate_text cancelled by caller")
                return None
            raise

        await self._report_usage(on_usage, result.model, result.usage)
        return result

    async def generate_text(self, prompt: str, system_prompt: str | None = None, **kwargs: Any) -> str | None:
        result = await self.generate_text_detailed(prompt, system_prompt, **kwargs)
        return result.text if result is not None else None

    # -----------------------------------------------------------------------
    # Streaming (text / tool_calling lanes)
    # -----------------------------------------------------------------------

    async def stream_text(
        self,
        messages:     Sequence[Any],
        *,
        tools:        Sequence[dict[str, Any]] | None = None,
        tool_choice:  Any = "auto",
        model:        str | None = None,
        models:       Sequence[str] | None = None,
        temperature:  float | None = None,
        max_tokens:   int = STREAM_MAX_TOKENS,
        timeout_s:    float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a chat completion as typed events.

        Yields TextEvent / ToolCallEvent items and ends with exactly one
        DoneEvent or ErrorEvent. If cancel_event fires, the stream stops
        with neither.
        """
        settings   = self._settings()
        wire_tools = normalize_tools(tools)
        lane       = Lane.TOOL_CALLING if wire_tools else Lane.TEXT
        chain      = FallbackChain(
            self.resolve_models(lane, model, models, settings),
            operation="stream text",
        )
        wire_messages = normalize_messages(messages)
        if temperature is None:
            temperature = STREAM_TOOL_TEMPERATURE if wire_tools else TEXT_TEMPERATURE
        timeout_s = timeout_s or settings.timeout_seconds

        response = None
        answered = None
        last_error: Exception | None = None

        for attempt in chain.attempts():
            request = ChatCompletionRequest(
                model        = attempt.model,
                models       = attempt.models,
                messages     = wire_messages,
                temperature  = temperature,
                max_tokens   = max_tokens,
                reasoning    = resolve_lane_reasoning(lane),
                tools        = wire_tools,
                tool_choice  = tool_choice if wire_tools else None,
                timeout_s    = timeout_s,
                cancel_event = cancel_event,
            )
            try:
                if self._limiter is not None:
                    await self._limiter.acquire(_estimate_tokens(wire_messages, max_tokens))
                response = await self._client.open_chat_completion_stream(request)
                answered = attempt
                break
            except CircuitOpenError as exc:
                logger.warning("LLMGateway | stream rejected: %s", exc)
                yield ErrorEvent(error=str(exc))
                return
            except Exception as exc:
                if is_abort_error(exc):
                    logger.debug("LLMGateway | stream cancelled before start")
                    return
                if self._limiter is not None:
                    self._limiter.record_error()
                last_error = exc
                logger.warning(
                    "LLMGateway | stream attempt=%d/%d model=%s failed: %s: %s",
                    attempt.number + 1, chain.max_attempts, attempt.model,
                    type(exc).__name__, exc,
                )

        if response is None:
            yield ErrorEvent(error=f"Failed to stream text with OpenRouter: {last_error or 'unknown error'}")
            return

        logger.debug("LLMGateway | stream open lane=%s model=%s", lane.value, answered.model)
        metadata = StreamMetadata.from_headers(response.headers, answered.model)
        failed   = False
        try:
            async for event in decode_event_stream(
                self._client.iter_stream_bytes(response, cancel_event), metadata,
            ):
                yield event
        except Exception as exc:
            failed = True
            if is_abort_error(exc):
                logger.debug("LLMGateway | stream cancelled mid-flight model=%s", metadata.model)
                return
            if self._limiter is not None:
                self._limiter.record_error()
            logger.error("LLMGateway | stream failed model=%s: %s", metadata.model, exc)
            yield ErrorEvent(error=str(exc))
            return
        finally:
            await response.aclose()
            # Also reached when the consumer stops iterating early.
            if not failed and self._limiter is not None:
                self._limiter.record_success()

        usage = metadata.usage
        logger.info(
            "LLMGateway | stream ok model=%s provider=%s tokens=%s",
            metadata.model, metadata.provider, usage.total_tokens if usage else None,
        )
