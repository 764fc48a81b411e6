"""
Event-stream decoding for streamed chat completions.

Input is raw body bytes in `data: {...}` frames, one per line, ended by a
literal `data: [DONE]`. Output is the gateway's typed events:

    TextEvent      one per non-empty content delta, in arrival order
    ToolCallEvent  one per assembled, valid tool call
    DoneEvent      exactly once, last

Tolerance rules:
  - blank lines, comments (": keep-alive") and non-data lines are skipped
  - a frame whose JSON does not parse is skipped
  - end of input without [DONE] still drains pending tool calls and emits done
  - a frame carrying an `error` object raises OpenRouterAPIError; the
    gateway turns it into the terminal error event

Metadata (request id, model, provider, fingerprint, usage) tracks the latest
non-empty value seen on any chunk; an empty field never overwrites it.

Everything between reads is synchronous. The only suspension point is the
byte iterator handed in by the transport.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Iterator

import httpx

from llm_gateway.llm.content import content_to_text
from llm_gateway.llm.errors import OpenRouterAPIError
from llm_gateway.llm.tool_calls import ToolCallAssembler, is_usable
from llm_gateway.llm.types import (
    DoneEvent,
    StreamEvent,
    TextEvent,
    ToolCallEvent,
    Usage,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


# ---------------------------------------------------------------------------
# Derived telemetry
# ---------------------------------------------------------------------------

def resolve_cache_status(usage: Usage | None) -> str | None:
    """Human-readable prompt-cache outcome, e.g. '42.5% cache hit'."""
    if usage is None:
        return None
    cached = usage.cached_tokens or 0
    prompt = usage.prompt_tokens
    if cached <= 0:
        return "no cache" if prompt is not None else None
    if not prompt or prompt <= 0:
        return f"cached {cached} prompt tokens"
    hit_rate = round(cached / prompt * 1000) / 10
    return f"{hit_rate:g}% cache hit"


# ---------------------------------------------------------------------------
# Stream metadata
# ---------------------------------------------------------------------------

def _non_empty(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass
class StreamMetadata:
    """Latest non-empty values seen on the stream, seeded from headers."""
    model:              str | None = None
    provider:           str | None = None
    request_id:         str | None = None
    system_fingerprint: str | None = None
    usage:              Usage | None = None
    finish_reason:      str | None = None

    @classmethod
    def from_headers(cls, headers: httpx.Headers, model: str | None = None) -> "StreamMetadata":
        return cls(
            model              = _non_empty(headers.get("x-openrouter-model")) or model,
            provider           = _non_empty(headers.get("x-openrouter-provider")),
            request_id         = _non_empty(headers.get("x-request-id"))
                                 or _non_empty(headers.get("x-openrouter-request-id")),
            system_fingerprint = _non_empty(headers.get("x-openrouter-system-fingerprint")),
        )

    def absorb(self, chunk: dict[str, Any]) -> None:
        self.request_id         = _non_empty(chunk.get("id")) or self.request_id
        self.system_fingerprint = _non_empty(chunk.get("system_fingerprint")) or self.system_fingerprint
        self.model              = _non_empty(chunk.get("model")) or self.model
        self.provider           = _non_empty(chunk.get("provider")) or self.provider
        usage = Usage.from_openrouter(chunk.get("usage"))
        if usage is not None:
            self.usage = usage

    def done_event(self) -> DoneEvent:
        return DoneEvent(
            finished_reason    = self.finish_reason or "stop",
            usage              = self.usage,
            model              = self.model,
            provider           = self.provider,
            request_id         = self.request_id,
            system_fingerprint = self.system_fingerprint,
            reasoning_tokens   = self.usage.reasoning_tokens if self.usage else None,
            cache_status       = resolve_cache_status(self.usage),
        )


# ---------------------------------------------------------------------------
# Decoder
# ---------------------------------------------------------------------------

@dataclass
class StreamDecoder:
    """
    Stateful line decoder for one stream.

    feed() takes raw bytes and yields the events they complete, one line at
    a time, so events decoded before a failing line still reach the caller.
    finish() is called at end of input. After a DoneEvent the decoder is
    closed and ignores further input.
    """
    metadata:  StreamMetadata = field(default_factory=StreamMetadata)
    assembler: ToolCallAssembler = field(default_factory=ToolCallAssembler)
    closed:    bool = False
    _buffer:   str = field(default="", init=False, repr=False)
    _decoder:  Any = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace"),
        init=False, repr=False,
    )

    def feed(self, data: bytes) -> Iterator[StreamEvent]:
        if self.closed:
            return iter(())
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def _decode_lines(self, lines: list[str]) -> Iterator[StreamEvent]:
        for line in lines:
            if self.closed:
                return
            yield from self._process_line(line)

    def finish(self) -> list[StreamEvent]:
        if self.closed:
            return []
        events: list[StreamEvent] = []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if tail.strip():
            events.extend(self._process_line(tail))
        if not self.closed:
            logger.debug("StreamDecoder | input ended without %s sentinel", DONE_SENTINEL)
            events.extend(self._terminate())
        return events

    def _drain_tool_calls(self) -> Iterator[StreamEvent]:
        for call in self.assembler.drain():
            if not is_usable(call):
                logger.debug(
                    "StreamDecoder | discarding tool call id=%s name=%r (invalid arguments)",
                    call.id, call.name,
                )
                continue
            yield ToolCallEvent(tool_call=call)

    def _terminate(self) -> list[StreamEvent]:
        events: list[StreamEvent] = list(self._drain_tool_calls())
        events.append(self.metadata.done_event())
        self.closed = True
        return events

    def _process_line(self, line: str) -> list[StreamEvent]:
        line = line.rstrip("\r")
        if not line.strip() or not line.startswith("data:"):
            return []
        payload = line[5:].strip()

        if payload == DONE_SENTINEL:
            return self._terminate()

        try:
            chunk = json.loads(payload)
        except ValueError:
            logger.debug("StreamDecoder | skipping malformed frame: %.80s", payload)
            return []
        if not isinstance(chunk, dict):
            return []

        self.metadata.absorb(chunk)

        error_object = chunk.get("error")
        if error_object:
            message = error_object.get("message") if isinstance(error_object, dict) else str(error_object)
            raise OpenRouterAPIError(
                message or "OpenRouter reported an error mid-stream",
                status     = error_object.get("code") if isinstance(error_object, dict) and isinstance(error_object.get("code"), int) else None,
                request_id = self.metadata.request_id,
                details    = chunk,
            )

        choices = chunk.get("choices")
        choice  = choices[0] if isinstance(choices, list) and choices else None
        if not isinstance(choice, dict):
            return []

        usage = Usage.from_openrouter(choice.get("usage"))
        if usage is not None:
            self.metadata.usage = usage

        finish_reason = _non_empty(choice.get("finish_reason"))
        if finish_reason:
            self.metadata.finish_reason = finish_reason

        events: list[StreamEvent] = []
        delta = choice.get("delta")
        if isinstance(delta, dict):
            if delta.get("content") is not None:
                text = content_to_text(delta["content"])
                if text:
                    events.append(TextEvent(content=text))

            tool_deltas = delta.get("tool_calls")
            if isinstance(tool_deltas, list):
                for tool_delta in tool_deltas:
                    if tool_delta:
                        self.assembler.ingest(tool_delta)

        # Emit calls now so execution can start before the stream closes.
        if finish_reason == "tool_calls":
            events.extend(self._drain_tool_calls())

        return events


async def decode_event_stream(
    chunks:   AsyncIterable[bytes],
    metadata: StreamMetadata | None = None,
) -> AsyncIterator[StreamEvent]:
    """
    Decode an event-stream body into gateway events.

    Exceptions raised by `chunks` propagate; the caller decides whether they
    are cancellation or a terminal error.
    """
    decoder = StreamDecoder(metadata=metadata or StreamMetadata())
    async for data in chunks:
        for event in decoder.feed(data):
            yield event
        if decoder.closed:
            return
    for event in decoder.finish():
        yield event
