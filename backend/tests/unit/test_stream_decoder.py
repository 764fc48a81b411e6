"""
Unit Tests: Event-Stream Decoder
════════════════════════════════
Tests for:
  • framing          arbitrary byte splits, multi-byte UTF-8, CRLF
  • tolerance        heartbeats, comments, malformed frames
  • text events      one per non-empty delta, in order
  • tool calls       early drain on finish_reason, invalid calls discarded
  • done event       metadata tracking, cache status, missing sentinel
  • mid-stream error frames raise OpenRouterAPIError
"""

from __future__ import annotations

import httpx
import pytest

from llm_gateway.llm.errors import OpenRouterAPIError
from llm_gateway.llm.streaming import (
    StreamDecoder,
    StreamMetadata,
    decode_event_stream,
    resolve_cache_status,
)
from llm_gateway.llm.types import DoneEvent, TextEvent, ToolCallEvent, Usage
from tests.conftest import byte_stream, sse_body, text_delta


def _tool_delta(index, call_id=None, name=None, arguments=None, finish_reason=None) -> dict:
    call: dict = {"index": index, "function": {}}
    if call_id:
        call["id"] = call_id
    if name:
        call["function"]["name"] = name
    if arguments is not None:
        call["function"]["arguments"] = arguments
    return {"choices": [{"delta": {"tool_calls": [call]}, "finish_reason": finish_reason}]}


async def _collect(*parts: bytes, metadata: StreamMetadata | None = None) -> list:
    return [event async for event in decode_event_stream(byte_stream(*parts), metadata)]


# ─────────────────────────────────────────────────────────────────────────────
# Framing + tolerance
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestFraming:

    async def test_text_events_then_done(self):
        events = await _collect(sse_body(text_delta("Hel"), text_delta("lo")))
        assert [type(e) for e in events] == [TextEvent, TextEvent, DoneEvent]
        assert "".join(e.content for e in events[:2]) == "Hello"

    async def test_byte_level_splits_including_utf8(self):
        body = sse_body(text_delta("naïve café"), text_delta(" ✓"))
        parts = [body[i:i + 3] for i in range(0, len(body), 3)]

        events = await _collect(*parts)

        text = "".join(e.content for e in events if isinstance(e, TextEvent))
        assert text == "naïve café ✓"
        assert isinstance(events[-1], DoneEvent)

    async def test_heartbeats_comments_and_malformed_frames_skipped(self):
        body = (
            b": OPENROUTER PROCESSING\n\n"
            b"event: ping\n"
            b"data: {not json}\n\n"
            b"data: [1, 2]\n\n"
            + sse_body(text_delta("ok"))
        )
        events = await _collect(body)
        assert [type(e) for e in events] == [TextEvent, DoneEvent]

    async def test_crlf_line_endings(self):
        body = sse_body(text_delta("x")).replace(b"\n", b"\r\n")
        events = await _collect(body)
        assert [type(e) for e in events] == [TextEvent, DoneEvent]

    async def test_empty_deltas_emit_nothing(self):
        events = await _collect(sse_body(text_delta(""), {"choices": [{"delta": {}}]}))
        assert [type(e) for e in events] == [DoneEvent]

    async def test_missing_sentinel_still_emits_done(self):
        events = await _collect(sse_body(text_delta("partial"), done=False))
        assert isinstance(events[-1], DoneEvent)

    async def test_trailing_frame_without_newline_processed_at_end(self):
        events = await _collect(b'data: {"choices":[{"delta":{"content":"tail"}}]}')
        assert events[0] == TextEvent(content="tail")
        assert isinstance(events[-1], DoneEvent)

    async def test_input_after_done_ignored(self):
        events = await _collect(sse_body(text_delta("a")) + sse_body(text_delta("b")))
        assert [e.content for e in events if isinstance(e, TextEvent)] == ["a"]
        assert sum(isinstance(e, DoneEvent) for e in events) == 1

    async def test_error_frame_raises(self):
        body = sse_body(text_delta("a"), {"error": {"message": "upstream overloaded", "code": 502}})
        with pytest.raises(OpenRouterAPIError) as exc_info:
            await _collect(body)
        assert exc_info.value.status == 502

    async def test_text_before_error_in_same_read_is_delivered(self):
        body = sse_body(
            text_delta("partial"),
            {"error": {"message": "provider crashed", "code": 500}},
            done=False,
        )
        received = []

        with pytest.raises(OpenRouterAPIError, match="provider crashed"):
            async for event in decode_event_stream(byte_stream(body)):
                received.append(event)

        assert received == [TextEvent(content="partial")]


# ─────────────────────────────────────────────────────────────────────────────
# Tool calls
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestToolCallEvents:

    async def test_fragments_assembled_and_emitted_on_finish_reason(self):
        decoder = StreamDecoder()
        body = sse_body(
            _tool_delta(0, "call_1", "search", '{"q": "ca'),
            _tool_delta(0, arguments='ts"}', finish_reason="tool_calls"),
            done=False,
        )

        events = list(decoder.feed(body))

        assert len(events) == 1
        assert isinstance(events[0], ToolCallEvent)
        assert events[0].tool_call.parsed_arguments() == {"q": "cats"}
        assert not decoder.closed

        # Nothing pending any more; done carries the finish reason.
        tail = list(decoder.feed(b"data: [DONE]\n\n"))
        assert [type(e) for e in tail] == [DoneEvent]
        assert tail[0].finished_reason == "tool_calls"

    async def test_invalid_calls_discarded_on_done(self):
        body = sse_body(
            _tool_delta(0, "call_ok", "ok", "{}"),
            _tool_delta(1, "call_bad_args", "bad", '{"unterminated'),
            _tool_delta(2, "call_no_name", None, "{}"),
        )
        events = await _collect(body)

        calls = [e.tool_call for e in events if isinstance(e, ToolCallEvent)]
        assert [c.id for c in calls] == ["call_ok"]
        assert isinstance(events[-1], DoneEvent)

    async def test_text_and_tool_calls_interleave(self):
        body = sse_body(
            text_delta("Let me look that up."),
            _tool_delta(0, "call_1", "lookup", "{}"),
        )
        events = await _collect(body)
        assert [type(e) for e in events] == [TextEvent, ToolCallEvent, DoneEvent]


# ─────────────────────────────────────────────────────────────────────────────
# Metadata + done
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestDoneMetadata:

    async def test_latest_non_empty_values_win(self):
        body = sse_body(
            {"id": "gen-1", "model": "m/first", "provider": "P1", "choices": [{"delta": {"content": "a"}}]},
            {"id": "", "model": "m/second", "provider": None, "system_fingerprint": "fp_1",
             "choices": [{"delta": {}, "finish_reason": "stop"}]},
            {"usage": {"prompt_tokens": 200, "completion_tokens": 10, "total_tokens": 210,
                       "prompt_tokens_details": {"cached_tokens": 50},
                       "completion_tokens_details": {"reasoning_tokens": 4}},
             "choices": []},
        )
        done = (await _collect(body))[-1]

        assert done.request_id == "gen-1"
        assert done.model == "m/second"
        assert done.provider == "P1"
        assert done.system_fingerprint == "fp_1"
        assert done.usage.total_tokens == 210
        assert done.reasoning_tokens == 4
        assert done.cache_status == "25% cache hit"
        assert done.finished_reason == "stop"

    async def test_headers_seed_metadata(self):
        headers = httpx.Headers({
            "x-openrouter-request-id": "hdr-req",
            "x-openrouter-provider":   "HeaderProvider",
        })
        metadata = StreamMetadata.from_headers(headers, model="requested/model")

        done = (await _collect(sse_body(text_delta("x")), metadata=metadata))[-1]

        assert done.request_id == "gen-stream-1"   # chunk id overrides header
        assert done.provider == "HeaderProvider"
        assert done.model == "requested/model"

    @pytest.mark.parametrize("usage, expected", [
        (None, None),
        (Usage(prompt_tokens=100, cached_tokens=0), "no cache"),
        (Usage(prompt_tokens=None, cached_tokens=0), None),
        (Usage(prompt_tokens=None, cached_tokens=30), "cached 30 prompt tokens"),
        (Usage(prompt_tokens=0, cached_tokens=30), "cached 30 prompt tokens"),
        (Usage(prompt_tokens=3, cached_tokens=1), "33.3% cache hit"),
        (Usage(prompt_tokens=80, cached_tokens=80), "100% cache hit"),
    ])
    def test_cache_status(self, usage, expected):
        assert resolve_cache_status(usage) == expected
