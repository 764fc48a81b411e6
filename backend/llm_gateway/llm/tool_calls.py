"""
Tool-call reassembly for streamed chat completions.

Providers stream a tool invocation as a series of deltas:

    {"index": 0, "id": "call_1", "function": {"name": "search", "arguments": ""}}
    {"index": 0, "function": {"arguments": "{\"qu"}}
    {"index": 0, "function": {"arguments": "ery\": \"x\"}"}}

The split points are arbitrary character boundaries, so arguments are only
ever appended. Index resolution for a delta:

  1. explicit index      → use it (and remember id → index if an id came too)
  2. id only             → remembered index for that id, else the next free one
  3. neither             → the most recently active index

One assembler lives for exactly one stream.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from llm_gateway.llm.errors import ToolCallOverflowError
from llm_gateway.llm.types import ToolCall

logger = logging.getLogger(__name__)

DEFAULT_MAX_CALLS = 64


def is_valid_json_object(text: Any) -> bool:
    """True only for a string that parses to a JSON object."""
    if not isinstance(text, str) or not text.strip():
        return False
    try:
        return isinstance(json.loads(text), dict)
    except ValueError:
        return False


def is_usable(call: ToolCall) -> bool:
    return bool(call.name) and is_valid_json_object(call.arguments)


@dataclass
class _PendingCall:
    id:          str
    name:        str
    arguments:   list[str]


class ToolCallAssembler:
    """
    Accumulates tool-call deltas for one stream.

    Usage::

        assembler = ToolCallAssembler()
        for delta in choice["delta"].get("tool_calls", []):
            assembler.ingest(delta)
        calls = [c for c in assembler.drain() if is_usable(c)]
    """

    def __init__(self, max_calls: int = DEFAULT_MAX_CALLS) -> None:
        self._max_calls  = max_calls
        self._pending:    dict[int, _PendingCall] = {}
        self._id_index:   dict[str, int] = {}
        self._last_index: int | None = None
        self._next_index: int = 0

    def __len__(self) -> int:
        return len(self._pending)

    def _resolve_index(self, index: Any, call_id: str | None) -> int:
        if isinstance(index, int) and not isinstance(index, bool):
            if call_id:
                self._id_index[call_id] = index
            return index
        if call_id:
            known = self._id_index.get(call_id)
            if known is not None:
                return known
            allocated = self._next_index
            self._id_index[call_id] = allocated
            return allocated
        if self._last_index is not None:
            return self._last_index
        return 0

    def ingest(self, delta: dict[str, Any]) -> None:
        if not isinstance(delta, dict):
            return

        raw_id   = delta.get("id")
        call_id  = raw_id if isinstance(raw_id, str) and raw_id else None
        index    = self._resolve_index(delta.get("index"), call_id)

        pending = self._pending.get(index)
        if pending is None:
            if len(self._pending) >= self._max_calls:
                raise ToolCallOverflowError(
                    f"Stream opened more than {self._max_calls} tool calls"
                )
            pending = _PendingCall(id=f"tool_call_{index}", name="", arguments=[])
            self._pending[index] = pending
            self._next_index = max(self._next_index, index + 1)

        if call_id:
            pending.id = call_id

        function = delta.get("function")
        if isinstance(function, dict):
            name = function.get("name")
            if isinstance(name, str) and name:
                pending.name = name
            fragment = function.get("arguments")
            if isinstance(fragment, str):
                pending.arguments.append(fragment)
            elif fragment is not None:
                pending.arguments.append(json.dumps(fragment))

        self._last_index = index

    def drain(self) -> list[ToolCall]:
        """Return every call in first-seen order and reset all state."""
        calls = [
            ToolCall(id=p.id, name=p.name, arguments="".join(p.arguments))
            for p in self._pending.values()
        ]
        self._pending.clear()
        self._id_index.clear()
        self._last_index = None
        self._next_index = 0
        if calls:
            logger.debug("ToolCallAssembler | drained %d call(s)", len(calls))
        return calls
