"""
Message content as an explicit tagged variant.

Upstream providers return content in three shapes:

  TextContent        plain string
  PartsContent       ordered list of typed parts (``{"type": "text", "text": ...}``,
                     bare strings, ``{"text": {"value": ...}}``, ...)
  StructuredContent  a single object (``{"text": ...}``, ``{"content": ...}``)

as_content() classifies a raw value once; content_to_text() is the only place
that turns a variant into plain text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class PartsContent:
    parts: tuple[Any, ...]


@dataclass(frozen=True)
class StructuredContent:
    value: dict[str, Any]


@dataclass(frozen=True)
class EmptyContent:
    """None, or a value of a shape no provider is known to send."""
    raw: Any = None


MessageContent = Union[TextContent, PartsContent, StructuredContent, EmptyContent]


def as_content(raw: Any) -> MessageContent:
    if isinstance(raw, (TextContent, PartsContent, StructuredContent, EmptyContent)):
        return raw
    if isinstance(raw, str):
        return TextContent(raw)
    if isinstance(raw, (list, tuple)):
        return PartsContent(tuple(raw))
    if isinstance(raw, dict):
        return StructuredContent(raw)
    return EmptyContent(raw)


def _record_text(record: dict[str, Any]) -> str | None:
    text = record.get("text")
    if isinstance(text, str):
        return text
    if isinstance(text, dict) and isinstance(text.get("value"), str):
        return text["value"]
    for key in ("content", "value"):
        if isinstance(record.get(key), str):
            return record[key]
    return None


REASONING_PART_TYPES = frozenset({"reasoning", "analysis", "thinking", "system"})


def _is_reasoning_part(part: Any) -> bool:
    return isinstance(part, dict) and isinstance(part.get("type"), str) and part["type"].strip().lower() in REASONING_PART_TYPES


def _part_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    if isinstance(part, dict):
        return _record_text(part) or ""
    return ""


def content_to_text(content: Any) -> str:
    """Plain text of any content shape; unknown shapes yield ''. Reasoning parts are skipped."""
    variant = as_content(content)
    if isinstance(variant, TextContent):
        return variant.text
    if isinstance(variant, PartsContent):
        return "".join(_part_text(part) for part in variant.parts if not _is_reasoning_part(part))
    if isinstance(variant, StructuredContent):
        value = variant.value
        for key in ("text", "content", "value"):
            if isinstance(value.get(key), str):
                return value[key]
        return ""
    return ""


def normalize_message_content(content: Any) -> str:
    """
    Outbound form of a message's content.

    Extractable text wins; otherwise structured values are JSON-encoded so the
    upstream still sees them.
    """
    if isinstance(content, str):
        return content
    text = content_to_text(content)
    if text.strip():
        return text
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, PartsContent):
        raw: Any = list(content.parts)
    elif isinstance(content, StructuredContent):
        raw = content.value
    elif isinstance(content, EmptyContent):
        raw = content.raw
    else:
        raw = content
    if raw is None:
        return ""
    try:
        return json.dumps(raw)
    except (TypeError, ValueError):
        return str(raw)


def summarize_content(content: Any) -> dict[str, Any]:
    """Shape statistics used when diagnosing an empty response."""
    if content is None:
        return {"content_type": "null"}
    variant = as_content(content)
    if isinstance(variant, TextContent):
        return {
            "content_type":         "string",
            "string_length":        len(variant.text),
            "trimmed_string_length": len(variant.text.strip()),
        }
    if isinstance(variant, StructuredContent):
        return {"content_type": "object", "object_keys": list(variant.value)[:25]}
    if isinstance(variant, EmptyContent):
        return {"content_type": type(variant.raw).__name__}

    part_type_counts: dict[str, int] = {}
    reasoning_len = non_reasoning_len = 0
    for part in variant.parts:
        part_type = "string" if isinstance(part, str) else "unknown"
        if isinstance(part, dict) and isinstance(part.get("type"), str) and part["type"].strip():
            part_type = part["type"].strip().lower()
        length = len(_part_text(part))
        part_type_counts[part_type] = part_type_counts.get(part_type, 0) + 1
        if part_type in REASONING_PART_TYPES:
            reasoning_len += length
        else:
            non_reasoning_len += length
    return {
        "content_type":             "array",
        "part_count":               len(variant.parts),
        "part_type_counts":         part_type_counts,
        "reasoning_text_length":    reasoning_len,
        "non_reasoning_text_length": non_reasoning_len,
    }
