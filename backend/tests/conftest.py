"""
Root conftest.py: Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : clean_gateway_env, fake_clock, make_client

Environment strategy:
  - OPENROUTER_API_KEY is a dummy; no test ever reaches the network.
  - Lane override variables are cleared before every test so a developer's
    shell or .env cannot change candidate ordering.
  - HTTP is served by httpx.MockTransport handlers defined per test.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # end-to-end gateway tests (mocked HTTP)
  pytest tests/unit/test_lanes.py # single file
"""

from __future__ import annotations

import json
import os
from typing import Any, AsyncIterator, Callable

import httpx
import pytest

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any gateway imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("OPENROUTER_API_KEY", "sk-or-test-key")

_OVERRIDE_VARS = (
    "OPENROUTER_V2_MODELS",
    "OPENROUTER_V2_TEXT_MODELS",
    "OPENROUTER_V2_JSON_MODELS",
    "OPENROUTER_V2_TOOL_MODELS",
    "OPENROUTER_V2_EXACTO_TOOLS_ENABLED",
    "OPENROUTER_V2_TIMEOUT_MS",
    "OPENROUTER_V2_BASE_URL",
)

TEST_BASE_URL = "https://openrouter.test/api/v1"


@pytest.fixture(autouse=True)
def clean_gateway_env(monkeypatch, tmp_path):
    """Strip override variables and isolate from any .env in the repo."""
    from llm_gateway.core.config import get_settings

    for var in _OVERRIDE_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ─────────────────────────────────────────────────────────────────────────────
# Response builders
# ─────────────────────────────────────────────────────────────────────────────

def completion_body(
    content: Any = "hello",
    model:   str = "openai/gpt-4o-mini",
    usage:   dict[str, Any] | None = None,
    **choice_extra: Any,
) -> dict[str, Any]:
    """A non-streaming chat completion body with one choice."""
    choice = {
        "index":         0,
        "message":       {"role": "assistant", "content": content},
        "finish_reason": "stop",
    }
    choice.update(choice_extra)
    return {
        "id":       "gen-test-1",
        "model":    model,
        "provider": "TestProvider",
        "choices":  [choice],
        "usage":    usage if usage is not None else {
            "prompt_tokens": 12, "completion_tokens": 8, "total_tokens": 20,
        },
    }


def sse_frame(chunk: dict[str, Any] | str) -> bytes:
    payload = chunk if isinstance(chunk, str) else json.dumps(chunk)
    return f"data: {payload}\n\n".encode("utf-8")


def sse_body(*chunks: dict[str, Any] | str, done: bool = True) -> bytes:
    """Concatenate frames into one event-stream body, optionally ending with [DONE]."""
    body = b"".join(sse_frame(c) for c in chunks)
    if done:
        body += b"data: [DONE]\n\n"
    return body


def text_delta(text: str, **extra: Any) -> dict[str, Any]:
    chunk = {"id": "gen-stream-1", "choices": [{"index": 0, "delta": {"content": text}}]}
    chunk.update(extra)
    return chunk


async def byte_stream(*parts: bytes) -> AsyncIterator[bytes]:
    """Async body for httpx.Response so each part arrives as its own read."""
    for part in parts:
        yield part


def stream_response(*parts: bytes, headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream", **(headers or {})},
        content=byte_stream(*parts),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Client factory
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_client():
    """
    Factory fixture: OpenRouterClient wired to an httpx.MockTransport.

    The handler receives the httpx.Request and returns an httpx.Response
    (sync or async).
    """
    from llm_gateway.llm.client import OpenRouterClient

    def _build(handler: Callable[[httpx.Request], Any], **kwargs: Any) -> OpenRouterClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=None)
        return OpenRouterClient(
            api_key      = "sk-or-test-key",
            base_url     = TEST_BASE_URL,
            http_referer = "https://example.test",
            app_name     = "Gateway Tests",
            http_client  = http,
            **kwargs,
        )
    return _build


def request_json(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content)


# ─────────────────────────────────────────────────────────────────────────────
# Deterministic time
# ─────────────────────────────────────────────────────────────────────────────

class FakeClock:
    """Monotonic clock whose sleep() advances time instead of waiting."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
