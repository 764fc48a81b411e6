"""
OpenRouter Chat Completion Client: HTTP Transport Only

Builds chat-completion requests, sends them, and turns every failure into a
structured OpenRouterAPIError. No retries happen here: the gateway's
candidate loop owns retry policy.

  create_chat_completion()        → parsed JSON body
  open_chat_completion_stream()   → open httpx.Response (event-stream body);
                                    decoding is the gateway's job
  iter_stream_bytes()             → cancellable byte iterator over that body

Cancellation model:
  Every call races the upstream against two signals, an internal timeout and
  an optional caller-supplied asyncio.Event. Whichever fires first aborts
  the call. The timer and the event waiter are torn down on every exit path.

Secondary fallback:
  When more than one candidate is passed, the full list goes out in the
  `models` field so OpenRouter may fail over on its own, underneath the
  gateway's manual loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, TypeVar

import httpx

from llm_gateway.core.config import GatewaySettings, get_settings
from llm_gateway.llm.errors import (
    OpenRouterAPIError,
    RequestAbortedError,
    RequestTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 120.0

_REQUEST_ID_HEADERS = ("x-request-id", "x-openrouter-request-id")


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

@dataclass
class ChatCompletionRequest:
    """
    One upstream call.

    model is always sent; models (primary first) is only sent when it holds
    more than one entry.
    """
    model:           str
    messages:        list[dict[str, Any]]
    models:          list[str] = field(default_factory=list)
    temperature:     float | None = None
    max_tokens:      int | None = None
    response_format: dict[str, Any] | None = None
    reasoning:       dict[str, Any] | None = None
    tools:           list[dict[str, Any]] | None = None
    tool_choice:     Any = None
    stream:          bool = False
    timeout_s:       float | None = None
    cancel_event:    asyncio.Event | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model, "messages": self.messages}
        if len(self.models) > 1:
            payload["models"] = list(self.models)
        optional = {
            "temperature":     self.temperature,
            "max_tokens":      self.max_tokens,
            "response_format": self.response_format,
            "reasoning":       self.reasoning,
            "tools":           self.tools or None,
            "tool_choice":     self.tool_choice if self.tools else None,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        if self.stream:
            payload["stream"] = True
        return payload


# ---------------------------------------------------------------------------
# Error helpers
# ---------------------------------------------------------------------------

def _request_id(response: httpx.Response) -> str | None:
    for header in _REQUEST_ID_HEADERS:
        value = response.headers.get(header)
        if value:
            return value
    return None


def _provider_name(error_object: dict[str, Any]) -> str | None:
    metadata = error_object.get("metadata")
    if isinstance(metadata, dict) and isinstance(metadata.get("provider_name"), str):
        return metadata["provider_name"]
    return None


def _error_from_body(
    body:       Any,
    status:     int | None,
    request_id: str | None,
) -> OpenRouterAPIError:
    error_object = body.get("error") if isinstance(body, dict) else None
    message = None
    provider = None
    if isinstance(error_object, dict):
        if isinstance(error_object.get("message"), str):
            message = error_object["message"]
        provider = _provider_name(error_object)
    elif isinstance(error_object, str):
        message = error_object
    elif isinstance(body, str) and body.strip():
        message = body.strip()[:500]

    if message is None:
        message = f"OpenRouter request failed with status {status}"
    return OpenRouterAPIError(
        message,
        status        = status,
        request_id    = request_id,
        details       = body,
        provider_name = provider,
    )


async def _error_from_response(response: httpx.Response) -> OpenRouterAPIError:
    raw = await response.aread()
    text = raw.decode("utf-8", errors="replace")
    try:
        body: Any = response.json()
    except ValueError:
        body = text
    return _error_from_body(body, response.status_code, _request_id(response))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class OpenRouterClient:
    """
    Thin async client for the OpenRouter chat-completions endpoint.

    Usage::

        client = OpenRouterClient.from_settings(get_settings())
        body   = await client.create_chat_completion(request)

        response = await client.open_chat_completion_stream(request)
        try:
            async for chunk in client.iter_stream_bytes(response, cancel_event):
                ...
        finally:
            await response.aclose()
    """

    def __init__(
        self,
        api_key:          str,
        base_url:         str = "https://openrouter.ai/api/v1",
        http_referer:     str | None = None,
        app_name:         str | None = None,
        default_timeout_s: float | None = None,
        http_client:      httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("Missing OpenRouter API key")
        self._base_url          = base_url.rstrip("/")
        self._default_timeout_s = default_timeout_s or DEFAULT_TIMEOUT_SECONDS
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type":  "application/json",
        }
        if http_referer:
            self._headers["HTTP-Referer"] = http_referer
        if app_name:
            self._headers["X-Title"] = app_name
        self._owns_http = http_client is None
        # Timeouts are enforced by _race(); httpx's own would fire first otherwise.
        self._http = http_client or httpx.AsyncClient(timeout=None)

    @classmethod
    def from_settings(
        cls,
        settings:    GatewaySettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "OpenRouterClient":
        cfg = settings or get_settings()
        return cls(
            api_key           = cfg.openrouter_api_key,
            base_url          = cfg.openrouter_v2_base_url,
            http_referer      = cfg.openrouter_http_referer,
            app_name          = cfg.openrouter_app_name,
            default_timeout_s = cfg.timeout_seconds,
            http_client       = http_client,
        )

    @property
    def completions_url(self) -> str:
        return f"{self._base_url}/chat/completions"

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # -----------------------------------------------------------------------
    # Signal handling
    # -----------------------------------------------------------------------

    async def _race(
        self,
        work:         Awaitable[T],
        timeout_s:    float | None,
        cancel_event: asyncio.Event | None,
    ) -> T:
        """Await `work` unless the timeout or the cancel event fires first."""
        if cancel_event is not None and cancel_event.is_set():
            if asyncio.iscoroutine(work):
                work.close()
            raise RequestAbortedError("Request aborted before it was sent")

        task: asyncio.Future[T] = asyncio.ensure_future(work)
        cancel_waiter: asyncio.Future[Any] | None = None
        waiters: set[asyncio.Future[Any]] = {task}
        if cancel_event is not None:
            cancel_waiter = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED,
            )
            if task in done:
                return task.result()
            if cancel_waiter is not None and cancel_waiter in done:
                raise RequestAbortedError("Request aborted by caller")
            raise RequestTimeoutError(f"OpenRouter request timed out after {timeout_s:.1f}s")
        finally:
            for pending in (task, cancel_waiter):
                if pending is not None and not pending.done():
                    pending.cancel()

    # -----------------------------------------------------------------------
    # Non-streaming
    # -----------------------------------------------------------------------

    async def create_chat_completion(self, request: ChatCompletionRequest) -> dict[str, Any]:
        """
        POST a non-streaming completion and return the parsed body.

        Raises:
            OpenRouterAPIError:  network failure, non-2xx status, or an
                                 error object inside a 2xx body.
            RequestTimeoutError: the timeout fired first.
            RequestAbortedError: the caller's cancel event fired first.
        """
        request.stream = False
        timeout_s = request.timeout_s or self._default_timeout_s
        response  = await self._race(self._post(request), timeout_s, request.cancel_event)

        if not response.is_success:
            raise await _error_from_response(response)

        try:
            body = response.json()
        except ValueError as exc:
            raise OpenRouterAPIError(
                "OpenRouter returned a non-JSON body",
                status     = response.status_code,
                request_id = _request_id(response),
                details    = response.text[:500],
            ) from exc

        if isinstance(body, dict) and body.get("error"):
            raise _error_from_body(body, response.status_code, _request_id(response) or body.get("id"))

        logger.debug(
            "OpenRouterClient | completion ok model=%s request_id=%s",
            body.get("model") if isinstance(body, dict) else None, _request_id(response),
        )
        return body

    async def _post(self, request: ChatCompletionRequest) -> httpx.Response:
        try:
            return await self._http.post(
                self.completions_url, json=request.to_payload(), headers=self._headers,
            )
        except httpx.HTTPError as exc:
            raise OpenRouterAPIError(
                f"OpenRouter request failed: {type(exc).__name__}: {exc}"
            ) from exc

    # -----------------------------------------------------------------------
    # Streaming
    # -----------------------------------------------------------------------

    async def open_chat_completion_stream(self, request: ChatCompletionRequest) -> httpx.Response:
        """
        Start a streaming completion and return the open response.

        The timeout covers stream establishment (until headers arrive). The
        caller must close the returned response.
        """
        request.stream = True
        timeout_s = request.timeout_s or self._default_timeout_s
        response  = await self._race(self._send_stream(request), timeout_s, request.cancel_event)

        if not response.is_success:
            try:
                raise await _error_from_response(response)
            finally:
                await response.aclose()
        return response

    async def _send_stream(self, request: ChatCompletionRequest) -> httpx.Response:
        http_request = self._http.build_request(
            "POST", self.completions_url, json=request.to_payload(), headers=self._headers,
        )
        try:
            return await self._http.send(http_request, stream=True)
        except httpx.HTTPError as exc:
            raise OpenRouterAPIError(
                f"OpenRouter stream failed to start: {type(exc).__name__}: {exc}"
            ) from exc

    async def iter_stream_bytes(
        self,
        response:     httpx.Response,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[bytes]:
        """Yield body chunks, checking the cancel event before every read."""
        chunks = response.aiter_bytes().__aiter__()

        async def _next_chunk() -> bytes:
            return await chunks.__anext__()

        while True:
            try:
                if cancel_event is None:
                    chunk = await _next_chunk()
                else:
                    chunk = await self._race(_next_chunk(), None, cancel_event)
            except StopAsyncIteration:
                return
            except httpx.HTTPError as exc:
                raise OpenRouterAPIError(
                    f"OpenRouter stream interrupted: {type(exc).__name__}: {exc}",
                    request_id = _request_id(response),
                ) from exc
            yield chunk
