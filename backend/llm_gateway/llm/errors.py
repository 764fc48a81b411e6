"""
Gateway exception hierarchy.

Retry decisions are made by the gateway's candidate loop, never inside the
transport. Every exception here carries enough structured context (status,
request id, raw body) for the caller to log it without re-parsing messages.

Cancellation is deliberately outside the error path: RequestAbortedError
exists so the transport can unwind, but the gateway swallows it and ends the
operation with no event and no exception.
"""

from __future__ import annotations

from typing import Any

_RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429})


class GatewayError(Exception):
    """Base exception for all gateway errors."""


class OpenRouterAPIError(GatewayError):
    """
    The upstream call failed.

    Raised for network failures (status is None), non-2xx responses, and
    2xx responses whose body still carries an ``error`` object.
    """

    def __init__(
        self,
        message:       str,
        *,
        status:        int | None = None,
        request_id:    str | None = None,
        details:       Any = None,
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status        = status
        self.request_id    = request_id
        self.details       = details
        self.provider_name = provider_name

    @property
    def retryable(self) -> bool:
        if self.status is None:
            return True
        if self.status in _RETRYABLE_STATUS_CODES or 500 <= self.status < 600:
            return True
        if self.provider_name:
            return True
        return "provider returned error" in str(self).lower()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({str(self)!r}, status={self.status}, "
            f"request_id={self.request_id!r})"
        )


class RequestTimeoutError(OpenRouterAPIError):
    """The internal request timeout fired before the upstream answered."""


class RequestAbortedError(GatewayError):
    """The caller's cancellation signal fired."""


class EmptyContentError(GatewayError):
    """A successful response carried no usable text."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class InvalidJSONResponseError(GatewayError):
    """JSON-lane content could not be parsed."""


class GatewayExhaustedError(GatewayError):
    """Every candidate attempt failed."""

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class CircuitOpenError(GatewayError):
    """Admission rejected because the circuit breaker is open."""

    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ToolCallOverflowError(GatewayError):
    """A stream tried to open more tool calls than the assembler holds."""


def is_abort_error(exc: BaseException) -> bool:
    """True for caller-initiated cancellation, by type, class name or message."""
    if isinstance(exc, RequestAbortedError):
        return True
    if "Abort" in type(exc).__name__:
        return True
    return "aborted" in str(exc).lower()
