"""
LLM Rate Limiter with Circuit Breaker

Admission control for outbound LLM calls, independent of any single call's
outcome. One limiter is built explicitly and handed to every call site that
should share the budget (bulk jobs, the gateway); nothing here is global.

Budget (fixed one-minute window):
  - request count and token count reset together when the window expires
  - exceeding either cap BLOCKS the caller until the window resets
    (back-pressure, not rejection)

Circuit breaker:

    CLOSED ──(error tally reaches threshold)──▶ OPEN
    OPEN ──(cooldown elapsed, on next acquire)──▶ CLOSED

  - while OPEN, acquire() fails fast with CircuitOpenError
  - record_success() decrements the tally (floor 0), so isolated failures
    among mostly-good traffic never trip the breaker

Concurrency:
  State is mutated under a threading.Lock, never held across an await.
  Callers that hit the window cap each sleep out their own remainder with no
  shared wake-up: under load many callers wake together and can exhaust the
  fresh window at once. Known limitation, left unmitigated.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from llm_gateway.core.config import GatewaySettings
from llm_gateway.llm.errors import CircuitOpenError

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN   = "open"


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests_per_minute:   int   = 60
    max_tokens_per_minute:     int   = 100_000
    circuit_breaker_threshold: int   = 5
    circuit_breaker_reset_s:   float = 60.0


@dataclass(frozen=True)
class RateLimiterStatus:
    """Point-in-time snapshot; reading it never changes limiter state."""
    requests_remaining: int
    tokens_remaining:   int
    circuit_state:      CircuitState
    circuit_reset_in:   float | None   # seconds, None when CLOSED
    window_reset_in:    float          # seconds

    @property
    def is_circuit_open(self) -> bool:
        return self.circuit_state is CircuitState.OPEN


class LLMRateLimiter:
    """
    Sliding one-minute request/token budget plus an error-triggered breaker.

    Usage::

        limiter = LLMRateLimiter(RateLimitConfig(max_requests_per_minute=30))

        await limiter.acquire(estimated_tokens=1_500)
        try:
            result = await call_llm()
            limiter.record_success()
        except Exception:
            limiter.record_error()
            raise
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock:  Callable[[], float] = time.monotonic,
        sleep:  Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sleep = sleep
        self._lock  = threading.Lock()

        self._request_count = 0
        self._token_count   = 0
        self._error_count   = 0
        self._window_start  = clock()
        self._circuit_opened_at: float | None = None

    @classmethod
    def from_settings(cls, settings: GatewaySettings, **kwargs) -> "LLMRateLimiter":
        config = RateLimitConfig(
            max_requests_per_minute   = settings.llm_max_requests_per_minute,
            max_tokens_per_minute     = settings.llm_max_tokens_per_minute,
            circuit_breaker_threshold = settings.llm_circuit_breaker_threshold,
            circuit_breaker_reset_s   = settings.llm_circuit_breaker_reset_ms / 1000.0,
        )
        return cls(config, **kwargs)

    # -----------------------------------------------------------------------
    # Admission
    # -----------------------------------------------------------------------

    def _reset_window(self, now: float) -> None:
        self._request_count = 0
        self._token_count   = 0
        self._window_start  = now

    def _check_circuit(self, now: float) -> None:
        if self._circuit_opened_at is None:
            return
        elapsed = now - self._circuit_opened_at
        if elapsed >= self.config.circuit_breaker_reset_s:
            self._circuit_opened_at = None
            self._error_count = 0
            logger.info("LLMRateLimiter | circuit closed after %.0fs cooldown", elapsed)
            return
        remaining = self.config.circuit_breaker_reset_s - elapsed
        raise CircuitOpenError(
            f"Circuit breaker open. LLM requests paused for {math.ceil(remaining)} seconds.",
            retry_after=remaining,
        )

    async def acquire(self, estimated_tokens: int = 0) -> None:
        """
        Reserve one request and `estimated_tokens` tokens in the current window.

        Raises:
            CircuitOpenError: circuit is open and the cooldown has not elapsed.
        """
        with self._lock:
            now = self._clock()
            self._check_circuit(now)

            if now - self._window_start >= WINDOW_SECONDS:
                self._reset_window(now)

            over_requests = self._request_count >= self.config.max_requests_per_minute
            over_tokens   = self._token_count + estimated_tokens > self.config.max_tokens_per_minute
            wait_s = WINDOW_SECONDS - (now - self._window_start) if (over_requests or over_tokens) else 0.0

        if over_requests or over_tokens:
            logger.warning(
                "LLMRateLimiter | budget exhausted (requests=%s tokens=%s); waiting %.1fs for window reset",
                over_requests, over_tokens, wait_s,
            )
            await self._sleep(max(0.0, wait_s))
            with self._lock:
                self._reset_window(self._clock())

        with self._lock:
            self._request_count += 1
            self._token_count   += estimated_tokens

    # -----------------------------------------------------------------------
    # Outcome tracking
    # -----------------------------------------------------------------------

    def record_success(self) -> None:
        with self._lock:
            self._error_count = max(0, self._error_count - 1)

    def record_error(self) -> None:
        with self._lock:
            self._error_count += 1
            if (
                self._circuit_opened_at is None
                and self._error_count >= self.config.circuit_breaker_threshold
            ):
                self._circuit_opened_at = self._clock()
                logger.warning(
                    "LLMRateLimiter | circuit OPEN errors=%d cooldown=%.0fs",
                    self._error_count, self.config.circuit_breaker_reset_s,
                )

    def force_reset_circuit(self) -> None:
        """Administrative override: close the circuit and clear the error tally."""
        with self._lock:
            self._circuit_opened_at = None
            self._error_count = 0
        logger.info("LLMRateLimiter | circuit force-reset")

    # -----------------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------------

    @property
    def circuit_state(self) -> CircuitState:
        return CircuitState.OPEN if self._circuit_opened_at is not None else CircuitState.CLOSED

    def status(self) -> RateLimiterStatus:
        with self._lock:
            now = self._clock()
            circuit_reset_in = None
            if self._circuit_opened_at is not None:
                circuit_reset_in = max(
                    0.0, self.config.circuit_breaker_reset_s - (now - self._circuit_opened_at),
                )
            return RateLimiterStatus(
                requests_remaining = max(0, self.config.max_requests_per_minute - self._request_count),
                tokens_remaining   = max(0, self.config.max_tokens_per_minute - self._token_count),
                circuit_state      = self.circuit_state,
                circuit_reset_in   = circuit_reset_in,
                window_reset_in    = max(0.0, WINDOW_SECONDS - (now - self._window_start)),
            )
