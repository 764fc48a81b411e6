"""
LLM Fallback Chain: Manual Failover Across Candidate Models

One logical operation is attempted against an ordered candidate list until
one attempt succeeds or the attempt budget runs out.

Attempt plan:
  - max attempts = min(len(candidates), 3), at least 1
  - attempt i names candidates[i] as primary
  - the untried remainder (candidates[i+1:]) rides along as the request's
    `models` list so OpenRouter can also fail over underneath us

Retry policy:
  - Any exception advances to the next candidate, unless the caller's
    `should_retry` predicate says otherwise.
  - Cancellation (RequestAbortedError and look-alikes) and an open circuit
    always stop the loop immediately.
  - When attempts are exhausted a GatewayExhaustedError names the last
    underlying error.

Note on double fallback:
  The manual loop and OpenRouter's own `models` fallback can overlap: a
  model the upstream already tried underneath attempt 0 may be retried as
  the primary of attempt 1. Kept as-is; see DESIGN.md.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Sequence, TypeVar

from llm_gateway.llm.errors import (
    CircuitOpenError,
    GatewayExhaustedError,
    is_abort_error,
)
from llm_gateway.llm.lanes import FALLBACK_MODEL

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class Attempt:
    """One planned attempt: the primary model plus the upstream fallback list."""
    number: int
    model:  str
    models: list[str]


class FallbackChain:
    """
    Ordered candidate models with manual failover.

    Usage::

        chain = FallbackChain(resolve_lane_models("json"))

        # Non-streaming
        body = await chain.ainvoke(lambda attempt: client.create_chat_completion(...))

        # Streaming establishment (caller drives the loop)
        for attempt in chain.attempts():
            ...

    The chain is stateless per operation; build one per call.
    """

    def __init__(
        self,
        candidates:   Sequence[str],
        max_attempts: int = MAX_ATTEMPTS,
        operation:    str = "completion",
    ) -> None:
        self._candidates   = list(candidates) or [FALLBACK_MODEL]
        self._max_attempts = max(1, min(len(self._candidates), max_attempts))
        self._operation    = operation

    @property
    def candidates(self) -> list[str]:
        return list(self._candidates)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def attempt(self, number: int) -> Attempt:
        model  = self._candidates[number] if number < len(self._candidates) else self._candidates[0]
        models = [model, *(m for m in self._candidates[number + 1:] if m != model)]
        return Attempt(number=number, model=model, models=models)

    def attempts(self) -> Iterator[Attempt]:
        for number in range(self._max_attempts):
            yield self.attempt(number)

    def is_last(self, attempt: Attempt) -> bool:
        return attempt.number >= self._max_attempts - 1

    # -----------------------------------------------------------------------
    # Non-streaming invoke
    # -----------------------------------------------------------------------

    async def ainvoke(
        self,
        call:         Callable[[Attempt], Awaitable[T]],
        should_retry: Callable[[Exception], bool] | None = None,
    ) -> T:
        """
        Run `call` per attempt until one returns.

        Raises:
            GatewayExhaustedError: every permitted attempt failed.
            RequestAbortedError / CircuitOpenError: re-raised untouched.
        """
        last_error: Exception | None = None

        for attempt in self.attempts():
            try:
                logger.debug(
                    "FallbackChain | %s attempt=%d model=%s fallbacks=%s",
                    self._operation, attempt.number + 1, attempt.model, attempt.models[1:],
                )
                return await call(attempt)

            except Exception as exc:
                if is_abort_error(exc) or isinstance(exc, CircuitOpenError):
                    raise
                last_error = exc
                logger.warning(
                    "FallbackChain | %s attempt=%d/%d model=%s failed: %s: %s",
                    self._operation, attempt.number + 1, self._max_attempts,
                    attempt.model, type(exc).__name__, exc,
                )
                if should_retry is not None and not should_retry(exc):
                    break

        reason = str(last_error) if last_error is not None else "unknown error"
        raise GatewayExhaustedError(
            f"Failed to {self._operation} with OpenRouter: {reason}",
            last_error=last_error,
        ) from last_error
