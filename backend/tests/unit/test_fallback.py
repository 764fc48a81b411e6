"""
Unit Tests: FallbackChain
═════════════════════════
Tests for:
  • attempt plan      min(candidates, 3) attempts, untried remainder as models
  • retry loop        advance on failure, predicate opt-out, exhaustion
  • pass-through      aborts and open circuit stop the loop untouched
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from llm_gateway.llm.errors import (
    CircuitOpenError,
    GatewayExhaustedError,
    InvalidJSONResponseError,
    OpenRouterAPIError,
    RequestAbortedError,
)
from llm_gateway.llm.fallback import FallbackChain
from llm_gateway.llm.lanes import FALLBACK_MODEL


@pytest.mark.unit
class TestAttemptPlan:

    def test_attempts_capped_at_three(self):
        chain = FallbackChain(["a", "b", "c", "d", "e"])
        plan = list(chain.attempts())

        assert [a.model for a in plan] == ["a", "b", "c"]
        assert plan[0].models == ["a", "b", "c", "d", "e"]
        assert plan[1].models == ["b", "c", "d", "e"]
        assert plan[2].models == ["c", "d", "e"]
        assert chain.is_last(plan[2])

    def test_fewer_candidates_fewer_attempts(self):
        assert [a.model for a in FallbackChain(["only"]).attempts()] == ["only"]

    def test_empty_candidates_use_hard_fallback(self):
        assert FallbackChain([]).candidates == [FALLBACK_MODEL]


@pytest.mark.unit
class TestRetryLoop:

    async def test_first_success_returns(self):
        call = AsyncMock(return_value="ok")
        assert await FallbackChain(["a", "b"]).ainvoke(call) == "ok"
        assert call.await_count == 1

    async def test_advances_to_next_candidate(self):
        call = AsyncMock(side_effect=[OpenRouterAPIError("boom", status=500), "second"])

        result = await FallbackChain(["a", "b", "c"]).ainvoke(call)

        assert result == "second"
        assert [c.args[0].model for c in call.await_args_list] == ["a", "b"]

    async def test_exhaustion_names_last_error(self):
        errors = [OpenRouterAPIError(f"fail {i}", status=503) for i in range(3)]
        call = AsyncMock(side_effect=errors)

        with pytest.raises(GatewayExhaustedError) as exc_info:
            await FallbackChain(["a", "b", "c"], operation="generate text").ainvoke(call)

        assert exc_info.value.last_error is errors[-1]
        assert exc_info.value.__cause__ is errors[-1]
        assert str(exc_info.value) == "Failed to generate text with OpenRouter: fail 2"

    async def test_predicate_stops_loop(self):
        call = AsyncMock(side_effect=InvalidJSONResponseError("bad json"))

        with pytest.raises(GatewayExhaustedError):
            await FallbackChain(["a", "b", "c"]).ainvoke(
                call, should_retry=lambda exc: not isinstance(exc, InvalidJSONResponseError),
            )
        assert call.await_count == 1

    @pytest.mark.parametrize("exc", [
        RequestAbortedError("Request aborted by caller"),
        CircuitOpenError("Circuit breaker open.", retry_after=10),
    ])
    async def test_abort_and_circuit_open_propagate(self, exc):
        call = AsyncMock(side_effect=exc)
        with pytest.raises(type(exc)):
            await FallbackChain(["a", "b"]).ainvoke(call)
        assert call.await_count == 1
