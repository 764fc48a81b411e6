"""
Unit Tests: @traced decorator
═════════════════════════════
Tests for:
  • success path    result passed through, debug span logged
  • error path      exception re-raised, error span logged with traceback
  • abort path      RequestAbortedError logged at debug only
  • span()          the same timing around a plain block
"""

from __future__ import annotations

import logging

import pytest

from llm_gateway.llm.errors import OpenRouterAPIError, RequestAbortedError
from llm_gateway.observability.tracing import span, traced

TRACE_LOGGER = "llm_gateway.observability.tracing"


@pytest.mark.unit
class TestTraced:

    async def test_returns_result_and_logs_span(self, caplog):
        @traced("unit.ok")
        async def work(x: int) -> int:
            return x * 2

        with caplog.at_level(logging.DEBUG, logger=TRACE_LOGGER):
            assert await work(21) == 42

        assert any("span=unit.ok" in r.getMessage() and r.getMessage().endswith("ok") for r in caplog.records)

    async def test_defaults_span_name_to_qualname(self, caplog):
        @traced()
        async def named():
            return None

        with caplog.at_level(logging.DEBUG, logger=TRACE_LOGGER):
            await named()

        assert any("named" in r.getMessage() for r in caplog.records)
        assert named.__name__ == "named"

    async def test_error_is_logged_and_reraised(self, caplog):
        @traced("unit.fail")
        async def boom():
            raise OpenRouterAPIError("upstream broke", status=502)

        with caplog.at_level(logging.DEBUG, logger=TRACE_LOGGER):
            with pytest.raises(OpenRouterAPIError):
                await boom()

        [record] = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert "span=unit.fail" in record.getMessage()
        assert record.exc_info is not None

    async def test_abort_is_not_an_error(self, caplog):
        @traced("unit.abort")
        async def cancelled():
            raise RequestAbortedError("Request aborted")

        with caplog.at_level(logging.DEBUG, logger=TRACE_LOGGER):
            with pytest.raises(RequestAbortedError):
                await cancelled()

        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert any("aborted" in r.getMessage() for r in caplog.records)

    def test_span_times_a_sync_block(self, caplog):
        with caplog.at_level(logging.DEBUG, logger=TRACE_LOGGER):
            with span("unit.block"):
                pass

        [record] = [r for r in caplog.records if r.name == TRACE_LOGGER]
        assert record.getMessage().startswith("trace | span=unit.block elapsed_ms=")
