"""
Observability: logging setup and span timing.

Every gateway operation is timed as a named span and reported through
standard logging, so timings show up under whatever handlers the host
application installs:

    span ok       -> DEBUG   "trace | span=... elapsed_ms=... ok"
    span aborted  -> DEBUG   caller cancellation is not a failure
    span failed   -> ERROR   with traceback

Call configure_logging() once at process start when the host application
has not configured logging itself.
"""

from __future__ import annotations

import functools
import logging
import time
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, TypeVar

from llm_gateway.llm.errors import is_abort_error

logger = logging.getLogger(__name__)

AsyncFn = TypeVar("AsyncFn", bound=Callable[..., Awaitable[Any]])

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
    )


@contextmanager
def span(name: str) -> Iterator[None]:
    """Time the enclosed block and log its outcome under ``name``."""
    started = time.perf_counter()

    def elapsed() -> float:
        return (time.perf_counter() - started) * 1000

    try:
        yield
    except Exception as exc:
        if is_abort_error(exc):
            logger.debug("trace | span=%s elapsed_ms=%.1f aborted", name, elapsed())
        else:
            logger.error(
                "trace | span=%s elapsed_ms=%.1f error=%s",
                name, elapsed(), exc, exc_info=True,
            )
        raise
    logger.debug("trace | span=%s elapsed_ms=%.1f ok", name, elapsed())


def traced(name: str | None = None) -> Callable[[AsyncFn], AsyncFn]:
    """
    Run an async function inside a :func:`span`.

        @traced("gateway.get_json_response")
        async def get_json_response(...): ...

    Without a name the function's qualified name is used.
    """
    def decorator(func: AsyncFn) -> AsyncFn:
        span_name = name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            with span(span_name):
                return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]
    return decorator
