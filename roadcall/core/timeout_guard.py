"""Deadline enforcement for provider attempts.

Races an awaitable against a timer. On timeout the guard reports
ProviderTimeoutError immediately and does not wait for the operation.

Cancellation is best effort only. The wrapped task is cancelled, but an
adapter that runs a blocking SDK call in an executor thread cannot be
interrupted: that network call keeps running in the background until it
returns on its own, and its result is discarded.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from .errors import ProviderTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(
    operation: Awaitable[T],
    timeout_ms: float,
    provider: str | None = None,
) -> T:
    """Await operation, giving up after timeout_ms milliseconds.

    Args:
        operation: Coroutine or future to run.
        timeout_ms: Deadline in milliseconds.
        provider: Provider id, used only to label the timeout error.

    Returns:
        The operation's result if it completes in time.

    Raises:
        ProviderTimeoutError: If the deadline passes first (or is not
            positive to begin with).
        Exception: Whatever the operation itself raises.
    """
    task = asyncio.ensure_future(operation)

    if timeout_ms <= 0:
        task.cancel()
        raise ProviderTimeoutError(timeout_ms, provider)

    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    task.cancel()
    # Consume the eventual outcome so a late failure is not reported as
    # "exception was never retrieved".
    task.add_done_callback(_discard_late_result)
    logger.debug(f"Timed out after {timeout_ms:.0f}ms waiting on {provider or 'operation'}")
    raise ProviderTimeoutError(timeout_ms, provider)


def _discard_late_result(task: "asyncio.Future[object]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Late failure after timeout discarded: {exc}")
