"""Async utilities for running blocking HTTP calls from the sync engine."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_with_timeout(
    func: Callable[..., T],
    timeout: float | None,
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run a synchronous function in a thread pool, giving up after *timeout* seconds.

    The worker thread is not interrupted when the timeout fires; the
    caller simply stops waiting for it.  Blocking calls should carry their
    own socket timeout as well.

    Args:
        func: Synchronous function to call
        timeout: Seconds to wait, or None to wait indefinitely
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Raises:
        TimeoutError: If the call did not finish in time.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs), timeout
        )
    except asyncio.TimeoutError:
        logger.debug(
            "%s did not finish within %ss",
            getattr(func, "__name__", func),
            timeout,
        )
        raise TimeoutError(
            f"timed out after {timeout}s"
        ) from None
