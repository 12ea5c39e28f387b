"""Helpers for starting coroutines from synchronous simulation code."""
import asyncio
from typing import Any, Awaitable, Callable, Optional


def schedule(coro: Awaitable, callback: Optional[Callable[[Any], None]] = None):
    """Run a coroutine in the background when an event loop is running, inline otherwise.

    Args:
        coro: Coroutine to run.
        callback: Called with the coroutine's result once it finishes. Not called
            when the task is cancelled or raises.

    Returns:
        The task when scheduled on a running loop, or the result when run inline.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        result = asyncio.run(coro)
        if callback is not None:
            callback(result)
        return result

    task = loop.create_task(coro)
    if callback is not None:
        def _done(finished: asyncio.Task):
            if not finished.cancelled() and finished.exception() is None:
                callback(finished.result())
        task.add_done_callback(_done)
    return task
