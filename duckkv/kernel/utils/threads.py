"""Worker-thread helpers for blocking engine calls."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


async def run_to_completion(
    func: Callable[..., T],
    /,
    *args: Any,
    on_abandoned: Callable[[T], None] | None = None,
) -> T:
    """Run *func* in a worker thread and never return before it has finished.

    A worker thread cannot be interrupted. When the awaiting task is
    cancelled, the call keeps running; this coroutine waits for it to return
    and only then re-raises ``CancelledError``. Any lock held around the call
    therefore stays held for as long as the thread touches the resource.

    Parameters
    ----------
    func : Callable[..., T]
        Blocking callable
    *args : Any
        Positional arguments for *func*
    on_abandoned : Callable[[T], None] | None
        Receives the result of a call that succeeded after its caller was
        cancelled, so resources it created can be closed

    Returns
    -------
    T
        Whatever *func* returned
    """
    future = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait({future})
        if not future.cancelled() and future.exception() is None and on_abandoned is not None:
            on_abandoned(future.result())
        raise


__all__ = ["run_to_completion"]
