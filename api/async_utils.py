"""
Async helpers for route handlers.

Plain FastAPI handlers keep running after the client hangs up; long steps
(upstream downloads, FFmpeg merge) are wrapped with
run_until_disconnected() so they are cancelled instead.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from fastapi import Request

from api.constants import DISCONNECT_POLL_SEC

T = TypeVar("T")


class ClientDisconnected(Exception):
    pass


async def _discard(task: asyncio.Future, cleanup: Optional[Callable[[T], Awaitable[None]]]) -> None:
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    # The work may have finished just before cancel(); its result is orphaned.
    if cleanup is not None and not task.cancelled() and task.exception() is None:
        await cleanup(task.result())


async def run_until_disconnected(
    request: Request,
    awaitable: Awaitable[T],
    cleanup: Optional[Callable[[T], Awaitable[None]]] = None,
    poll_sec: float = DISCONNECT_POLL_SEC,
) -> T:
    """Await the given work, cancelling it if the client disconnects first.

    cleanup receives a result that completed but can no longer be used.

    Raises:
        ClientDisconnected: the client went away and the work was cancelled.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_sec)
            if task in done:
                return task.result()
            if await request.is_disconnected():
                await _discard(task, cleanup)
                raise ClientDisconnected()
    except asyncio.CancelledError:
        await _discard(task, cleanup)
        raise
