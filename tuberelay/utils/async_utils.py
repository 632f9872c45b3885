"""
Async utilities for wrapping blocking calls.

Blocking work is pushed to thread pools so the asyncio event loop keeps
serving streams. yt-dlp extraction and local file I/O use separate pools:
a burst of hung lookups must never delay reads of merged files.
"""
from __future__ import annotations

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar, Callable

T = TypeVar("T")

# Extraction calls are slow and network-bound; a timed-out call keeps its
# worker until its own deadline passes.
EXTRACT_WORKERS = 32
IO_WORKERS = 8

_executor = ThreadPoolExecutor(max_workers=EXTRACT_WORKERS, thread_name_prefix="tuberelay-extract")
_io_executor = ThreadPoolExecutor(max_workers=IO_WORKERS, thread_name_prefix="tuberelay-io")


async def _run_in(executor: ThreadPoolExecutor, fn: Callable[..., T], args, kwargs) -> T:
    loop = asyncio.get_running_loop()
    if kwargs:
        call = functools.partial(fn, *args, **kwargs)
        return await loop.run_in_executor(executor, call)
    return await loop.run_in_executor(executor, fn, *args)


async def run_sync(fn: Callable[..., T], *args, **kwargs) -> T:
    """Run a synchronous blocking function in the extraction thread pool.

    Usage:
        result = await run_sync(blocking_function, arg1, arg2)
        result = await run_sync(obj.method, arg1, kwarg=value)
    """
    return await _run_in(_executor, fn, args, kwargs)


async def run_io(fn: Callable[..., T], *args, **kwargs) -> T:
    """Like run_sync(), for short local file operations."""
    return await _run_in(_io_executor, fn, args, kwargs)
