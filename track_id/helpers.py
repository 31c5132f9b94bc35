"""
Helper functions for the track_id package.
Pure utility functions with minimal dependencies.
"""
from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional, Set

from logging_config import get_logger

logger = get_logger(__name__)


# =============================================================================
# Thread Executor for Blocking Operations
# =============================================================================
# Blocking work (sound device writes, ffmpeg encodes, HTTP via requests) runs
# here so the event loop keeps pumping audio.

_thread_executor: Optional[ThreadPoolExecutor] = None
_background_tasks: Set[asyncio.Task] = set()


def _get_daemon_executor() -> ThreadPoolExecutor:
    """Get or create the thread executor for blocking operations."""
    global _thread_executor
    if _thread_executor is None:
        _thread_executor = ThreadPoolExecutor(
            max_workers=8,
            thread_name_prefix="TrackID_Worker"
        )
    return _thread_executor


async def run_in_daemon_executor(func: Callable, *args: Any) -> Any:
    """
    Run a blocking function in the shared thread executor.

    Args:
        func: Blocking function to run
        *args: Arguments to pass to the function

    Returns:
        Result of the function
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_get_daemon_executor(), func, *args)


def shutdown_daemon_executor():
    """Shutdown the thread executor. Call during app cleanup."""
    global _thread_executor
    if _thread_executor is not None:
        # wait=False so a hung device write cannot block exit
        _thread_executor.shutdown(wait=False, cancel_futures=True)
        _thread_executor = None


def create_tracked_task(coro, name: Optional[str] = None) -> asyncio.Task:
    """
    Create a background task with automatic cleanup and error logging.
    Prevents silent failures and ensures tasks complete even if references are lost.
    """
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)

    def cleanup(t):
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.error(f"Background task failed: {exc}", exc_info=exc)

    task.add_done_callback(cleanup)
    return task
