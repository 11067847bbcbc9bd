"""Shared ThreadPoolExecutor for Pillow decode/encode work."""

from __future__ import annotations

import asyncio
import os
import platform
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

T = TypeVar("T")


def _get_optimal_workers() -> int:
    """Get optimal thread pool size based on platform.

    Windows has higher thread context switch overhead, so we use a lower
    default there.
    """
    cpu_count = os.cpu_count() or 4
    if platform.system() == "Windows":
        return min(cpu_count, 4)
    return min(cpu_count, 8)


# Global image thread pool executor with thread-safe initialization
_IMAGE_EXECUTOR: ThreadPoolExecutor | None = None
_IMAGE_MAX_WORKERS = _get_optimal_workers()
_EXECUTOR_LOCK = threading.Lock()


def get_image_executor() -> ThreadPoolExecutor:
    """Get or create the shared image thread pool executor.

    Uses double-checked locking for thread-safe lazy initialization.
    """
    global _IMAGE_EXECUTOR
    if _IMAGE_EXECUTOR is None:
        with _EXECUTOR_LOCK:
            if _IMAGE_EXECUTOR is None:
                _IMAGE_EXECUTOR = ThreadPoolExecutor(
                    max_workers=_IMAGE_MAX_WORKERS,
                    thread_name_prefix="imgbudget-image",
                )
    return _IMAGE_EXECUTOR


async def run_in_image_thread(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking image operation in the shared thread pool.

    Decoding and encoding with Pillow would otherwise block the event loop
    and stall every other pending probe.

    Args:
        func: Function to run in thread pool
        *args: Positional arguments to pass to func
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result of func(*args, **kwargs)
    """
    loop = asyncio.get_running_loop()
    executor = get_image_executor()
    return await loop.run_in_executor(executor, lambda: func(*args, **kwargs))


def shutdown_image_executor() -> None:
    """Shutdown the shared image executor.

    Call this during application cleanup to ensure clean shutdown.
    """
    global _IMAGE_EXECUTOR
    if _IMAGE_EXECUTOR is not None:
        _IMAGE_EXECUTOR.shutdown(wait=True)
        _IMAGE_EXECUTOR = None
