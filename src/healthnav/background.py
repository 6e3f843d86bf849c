"""Detached execution for work the caller must not wait on."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from healthnav.config import settings

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(
    max_workers=settings.worker_threads,
    thread_name_prefix="healthnav",
)


def _log_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Detached task failed", exc_info=exc)


def run_detached(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    """Submit *fn* to the shared pool; failures surface only in the log."""
    future = _executor.submit(fn, *args, **kwargs)
    future.add_done_callback(_log_failure)
    return future
