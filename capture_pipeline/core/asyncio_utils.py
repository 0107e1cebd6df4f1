"""Task helpers so background work never loses its exceptions."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


def add_task_exception_logger(
    task: asyncio.Task[Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
) -> asyncio.Task[Any]:
    """Log an exception raised by ``task`` once it finishes.

    Cancellation is expected and stays silent.
    """
    task_logger = ensure_structured_logger(logger, fallback_name="asyncio")
    label = context or task.get_name() or "background task"

    def _done(done_task: asyncio.Task[Any]) -> None:
        if done_task.cancelled():
            return
        exc = done_task.exception()
        if exc is not None:
            task_logger.error("Unhandled exception in %s: %s", label, exc, exc_info=exc)

    task.add_done_callback(_done)
    return task


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
    pending: Optional[set[asyncio.Task[Any]]] = None,
) -> asyncio.Task[Any]:
    task = asyncio.get_running_loop().create_task(coro, name=context)
    add_task_exception_logger(task, logger=logger, context=context)
    if pending is not None:
        pending.add(task)
        task.add_done_callback(pending.discard)
    return task


__all__ = ["add_task_exception_logger", "create_logged_task"]
