from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def schedule_task(coro: Coroutine[Any, Any, T], label: str) -> asyncio.Task[T]:
    """Schedule a background task and log failures."""
    task = asyncio.create_task(coro, name=label)
    task.add_done_callback(lambda t: log_task_exception(t, label))
    return task


def log_task_exception(task: asyncio.Future[Any], label: str) -> None:
    """Log exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        LOGGER.error("Background task %s failed: %s", label, exc, exc_info=exc)
