"""Long-running server tasks which stop the process if they fail.

The outbound sender and the periodic host logger run for the lifetime of
the server and are never awaited until shutdown. A failure in either would
otherwise go unnoticed until the task is garbage collected, leaving a
server that accepts requests but never replies.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from typing import Coroutine

logger = logging.getLogger(__name__)


async def _log_failure(coro: Coroutine[Any, Any, None], name: str) -> None:
    try:
        await coro
    except Exception:
        logger.exception(f'Unhandled error in server task {name}')
        raise


def stop_on_failure(task: asyncio.Task[Any]) -> None:
    """Done callback which exits the process if `task` raised.

    Cancelled tasks and tasks which returned normally are ignored.

    Raises:
        SystemExit: If the task finished with an exception.
    """
    if task.cancelled() or task.exception() is None:
        return
    logger.critical(
        f'Server task {task.get_name()} failed with '
        f'{task.exception()!r}, exiting',
    )
    raise SystemExit(1)


def start_guarded_task(
    coro: Coroutine[Any, Any, None],
    name: str,
) -> asyncio.Task[None]:
    """Schedule `coro` as a named task which exits the process on failure.

    Args:
        coro: Coroutine to run.
        name: Task name used in logs.

    Returns:
        Task running `coro`.
    """
    task = asyncio.create_task(_log_failure(coro, name), name=name)
    task.add_done_callback(stop_on_failure)
    return task
