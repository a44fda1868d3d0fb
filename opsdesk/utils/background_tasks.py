"""
Safe background task execution with error handling.

Background consistency operations never raise into their caller:
- errors are logged with stack traces
- task references are tracked so pending tasks are not garbage collected
"""

import asyncio
import logging
from typing import Coroutine, Any, Set

logger = logging.getLogger(__name__)

# Track active tasks to prevent garbage collection
_active_background_tasks: Set[asyncio.Task] = set()


async def safe_background_task(coro: Coroutine, task_name: str) -> Any:
    """
    Wrapper for background tasks with error handling.

    Args:
        coro: Coroutine to execute
        task_name: Human-readable task name for logging

    Returns:
        Result of the coroutine if successful, None on error
    """
    try:
        result = await coro
        logger.info(f"Background task completed: {task_name}")
        return result
    except asyncio.CancelledError:
        logger.info(f"Background task cancelled: {task_name}")
        raise
    except Exception as e:
        logger.error(f"Background task failed: {task_name} - {e}", exc_info=True)
        return None


def create_safe_task(coro: Coroutine, task_name: str) -> asyncio.Task:
    """
    Create a background task with error handling.

    Example:
        task = create_safe_task(
            manager.ensure_daily_tasks(user_id),
            f"daily-tasks-{user_id}"
        )
    """
    task = asyncio.create_task(safe_background_task(coro, task_name))

    _active_background_tasks.add(task)
    task.add_done_callback(_active_background_tasks.discard)

    logger.debug(f"Created safe background task: {task_name}")
    return task


def active_background_task_count() -> int:
    return len(_active_background_tasks)


async def cancel_background_tasks() -> int:
    """Cancel every tracked task and wait for them; used at shutdown."""
    tasks = [t for t in _active_background_tasks if not t.done()]
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    return len(tasks)
