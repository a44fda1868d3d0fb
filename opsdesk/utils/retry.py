"""
Retry logic with delays between attempts.

Background consistency work (daily task instantiation) is retried here
instead of surfacing errors to the user.
"""

import logging
import asyncio
import inspect
import random
from typing import Callable, Type, Tuple, Any

logger = logging.getLogger(__name__)


class RetryExhausted(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


async def retry_with_backoff(
    func: Callable,
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retry_on: Tuple[Type[Exception], ...] = (Exception,),
    skip_on: Tuple[Type[Exception], ...] = (),
    **kwargs
) -> Any:
    """
    Execute a function with exponential backoff retry logic.

    Args:
        func: Async (or plain) function to execute
        *args: Positional arguments for func
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Base for exponential calculation (default: 2.0)
        jitter: Randomize delays between 50% and 150% (default: True)
        retry_on: Exception types to retry on (default: all exceptions)
        skip_on: Exception types to never retry (raised immediately)
        **kwargs: Keyword arguments for func

    Returns:
        Result of func execution

    Raises:
        RetryExhausted: If all retries are exhausted
        Exception: If exception is in skip_on list

    Example:
        created = await retry_with_backoff(
            manager.ensure_daily_tasks,
            user_id,
            max_retries=1,
            base_delay=30.0,
            jitter=False,
        )
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(max_retries + 1):
        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result

            if attempt > 0:
                logger.info(f"Retry successful on attempt {attempt + 1}/{max_retries + 1} for {name}")

            return result

        except skip_on as e:
            logger.warning(f"Skipping retry for {name}: {type(e).__name__}: {e}")
            raise

        except retry_on as e:
            if attempt == max_retries:
                logger.error(f"All {max_retries + 1} attempts exhausted for {name}")
                raise RetryExhausted(
                    f"Failed after {max_retries + 1} attempts: {type(e).__name__}: {e}"
                ) from e

            delay = min(base_delay * (exponential_base ** attempt), max_delay)
            if jitter:
                delay = delay * (0.5 + random.random())

            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} for {name} failed "
                f"with {type(e).__name__}: {e}. Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    raise RetryExhausted(f"Failed after {max_retries + 1} attempts")

