import asyncio
import functools
import logging
from typing import Any, Callable, Tuple, Type

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 0.5,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
):
    """Async retry decorator with exponential backoff.

    Only exceptions listed in ``exceptions`` are retried; anything else
    propagates on the first attempt.
    """

    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    attempt += 1
                    if attempt > max_retries:
                        raise
                    delay = base_delay * (2 ** (attempt - 1))
                    logger.debug(
                        f"{func.__name__} failed ({e}); retry {attempt}/{max_retries} in {delay}s"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
