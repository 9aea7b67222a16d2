"""
Bounded retry helper for outbound network calls (transaction submission)
"""
import asyncio
import functools
import logging
from typing import Callable, Any, Tuple, Type, TypeVar, cast, Awaitable

logger = logging.getLogger(__name__)

# Define a type variable for the return type of the decorated function
T = TypeVar('T')

def with_retry(
    max_retries: int = 3,
    retry_delay: float = 0.5,
    retry_on: Tuple[Type[BaseException], ...] = (ConnectionError,),
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator that retries an awaitable on the given exception types.

    The delay between attempts is fixed; once `max_retries` extra attempts
    are spent the last error is re-raised.

    Args:
        max_retries: Maximum number of retries before giving up
        retry_delay: Delay between retries in seconds
        retry_on: Exception types that are worth another attempt

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            retries = 0

            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    retries += 1
                    if retries > max_retries:
                        logger.error(
                            f"{getattr(func, '__name__', 'call')} failed after {max_retries} retries: {e}"
                        )
                        raise
                    logger.warning(
                        f"{getattr(func, '__name__', 'call')} failed: {str(e)}. "
                        f"Retrying in {retry_delay:.2f}s... (Attempt {retries}/{max_retries})"
                    )
                    if retry_delay > 0:
                        await asyncio.sleep(retry_delay)

        return cast(Callable[..., Awaitable[T]], wrapper)

    return decorator
