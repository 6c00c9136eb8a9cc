import functools
import logging
import asyncio
from typing import Tuple, Type

def retry_on_exception(retries: int = 3, delay: float = 2,
                       exceptions: Tuple[Type[BaseException], ...] = (Exception,)):
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, retries + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    logging.warning(f"Attempt {attempt}/{retries} of {func.__name__} failed: {e}")
                    if attempt == retries:
                        raise
                    await asyncio.sleep(delay)
        return wrapper
    return decorator
