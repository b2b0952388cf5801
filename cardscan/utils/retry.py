"""
Retry utilities with exponential backoff.

Used around collaborators that fail transiently when they are opened, such as
camera devices that are still being released by another process.
"""

import functools
import random
import time
from typing import Callable, Optional, Type, Union


def retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: Union[Type[Exception], tuple] = Exception,
    logger=None,
    sleep: Optional[Callable[[float], None]] = None,
):
    """
    Retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Whether to add random jitter to delays
        exceptions: Exception types to retry on
        logger: Logger instance for retry logging
        sleep: Sleep function; defaults to time.sleep looked up at call time

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    if attempt == max_attempts:
                        if logger:
                            logger.error(
                                f"Function {func.__name__} failed after {max_attempts} attempts",
                                function=func.__name__,
                                attempts=max_attempts,
                                final_exception=str(e),
                            )
                        raise

                    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)

                    if jitter:
                        delay *= (0.5 + random.random() * 0.5)

                    if logger:
                        logger.warning(
                            f"Function {func.__name__} failed (attempt {attempt}/{max_attempts}), "
                            f"retrying in {delay:.2f}s",
                            function=func.__name__,
                            attempt=attempt,
                            max_attempts=max_attempts,
                            delay=delay,
                            exception=str(e),
                        )

                    (sleep or time.sleep)(delay)

            raise last_exception

        return wrapper

    return decorator

