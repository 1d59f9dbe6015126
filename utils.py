"""
Utility functions for the marketplace read-model backend.
Includes retry logic for transient store failures.
"""
import asyncio
import logging
import random
from typing import Callable, Type, Tuple, Optional, Any
from sqlalchemy.exc import (
    OperationalError,
    InterfaceError,
    TimeoutError as SQLAlchemyTimeoutError,
    DisconnectionError,
)

logger = logging.getLogger(__name__)

# Transient database errors that should be retried
TRANSIENT_DB_ERRORS: Tuple[Type[Exception], ...] = (
    OperationalError,
    InterfaceError,
    SQLAlchemyTimeoutError,
    DisconnectionError,
    ConnectionError,
    TimeoutError,
)


def is_transient_error(exc: Exception) -> bool:
    """Check if an exception is a transient error that should be retried."""
    if isinstance(exc, TRANSIENT_DB_ERRORS):
        return True

    error_msg = str(exc).lower()
    transient_patterns = [
        "connection refused",
        "connection reset",
        "connection timed out",
        "timeout",
        "too many connections",
        "server closed the connection",
        "connection pool exhausted",
        "could not connect",
        "temporarily unavailable",
        "40001",  # Serialization failure (PostgreSQL)
    ]
    return any(pattern in error_msg for pattern in transient_patterns)


async def with_retry(
    coro_func: Callable,
    *args,
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    exponential_backoff: bool = True,
    jitter: bool = True,
    retry_on: Optional[Tuple[Type[Exception], ...]] = None,
    **kwargs,
) -> Any:
    """
    Execute an async function with retry logic.

    Example:
        doc = await with_retry(store.get_by_id, "carts", avatar_id, max_retries=2)
    """
    last_exception = None
    for attempt in range(max_retries + 1):
        try:
            return await coro_func(*args, **kwargs)
        except Exception as e:
            last_exception = e

            if retry_on:
                should_retry = isinstance(e, retry_on)
            else:
                should_retry = is_transient_error(e)

            if not should_retry or attempt >= max_retries:
                raise

            if exponential_backoff:
                delay = min(base_delay * (2 ** attempt), max_delay)
            else:
                delay = base_delay

            if jitter:
                delay = delay * (0.5 + random.random())  # 50-150% of delay

            logger.warning(
                f"Retry {attempt + 1}/{max_retries} for {getattr(coro_func, '__name__', 'call')} "
                f"after {delay:.2f}s due to: {type(e).__name__}: {str(e)[:100]}"
            )
            await asyncio.sleep(delay)

    if last_exception:
        raise last_exception
