"""
Exponential backoff for async store calls.

Status writes are separate statements with no shared transaction, so a
connection blip on one of them is retried here before the caller gives up
and reports a partial success.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, Tuple, Type, TypeVar

from sqlalchemy.exc import OperationalError, InterfaceError

from core.prometheus_metrics import prometheus_collector

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class RetryableError(Exception):
    """
    Failure of the store itself that may clear up on a later attempt.

    Raised for dropped connections, timeouts, pool saturation and
    failovers. Business outcomes never derive from this class.
    """


class NonRetryableError(Exception):
    """
    Deterministic failure: the same call fails the same way every time.

    Validation errors, business rule conflicts and missing entities all
    derive from this class and are raised on the first occurrence.
    """


TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    RetryableError,
    OperationalError,
    InterfaceError,
    asyncio.TimeoutError,
)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (0-based): base * 2^attempt, capped."""
    return min(base_delay * (2 ** attempt), max_delay)


def async_retry(
    max_attempts: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
) -> Callable[[F], F]:
    """Retries an async callable on transient store errors.

    Args:
        max_attempts: Total attempts including the first one
        base_delay: Seconds to wait before the first retry
        max_delay: Upper bound for any single wait
        retry_on: Exception types worth another attempt

    NonRetryableError always propagates at once, even when a subclass of
    one of `retry_on`. Anything outside `retry_on` propagates at once too.
    When the attempts run out the last error is raised unchanged.

    Example:
        @async_retry(max_attempts=2, base_delay=0.1)
        async def _write_status(self, vehicle_id, status):
            ...
    """
    def decorator(func: Callable) -> Callable:
        operation = getattr(func, "__name__", "call")

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except NonRetryableError:
                    raise
                except retry_on as e:
                    attempt += 1
                    if attempt >= max_attempts:
                        logger.error(
                            f"{operation} failed after {max_attempts} attempt(s): {e}",
                            extra={"operation": operation, "attempts": max_attempts},
                        )
                        raise

                    delay = backoff_delay(attempt - 1, base_delay, max_delay)
                    logger.warning(
                        f"Retrying {operation} ({attempt}/{max_attempts - 1}) in {delay:.2f}s: {e}",
                        extra={"operation": operation, "attempt": attempt, "delay_seconds": delay},
                    )
                    prometheus_collector.record_retry(operation)
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
