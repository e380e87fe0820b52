# core/retry.py
"""
Bounded retry with jittered exponential backoff for lost database races.

Only conflicts are retried: lock timeouts, deadlocks and serialization
failures. Every unit of work passed here runs in its own transaction that is
rolled back before the next attempt, so nothing is half-applied.
"""
import asyncio
import random
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import OperationalError, DBAPIError

from config import Config
from mlm_engine.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes for serialization failure and deadlock (PostgreSQL, MySQL)
_CONFLICT_SQLSTATES = {"40001", "40P01"}
_CONFLICT_MARKERS = (
    "database is locked",
    "deadlock",
    "could not serialize",
    "lock wait timeout",
)


class ConflictError(Exception):
    """Raised by a unit of work that lost a race and wants another attempt."""
    pass


def is_conflict(error: BaseException) -> bool:
    """Check whether an exception is a retryable concurrency conflict."""
    if isinstance(error, ConflictError):
        return True

    if not isinstance(error, (OperationalError, DBAPIError)):
        return False

    orig = getattr(error, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True

    message = str(orig or error).lower()
    return any(marker in message for marker in _CONFLICT_MARKERS)


async def run_with_retry(
        operation: Callable[[], Awaitable[T]],
        description: str,
        attempts: Optional[int] = None,
        base_delay: Optional[float] = None
) -> T:
    """
    Run an async unit of work, retrying it on conflicts.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        description: Operation name for logs and the final error
        attempts: Max attempts (default CONFLICT_RETRY_ATTEMPTS)
        base_delay: First backoff delay in seconds (default CONFLICT_RETRY_BASE_DELAY)

    Raises:
        TransientError: If every attempt lost its race
    """
    if attempts is None:
        attempts = Config.get(Config.CONFLICT_RETRY_ATTEMPTS, 5)
    if base_delay is None:
        base_delay = Config.get(Config.CONFLICT_RETRY_BASE_DELAY, 0.05)

    last_error = None

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_conflict(e):
                raise

            last_error = e
            if attempt == attempts:
                break

            # Jitter spreads out workers that lost the same race
            delay = base_delay * (2 ** (attempt - 1))
            delay += random.uniform(0, delay / 2)
            logger.warning(
                f"{description}: conflict on attempt {attempt}/{attempts}, "
                f"retrying in {delay:.2f}s ({e.__class__.__name__})"
            )
            await asyncio.sleep(delay)

    logger.error(f"{description}: giving up after {attempts} attempts: {last_error}")
    raise TransientError(
        f"{description} could not complete because of concurrent updates, please retry",
        {"attempts": attempts}
    )
