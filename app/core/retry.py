"""Retry wrapper for transactional units of work against the store."""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from app.config import settings
from app.core.exceptions import AppException, TransientStoreException

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})

TRANSIENT_MESSAGES = (
    "connection reset",
    "connection refused",
    "connection was closed",
    "connection is closed",
    "server closed the connection",
    "terminating connection",
    "could not serialize access",
    "deadlock detected",
    "database is locked",
    "timeout",
)


def is_transient_error(exc: BaseException) -> bool:
    """
    Decide whether a failed unit of work is worth re-running.

    Domain errors (validation, not found) are never transient.
    """
    if isinstance(exc, AppException):
        return False

    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        if isinstance(exc, (OperationalError, InterfaceError)):
            return True
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in TRANSIENT_SQLSTATES:
            return True
        message = str(orig).lower()
        return any(fragment in message for fragment in TRANSIENT_MESSAGES)

    return isinstance(exc, (ConnectionError, TimeoutError))


def _log_retry(operation: str) -> Callable[[RetryCallState], None]:
    """Build a tenacity before_sleep hook bound to the operation name."""

    def log(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "db_operation_retry",
            operation=operation,
            attempt=retry_state.attempt_number,
            error=str(error),
        )

    return log


async def run_in_transaction(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    operation: str = "db_operation",
    attempts: int | None = None,
) -> T:
    """
    Run ``work`` as one atomic unit and commit it, retrying transient failures.

    Every attempt runs the whole callable from scratch inside a fresh
    transaction. Any exception rolls the session back; transient ones are
    retried with linear backoff up to the configured bound.

    Args:
        db: Database session the work operates on
        work: Zero-argument coroutine function performing reads and writes
        operation: Name used in logs and error context
        attempts: Override for the configured number of attempts

    Returns:
        Whatever ``work`` returned

    Raises:
        TransientStoreException: If every attempt failed transiently
        Exception: Any non-transient error raised by ``work``
    """
    max_attempts = attempts or settings.db_retry_attempts
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_incrementing(
            start=settings.db_retry_delay_seconds,
            increment=settings.db_retry_delay_seconds,
            max=settings.db_retry_max_delay_seconds,
        ),
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_retry(operation),
    )

    result: Any = None
    try:
        async for attempt in retrying:
            with attempt:
                try:
                    result = await work()
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        logger.error(
            "db_operation_exhausted",
            operation=operation,
            attempts=max_attempts,
            error=str(last_error),
        )
        raise TransientStoreException(
            f"{operation} failed after {max_attempts} attempts",
            context={"operation": operation, "attempts": max_attempts},
        ) from last_error

    return result
