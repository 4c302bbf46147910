"""Transient-failure classification and retry with exponential backoff.

Every collaborator call that can fail transiently (music, images, storage,
persistence) goes through :func:`execute_with_retry`. Whether a failure is
worth retrying is decided by :func:`is_transient`.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from hyde.errors import HydeError, OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({500, 502, 503, 504})

# Substrings (lowercased) that mark an error as transient.
TRANSIENT_ERROR_PATTERNS = [
    # 5xx numerals surfaced inside messages
    "500",
    "502",
    "503",
    "504",
    # An edge/proxy returned an HTML error page instead of JSON
    "<!doctype",
    "<html",
    # Low-level connection faults
    "fetch failed",
    "econnreset",
    "connection reset",
    "connect",
    "socket",
    "timeout",
    "timed out",
    "other side closed",
    "server disconnected",
    "broken pipe",
    "internal server error",
]


def is_transient(error: BaseException | int | str) -> bool:
    """Decide whether a failure is worth retrying.

    Args:
        error: An HTTP status code, a freeform error message, or an exception.
            Exceptions are judged on their ``status_code`` attribute (when the
            SDK sets one), their type name and their message.

    Returns:
        True for 5xx gateway/server statuses, HTML error pages and connection
        faults. False for everything else, including 4xx client errors.
    """
    if isinstance(error, bool):
        return False
    if isinstance(error, int):
        return error in TRANSIENT_STATUS_CODES

    if isinstance(error, BaseException):
        status = getattr(error, "status_code", None)
        if isinstance(status, int) and not isinstance(status, bool):
            if status in TRANSIENT_STATUS_CODES:
                return True
            if 400 <= status < 500:
                return False
        text = f"{type(error).__name__}: {error}"
    else:
        text = str(error)

    text = text.lower()
    return any(pattern in text for pattern in TRANSIENT_ERROR_PATTERNS)


def _should_retry(error: Exception) -> bool:
    if isinstance(error, HydeError) and not error.retryable:
        return False
    return is_transient(error)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff parameters for one kind of call."""

    max_attempts: int = 3
    base_delay_ms: float = 1000
    jitter_ms: float = 500

    def delay_ms(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (attempt is 0-based)."""
        return self.base_delay_ms * (2 ** attempt) + random.uniform(0, self.jitter_ms)


DEFAULT_POLICY = RetryPolicy()
AUDIO_POLICY = RetryPolicy(max_attempts=2)


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay_ms: float = 1000,
    jitter_ms: float = 500,
    *,
    check_status: bool = False,
    description: str = "request",
    should_continue: Callable[[], bool] | None = None,
) -> T:
    """Run an async operation with exponential backoff for transient errors.

    Args:
        operation: Zero-argument callable returning an awaitable.
        max_attempts: Total number of calls allowed (not retries).
        base_delay_ms: Base delay, doubled on every attempt.
        jitter_ms: Upper bound of the uniform random jitter added to each delay.
        check_status: When True, a result carrying a transient ``status_code``
            (e.g. an ``httpx.Response`` with 503) is retried like an error.
            The last such response is returned as-is once attempts run out.
        description: Label used in log messages.
        should_continue: Checked before every attempt and before every
            backoff sleep. Once it returns False no further call is made.

    Returns:
        The operation's result.

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
        OperationCancelledError: If ``should_continue`` returned False.
        Exception: The last error, once it is terminal or attempts run out.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    policy = RetryPolicy(max_attempts, base_delay_ms, jitter_ms)

    def check_continue() -> None:
        if should_continue is not None and not should_continue():
            logger.debug(f"{description} abandoned")
            raise OperationCancelledError(f"{description} cancelled")

    for attempt in range(max_attempts):
        is_last = attempt == max_attempts - 1
        check_continue()
        try:
            result = await operation()
        except Exception as e:
            if not _should_retry(e):
                raise
            if is_last:
                if max_attempts > 1:
                    logger.error(f"{description} failed after {max_attempts} attempts: {e}")
                raise
            reason = str(e) or type(e).__name__
        else:
            status = getattr(result, "status_code", None) if check_status else None
            if is_last or not isinstance(status, int) or not is_transient(status):
                return result
            reason = f"HTTP {status}"

        check_continue()
        delay = policy.delay_ms(attempt)
        logger.warning(
            f"{description} failed ({reason[:120]}), retrying in {delay:.0f}ms "
            f"(attempt {attempt + 1}/{max_attempts})"
        )
        await asyncio.sleep(delay / 1000)

    # Unreachable: the last attempt always returns or raises.
    raise RuntimeError("Unexpected retry failure")


async def retry_with_policy(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    description: str = "request",
    should_continue: Callable[[], bool] | None = None,
) -> T:
    """Shorthand for :func:`execute_with_retry` with a :class:`RetryPolicy`."""
    return await execute_with_retry(
        operation,
        policy.max_attempts,
        policy.base_delay_ms,
        policy.jitter_ms,
        description=description,
        should_continue=should_continue,
    )
