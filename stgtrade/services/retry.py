"""Bounded exponential backoff for calls to the inference provider."""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import anthropic

from stgtrade.core.config import RetryConfig
from stgtrade.core.exceptions import QuotaExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("429", "resource exhausted", "too many requests")
QUOTA_MARKERS = ("current quota", "daily limit", "daily quota exhausted", "credit balance is too low")


class ErrorKind(str, Enum):
    QUOTA_EXHAUSTED = "quota_exhausted"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"


def _normalize_message(error: BaseException) -> str:
    message = str(error) or error.__class__.__name__
    return message.lower().replace("_", " ")


def classify_error(error: BaseException) -> ErrorKind:
    """Classify a failed call by its message. Quota markers win over rate-limit markers."""
    message = _normalize_message(error)
    if isinstance(error, QuotaExhaustedError) or any(m in message for m in QUOTA_MARKERS):
        return ErrorKind.QUOTA_EXHAUSTED
    if isinstance(error, anthropic.RateLimitError) or any(m in message for m in RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMITED
    return ErrorKind.TRANSIENT


def backoff_delay(kind: ErrorKind, attempts_so_far: int, config: RetryConfig) -> float:
    """Seconds to wait before the next attempt."""
    multiplier = config.rate_limit_multiplier if kind == ErrorKind.RATE_LIMITED else config.default_multiplier
    return (multiplier ** attempts_so_far) * config.base_delay_seconds


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    retries: Optional[int] = None,
    *,
    config: Optional[RetryConfig] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    operation_name: str = "inference call",
) -> T:
    """Run `operation` with up to `retries` extra attempts.

    Args:
        operation: Zero-argument coroutine factory
        retries: Retries remaining (defaults to config.max_retries)
        config: Backoff policy
        sleep: Awaitable sleep, injectable for tests
        operation_name: Label used in log messages

    Returns:
        The operation's result

    Raises:
        QuotaExhaustedError: On a daily/quota marker, without retrying
        Exception: The last original error once retries are exhausted
    """
    config = config or RetryConfig()
    sleep = sleep or asyncio.sleep
    retries_remaining = config.max_retries if retries is None else retries
    attempts = 0

    while True:
        try:
            return await operation()
        except Exception as e:
            attempts += 1
            kind = classify_error(e)

            if kind == ErrorKind.QUOTA_EXHAUSTED:
                logger.error("Daily quota exhausted during %s: %s", operation_name, e)
                if isinstance(e, QuotaExhaustedError):
                    raise
                raise QuotaExhaustedError(f"DAILY_QUOTA_EXHAUSTED: {e}") from e

            if retries_remaining <= 0:
                logger.warning("%s failed after %d attempt(s): %s", operation_name, attempts, e)
                raise

            delay = backoff_delay(kind, attempts, config)
            logger.warning(
                "%s failed (%s), retries remaining %d: waiting %.1fs",
                operation_name, kind.value, retries_remaining, delay,
                extra={"attempt": attempts, "delay_seconds": delay},
            )
            await sleep(delay)
            retries_remaining -= 1
