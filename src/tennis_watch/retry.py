"""Bounded, sequential retries with exponential backoff."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import ConfigurationError, HardBlock, RetryExhausted

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")

# A block only gets worse when retried.
NEVER_RETRY = (HardBlock, ConfigurationError)


def backoff_seconds(base_delay: float, attempt: int) -> float:
    """Delay slept after a failed ``attempt`` (1-based)."""
    return base_delay * 2 ** (attempt - 1)


async def with_retries(
    name: str,
    operation: Callable[[int], Awaitable[T]],
    *,
    tries: int = 3,
    base_delay: float = 1.5,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation(attempt_number)`` until it succeeds or ``tries`` is spent.

    Attempts never overlap: the next one starts only after the previous one
    has failed and its backoff has elapsed.
    """
    if tries < 1:
        raise ConfigurationError(f"{name}: tries must be >= 1, got {tries}")

    def _log_failure(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome else None
        LOGGER.warning(
            "retry.attempt_failed",
            operation=name,
            attempt=retry_state.attempt_number,
            tries=tries,
            error=f"{type(error).__name__}: {error}" if error else None,
        )

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(tries),
            wait=wait_exponential(multiplier=base_delay, min=0, max=max(base_delay, 0) * 2 ** tries),
            retry=retry_if_not_exception_type(NEVER_RETRY),
            after=_log_failure,
            sleep=sleep,
        ):
            with attempt:
                number = attempt.retry_state.attempt_number
                LOGGER.info("retry.attempt", operation=name, attempt=number, tries=tries)
                result = await operation(number)
                if number > 1:
                    LOGGER.info("retry.recovered", operation=name, attempt=number)
                return result
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        LOGGER.error("retry.exhausted", operation=name, tries=tries)
        raise RetryExhausted(name, tries, last_error) from last_error
    raise RetryExhausted(name, tries, None)  # pragma: no cover - loop always returns or raises
