"""Bounded retry with optional exponential backoff for async operations."""

import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential, wait_fixed

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetrySpec:
    """How to retry one externally-facing call (or a small group of them)."""

    max_retries: int = 3
    delay: float = 2.0  # seconds before the first retry
    backoff: bool = True  # double the delay on every further retry
    retry_on: Optional[Callable[[BaseException], bool]] = None
    context: str = "operation"

    def with_context(self, context: str) -> "RetrySpec":
        return replace(self, context=context)

    def with_predicate(self, retry_on: Optional[Callable[[BaseException], bool]]) -> "RetrySpec":
        return replace(self, retry_on=retry_on)


async def with_retry(fn: Callable[[], Awaitable[T]], spec: Optional[RetrySpec] = None) -> T:
    """
    Run ``fn`` until it succeeds or the retry budget is spent.

    ``fn`` is attempted at most ``spec.max_retries + 1`` times. Errors the
    ``retry_on`` predicate rejects are raised immediately. When the budget is
    exhausted the last error is re-raised unchanged.

    Args:
        fn: Zero-argument coroutine factory
        spec: Retry parameters (defaults to RetrySpec())

    Returns:
        Whatever ``fn`` returns on its first successful attempt
    """
    spec = spec or RetrySpec()

    def _eligible(exc: BaseException) -> bool:
        # Cancellation and other BaseExceptions always propagate
        if not isinstance(exc, Exception):
            return False
        return spec.retry_on is None or bool(spec.retry_on(exc))

    if spec.backoff:
        wait = wait_exponential(multiplier=spec.delay)
    else:
        wait = wait_fixed(spec.delay)

    def _before_sleep(retry_state: Any) -> None:
        error = retry_state.outcome.exception()
        logger.warning(
            f"[{spec.context}] failed, retry {retry_state.attempt_number}/{spec.max_retries} "
            f"in {retry_state.next_action.sleep:.1f}s... error: {error}"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(spec.max_retries + 1),
        wait=wait,
        retry=retry_if_exception(_eligible),
        before_sleep=_before_sleep,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await fn()
    except Exception as e:
        if _eligible(e):
            logger.error(f"[{spec.context}] failed after {spec.max_retries} retries: {e}")
        else:
            logger.error(f"[{spec.context}] non-retryable error, giving up: {e}")
        raise
