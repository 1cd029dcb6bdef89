"""
Retry Policy

One retry abstraction shared by the prediction service (forecaster calls)
and the orchestrator (record deletes and compensating writes).

Delay before retry n (1-based) is min(base * factor ** (n - 1), cap).
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ledger_core.logging_config import get_logger

logger = get_logger(__name__)


def _always(exc: BaseException) -> bool:
    return isinstance(exc, Exception)


class RetryPolicy:
    """
    Retry an async callable with capped exponential backoff.

    Args:
        max_retries: Retries after the first attempt (0 = single attempt)
        base_delay: First backoff delay in seconds
        factor: Delay multiplier per retry
        max_delay: Cap for a single delay
        retryable: Predicate deciding whether an exception is retried
        sleep: Async sleep function (injectable for tests)
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        factor: float = 2.0,
        max_delay: float = 10.0,
        retryable: Optional[Callable[[BaseException], bool]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.factor = factor
        self.max_delay = max_delay
        self.retryable = retryable or _always
        self._sleep = sleep or asyncio.sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retrying_after_failure",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.factor,
                max=self.max_delay,
            ),
            retry=retry_if_exception(self.retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    async def call(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await `fn(*args, **kwargs)`, retrying retryable failures.

        The last exception is re-raised unchanged once attempts run out,
        and non-retryable exceptions propagate immediately.
        """
        async for attempt in self._retrying():
            with attempt:
                result = await fn(*args, **kwargs)
        return result
