"""Retry with capped exponential backoff for network operations.

Built on tenacity. An error is retried when the policy's predicate says so;
by default that is any exception whose `retryable` attribute is true
(ExportError subclasses) and any httpx transport-level error.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from timeline_export.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable_error(error: BaseException) -> bool:
    """Default predicate: honour `error.retryable`, retry httpx transport errors."""
    retryable = getattr(error, "retryable", None)
    if retryable is not None:
        return bool(retryable)
    return isinstance(error, httpx.TransportError)


@dataclass
class RetryPolicy:
    """How often and how patiently to retry one operation.

    Delays grow as initial_delay * multiplier ** (attempt - 1), capped at
    max_delay. The last error is re-raised once attempts are exhausted.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 8.0
    multiplier: float = 2.0
    retryable: Callable[[BaseException], bool] = field(default=is_retryable_error)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        settings = get_settings()
        return cls(
            max_attempts=settings.download_max_attempts,
            initial_delay=settings.download_backoff_initial_seconds,
            max_delay=settings.download_backoff_max_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following `attempt` (1-based)."""
        return min(self.max_delay, self.initial_delay * self.multiplier ** (attempt - 1))

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_delay,
                exp_base=self.multiplier,
                min=0,
                max=self.max_delay,
            ),
            retry=retry_if_exception(self.retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )

    def _log_retry(self, state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0
        logger.warning(
            f"[RETRY] Attempt {state.attempt_number}/{self.max_attempts} failed: {error}; "
            f"retrying in {delay:.1f}s"
        )

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await fn(*args, **kwargs) under this policy."""
        async for attempt in self._retrying():
            with attempt:
                return await fn(*args, **kwargs)
        raise RuntimeError("retry loop exited without a result")
