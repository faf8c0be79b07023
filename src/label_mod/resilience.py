"""Retry policy for transient registry failures.

Only the registry transport retries. The mutation engine never retries a
step; a failure that survives the policy ends the operation.

Example:
    >>> from label_mod.resilience import RetryPolicy
    >>> from label_mod.schemas.config import RetryConfig
    >>>
    >>> policy = RetryPolicy(RetryConfig(max_attempts=3))
    >>>
    >>> @policy.wrap
    ... def fetch_manifest():
    ...     return client.get(url)
"""

from __future__ import annotations

import functools
import random
import time
from collections.abc import Callable
from typing import ParamSpec, TypeVar

import structlog

from label_mod.errors import TransportError
from label_mod.schemas.config import RetryConfig

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_transient(exception: Exception) -> bool:
    """Return True for network failures and throttling or server-side statuses."""
    if isinstance(exception, TransportError):
        if not exception.retryable:
            return False
        return exception.status_code is None or exception.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exception, (ConnectionError, TimeoutError))


class RetryPolicy:
    """Retry policy with exponential backoff and jitter.

    Retry Timeline (default config):
    - Attempt 1: Immediate
    - Attempt 2: ~0.5s delay (with jitter)
    - Attempt 3: ~1s delay (with jitter)

    Attributes:
        config: RetryConfig with max_attempts, delays, and jitter settings.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retry_if: Callable[[Exception], bool] | None = None,
    ) -> None:
        """Initialize RetryPolicy.

        Args:
            config: Retry configuration. Uses defaults if None.
            retry_if: Predicate deciding whether an exception is retryable.
                Defaults to is_transient.
        """
        self._config = config or RetryConfig()
        self._retry_if = retry_if or is_transient

    @property
    def config(self) -> RetryConfig:
        return self._config

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Uses exponential backoff: delay = initial * (multiplier ^ attempt),
        capped at max_delay_ms, with optional ±25% jitter.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        base_delay_ms = min(
            self._config.initial_delay_ms * (self._config.backoff_multiplier**attempt),
            self._config.max_delay_ms,
        )

        if self._config.jitter:
            jitter_range = base_delay_ms * 0.25
            base_delay_ms += random.uniform(-jitter_range, jitter_range)  # noqa: S311

        return max(base_delay_ms, 0.0) / 1000.0

    def should_retry(self, exception: Exception) -> bool:
        return self._retry_if(exception)

    def wrap(self, func: Callable[P, T]) -> Callable[P, T]:
        """Decorator to wrap a function with retry logic.

        Args:
            func: Function to wrap.

        Returns:
            Wrapped function that retries on transient failures and re-raises
            the last error once attempts are exhausted.
        """

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not self.should_retry(e):
                        raise

                    attempt += 1
                    if attempt >= self._config.max_attempts:
                        logger.warning(
                            "retry_exhausted",
                            operation=func.__name__,
                            attempts=self._config.max_attempts,
                            error=str(e),
                        )
                        raise

                    delay = self.calculate_delay(attempt - 1)
                    logger.debug(
                        "retry_attempt",
                        operation=func.__name__,
                        attempt=attempt,
                        max_attempts=self._config.max_attempts,
                        delay_seconds=delay,
                        error=str(e),
                    )
                    time.sleep(delay)

        return wrapper


__all__ = ["RETRYABLE_STATUS_CODES", "RetryPolicy", "is_transient"]
