"""
Retry with exponential backoff for transient provider failures.

Delay before retry ``n`` (1-based) is ``min(initial_delay * factor**(n-1), max_delay)``
milliseconds, plus an optional bounded jitter. Only failures that report
``retryable`` (network errors, HTTP 429 and 5xx) are retried; everything else
surfaces immediately.
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from ai_orchestrator.core.config import RetrySettings
from ai_orchestrator.core.errors import AIServiceError, TransportError
from ai_orchestrator.core.logging import get_logger
from ai_orchestrator.core.metrics import record_retry

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryContext:
    """Read-only view of a scheduled retry, handed to ``on_retry``."""

    attempt: int
    max_attempts: int
    delay_ms: float
    error: Exception


class RetryHandler:
    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1000,
        max_delay: float = 8000,
        backoff_factor: float = 2.0,
        jitter: float = 0.0,
        seed: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_retry: Optional[Callable[[RetryContext], None]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self._random = random.Random(seed)
        self._sleep = sleep
        self._on_retry = on_retry

    @classmethod
    def from_settings(cls, settings: RetrySettings, **kwargs) -> "RetryHandler":
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            backoff_factor=settings.backoff_factor,
            jitter=settings.jitter,
            **kwargs,
        )

    def compute_delay(self, attempt: int) -> float:
        """Backoff in milliseconds before retry number ``attempt`` (1-based)."""
        delay = min(self.initial_delay * self.backoff_factor ** (attempt - 1), self.max_delay)
        if self.jitter > 0:
            delay += self._random.uniform(0, self.jitter * delay)
        return delay

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        if isinstance(error, AIServiceError):
            return error.retryable
        return isinstance(error, (httpx.TransportError, asyncio.TimeoutError, ConnectionError))

    async def execute(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``operation`` until it succeeds, fails non-retryably, or attempts run out.

        The final error is re-raised with ``attempts`` set to the number of calls made.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                retryable = self.is_retryable(e)
                if not retryable:
                    if isinstance(e, AIServiceError):
                        e.attempts = attempt
                    raise

                if attempt >= self.max_attempts:
                    logger.warning(
                        "retry_exhausted",
                        attempts=attempt,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    if isinstance(e, AIServiceError):
                        e.attempts = attempt
                        raise
                    raise TransportError(str(e) or type(e).__name__, attempts=attempt) from e

                delay = self.compute_delay(attempt)
                kind = getattr(e, "kind", type(e).__name__)
                record_retry(kind)
                logger.info(
                    "retry_scheduled",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_ms=round(delay, 2),
                    error_type=type(e).__name__,
                )
                if self._on_retry is not None:
                    self._on_retry(
                        RetryContext(attempt=attempt, max_attempts=self.max_attempts, delay_ms=delay, error=e)
                    )
                await self._sleep(delay / 1000.0)
