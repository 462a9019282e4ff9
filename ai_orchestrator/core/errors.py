"""
Error taxonomy for the orchestration pipeline.

Transient classes (``TransportError``, ``ProviderError`` for 429/5xx) are
absorbed by the retry handler up to its attempt budget. Everything else is
terminal and reaches the orchestrator, which turns it into a ``FailureInfo``
instead of letting the exception escape to the host.
"""
from typing import Optional

from pydantic import BaseModel


class FailureInfo(BaseModel):
    """Structured failure returned to callers in place of a raw exception."""

    kind: str
    message: str
    correlation_id: Optional[str] = None
    attempts: int = 0
    retry_after: Optional[float] = None
    status_code: Optional[int] = None


class AIServiceError(Exception):
    """Base class for every error raised inside the pipeline."""

    kind = "internal_error"

    def __init__(
        self,
        message: str,
        correlation_id: Optional[str] = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return False

    def to_failure(self) -> FailureInfo:
        return FailureInfo(
            kind=self.kind,
            message=self.message,
            correlation_id=self.correlation_id,
            attempts=self.attempts,
        )


class ConfigError(AIServiceError):
    """Missing or invalid configuration (credentials, endpoints, limits)."""

    kind = "config_error"


class RateLimitExceeded(AIServiceError):
    """Caller exhausted a rate window or is cooling down."""

    kind = "rate_limit_exceeded"

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        super().__init__(message, correlation_id=correlation_id)
        self.retry_after = retry_after
        self.reason = reason

    def to_failure(self) -> FailureInfo:
        failure = super().to_failure()
        failure.retry_after = self.retry_after
        return failure


class TransportError(AIServiceError):
    """Connection-level failure (DNS, refused, reset, timeout)."""

    kind = "transport_error"

    @property
    def retryable(self) -> bool:
        return True


class ProviderError(AIServiceError):
    """Provider answered with a non-2xx status or an explicit error payload."""

    kind = "provider_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        correlation_id: Optional[str] = None,
        attempts: int = 0,
    ):
        super().__init__(message, correlation_id=correlation_id, attempts=attempts)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500

    def to_failure(self) -> FailureInfo:
        failure = super().to_failure()
        failure.status_code = self.status_code
        return failure


class ValidationError(AIServiceError):
    """Malformed or unparseable provider response. Never retried."""

    kind = "validation_error"


class StreamError(AIServiceError):
    """A streamed response could not be read to completion."""

    kind = "stream_error"


class CacheError(AIServiceError):
    """Cache storage failure. Logged and degraded to a miss, never surfaced."""

    kind = "cache_error"
