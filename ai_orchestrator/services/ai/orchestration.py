"""
AI orchestration layer.

Every public operation runs the same pipeline:
1. Enforce rate limit for the caller identity (cooldown + three windows)
2. Look up the result cache by (operation, normalized input, options)
3. Acquire one unit of the caller's quota (atomic; denial throttles)
4. Call the provider through the retry handler
5. Normalize the provider envelope
6. Store the normalized result with the operation's TTL
7. Return an OperationResult

NON-responsibilities:
- Does NOT persist configuration
- Does NOT render anything for end users
- Never raises to the caller; failures come back as FailureInfo
"""
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError
from redis.asyncio import Redis

from ai_orchestrator.core.cache import ResultCache, create_result_cache
from ai_orchestrator.core.config import OrchestratorSettings
from ai_orchestrator.core.errors import (
    AIServiceError,
    FailureInfo,
    ProviderError,
    RateLimitExceeded,
    ValidationError,
)
from ai_orchestrator.core.events import EventChannel
from ai_orchestrator.core.logging import (
    generate_correlation_id,
    get_logger,
    log_event,
    set_correlation_id,
    set_identity,
)
from ai_orchestrator.core.metrics import record_ai_request
from ai_orchestrator.core.rate_limit import RateLimiter, create_rate_limiter
from ai_orchestrator.core.retry import RetryHandler
from ai_orchestrator.services.ai.models import ModelManager
from ai_orchestrator.services.ai.normalizer import ResponseNormalizer
from ai_orchestrator.services.ai.providers import ProviderClient, build_provider
from ai_orchestrator.services.ai.schema import OperationResult, normalized_result_adapter

logger = get_logger(__name__)

DEFAULT_IDENTITY = "anonymous"

DEFAULT_TEXT_OPTIONS: Dict[str, Any] = {
    "max_tokens": 1000,
    "temperature": 0.7,
    "top_p": 0.9,
    "frequency_penalty": 0.3,
    "presence_penalty": 0.3,
}

DEFAULT_IMAGE_OPTIONS: Dict[str, Any] = {
    "size": "1024x1024",
    "quality": "standard",
    "style": "natural",
    "format": "url",
}

SEO_SECTIONS = ["keywords", "meta_description", "title_suggestions", "content_improvements"]

# Event names emitted on AIService.events
REQUEST_COMPLETED = "request.completed"
REQUEST_FAILED = "request.failed"
REQUEST_CACHED = "request.cached"
REQUEST_THROTTLED = "request.throttled"


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple)):
        return len(value) == 0
    return False


class AIService:
    """
    Orchestrates provider calls for content generation and analysis.

    Collaborators are passed in; use ``create_ai_service`` to build one from
    settings.
    """

    def __init__(
        self,
        provider: ProviderClient,
        cache: ResultCache,
        rate_limiter: RateLimiter,
        retry_handler: RetryHandler,
        normalizer: Optional[ResponseNormalizer] = None,
        model_manager: Optional[ModelManager] = None,
        operation_ttls: Optional[Dict[str, int]] = None,
        events: Optional[EventChannel] = None,
    ):
        self.provider = provider
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.retry_handler = retry_handler
        self.normalizer = normalizer or ResponseNormalizer()
        self.model_manager = model_manager or ModelManager()
        self.operation_ttls = dict(operation_ttls or {})
        self.events = events or EventChannel("ai_service")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def generate_text(
        self,
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
        identity: str = DEFAULT_IDENTITY,
    ) -> OperationResult:
        params = {**DEFAULT_TEXT_OPTIONS, **(options or {})}
        return await self.run("generate_text", "text/generate", {"prompt": prompt}, params, identity)

    async def generate_image(
        self,
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
        identity: str = DEFAULT_IDENTITY,
    ) -> OperationResult:
        params = {**DEFAULT_IMAGE_OPTIONS, **(options or {})}
        return await self.run(
            "generate_image", "image/generate", {"prompt": prompt}, params, identity, model_type="vision/general"
        )

    async def analyze_content(
        self,
        content: str,
        type: str = "general",
        options: Optional[Dict[str, Any]] = None,
        identity: str = DEFAULT_IDENTITY,
    ) -> OperationResult:
        params = {"type": type, "include_metrics": True, **(options or {})}
        return await self.run("analyze_content", "content/analyze", {"content": content}, params, identity)

    async def generate_seo_suggestions(
        self,
        content: str,
        options: Optional[Dict[str, Any]] = None,
        identity: str = DEFAULT_IDENTITY,
    ) -> OperationResult:
        params = {"include": list(SEO_SECTIONS), **(options or {})}
        return await self.run("generate_seo_suggestions", "seo/suggest", {"content": content}, params, identity)

    async def generate_variations(
        self,
        content: str,
        count: int = 3,
        options: Optional[Dict[str, Any]] = None,
        identity: str = DEFAULT_IDENTITY,
    ) -> OperationResult:
        params = {"count": count, "preserve_key_points": True, **(options or {})}
        return await self.run("generate_variations", "content/variations", {"content": content}, params, identity)

    async def enhance_image(
        self,
        image_data: str,
        enhancements: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
        identity: str = DEFAULT_IDENTITY,
    ) -> OperationResult:
        params = {"enhancements": dict(enhancements or {}), **(options or {})}
        return await self.run(
            "enhance_image", "image/enhance", {"image": image_data}, params, identity, model_type="vision/general"
        )

    async def generate_visualization(
        self,
        data: Any,
        type: str = "auto",
        options: Optional[Dict[str, Any]] = None,
        identity: str = DEFAULT_IDENTITY,
    ) -> OperationResult:
        params = {"type": type, "optimize_for": "readability", **(options or {})}
        return await self.run("generate_visualization", "data/visualize", {"data": data}, params, identity)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def ttl_for(self, operation: str) -> Optional[int]:
        return self.operation_ttls.get(operation)

    async def run(
        self,
        operation: str,
        provider_operation: str,
        payload: Dict[str, Any],
        params: Dict[str, Any],
        identity: Optional[str] = None,
        model_type: str = "text/general",
    ) -> OperationResult:
        """
        Run one orchestrated request. Never raises.

        Args:
            operation: Public operation name (cache namespace, metrics label)
            provider_operation: Wire-level provider operation
            payload: Primary content, e.g. {"prompt": ...}
            params: Options merged with the operation's defaults
            identity: Caller identity for rate limiting
            model_type: Registry model type ("category/variant")
        """
        identity = identity or DEFAULT_IDENTITY
        correlation_id = generate_correlation_id()
        set_correlation_id(correlation_id)
        set_identity(identity)
        start = time.perf_counter()

        try:
            if all(_is_blank(v) for v in payload.values()):
                raise ValidationError(f"{operation} requires non-empty input")

            decision = await self.rate_limiter.check(identity)
            if not decision.allowed:
                return self._throttled(operation, identity, correlation_id, decision.reason, decision.retry_after, start)

            cache_key = self.cache.make_key(
                operation,
                payload,
                {**params, "provider": self.provider.name, "model_type": model_type},
            )
            cached = await self._cached_result(cache_key, operation)
            if cached is not None:
                return self._completed(operation, identity, correlation_id, cached, start, from_cache=True)

            decision = await self.rate_limiter.acquire(identity)
            if not decision.allowed:
                return self._throttled(operation, identity, correlation_id, decision.reason, decision.retry_after, start)

            descriptor = self.model_manager.get_model(model_type).descriptor
            model = self.provider.configured_model or descriptor.name
            request_payload = {**payload, "model": model, "params": params}

            async def call_provider() -> Dict[str, Any]:
                return await self.provider.execute(
                    provider_operation,
                    request_payload,
                    {"correlation_id": correlation_id},
                )

            envelope = await self.retry_handler.execute(call_provider)
            result = self.normalizer.normalize(provider_operation, envelope)

            await self.cache.set(cache_key, result.model_dump(mode="json"), ttl=self.ttl_for(operation))
            return self._completed(operation, identity, correlation_id, result, start)

        except ProviderError as e:
            if e.status_code == 429:
                await self.rate_limiter.set_cooldown(identity)
            return self._failed(operation, identity, correlation_id, e.to_failure(), start)
        except AIServiceError as e:
            return self._failed(operation, identity, correlation_id, e.to_failure(), start)
        except Exception as e:
            logger.error(
                "ai_request_unexpected_error",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            failure = FailureInfo(
                kind="internal_error",
                message=f"Unexpected {type(e).__name__} while running {operation}",
            )
            return self._failed(operation, identity, correlation_id, failure, start)

    async def _cached_result(self, cache_key: str, operation: str) -> Optional[BaseModel]:
        cached = await self.cache.get(cache_key, cache_type=operation)
        if cached is None:
            return None
        try:
            return normalized_result_adapter.validate_python(cached)
        except PydanticValidationError as e:
            logger.warning(
                "ai_cache_payload_invalid",
                operation=operation,
                error_count=e.error_count(),
            )
            await self.cache.delete(cache_key)
            return None

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _completed(
        self,
        operation: str,
        identity: str,
        correlation_id: str,
        result: BaseModel,
        start: float,
        from_cache: bool = False,
    ) -> OperationResult:
        duration = time.perf_counter() - start
        record_ai_request(operation, self.provider.name, "cached" if from_cache else "success", duration)
        log_event(
            logger,
            "info",
            "ai_request_completed",
            operation=operation,
            provider=self.provider.name,
            from_cache=from_cache,
            duration_ms=round(duration * 1000.0, 2),
        )
        outcome = OperationResult.ok(operation, result, correlation_id, identity, from_cache=from_cache)
        self.events.emit(
            REQUEST_CACHED if from_cache else REQUEST_COMPLETED,
            {"operation": operation, "identity": identity, "correlation_id": correlation_id},
        )
        return outcome

    def _throttled(
        self,
        operation: str,
        identity: str,
        correlation_id: str,
        reason: str,
        retry_after: Optional[float],
        start: float,
    ) -> OperationResult:
        error = RateLimitExceeded(
            f"Rate limit exceeded ({reason})",
            retry_after=retry_after,
            reason=reason,
            correlation_id=correlation_id,
        )
        record_ai_request(operation, self.provider.name, "throttled", time.perf_counter() - start)
        log_event(
            logger,
            "warning",
            "ai_request_throttled",
            operation=operation,
            reason=reason,
            retry_after=retry_after,
        )
        self.events.emit(
            REQUEST_THROTTLED,
            {
                "operation": operation,
                "identity": identity,
                "correlation_id": correlation_id,
                "reason": reason,
                "retry_after": retry_after,
            },
        )
        return OperationResult.failed(operation, error.to_failure(), correlation_id, identity)

    def _failed(
        self,
        operation: str,
        identity: str,
        correlation_id: str,
        failure: FailureInfo,
        start: float,
    ) -> OperationResult:
        failure.correlation_id = correlation_id
        record_ai_request(operation, self.provider.name, "failure", time.perf_counter() - start)
        log_event(
            logger,
            "error",
            "ai_request_failed",
            operation=operation,
            provider=self.provider.name,
            kind=failure.kind,
            error=failure.message,
            attempts=failure.attempts,
            status_code=failure.status_code,
        )
        self.events.emit(
            REQUEST_FAILED,
            {
                "operation": operation,
                "identity": identity,
                "correlation_id": correlation_id,
                "kind": failure.kind,
            },
        )
        return OperationResult.failed(operation, failure, correlation_id, identity)

    async def aclose(self) -> None:
        await self.provider.aclose()


def create_ai_service(
    settings: OrchestratorSettings,
    redis_client: Optional[Redis] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    events: Optional[EventChannel] = None,
) -> AIService:
    """
    Build an AIService from settings.

    Raises:
        ConfigError: unknown provider or missing credentials. Startup-time
        error, not converted into a FailureInfo.
    """
    provider = build_provider(settings.provider.name, settings.provider, transport=transport)
    service = AIService(
        provider=provider,
        cache=create_result_cache(settings.cache, redis_client=redis_client),
        rate_limiter=create_rate_limiter(settings.rate_limit, redis_client=redis_client),
        retry_handler=RetryHandler.from_settings(settings.retry),
        normalizer=ResponseNormalizer(),
        model_manager=ModelManager(),
        operation_ttls=settings.cache.operation_ttls,
        events=events,
    )
    logger.info(
        "ai_service_initialized",
        provider=provider.name,
        cache_backend=settings.cache.backend,
        rate_limit_backend=settings.rate_limit.backend,
    )
    return service
