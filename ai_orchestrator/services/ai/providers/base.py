"""
Provider HTTP client shared by every adapter.

Design constraints:
- Do NOT use vendor SDKs; talk to providers over httpx only
- Classify every failure so the retry handler can decide:
  connection failed (TransportError), server said no (ProviderError with
  status), response unusable (ValidationError)
- Adapters only translate operations to wire requests and wire responses to
  the ``{data, meta}`` envelope; transport, auth and error handling live here
"""
import inspect
import json
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple, Union

import httpx

from ai_orchestrator.core.errors import (
    ConfigError,
    ProviderError,
    StreamError,
    TransportError,
    ValidationError,
)
from ai_orchestrator.core.logging import generate_correlation_id, get_correlation_id, get_logger
from ai_orchestrator.core.metrics import record_provider_call, record_provider_error
from ai_orchestrator.core.tracing import get_tracer, inject_trace_context

logger = get_logger(__name__)

USER_AGENT = "ai-orchestrator/1.0"
ENVELOPE_VERSION = "1.0"

# Provider operations (wire-level names). Everything except text/image
# generation returns structured JSON.
OPERATIONS = (
    "text/generate",
    "image/generate",
    "content/analyze",
    "seo/suggest",
    "content/variations",
    "image/enhance",
    "data/visualize",
    "entities",
    "topics",
    "keywords",
    "dependency",
    "pos",
    "sentiment",
    "classify",
    "process",
)

IMAGE_OPERATIONS = ("image/generate", "image/enhance")

# JSON shape each structured operation is asked to return when the provider
# is a chat model rather than the native {data, meta} API.
STRUCTURED_INSTRUCTIONS: Dict[str, str] = {
    "content/analyze": (
        'Analyze the content. Respond with JSON: {"summary": str, "tone": str, '
        '"sentiment": str, "readability": str, "keywords": [str], "topics": [str], '
        '"suggestions": [str]}'
    ),
    "seo/suggest": (
        'Suggest SEO improvements. Respond with JSON: {"title": str, '
        '"meta_description": str, "keywords": [str], "suggestions": '
        '[{"type": str, "suggestion": str, "priority": "low"|"medium"|"high"}]}'
    ),
    "content/variations": (
        'Rewrite the content into the requested number of variations. Respond with '
        'JSON: {"variations": [str]}'
    ),
    "data/visualize": (
        'Propose a chart for the data. Respond with JSON: {"chart_type": str, '
        '"title": str, "labels": [str], "series": [{"name": str, "values": [number]}], '
        '"insights": [str]}'
    ),
    "entities": (
        'Extract named entities. Respond with JSON: {"entities": [{"text": str, '
        '"type": str, "confidence": number, "start": int, "end": int}]}'
    ),
    "topics": (
        'Identify the main topics. Respond with JSON: {"topics": [{"name": str, '
        '"confidence": number, "keywords": [str]}]}'
    ),
    "keywords": (
        'Extract keywords. Respond with JSON: {"keywords": [{"text": str, '
        '"relevance": number, "frequency": int}]}'
    ),
    "dependency": (
        'Parse syntactic dependencies. Respond with JSON: {"dependencies": '
        '[{"source": str, "target": str, "type": str, "probability": number}]}'
    ),
    "pos": (
        'Tag parts of speech. Respond with JSON: {"tokens": [{"text": str, '
        '"tag": str, "probability": number}]}'
    ),
    "sentiment": (
        'Analyze sentiment. Respond with JSON: {"sentiment": str, "score": number '
        'between -1 and 1, "confidence": number, "aspects": [{"aspect": str, '
        '"sentiment": str, "confidence": number}]}'
    ),
    "classify": (
        'Classify the content into the given categories. Respond with JSON: '
        '{"categories": [{"name": str, "confidence": number}]}'
    ),
    "process": 'Process the text as instructed. Respond with JSON: {"result": any}',
}

StreamCallback = Callable[[bytes], Union[None, Awaitable[None]]]


@dataclass
class ProviderRequest:
    endpoint: str
    payload: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    correlation_id: Optional[str] = None


@dataclass
class ProviderResponse:
    status_code: int
    body: Any
    headers: Dict[str, str]
    correlation_id: str
    elapsed_ms: float


def primary_input(payload: Dict[str, Any]) -> Any:
    """The content argument of an orchestration payload."""
    for key in ("prompt", "text", "content", "data", "image"):
        if key in payload:
            return payload[key]
    return None


def _error_message(body: Any, default: str) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return default


class ProviderClient:
    """
    Async HTTP client for one provider.

    Subclasses set ``name``/``default_api_base``/``default_model`` and override
    ``translate_request``/``translate_response``.
    """

    name = "base"
    default_api_base: Optional[str] = None
    default_model: Optional[str] = None

    def __init__(
        self,
        api_key: Optional[str],
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: float = 30.0,
        image_timeout_seconds: float = 60.0,
        stream_chunk_size: int = 8192,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ConfigError(f"API key for provider '{self.name}' is not configured")
        api_base = api_base or self.default_api_base
        if not api_base:
            raise ConfigError(f"API base URL for provider '{self.name}' is not configured")

        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.model = model or self.default_model
        self.configured_model = model
        self.timeout_seconds = timeout_seconds
        self.image_timeout_seconds = image_timeout_seconds
        self.stream_chunk_size = stream_chunk_size
        self._transport = transport
        self._client = client

    # ------------------------------------------------------------------
    # Wire helpers
    # ------------------------------------------------------------------

    def build_url(self, endpoint: str) -> str:
        return f"{self.api_base}/{endpoint.lstrip('/')}"

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def build_headers(self, correlation_id: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            "X-Request-ID": correlation_id,
        }
        headers.update(self.auth_headers())
        inject_trace_context(headers)
        return headers

    @asynccontextmanager
    async def _session(self, timeout: Any) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            yield client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def call(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> ProviderResponse:
        """
        POST ``payload`` as JSON to ``endpoint`` and return the parsed body.

        Raises:
            TransportError: connection failure or timeout (retryable)
            ProviderError: non-2xx status, or an ``error`` payload on 2xx
            ValidationError: body is not valid JSON (terminal)
        """
        options = options or {}
        correlation_id = options.get("correlation_id") or get_correlation_id() or generate_correlation_id()
        tracer = get_tracer()
        start = time.perf_counter()
        with tracer.start_as_current_span("provider.call") as span:
            # Headers are built inside the span so the traceparent points at it
            request = ProviderRequest(
                endpoint=endpoint,
                payload=payload,
                headers=self.build_headers(correlation_id),
                timeout=options.get("timeout", self.timeout_seconds),
                correlation_id=correlation_id,
            )
            span.set_attribute("provider.name", self.name)
            span.set_attribute("provider.endpoint", endpoint)
            span.set_attribute("correlation_id", correlation_id)
            try:
                response = await self._send(request)
                span.set_attribute("http.status_code", response.status_code)
                body = self._parse(response, request)
            except (TransportError, ProviderError, ValidationError) as e:
                span.record_exception(e)
                record_provider_error(self.name, e.kind)
                logger.warning(
                    "provider_call_failed",
                    provider=self.name,
                    endpoint=endpoint,
                    correlation_id=correlation_id,
                    error=e.message,
                    error_type=type(e).__name__,
                    status_code=getattr(e, "status_code", None),
                )
                raise
            finally:
                record_provider_call(self.name, endpoint, time.perf_counter() - start)

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(
            "provider_call_completed",
            provider=self.name,
            endpoint=endpoint,
            correlation_id=correlation_id,
            status_code=response.status_code,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return ProviderResponse(
            status_code=response.status_code,
            body=body,
            headers=dict(response.headers),
            correlation_id=correlation_id,
            elapsed_ms=elapsed_ms,
        )

    async def _send(self, request: ProviderRequest) -> httpx.Response:
        url = self.build_url(request.endpoint)
        try:
            async with self._session(request.timeout) as client:
                return await client.post(
                    url,
                    headers=request.headers,
                    json=request.payload,
                    timeout=request.timeout,
                )
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"Request to {self.name} timed out: {exc}",
                correlation_id=request.correlation_id,
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"Connection to {self.name} failed: {exc}",
                correlation_id=request.correlation_id,
            ) from exc

    def _parse(self, response: httpx.Response, request: ProviderRequest) -> Any:
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
            body = None
            if response.is_success:
                raise ValidationError(
                    f"Invalid JSON response from {self.name}",
                    correlation_id=request.correlation_id,
                )

        if not response.is_success:
            raise ProviderError(
                _error_message(body, f"{self.name} request failed with status: {response.status_code}"),
                status_code=response.status_code,
                correlation_id=request.correlation_id,
            )

        if isinstance(body, dict) and body.get("error"):
            raise ProviderError(
                _error_message(body, f"{self.name} returned an error payload"),
                status_code=response.status_code,
                correlation_id=request.correlation_id,
            )
        return body

    async def stream(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        callback: StreamCallback,
        options: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        POST and hand the response body to ``callback`` in fixed-size chunks.

        No timeout unless ``options["read_timeout"]`` is given; a failed read
        aborts the stream with a terminal StreamError. Returns bytes read.
        """
        options = options or {}
        correlation_id = options.get("correlation_id") or get_correlation_id() or generate_correlation_id()
        chunk_size = int(options.get("chunk_size", self.stream_chunk_size))
        read_timeout = options.get("read_timeout")
        timeout = httpx.Timeout(None, read=read_timeout) if read_timeout else httpx.Timeout(None)
        url = self.build_url(endpoint)
        headers = self.build_headers(correlation_id)

        total = 0
        try:
            async with self._session(timeout) as client:
                async with client.stream("POST", url, headers=headers, json=payload, timeout=timeout) as response:
                    if not response.is_success:
                        await response.aread()
                        try:
                            body = response.json()
                        except ValueError:
                            body = None
                        raise ProviderError(
                            _error_message(body, f"{self.name} stream failed with status: {response.status_code}"),
                            status_code=response.status_code,
                            correlation_id=correlation_id,
                        )
                    async for chunk in response.aiter_bytes(chunk_size=chunk_size):
                        result = callback(chunk)
                        if inspect.isawaitable(result):
                            await result
                        total += len(chunk)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            record_provider_error(self.name, TransportError.kind)
            raise TransportError(
                f"Connection to {self.name} failed: {exc}",
                correlation_id=correlation_id,
            ) from exc
        except httpx.HTTPError as exc:
            record_provider_error(self.name, StreamError.kind)
            logger.error(
                "provider_stream_failed",
                provider=self.name,
                endpoint=endpoint,
                correlation_id=correlation_id,
                bytes_read=total,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StreamError(
                f"Failed to read from {self.name} stream: {exc}",
                correlation_id=correlation_id,
            ) from exc

        logger.debug(
            "provider_stream_completed",
            provider=self.name,
            endpoint=endpoint,
            correlation_id=correlation_id,
            bytes_read=total,
        )
        return total

    # ------------------------------------------------------------------
    # Operation translation
    # ------------------------------------------------------------------

    def timeout_for(self, operation: str) -> float:
        if operation in IMAGE_OPERATIONS:
            return self.image_timeout_seconds
        return self.timeout_seconds

    def translate_request(self, operation: str, payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        raise NotImplementedError

    def translate_response(self, operation: str, body: Any) -> Any:
        """Return the ``data`` part of the envelope."""
        raise NotImplementedError

    def response_model(self, body: Any) -> Optional[str]:
        if isinstance(body, dict) and isinstance(body.get("model"), str):
            return body["model"]
        return self.model

    async def execute(
        self,
        operation: str,
        payload: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Run one provider operation and return the ``{data, meta}`` envelope.
        """
        if operation not in OPERATIONS:
            raise ConfigError(f"Unsupported operation '{operation}' for provider '{self.name}'")

        options = dict(options or {})
        options.setdefault("timeout", self.timeout_for(operation))
        endpoint, body = self.translate_request(operation, payload)
        response = await self.call(endpoint, body, options)
        data = self.translate_response(operation, response.body)

        meta = {
            "version": ENVELOPE_VERSION,
            "processing_time": round(response.elapsed_ms / 1000.0, 4),
            "provider": self.name,
            "model": self.response_model(response.body),
            "correlation_id": response.correlation_id,
        }
        if isinstance(response.body, dict) and isinstance(response.body.get("meta"), dict):
            meta.update({k: v for k, v in response.body["meta"].items() if v is not None})
        return {"data": data, "meta": meta}


def parse_json_content(provider: str, content: Any, correlation_hint: Optional[str] = None) -> Any:
    """Parse the JSON document a chat model returned as message text."""
    if isinstance(content, (dict, list)):
        return content
    if not isinstance(content, str):
        raise ValidationError(f"{provider} returned no content", correlation_id=correlation_hint)

    text = content.strip()
    # Models sometimes fence JSON in markdown
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(
            f"{provider} returned non-JSON content for a structured operation",
            correlation_id=correlation_hint,
        ) from exc
