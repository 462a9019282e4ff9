"""
Unit tests for NLPService.

AIService.run is mocked; these tests pin the provider operation, defaults and
model type each NLP method sends through the pipeline.
"""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from ai_orchestrator.core.config import RateLimitSettings
from ai_orchestrator.core.rate_limit import InMemoryCounterStore, RateLimiter
from ai_orchestrator.core.retry import RetryHandler
from ai_orchestrator.services.ai.nlp import ENTITY_OPTIONS, NLPService
from ai_orchestrator.services.ai.normalizer import ResponseNormalizer
from ai_orchestrator.services.ai.orchestration import AIService
from ai_orchestrator.services.ai.providers import GenericProvider


@pytest.fixture
def ai_service():
    service = MagicMock(spec=AIService)
    service.run = AsyncMock(return_value="result")
    return service


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,operation,provider_operation",
    [
        ("extract_entities", "extract_entities", "entities"),
        ("identify_topics", "identify_topics", "topics"),
        ("extract_keywords", "extract_keywords", "keywords"),
        ("dependency_parse", "dependency_parse", "dependency"),
        ("pos_tag", "pos_tag", "pos"),
        ("analyze_sentiment", "analyze_sentiment", "sentiment"),
    ],
)
async def test_methods_route_to_provider_operations(ai_service, method, operation, provider_operation):
    nlp = NLPService(ai_service)

    assert await getattr(nlp, method)("Some text", identity="u") == "result"

    args, kwargs = ai_service.run.call_args
    assert args[0] == operation
    assert args[1] == provider_operation
    assert args[2] == {"text": "Some text"}
    assert args[4] == "u"
    assert kwargs["model_type"] == "nlp/general"


@pytest.mark.asyncio
async def test_options_override_defaults(ai_service):
    await NLPService(ai_service).extract_entities("t", {"confidence_threshold": 0.9})

    params = ai_service.run.call_args.args[3]
    assert params["confidence_threshold"] == 0.9
    assert params["entity_types"] == ENTITY_OPTIONS["entity_types"]


@pytest.mark.asyncio
async def test_classify_content_sends_categories(ai_service):
    await NLPService(ai_service).classify_content("t", ["sports", "politics"])

    args = ai_service.run.call_args.args
    assert args[1] == "classify"
    assert args[3]["categories"] == ["sports", "politics"]


@pytest.mark.asyncio
@pytest.mark.parametrize("model_type,expected", [("general", "nlp/general"), ("text/specialized", "text/specialized")])
async def test_process_model_type(ai_service, model_type, expected):
    await NLPService(ai_service).process("t", model_type=model_type)

    assert ai_service.run.call_args.kwargs["model_type"] == expected


@pytest.mark.asyncio
async def test_entities_end_to_end(clock, result_cache):
    """Partial batch: the out-of-range entity is dropped, the rest survives."""
    def respond(request):
        return httpx.Response(200, json={"data": {"entities": [
            {"text": "Ada", "type": "PERSON", "confidence": 0.9},
            {"text": "London", "type": "LOCATION", "confidence": 1.5},
        ]}})

    service = AIService(
        provider=GenericProvider(api_key="k", api_base="https://ai.example.com", transport=httpx.MockTransport(respond)),
        cache=result_cache,
        rate_limiter=RateLimiter(RateLimitSettings(), InMemoryCounterStore(), clock=clock),
        retry_handler=RetryHandler(max_attempts=1),
        normalizer=ResponseNormalizer(clock=clock),
    )

    result = await NLPService(service).extract_entities("Ada lived in London")

    assert result.success is True
    assert result.data.kind == "entities"
    assert [e.text for e in result.data.items] == ["Ada"]
    assert result.data.dropped == 1
