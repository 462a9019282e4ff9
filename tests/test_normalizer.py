"""
Unit tests for response normalization.
"""
import pytest

from ai_orchestrator.core.errors import ValidationError
from ai_orchestrator.services.ai.normalizer import (
    ResponseNormalizer,
    map_sentiment_label,
    sentiment_from_score,
)
from ai_orchestrator.services.ai.schema import (
    AnalysisResult,
    EntityList,
    OperationResult,
    TextResult,
    normalized_result_adapter,
)


@pytest.fixture
def normalizer(clock):
    return ResponseNormalizer(clock=clock)


def envelope(data, **meta):
    return {"data": data, "meta": meta}


def test_process_defaults_meta(normalizer, clock):
    """Missing version/processing_time default to "1.0"/0; timestamp comes from the clock."""
    result = normalizer.process({"data": {"answer": 42}})

    assert isinstance(result, AnalysisResult)
    assert result.data == {"answer": 42}
    assert result.meta.version == "1.0"
    assert result.meta.processing_time == 0.0
    assert result.meta.timestamp == clock()


def test_process_keeps_provider_meta(normalizer):
    result = normalizer.process(envelope([1], version="2.0", processing_time="0.25", provider="generic"))

    assert result.meta.version == "2.0"
    assert result.meta.processing_time == 0.25
    assert result.meta.provider == "generic"


def test_process_requires_data(normalizer):
    with pytest.raises(ValidationError):
        normalizer.process({"meta": {}})
    with pytest.raises(ValidationError):
        normalizer.process({"data": None})


def test_entity_with_out_of_range_confidence_is_dropped(normalizer):
    """confidence=1.5 fails validation and is dropped, not clamped."""
    result = normalizer.process_entities(envelope({
        "entities": [
            {"text": "Ada Lovelace", "type": "person", "confidence": 0.95, "start": 0, "end": 12},
            {"text": "London", "type": "LOCATION", "confidence": 1.5},
        ]
    }))

    assert isinstance(result, EntityList)
    assert result.dropped == 1
    assert [e.text for e in result.items] == ["Ada Lovelace"]
    assert result.items[0].type == "PERSON"


def test_entity_missing_fields_dropped(normalizer):
    result = normalizer.process_entities(envelope({
        "entities": [
            {"text": "x", "confidence": 0.5},
            {"type": "ORG", "confidence": 0.5},
            "not an object",
            {"text": "Acme", "type": "ORG", "confidence": 0.7},
        ]
    }))

    assert result.dropped == 3
    assert len(result.items) == 1


def test_entity_text_is_sanitized(normalizer):
    result = normalizer.process_entities(envelope({
        "entities": [{"text": "<b>Acme</b><script>steal()</script>", "type": "org", "confidence": 0.5}]
    }))

    assert result.items[0].text == "Acme"


def test_entities_not_a_list_is_validation_error(normalizer):
    with pytest.raises(ValidationError):
        normalizer.process_entities(envelope({"entities": "Ada"}))


def test_topics_relevance_falls_back_to_confidence(normalizer):
    result = normalizer.process_topics(envelope({
        "topics": [
            {"name": "Computing", "confidence": 0.8, "keywords": ["engine", "<i>code</i>"]},
            {"name": "Bad", "confidence": -0.1},
        ]
    }))

    assert result.dropped == 1
    topic = result.items[0]
    assert topic.relevance == 0.8
    assert topic.keywords == ["engine", "code"]


def test_keywords_map_sentiment_labels(normalizer):
    result = normalizer.process_keywords(envelope({
        "keywords": [
            {"text": "great", "relevance": 0.9, "frequency": 3, "sentiment": "Very Positive"},
            {"text": "meh", "relevance": 0.4, "sentiment": "weird"},
            {"text": "nan", "relevance": float("nan")},
        ]
    }))

    assert result.dropped == 1
    assert result.items[0].sentiment == "positive"
    assert result.items[1].sentiment is None


def test_dependencies_and_pos_tags(normalizer):
    deps = normalizer.process_dependencies(envelope({
        "dependencies": [
            {"source": "cat", "target": "sat", "type": "NSUBJ", "probability": 0.9},
            {"source": "sat", "target": "", "type": "root", "probability": 0.9},
        ]
    }))
    tags = normalizer.process_pos_tags(envelope({
        "tokens": [{"text": "cat", "tag": "noun", "probability": 0.99}, {"text": "sat", "tag": "VERB", "probability": 2}]
    }))

    assert deps.dropped == 1
    assert deps.items[0].type == "nsubj"
    assert tags.dropped == 1
    assert tags.items[0].tag == "NOUN"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("positive", "positive"),
        ("NEG", "negative"),
        ("very-negative", "negative"),
        ("mixed", "neutral"),
        (0.04, "neutral"),
        (-0.05, "neutral"),
        (0.06, "positive"),
        (-0.5, "negative"),
        (1.5, None),
        ("ecstatic", None),
        (True, None),
        (None, None),
    ],
)
def test_map_sentiment_label(value, expected):
    assert map_sentiment_label(value) == expected


def test_sentiment_from_score_band():
    assert sentiment_from_score(0.05) == "neutral"
    assert sentiment_from_score(0.051) == "positive"


def test_sentiment_from_score_only(normalizer):
    result = normalizer.process_sentiment(envelope({"score": -0.6, "confidence": 0.8}))

    assert result.sentiment == "negative"
    assert result.score == -0.6
    assert result.confidence == 0.8


def test_sentiment_label_only_derives_score(normalizer):
    result = normalizer.process_sentiment(envelope({"sentiment": "positive", "confidence": 0.7}))

    assert result.sentiment == "positive"
    assert result.score == 0.7


def test_sentiment_aspects_partial(normalizer):
    result = normalizer.process_sentiment(envelope({
        "sentiment": "neutral",
        "aspects": [
            {"aspect": "price", "sentiment": "bad", "confidence": 0.9},
            {"aspect": "service", "sentiment": "unknown", "confidence": 0.9},
        ],
    }))

    assert result.score == 0.0
    assert result.dropped == 1
    assert result.aspects[0].sentiment == "negative"


@pytest.mark.parametrize("data", [{"score": 3}, {"sentiment": "ecstatic"}, {}, "positive"])
def test_sentiment_invalid_payload(normalizer, data):
    with pytest.raises(ValidationError):
        normalizer.process_sentiment(envelope(data))


def test_text_result(normalizer):
    result = normalizer.process_text(envelope({"text": "Hello <b>there</b>\n\nSecond", "finish_reason": "stop"}))

    assert isinstance(result, TextResult)
    assert result.text == "Hello there\n\nSecond"
    assert result.finish_reason == "stop"


def test_empty_text_is_validation_error(normalizer):
    with pytest.raises(ValidationError):
        normalizer.process_text(envelope({"text": "<script>x</script>"}))


def test_image_requires_url_or_payload(normalizer):
    assert normalizer.process_image(envelope({"url": "https://img.example.com/a.png"})).url.endswith("a.png")
    assert normalizer.process_image(envelope({"b64_json": "aGk="})).b64_json == "aGk="

    with pytest.raises(ValidationError):
        normalizer.process_image(envelope({"revised_prompt": "nothing"}))
    with pytest.raises(ValidationError):
        normalizer.process_image(envelope({"url": "javascript:alert(1)"}))


def test_normalize_dispatch(normalizer):
    assert normalizer.normalize("entities", envelope({"entities": []})).kind == "entities"
    assert normalizer.normalize("seo/suggest", envelope({"title": "T"})).kind == "analysis"


def test_cached_payload_revalidates_into_same_variant(normalizer):
    result = normalizer.process_entities(envelope({"entities": [{"text": "Ada", "type": "PERSON", "confidence": 0.5}]}))

    restored = normalized_result_adapter.validate_python(result.model_dump(mode="json"))

    assert isinstance(restored, EntityList)
    assert restored.items[0].text == "Ada"


def test_operation_result_failed_shape():
    from ai_orchestrator.core.errors import ProviderError

    result = OperationResult.failed("generate_text", ProviderError("bad", status_code=400).to_failure(), "cid", "u")

    assert result.success is False
    assert result.data is None
    assert result.error.kind == "provider_error"
    assert result.error.status_code == 400
