"""
Response normalization: provider envelope → typed, sanitized result.

Batch policy is partial success. An element that fails validation (missing
field, wrong type, score outside [0, 1]) is dropped and counted in
``dropped``; the rest of the batch survives. A payload whose overall shape is
wrong (e.g. ``entities`` is not a list) raises ValidationError.
"""
import math
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ai_orchestrator.core.errors import ValidationError
from ai_orchestrator.core.logging import get_logger
from ai_orchestrator.core.metrics import record_normalizer_dropped
from ai_orchestrator.services.ai.schema import (
    AnalysisResult,
    Dependency,
    DependencyList,
    Entity,
    EntityList,
    ImageResult,
    Keyword,
    KeywordList,
    POSTag,
    POSTagList,
    ResultMeta,
    SentimentAspect,
    SentimentResult,
    TextResult,
    Topic,
    TopicList,
)

logger = get_logger(__name__)

NEUTRAL_BAND = 0.05

SENTIMENT_LABELS: Dict[str, str] = {
    "positive": "positive",
    "pos": "positive",
    "very positive": "positive",
    "very_positive": "positive",
    "somewhat positive": "positive",
    "good": "positive",
    "negative": "negative",
    "neg": "negative",
    "very negative": "negative",
    "very_negative": "negative",
    "somewhat negative": "negative",
    "bad": "negative",
    "neutral": "neutral",
    "neu": "neutral",
    "mixed": "neutral",
    "none": "neutral",
}


def sentiment_from_score(score: float) -> str:
    if score > NEUTRAL_BAND:
        return "positive"
    if score < -NEUTRAL_BAND:
        return "negative"
    return "neutral"


def map_sentiment_label(value: Any) -> Optional[str]:
    """
    Map a provider sentiment label (or numeric score in [-1, 1]) to
    negative | neutral | positive. Returns None when unrecognized.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        score = float(value)
        if math.isnan(score) or not -1.0 <= score <= 1.0:
            return None
        return sentiment_from_score(score)
    if isinstance(value, str):
        label = " ".join(value.lower().replace("-", " ").split())
        return SENTIMENT_LABELS.get(label) or SENTIMENT_LABELS.get(label.replace(" ", "_"))
    return None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(result) else result


class ResponseNormalizer:
    """Turns ``{data, meta}`` envelopes into NormalizedResult variants."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    # ------------------------------------------------------------------
    # Envelope helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _unwrap(envelope: Any, require_data: bool = False) -> Tuple[Any, Dict[str, Any]]:
        if isinstance(envelope, dict) and "data" in envelope:
            meta = envelope.get("meta")
            return envelope["data"], meta if isinstance(meta, dict) else {}
        if require_data:
            raise ValidationError("Invalid response format: missing 'data'")
        return envelope, {}

    def _meta(self, meta: Dict[str, Any]) -> ResultMeta:
        processing_time = _as_float(meta.get("processing_time"))
        return ResultMeta(
            timestamp=self._clock(),
            version=str(meta.get("version") or "1.0"),
            processing_time=processing_time if processing_time is not None else 0.0,
            provider=meta.get("provider"),
            model=meta.get("model"),
            correlation_id=meta.get("correlation_id"),
        )

    def _elements(self, data: Any, field: str) -> List[Any]:
        elements = data.get(field) if isinstance(data, dict) else data
        if not isinstance(elements, list):
            raise ValidationError(f"Invalid response format: '{field}' must be a list")
        return elements

    def _validate_batch(
        self,
        kind: str,
        elements: List[Any],
        model: Type[BaseModel],
        prepare: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
    ) -> Tuple[List[Any], int]:
        items = []
        dropped = 0
        for index, raw in enumerate(elements):
            if not isinstance(raw, dict):
                dropped += 1
                logger.debug("normalizer_element_dropped", kind=kind, index=index, reason="not_an_object")
                continue
            try:
                items.append(model.model_validate(prepare(raw) if prepare else raw))
            except PydanticValidationError as exc:
                dropped += 1
                logger.debug(
                    "normalizer_element_dropped",
                    kind=kind,
                    index=index,
                    reason="invalid",
                    fields=[".".join(str(p) for p in err["loc"]) for err in exc.errors()],
                )

        if dropped:
            record_normalizer_dropped(kind, dropped)
            logger.info("normalizer_batch_partial", kind=kind, kept=len(items), dropped=dropped)
        return items, dropped

    # ------------------------------------------------------------------
    # Generic / text / image
    # ------------------------------------------------------------------

    def process(self, envelope: Any, operation: str = "process") -> AnalysisResult:
        """
        Generic envelope: keep ``data`` (sanitized) and rebuild ``meta`` with
        timestamp, version (default "1.0") and processing_time (default 0).
        """
        data, meta = self._unwrap(envelope, require_data=True)
        if data is None:
            raise ValidationError("Invalid response format: 'data' is empty")
        return AnalysisResult(operation=operation, data=data, meta=self._meta(meta))

    def process_text(self, envelope: Any) -> TextResult:
        data, meta = self._unwrap(envelope)
        if isinstance(data, str):
            data = {"text": data}
        if not isinstance(data, dict):
            raise ValidationError("Invalid text response")
        fields = {
            "text": data.get("text", data.get("content")),
            "finish_reason": data.get("finish_reason"),
            "usage": data.get("usage") if isinstance(data.get("usage"), dict) else {},
        }
        try:
            return TextResult(meta=self._meta(meta), **fields)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid text response: {exc.error_count()} error(s)") from exc

    def process_image(self, envelope: Any) -> ImageResult:
        data, meta = self._unwrap(envelope)
        if isinstance(data, str):
            data = {"url": data}
        if isinstance(data, list) and data:
            data = data[0]
        if not isinstance(data, dict):
            raise ValidationError("Invalid image response")
        fields = {k: data.get(k) for k in ("url", "b64_json", "mime_type", "revised_prompt")}
        try:
            return ImageResult(meta=self._meta(meta), **fields)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid image response: {exc.error_count()} error(s)") from exc

    # ------------------------------------------------------------------
    # NLP batches
    # ------------------------------------------------------------------

    def process_entities(self, envelope: Any) -> EntityList:
        data, meta = self._unwrap(envelope)
        items, dropped = self._validate_batch("entities", self._elements(data, "entities"), Entity)
        return EntityList(items=items, dropped=dropped, meta=self._meta(meta))

    def process_topics(self, envelope: Any) -> TopicList:
        def prepare(raw: Dict[str, Any]) -> Dict[str, Any]:
            # Relevance falls back to confidence when the provider omits it
            if raw.get("relevance") is None and "confidence" in raw:
                return {**raw, "relevance": raw["confidence"]}
            return raw

        data, meta = self._unwrap(envelope)
        items, dropped = self._validate_batch("topics", self._elements(data, "topics"), Topic, prepare)
        return TopicList(items=items, dropped=dropped, meta=self._meta(meta))

    def process_keywords(self, envelope: Any) -> KeywordList:
        def prepare(raw: Dict[str, Any]) -> Dict[str, Any]:
            return {**raw, "sentiment": map_sentiment_label(raw.get("sentiment"))}

        data, meta = self._unwrap(envelope)
        items, dropped = self._validate_batch("keywords", self._elements(data, "keywords"), Keyword, prepare)
        return KeywordList(items=items, dropped=dropped, meta=self._meta(meta))

    def process_dependencies(self, envelope: Any) -> DependencyList:
        data, meta = self._unwrap(envelope)
        items, dropped = self._validate_batch(
            "dependencies", self._elements(data, "dependencies"), Dependency
        )
        return DependencyList(items=items, dropped=dropped, meta=self._meta(meta))

    def process_pos_tags(self, envelope: Any) -> POSTagList:
        data, meta = self._unwrap(envelope)
        items, dropped = self._validate_batch("pos_tags", self._elements(data, "tokens"), POSTag)
        return POSTagList(items=items, dropped=dropped, meta=self._meta(meta))

    def process_sentiment(self, envelope: Any) -> SentimentResult:
        """
        Overall sentiment from a label and/or a score in [-1, 1].

        A recognized label wins over the score's sign; with only a label, the
        score is +/-confidence (0 for neutral).
        """
        data, meta = self._unwrap(envelope)
        if not isinstance(data, dict):
            raise ValidationError("Invalid sentiment response")

        raw_label = data.get("sentiment", data.get("label"))
        score = _as_float(data.get("score"))
        if score is not None and not -1.0 <= score <= 1.0:
            raise ValidationError(f"Sentiment score {score} is outside [-1, 1]")

        confidence = _as_float(data.get("confidence"))
        if confidence is None or not 0.0 <= confidence <= 1.0:
            confidence = 1.0

        label = map_sentiment_label(raw_label)
        if label is None and score is None:
            raise ValidationError(f"Unrecognized sentiment: {raw_label!r}")
        if label is None:
            label = sentiment_from_score(score)
        if score is None:
            score = {"positive": confidence, "negative": -confidence}.get(label, 0.0)

        def prepare(raw: Dict[str, Any]) -> Dict[str, Any]:
            return {**raw, "sentiment": map_sentiment_label(raw.get("sentiment"))}

        aspects_raw = data.get("aspects") or []
        if not isinstance(aspects_raw, list):
            raise ValidationError("Invalid response format: 'aspects' must be a list")
        aspects, dropped = self._validate_batch("sentiment_aspects", aspects_raw, SentimentAspect, prepare)

        return SentimentResult(
            sentiment=label,
            score=round(score, 4),
            confidence=confidence,
            aspects=aspects,
            dropped=dropped,
            meta=self._meta(meta),
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def normalize(self, operation: str, envelope: Any) -> BaseModel:
        """Pick the processor for a provider operation."""
        processors: Dict[str, Callable[[Any], BaseModel]] = {
            "text/generate": self.process_text,
            "image/generate": self.process_image,
            "image/enhance": self.process_image,
            "entities": self.process_entities,
            "topics": self.process_topics,
            "keywords": self.process_keywords,
            "dependency": self.process_dependencies,
            "pos": self.process_pos_tags,
            "sentiment": self.process_sentiment,
        }
        processor = processors.get(operation)
        if processor is None:
            return self.process(envelope, operation=operation)
        return processor(envelope)
