"""
Pydantic models for normalized provider results.

Every result variant carries a ``kind`` discriminator so a cached payload can
be re-validated into the right class. Scores (confidence, relevance,
probability) are floats in [0.0, 1.0]; values outside that range fail
validation instead of being clamped. Free-text fields are sanitized on the
way in.
"""
import time
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from ai_orchestrator.core.errors import FailureInfo
from ai_orchestrator.services.ai.sanitizer import sanitize_text, sanitize_value

Sentiment = Literal["negative", "neutral", "positive"]


def _score(description: str) -> Any:
    return Field(..., ge=0.0, le=1.0, allow_inf_nan=False, description=description)


class ResultMeta(BaseModel):
    """
    Envelope metadata.

    Schema:
    {
      "timestamp": 1718000000.0,
      "version": "1.0",
      "processing_time": 0.42,
      "provider": "generic",
      "model": "general",
      "correlation_id": "..."
    }
    """

    timestamp: float = Field(default_factory=time.time)
    version: str = "1.0"
    processing_time: float = 0.0
    provider: Optional[str] = None
    model: Optional[str] = None
    correlation_id: Optional[str] = None


class _Result(BaseModel):
    meta: ResultMeta = Field(default_factory=ResultMeta)


class _Batch(_Result):
    dropped: int = Field(0, ge=0, description="Number of invalid elements removed from the batch")


def _clean_required(value: Any) -> str:
    text = sanitize_text(value)
    if not text:
        raise ValueError("must be a non-empty string")
    return text


# ============================================================================
# Text / image
# ============================================================================

class TextResult(_Result):
    kind: Literal["text"] = "text"
    text: str
    finish_reason: Optional[str] = None
    usage: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("text", mode="before")
    @classmethod
    def clean_text(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("text must be a string")
        text = sanitize_text(value, multiline=True)
        if not text:
            raise ValueError("text must not be empty")
        return text


class ImageResult(_Result):
    kind: Literal["image"] = "image"
    url: Optional[str] = None
    b64_json: Optional[str] = None
    mime_type: Optional[str] = None
    revised_prompt: Optional[str] = None

    @field_validator("revised_prompt", mode="before")
    @classmethod
    def clean_prompt(cls, value: Any) -> Optional[str]:
        return sanitize_text(value) if value is not None else None

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("http://", "https://", "data:")):
            raise ValueError("url must be http(s) or a data: URI")
        return value

    @model_validator(mode="after")
    def require_image(self) -> "ImageResult":
        if not self.url and not self.b64_json:
            raise ValueError("image result needs a url or b64_json payload")
        return self


# ============================================================================
# Batch element models
# ============================================================================

class Entity(BaseModel):
    text: str
    type: str
    confidence: float = _score("Extraction confidence in [0.0, 1.0]")
    start: int = 0
    end: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("text", mode="before")
    @classmethod
    def clean_text(cls, value: Any) -> str:
        return _clean_required(value)

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("entity type must be a non-empty string")
        return sanitize_text(value).upper().replace(" ", "_")

    @field_validator("metadata", mode="before")
    @classmethod
    def clean_metadata(cls, value: Any) -> Dict[str, Any]:
        return sanitize_value(value) if isinstance(value, dict) else {}


class Topic(BaseModel):
    name: str
    confidence: float = _score("Topic confidence in [0.0, 1.0]")
    keywords: List[str] = Field(default_factory=list)
    hierarchy: List[str] = Field(default_factory=list)
    relevance: float = Field(0.0, ge=0.0, le=1.0, allow_inf_nan=False)

    @field_validator("name", mode="before")
    @classmethod
    def clean_name(cls, value: Any) -> str:
        return _clean_required(value)

    @field_validator("keywords", "hierarchy", mode="before")
    @classmethod
    def clean_terms(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("must be a list of strings")
        return [t for t in (sanitize_text(v) for v in value) if t]


class Keyword(BaseModel):
    text: str
    relevance: float = _score("Keyword relevance in [0.0, 1.0]")
    frequency: int = Field(0, ge=0)
    sentiment: Optional[Sentiment] = None
    context: List[str] = Field(default_factory=list)

    @field_validator("text", mode="before")
    @classmethod
    def clean_text(cls, value: Any) -> str:
        return _clean_required(value)

    @field_validator("context", mode="before")
    @classmethod
    def clean_context(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [t for t in (sanitize_text(v) for v in value) if t]


class Dependency(BaseModel):
    source: str
    target: str
    type: str
    probability: float = _score("Arc probability in [0.0, 1.0]")
    features: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("source", "target", mode="before")
    @classmethod
    def clean_tokens(cls, value: Any) -> str:
        return _clean_required(value)

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("dependency type must be a non-empty string")
        return sanitize_text(value).lower()

    @field_validator("features", mode="before")
    @classmethod
    def clean_features(cls, value: Any) -> Dict[str, Any]:
        return sanitize_value(value) if isinstance(value, dict) else {}


class POSTag(BaseModel):
    text: str
    tag: str
    probability: float = _score("Tag probability in [0.0, 1.0]")
    features: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("text", mode="before")
    @classmethod
    def clean_text(cls, value: Any) -> str:
        return _clean_required(value)

    @field_validator("tag", mode="before")
    @classmethod
    def validate_tag(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("tag must be a non-empty string")
        return sanitize_text(value).upper()

    @field_validator("features", mode="before")
    @classmethod
    def clean_features(cls, value: Any) -> Dict[str, Any]:
        return sanitize_value(value) if isinstance(value, dict) else {}


class SentimentAspect(BaseModel):
    aspect: str
    sentiment: Sentiment
    confidence: float = _score("Aspect confidence in [0.0, 1.0]")

    @field_validator("aspect", mode="before")
    @classmethod
    def clean_aspect(cls, value: Any) -> str:
        return _clean_required(value)


# ============================================================================
# Batch results
# ============================================================================

class EntityList(_Batch):
    kind: Literal["entities"] = "entities"
    items: List[Entity] = Field(default_factory=list)


class TopicList(_Batch):
    kind: Literal["topics"] = "topics"
    items: List[Topic] = Field(default_factory=list)


class KeywordList(_Batch):
    kind: Literal["keywords"] = "keywords"
    items: List[Keyword] = Field(default_factory=list)


class DependencyList(_Batch):
    kind: Literal["dependencies"] = "dependencies"
    items: List[Dependency] = Field(default_factory=list)


class POSTagList(_Batch):
    kind: Literal["pos_tags"] = "pos_tags"
    items: List[POSTag] = Field(default_factory=list)


class SentimentResult(_Batch):
    """
    Overall sentiment plus per-aspect breakdown.

    ``dropped`` counts invalid aspects.
    """

    kind: Literal["sentiment"] = "sentiment"
    sentiment: Sentiment
    score: float = Field(..., ge=-1.0, le=1.0, allow_inf_nan=False)
    confidence: float = Field(1.0, ge=0.0, le=1.0, allow_inf_nan=False)
    aspects: List[SentimentAspect] = Field(default_factory=list)


class AnalysisResult(_Result):
    """
    Generic structured result (content analysis, SEO, variations,
    visualization specs, classification, free-form processing).
    """

    kind: Literal["analysis"] = "analysis"
    operation: str = "process"
    data: Any = None

    @field_validator("data", mode="before")
    @classmethod
    def clean_data(cls, value: Any) -> Any:
        return sanitize_value(value)


NormalizedResult = Annotated[
    Union[
        TextResult,
        ImageResult,
        EntityList,
        TopicList,
        KeywordList,
        SentimentResult,
        DependencyList,
        POSTagList,
        AnalysisResult,
    ],
    Field(discriminator="kind"),
]

normalized_result_adapter: TypeAdapter = TypeAdapter(NormalizedResult)


class OperationResult(BaseModel):
    """
    Public return type of every AIService operation.

    Exactly one of ``data`` / ``error`` is set.
    """

    operation: str
    success: bool
    data: Optional[NormalizedResult] = None
    error: Optional[FailureInfo] = None
    from_cache: bool = False
    correlation_id: Optional[str] = None
    identity: Optional[str] = None

    @classmethod
    def ok(
        cls,
        operation: str,
        data: BaseModel,
        correlation_id: Optional[str],
        identity: Optional[str],
        from_cache: bool = False,
    ) -> "OperationResult":
        return cls(
            operation=operation,
            success=True,
            data=data,
            from_cache=from_cache,
            correlation_id=correlation_id,
            identity=identity,
        )

    @classmethod
    def failed(
        cls,
        operation: str,
        error: FailureInfo,
        correlation_id: Optional[str],
        identity: Optional[str],
    ) -> "OperationResult":
        return cls(
            operation=operation,
            success=False,
            error=error,
            correlation_id=correlation_id,
            identity=identity,
        )
