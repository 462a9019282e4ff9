"""
NLP operations on top of AIService.

Each method fixes the provider operation and its default options, then runs
through the same rate limit / cache / retry / normalize pipeline as every
other AIService operation.
"""
from typing import Any, Dict, List, Optional

from ai_orchestrator.services.ai.orchestration import DEFAULT_IDENTITY, AIService
from ai_orchestrator.services.ai.schema import OperationResult

ENTITY_TYPES = ["PERSON", "ORGANIZATION", "LOCATION", "DATE", "TIME", "MONEY", "PERCENT"]

ENTITY_OPTIONS: Dict[str, Any] = {
    "confidence_threshold": 0.7,
    "include_metadata": True,
    "entity_types": ENTITY_TYPES,
}
TOPIC_OPTIONS: Dict[str, Any] = {
    "max_topics": 5,
    "min_confidence": 0.6,
    "include_hierarchy": True,
    "include_keywords": True,
}
KEYWORD_OPTIONS: Dict[str, Any] = {
    "max_keywords": 10,
    "min_relevance": 0.5,
    "include_ngrams": True,
    "include_sentiment": True,
}
DEPENDENCY_OPTIONS: Dict[str, Any] = {
    "model": "neural",
    "include_probabilities": True,
    "include_tokens": True,
}
POS_OPTIONS: Dict[str, Any] = {
    "model": "accurate",
    "include_features": True,
    "include_probabilities": True,
}
SENTIMENT_OPTIONS: Dict[str, Any] = {
    "model": "neural",
    "include_aspects": True,
    "include_entities": True,
}


class NLPService:
    def __init__(self, ai_service: AIService):
        self.ai_service = ai_service

    async def _run(
        self,
        operation: str,
        provider_operation: str,
        text: str,
        defaults: Dict[str, Any],
        options: Optional[Dict[str, Any]],
        identity: str,
        model_type: str = "nlp/general",
    ) -> OperationResult:
        params = {**defaults, **(options or {})}
        return await self.ai_service.run(
            operation,
            provider_operation,
            {"text": text},
            params,
            identity,
            model_type=model_type,
        )

    async def extract_entities(
        self, text: str, options: Optional[Dict[str, Any]] = None, identity: str = DEFAULT_IDENTITY
    ) -> OperationResult:
        return await self._run("extract_entities", "entities", text, ENTITY_OPTIONS, options, identity)

    async def identify_topics(
        self, text: str, options: Optional[Dict[str, Any]] = None, identity: str = DEFAULT_IDENTITY
    ) -> OperationResult:
        return await self._run("identify_topics", "topics", text, TOPIC_OPTIONS, options, identity)

    async def extract_keywords(
        self, text: str, options: Optional[Dict[str, Any]] = None, identity: str = DEFAULT_IDENTITY
    ) -> OperationResult:
        return await self._run("extract_keywords", "keywords", text, KEYWORD_OPTIONS, options, identity)

    async def dependency_parse(
        self, text: str, options: Optional[Dict[str, Any]] = None, identity: str = DEFAULT_IDENTITY
    ) -> OperationResult:
        return await self._run("dependency_parse", "dependency", text, DEPENDENCY_OPTIONS, options, identity)

    async def pos_tag(
        self, text: str, options: Optional[Dict[str, Any]] = None, identity: str = DEFAULT_IDENTITY
    ) -> OperationResult:
        return await self._run("pos_tag", "pos", text, POS_OPTIONS, options, identity)

    async def analyze_sentiment(
        self, text: str, options: Optional[Dict[str, Any]] = None, identity: str = DEFAULT_IDENTITY
    ) -> OperationResult:
        return await self._run("analyze_sentiment", "sentiment", text, SENTIMENT_OPTIONS, options, identity)

    async def classify_content(
        self,
        text: str,
        categories: List[str],
        options: Optional[Dict[str, Any]] = None,
        identity: str = DEFAULT_IDENTITY,
    ) -> OperationResult:
        defaults = {"categories": list(categories), "multi_label": False}
        return await self._run("classify_content", "classify", text, defaults, options, identity)

    async def process(
        self,
        text: str,
        model_type: str = "general",
        options: Optional[Dict[str, Any]] = None,
        identity: str = DEFAULT_IDENTITY,
    ) -> OperationResult:
        """Free-form processing with a registry model ("general" means nlp/general)."""
        if "/" not in model_type:
            model_type = f"nlp/{model_type}"
        defaults = {"model_type": model_type}
        return await self._run("process", "process", text, defaults, options, identity, model_type=model_type)
