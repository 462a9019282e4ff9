"""
Content analysis: local metrics combined with provider analysis.

A report has four parts:
- metrics and readability, computed locally (always present)
- the provider analysis for the requested type
- a sentiment and tone analysis
- an SEO section: local keyword density, provider keywords and suggestions

Each provider-backed part degrades on its own. A rate limit or provider error
leaves that part empty with its FailureInfo set, and the rest of the report
is still returned.

Complete reports are memoized in an optional ResultCache keyed by the
analysis type and a hash of the content. Reports with a failed part are not
cached so the next call retries it.
"""
import asyncio
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from ai_orchestrator.core.cache import ResultCache
from ai_orchestrator.core.errors import FailureInfo
from ai_orchestrator.core.logging import get_logger
from ai_orchestrator.services.ai.nlp import NLPService
from ai_orchestrator.services.ai.orchestration import DEFAULT_IDENTITY, AIService
from ai_orchestrator.services.ai.schema import Keyword, OperationResult
from ai_orchestrator.services.analysis.metrics_calculator import MetricsCalculator, content_hash, grade_level

logger = get_logger(__name__)

SENTIMENT_TYPE = "sentiment"


class Readability(BaseModel):
    flesch_kincaid: float
    grade_level: str


class SeoReport(BaseModel):
    keyword_density: Dict[str, float] = Field(default_factory=dict)
    keywords: Optional[List[Keyword]] = None
    keywords_error: Optional[FailureInfo] = None
    suggestions: Optional[Any] = None
    suggestions_error: Optional[FailureInfo] = None


class ContentAnalysisReport(BaseModel):
    type: str = "general"
    metrics: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    readability: Readability
    ai_analysis: Optional[Any] = None
    ai_error: Optional[FailureInfo] = None
    sentiment: Optional[Any] = None
    sentiment_error: Optional[FailureInfo] = None
    seo: SeoReport = Field(default_factory=SeoReport)
    from_cache: bool = False

    @property
    def degraded(self) -> bool:
        return any(
            error is not None
            for error in (self.ai_error, self.sentiment_error, self.seo.keywords_error, self.seo.suggestions_error)
        )


def _analysis_data(result: OperationResult) -> Optional[Any]:
    if not result.success:
        return None
    if hasattr(result.data, "data"):
        return result.data.data
    return result.data.model_dump(mode="json", exclude={"meta"})


class ContentAnalyzer:
    def __init__(
        self,
        ai_service: AIService,
        metrics_calculator: Optional[MetricsCalculator] = None,
        nlp_service: Optional[NLPService] = None,
        cache: Optional[ResultCache] = None,
        report_ttl: Optional[int] = None,
    ):
        self.ai_service = ai_service
        self.metrics_calculator = metrics_calculator or MetricsCalculator()
        self.nlp_service = nlp_service or NLPService(ai_service)
        self.cache = cache
        self.report_ttl = report_ttl

    @staticmethod
    def cache_key(content: str, type: str) -> str:
        return f"analysis:{type}:{content_hash(content)}"

    async def analyze(
        self,
        content: str,
        type: str = "general",
        identity: str = DEFAULT_IDENTITY,
    ) -> ContentAnalysisReport:
        key = self.cache_key(content, type)
        cached = await self._cached_report(key)
        if cached is not None:
            return cached

        metrics = await self.metrics_calculator.metrics(content)
        score = metrics["readability"]["flesch_kincaid"]

        analysis, sentiment, keywords, suggestions = await asyncio.gather(
            self.ai_service.analyze_content(content, type=type, identity=identity),
            self.ai_service.analyze_content(content, type=SENTIMENT_TYPE, identity=identity),
            self.nlp_service.extract_keywords(content, identity=identity),
            self.ai_service.generate_seo_suggestions(content, identity=identity),
        )

        seo = SeoReport(
            keyword_density=metrics.get("seo", {}).get("keyword_density", {}),
            keywords=list(keywords.data.items) if keywords.success else None,
            keywords_error=keywords.error,
            suggestions=_analysis_data(suggestions),
            suggestions_error=suggestions.error,
        )
        report = ContentAnalysisReport(
            type=type,
            metrics=metrics,
            readability=Readability(flesch_kincaid=score, grade_level=grade_level(score)),
            ai_analysis=_analysis_data(analysis),
            ai_error=analysis.error,
            sentiment=_analysis_data(sentiment),
            sentiment_error=sentiment.error,
            seo=seo,
        )

        if report.degraded:
            logger.warning(
                "content_analysis_degraded",
                type=type,
                failed=[
                    name
                    for name, result in (
                        ("analysis", analysis),
                        ("sentiment", sentiment),
                        ("keywords", keywords),
                        ("seo_suggestions", suggestions),
                    )
                    if not result.success
                ],
            )
        elif self.cache is not None:
            await self.cache.set(key, report.model_dump(mode="json"), ttl=self.report_ttl)
        return report

    async def _cached_report(self, key: str) -> Optional[ContentAnalysisReport]:
        if self.cache is None:
            return None
        cached = await self.cache.get(key, cache_type="analysis")
        if cached is None:
            return None
        try:
            report = ContentAnalysisReport.model_validate(cached)
        except PydanticValidationError as e:
            logger.warning("content_analysis_cache_invalid", key=key, error_count=e.error_count())
            await self.cache.delete(key)
            return None
        report.from_cache = True
        return report
