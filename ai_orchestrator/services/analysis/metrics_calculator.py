"""
Content metrics: readability, structure, complexity and SEO signals.

All functions are pure over the input text. HTML is stripped before counting,
except where the markup itself is the signal (headings, links, paragraphs).

Heuristics:
- Words: whitespace-separated tokens
- Sentences: segments between runs of . ! ?
- Syllables: vowel groups [aeiouy]+, minus one for a trailing "e",
  at least 1 for any word containing letters
"""
import hashlib
import html
import re
from collections import Counter
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ai_orchestrator.core.cache import ResultCache
from ai_orchestrator.core.logging import get_logger
from ai_orchestrator.services.ai.sanitizer import strip_tags

logger = get_logger(__name__)

SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
VOWEL_GROUP_RE = re.compile(r"[aeiouy]+")
NON_LETTER_RE = re.compile(r"[^a-z]")
DIGITS_RE = re.compile(r"[0-9]+")
HEADING_RE = re.compile(r"<h([1-6])\b[^>]*>", re.IGNORECASE)
LINK_RE = re.compile(r"<a\b[^>]*\bhref\s*=\s*[\"']([^\"']*)[\"']", re.IGNORECASE)
PARAGRAPH_TAG_RE = re.compile(r"<p\b[^>]*>", re.IGNORECASE)
BLANK_LINE_RE = re.compile(r"\n\s*\n")
WORD_RE = re.compile(r"[a-z][a-z'-]*")

PASSIVE_VOICE_PATTERNS = [
    re.compile(r"\b(am|is|are|was|were|be|been|being)\s+(\w+ed)\b", re.IGNORECASE),
    re.compile(r"\b(has|have|had)\s+been\s+(\w+ed)\b", re.IGNORECASE),
]

TRANSITION_WORDS = [
    "furthermore",
    "moreover",
    "additionally",
    "therefore",
    "consequently",
    "however",
    "nevertheless",
    "alternatively",
    "meanwhile",
    "subsequently",
    "finally",
    "in conclusion",
]
TRANSITION_PATTERNS = [re.compile(r"\b" + re.escape(w) + r"\b", re.IGNORECASE) for w in TRANSITION_WORDS]

STOPWORDS = frozenset(
    """
    a about above after again against all also an and any are as at be because been before
    being below between both but by can could did do does doing down during each few for
    from further had has have having he her here hers him his how i if in into is it its
    just more most my no nor not now of off on once only or other our out over own same
    she should so some such than that the their them then there these they this those
    through to too under until up very was we were what when where which while who whom
    why will with would you your
    """.split()
)


def plain_text(text: Optional[str]) -> str:
    if not text:
        return ""
    return html.unescape(strip_tags(text))


def _words(text: str) -> List[str]:
    return plain_text(text).split()


def count_words(text: str) -> int:
    return len(_words(text))


def count_sentences(text: str) -> int:
    return sum(1 for segment in SENTENCE_SPLIT_RE.split(plain_text(text)) if segment.strip())


def count_word_syllables(word: str) -> int:
    word = NON_LETTER_RE.sub("", word.lower())
    if not word:
        return 0
    count = len(VOWEL_GROUP_RE.findall(word))
    if word.endswith("e"):
        count -= 1
    return max(1, count)


def count_syllables(text: str) -> int:
    text = DIGITS_RE.sub("", plain_text(text))
    return sum(count_word_syllables(word) for word in text.split())


def calculate_flesch_kincaid(text: str) -> float:
    """
    Flesch reading ease: 206.835 - 1.015*(words/sentences) - 84.6*(syllables/words).

    Returns 0 when there are no words or no sentences.
    """
    words = count_words(text)
    sentences = count_sentences(text)
    if words == 0 or sentences == 0:
        return 0
    syllables = count_syllables(text)
    return round(206.835 - 1.015 * (words / sentences) - 84.6 * (syllables / words), 2)


def grade_level(score: float) -> str:
    if score >= 90:
        return "very_easy"
    if score >= 80:
        return "easy"
    if score >= 70:
        return "fairly_easy"
    if score >= 60:
        return "standard"
    if score >= 50:
        return "fairly_difficult"
    if score >= 30:
        return "difficult"
    return "very_difficult"


def calculate_avg_sentence_length(text: str) -> float:
    sentences = count_sentences(text)
    return round(count_words(text) / sentences, 2) if sentences else 0


def calculate_avg_word_length(text: str) -> float:
    words = [w.strip(".,;:!?\"'()[]{}") for w in _words(text)]
    words = [w for w in words if w]
    return round(sum(len(w) for w in words) / len(words), 2) if words else 0


def count_paragraphs(text: str) -> int:
    if not text:
        return 0
    tags = PARAGRAPH_TAG_RE.findall(text)
    if tags:
        return len(tags)
    return sum(1 for block in BLANK_LINE_RE.split(plain_text(text)) if block.strip())


def calculate_complex_word_percentage(text: str) -> float:
    words = _words(text)
    if not words:
        return 0
    complex_words = sum(1 for word in words if count_word_syllables(word) > 2)
    return round(complex_words / len(words) * 100, 2)


def count_passive_voice(text: str) -> int:
    text = plain_text(text)
    return sum(len(pattern.findall(text)) for pattern in PASSIVE_VOICE_PATTERNS)


def count_transition_words(text: str) -> int:
    text = plain_text(text)
    return sum(len(pattern.findall(text)) for pattern in TRANSITION_PATTERNS)


def calculate_keyword_density(text: str, top_n: int = 10) -> Dict[str, float]:
    """
    Share of each frequent non-stopword term, as a percentage of all words.
    """
    tokens = WORD_RE.findall(plain_text(text).lower())
    if not tokens:
        return {}
    counts = Counter(t for t in tokens if len(t) > 3 and t not in STOPWORDS)
    total = len(tokens)
    return {term: round(count / total * 100, 2) for term, count in counts.most_common(top_n)}


def analyze_heading_distribution(text: str) -> Dict[str, int]:
    distribution = {f"h{level}": 0 for level in range(1, 7)}
    for level in HEADING_RE.findall(text or ""):
        distribution[f"h{level}"] += 1
    return distribution


def count_links(text: str, site_host: Optional[str] = None) -> Dict[str, int]:
    """
    Count anchors. Relative links and links to ``site_host`` are internal.
    """
    counts = {"internal": 0, "external": 0, "total": 0}
    for href in LINK_RE.findall(text or ""):
        href = href.strip()
        if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
            continue
        host = urlparse(href).netloc.lower()
        if not host or (site_host and host == site_host.lower()):
            counts["internal"] += 1
        else:
            counts["external"] += 1
        counts["total"] += 1
    return counts


def calculate_metrics(content: str, site_host: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    links = count_links(content, site_host)
    return {
        "readability": {
            "flesch_kincaid": calculate_flesch_kincaid(content),
            "avg_sentence_length": calculate_avg_sentence_length(content),
            "avg_word_length": calculate_avg_word_length(content),
        },
        "structure": {
            "paragraph_count": count_paragraphs(content),
            "sentence_count": count_sentences(content),
            "word_count": count_words(content),
        },
        "complexity": {
            "complex_word_percentage": calculate_complex_word_percentage(content),
            "passive_voice_count": count_passive_voice(content),
            "transition_word_count": count_transition_words(content),
        },
        "seo": {
            "keyword_density": calculate_keyword_density(content),
            "heading_distribution": analyze_heading_distribution(content),
            "internal_links": links["internal"],
            "external_links": links["external"],
        },
    }


def content_hash(text: str) -> str:
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


class MetricsCalculator:
    """
    Metrics with optional memoization in a ResultCache, keyed by content hash.
    """

    def __init__(self, cache: Optional[ResultCache] = None, site_host: Optional[str] = None):
        self.cache = cache
        self.site_host = site_host

    async def flesch_kincaid(self, text: str) -> float:
        key = f"metrics:fk:{content_hash(text)}"
        if self.cache is not None:
            cached = await self.cache.get(key, cache_type="metrics")
            if cached is not None:
                return cached

        score = calculate_flesch_kincaid(text)
        if self.cache is not None:
            await self.cache.set(key, score)
        return score

    async def metrics(self, content: str) -> Dict[str, Dict[str, Any]]:
        key = f"metrics:all:{content_hash(content)}:{self.site_host or ''}"
        if self.cache is not None:
            cached = await self.cache.get(key, cache_type="metrics")
            if cached is not None:
                return cached

        result = calculate_metrics(content, self.site_host)
        if self.cache is not None:
            await self.cache.set(key, result)
        logger.debug(
            "content_metrics_calculated",
            word_count=result["structure"]["word_count"],
            flesch_kincaid=result["readability"]["flesch_kincaid"],
        )
        return result
