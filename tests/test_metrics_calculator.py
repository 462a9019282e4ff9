"""
Unit tests for content metrics.
"""
import pytest

from ai_orchestrator.services.analysis.metrics_calculator import (
    MetricsCalculator,
    analyze_heading_distribution,
    calculate_avg_word_length,
    calculate_complex_word_percentage,
    calculate_flesch_kincaid,
    calculate_keyword_density,
    calculate_metrics,
    content_hash,
    count_links,
    count_paragraphs,
    count_passive_voice,
    count_sentences,
    count_syllables,
    count_transition_words,
    count_word_syllables,
    count_words,
    grade_level,
)


def test_flesch_kincaid_reference_sentence():
    """'The cat sat.' → 3 words, 1 sentence, 3 syllables → 119.19."""
    text = "The cat sat."

    assert count_words(text) == 3
    assert count_sentences(text) == 1
    assert count_syllables(text) == 3
    assert calculate_flesch_kincaid(text) == 119.19


@pytest.mark.parametrize("text", ["", "   ", "...", None])
def test_flesch_kincaid_empty_is_zero(text):
    assert calculate_flesch_kincaid(text) == 0


def test_html_is_stripped_before_counting():
    assert calculate_flesch_kincaid("<p>The <b>cat</b> sat.</p>") == 119.19


@pytest.mark.parametrize(
    "word,expected",
    [("cat", 1), ("the", 1), ("make", 1), ("banana", 3), ("beautiful", 3), ("rhythm", 1), ("123", 0), ("Hello!", 2)],
)
def test_syllable_heuristic(word, expected):
    assert count_word_syllables(word) == expected


def test_sentence_count_ignores_empty_segments():
    assert count_sentences("Wait... what?! Really.") == 3


@pytest.mark.parametrize(
    "score,level",
    [(119.19, "very_easy"), (85, "easy"), (72, "fairly_easy"), (65, "standard"), (55, "fairly_difficult"), (40, "difficult"), (10, "very_difficult")],
)
def test_grade_level(score, level):
    assert grade_level(score) == level


def test_passive_voice():
    """'had been finished' matches both the simple and the perfect pattern."""
    assert count_passive_voice("The ball was kicked.") == 1
    assert count_passive_voice("The report had been finished.") == 2
    assert count_passive_voice("She kicked the ball.") == 0


def test_transition_words():
    text = "However, we left. Finally we arrived. In conclusion, it was fine."

    assert count_transition_words(text) == 3


def test_paragraphs():
    assert count_paragraphs("<p>a</p><p>b</p>") == 2
    assert count_paragraphs("one\n\ntwo\n\n\nthree") == 3
    assert count_paragraphs("") == 0


def test_avg_word_length_and_complex_words():
    assert calculate_avg_word_length("The cat sat.") == 3.0
    assert calculate_complex_word_percentage("beautiful day") == 50.0


def test_keyword_density_skips_stopwords_and_short_terms():
    density = calculate_keyword_density("python python code and")

    assert density == {"python": 50.0, "code": 25.0}


def test_heading_distribution():
    html = "<h1>A</h1><h2>B</h2><H2 class='x'>C</H2>"

    assert analyze_heading_distribution(html) == {"h1": 1, "h2": 2, "h3": 0, "h4": 0, "h5": 0, "h6": 0}


def test_links_internal_and_external():
    html = (
        '<a href="/about">a</a>'
        '<a href="https://example.com/x">b</a>'
        '<a href="https://other.org">c</a>'
        '<a href="#top">d</a>'
        "<a href='mailto:x@example.com'>e</a>"
    )

    assert count_links(html, site_host="example.com") == {"internal": 2, "external": 1, "total": 3}
    assert count_links(html) == {"internal": 1, "external": 2, "total": 3}


def test_calculate_metrics_sections():
    metrics = calculate_metrics("<h1>Title</h1><p>The cat sat.</p>")

    assert set(metrics) == {"readability", "structure", "complexity", "seo"}
    assert metrics["structure"]["paragraph_count"] == 1
    assert metrics["seo"]["heading_distribution"]["h1"] == 1


@pytest.mark.asyncio
async def test_flesch_kincaid_is_cached_by_content_hash(result_cache):
    calculator = MetricsCalculator(cache=result_cache)
    text = "The cat sat."

    assert await calculator.flesch_kincaid(text) == 119.19
    assert await result_cache.get(f"metrics:fk:{content_hash(text)}") == 119.19


@pytest.mark.asyncio
async def test_cached_score_is_returned(result_cache):
    text = "The cat sat."
    await result_cache.set(f"metrics:fk:{content_hash(text)}", 42.0)

    assert await MetricsCalculator(cache=result_cache).flesch_kincaid(text) == 42.0


@pytest.mark.asyncio
async def test_metrics_without_cache():
    result = await MetricsCalculator(site_host="example.com").metrics('<a href="https://example.com/a">x</a>')

    assert result["seo"]["internal_links"] == 1
