"""
Text sanitization for provider output.

Providers can echo user input back, including markup. Every free-text field
that ends up in a normalized result goes through ``sanitize_text``:
- drop <script>/<style> blocks with their bodies
- strip remaining tags and comments (a bare ``<`` or ``>`` is left alone)
- unescape HTML entities
- remove control characters (keeps newline and tab)
- collapse runs of whitespace

Multiline text keeps its line structure and each line's indentation, so
generated code survives intact.
"""
import html
import re
from typing import Any

SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
TAG_RE = re.compile(r"<!--.*?-->|</?[A-Za-z][^<>]*>|<![A-Za-z][^<>]*>", re.DOTALL)
CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
INNER_WHITESPACE_RE = re.compile(r"(?<=\S)[ \t\r\f\v]+")
BLANK_LINES_RE = re.compile(r"\n{3,}")


def _tag_gap(match: "re.Match[str]") -> str:
    # Tags between two words become a space; next to whitespace they just vanish
    text = match.string
    before = text[match.start() - 1] if match.start() > 0 else "\n"
    after = text[match.end()] if match.end() < len(text) else "\n"
    return "" if before.isspace() or after.isspace() else " "


def strip_tags(text: str) -> str:
    text = SCRIPT_STYLE_RE.sub(_tag_gap, text)
    return TAG_RE.sub(_tag_gap, text)


def sanitize_text(value: Any, multiline: bool = False) -> str:
    """
    Sanitize a single text value.

    Args:
        value: Raw value (non-strings are converted with str(); None becomes "")
        multiline: Keep line breaks and indentation (paragraph-level text),
            otherwise fold to one line
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)

    text = strip_tags(text)
    text = html.unescape(text)
    # Unescaping can reintroduce markup (&lt;script&gt;)
    text = strip_tags(text)
    text = CONTROL_RE.sub("", text)

    if multiline:
        lines = [INNER_WHITESPACE_RE.sub(" ", line.rstrip()) for line in text.split("\n")]
        text = BLANK_LINES_RE.sub("\n\n", "\n".join(lines))
        return text.strip("\n")
    return " ".join(text.split())


def sanitize_value(value: Any) -> Any:
    """Recursively sanitize strings inside dicts and lists."""
    if isinstance(value, str):
        return sanitize_text(value, multiline=True)
    if isinstance(value, dict):
        return {sanitize_text(k): sanitize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v) for v in value]
    return value
