"""
Unit tests for provider output sanitization.
"""
from ai_orchestrator.services.ai.sanitizer import sanitize_text, sanitize_value, strip_tags


def test_strips_tags_and_script_bodies():
    raw = "<p>Hello <b>world</b></p><script>alert('x')</script>"

    assert sanitize_text(raw) == "Hello world"


def test_escaped_markup_is_stripped_after_unescape():
    """&lt;script&gt; must not survive as a live tag."""
    assert sanitize_text("&lt;script&gt;alert(1)&lt;/script&gt;safe") == "safe"


def test_entities_unescaped_and_control_chars_removed():
    assert sanitize_text("Tom &amp; Jerry\x00\x07") == "Tom & Jerry"


def test_whitespace_collapsed_single_line():
    assert sanitize_text("  a \n\n b\t c  ") == "a b c"


def test_multiline_keeps_paragraphs():
    assert sanitize_text("line one  \n\n\n\nline two\n\n", multiline=True) == "line one\n\nline two"


def test_multiline_keeps_indentation():
    text = "def f(x):\n    if x:\n\treturn  x\n"

    assert sanitize_text(text, multiline=True) == "def f(x):\n    if x:\n\treturn x"


def test_comparison_operators_are_not_markup():
    code = "if a < b and c > d:\n    return a"

    assert sanitize_text(code, multiline=True) == code
    assert sanitize_text("1 < 2 > 0") == "1 < 2 > 0"
    assert strip_tags("x<y") == "x<y"


def test_adjacent_block_tags_keep_words_apart():
    assert sanitize_text("<p>one</p><p>two</p>") == "one two"
    assert sanitize_text("<!-- note -->\n<p>Hello</p>\nWorld", multiline=True) == "Hello\nWorld"


def test_none_and_non_strings():
    assert sanitize_text(None) == ""
    assert sanitize_text(42) == "42"


def test_strip_tags_leaves_plain_text():
    assert strip_tags("no markup here") == "no markup here"


def test_sanitize_value_recurses():
    value = {"title": "<i>Hi</i>", "tags": ["<b>a</b>", 3], "nested": {"x": "<style>p{}</style>ok"}, "n": 1.5}

    assert sanitize_value(value) == {"title": "Hi", "tags": ["a", 3], "nested": {"x": "ok"}, "n": 1.5}
