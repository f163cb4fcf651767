from docingest.knowledge.ingestion.normalizer import (
    collapse_inline_whitespace,
    collapse_whitespace,
    deduplicate_lines,
    is_normalized,
    normalize_text,
    strip_control_characters,
)


def test_normalize_text_folds_line_endings_and_blank_runs():
    raw = "  Title\r\n\r\n\r\n\r\nBody line\rnext\fpage two\n\n\n\n"

    text = normalize_text(raw)

    assert text == "Title\n\nBody line\nnext\npage two"
    assert is_normalized(text)


def test_normalize_text_is_idempotent():
    once = normalize_text("a\r\n\n\n\nb  \n")
    assert normalize_text(once) == once


def test_strip_control_characters_keeps_layout_whitespace():
    assert strip_control_characters("a\x00b\x07c\td\ne\x1f") == "abc\td\ne"


def test_collapse_whitespace():
    assert collapse_whitespace("  many \n\n spaces\there ") == "many spaces here"


def test_collapse_inline_whitespace_preserves_newlines():
    assert collapse_inline_whitespace("a    b  \nc  d\n\ne") == "a b\nc d\n\ne"


def test_deduplicate_lines_keeps_first_occurrence_and_blank_lines():
    text = "alpha\n\nbeta\n\nalpha\n\ngamma\nbeta"

    assert deduplicate_lines(text) == "alpha\n\nbeta\n\n\ngamma"


def test_is_normalized_rejects_carriage_returns_and_padding():
    assert not is_normalized("a\r\nb")
    assert not is_normalized("a\n\n\nb")
    assert not is_normalized(" a")
    assert is_normalized("")
