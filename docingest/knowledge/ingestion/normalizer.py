"""Text cleanup shared by every format extractor.

Every extractor output must satisfy the same contract: no carriage returns,
no run of three or more newlines and no leading/trailing whitespace.
`normalize_text` enforces it and `is_normalized` checks it.
"""

from __future__ import annotations

import re
from typing import List

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_WHITESPACE_RUN = re.compile(r"\s+")
_INLINE_WHITESPACE_RUN = re.compile(r"[ \t\u00a0]{2,}")
_TRAILING_SPACES = re.compile(r"[ \t]+\n")


def normalize_text(text: str) -> str:
    text = text.replace("\f", "\n").replace("\r\n", "\n").replace("\r", "\n")
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def strip_control_characters(text: str) -> str:
    """Drop non-printable control characters, keeping tab, LF and CR."""

    return _CONTROL_CHARS.sub("", text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RUN.sub(" ", text).strip()


def collapse_inline_whitespace(text: str) -> str:
    text = _INLINE_WHITESPACE_RUN.sub(" ", text)
    return _TRAILING_SPACES.sub("\n", text)


def deduplicate_lines(text: str) -> str:
    """Remove repeated lines, keeping the first occurrence of each.

    Blank lines are not deduplicated so paragraph breaks survive; the caller
    re-normalizes afterwards to fold any blank-line runs this leaves behind.
    """

    seen = set()
    kept: List[str] = []
    for line in text.split("\n"):
        if line.strip():
            if line in seen:
                continue
            seen.add(line)
        kept.append(line)
    return "\n".join(kept)


def is_normalized(text: str) -> bool:
    return "\r" not in text and "\n\n\n" not in text and text == text.strip()


__all__ = [
    "collapse_inline_whitespace",
    "collapse_whitespace",
    "deduplicate_lines",
    "is_normalized",
    "normalize_text",
    "strip_control_characters",
]
