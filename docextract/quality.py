"""Readability heuristics for recovered text.

Two pure scores live here. ``assess_readability`` is the accept/reject
verdict on a whole extraction; ``page_quality`` is the bounded per-page score
that drives the adaptive OCR patch and ``meta.quality``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .utils import collapse_whitespace, count_cyrillic, count_digits

MIN_USEFUL_TEXT_LENGTH = 200
MIN_READABLE_SCORE = 12.0

# (min length, min cyrillic, min digits); a rule matches when all three hold.
# Cyrillic and digit minimums are exclusive for the first two rules.
_SHORT_TEXT_RULES = (
    (120, 41, 0),
    (120, 0, 31),
    (70, 20, 2),
)

QUALITY_LENGTH_NORM = 4000
QUALITY_CYRILLIC_CAP = 0.6


@dataclass(frozen=True)
class Assessment:
    readable: bool
    reason: str  # "accepted" | "too-short" | "empty"
    score: float
    length: int = 0
    cyrillic: int = 0
    digits: int = 0


def readability_score(text: str) -> float:
    cleaned = collapse_whitespace(text)
    if not cleaned:
        return float("-inf")
    return (
        len(cleaned) / 80
        + count_cyrillic(cleaned) * 0.4
        + count_digits(cleaned) * 0.05
        + len(set(cleaned)) * 0.1
    )


def assess_readability(text: str | None) -> Assessment:
    """Decide whether *text* is worth returning as-is."""

    cleaned = collapse_whitespace(text)
    if not cleaned:
        return Assessment(readable=False, reason="empty", score=float("-inf"))

    length = len(cleaned)
    cyrillic = count_cyrillic(cleaned)
    digits = count_digits(cleaned)
    score = readability_score(cleaned)
    readable = (
        length >= MIN_USEFUL_TEXT_LENGTH
        or any(
            length >= min_len and cyrillic >= min_cyr and digits >= min_dig
            for min_len, min_cyr, min_dig in _SHORT_TEXT_RULES
        )
        or score >= MIN_READABLE_SCORE
    )
    return Assessment(
        readable=readable,
        reason="accepted" if readable else "too-short",
        score=score,
        length=length,
        cyrillic=cyrillic,
        digits=digits,
    )


def page_quality(text: str | None) -> float:
    """Bounded quality in ``[0, 1.6]``; 0 for empty text."""

    cleaned = collapse_whitespace(text)
    if not cleaned:
        return 0.0
    length = len(cleaned)
    density = min(1.0, length / QUALITY_LENGTH_NORM)
    cyrillic_share = min(QUALITY_CYRILLIC_CAP, count_cyrillic(cleaned) / length)
    return round(density + cyrillic_share, 3)


def low_quality_pages(pages: Sequence[str], threshold: float) -> list[int]:
    """Return 1-based numbers of pages scoring below *threshold*."""

    return [
        number
        for number, text in enumerate(pages, start=1)
        if page_quality(text) < threshold
    ]
