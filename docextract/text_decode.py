"""Best-effort decoding of plain-text uploads of unknown encoding.

No BOM or charset declaration is guaranteed, so every candidate encoding is
tried and scored. The weights below reward length and Cyrillic letters and
punish Latin-1 mojibake and control characters.
"""

from __future__ import annotations

import re

CANDIDATE_ENCODINGS: tuple[str, ...] = (
    "utf-8",
    "utf-16-le",
    "utf-16-be",
    "cp1251",
    "koi8-r",
    "cp866",
)

LENGTH_DIVISOR = 50.0
CYRILLIC_WEIGHT = 0.6
MOJIBAKE_PENALTY = 4.0
CONTROL_PENALTY = 6.0

_WHITESPACE_RE = re.compile(r"\s+")
_CYRILLIC_RE = re.compile(r"[А-Яа-яЁё]")
_MOJIBAKE_RE = re.compile(r"[ÃÂÐÑÒÓÝæ]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

_BOM = "﻿"


def score_text_candidate(text: str) -> float:
    """Score a decoded candidate; higher means more plausible."""

    if not text:
        return float("-inf")
    cleaned = _WHITESPACE_RE.sub(" ", text)
    length = len(cleaned)
    if not length:
        return float("-inf")
    cyrillic = len(_CYRILLIC_RE.findall(cleaned))
    mojibake = len(_MOJIBAKE_RE.findall(cleaned))
    controls = len(_CONTROL_RE.findall(cleaned))
    return (
        length / LENGTH_DIVISOR
        + cyrillic * CYRILLIC_WEIGHT
        - mojibake * MOJIBAKE_PENALTY
        - controls * CONTROL_PENALTY
    )


def _decode(data: bytes, encoding: str, errors: str) -> str:
    return data.decode(encoding, errors=errors).lstrip(_BOM)


def best_decoding(data: bytes) -> tuple[str, str | None]:
    """Return ``(text, encoding)`` for the best decoding of *data*.

    Strict UTF-8 wins outright. Otherwise the highest-scoring candidate is
    returned, ties going to the earlier encoding in ``CANDIDATE_ENCODINGS``.
    """
    if not data:
        return "", None
    try:
        strict = _decode(data, "utf-8", "strict")
    except UnicodeDecodeError:
        strict = ""
    if strict:
        return strict, "utf-8"

    best_text, best_encoding, best_score = "", None, float("-inf")
    for encoding in CANDIDATE_ENCODINGS:
        text = _decode(data, encoding, "replace")
        if not text:
            continue
        score = score_text_candidate(text)
        if score > best_score:
            best_text, best_encoding, best_score = text, encoding, score
    return best_text, best_encoding


def decode_text_buffer(data: bytes) -> str:
    """Decode *data* into the most plausible string."""

    text, _ = best_decoding(data)
    return text
