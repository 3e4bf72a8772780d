"""Utility helpers shared by the extraction stages."""

from __future__ import annotations

import hashlib
import re
import shutil

_WHITESPACE_RE = re.compile(r"\s+")
_CYRILLIC_RE = re.compile(r"[А-Яа-яЁё]")
_LATIN_RE = re.compile(r"[A-Za-z]")
_DIGIT_RE = re.compile(r"\d")


class ExtractionError(Exception):
    """Base exception for extraction errors."""


class UnreadableInputError(ExtractionError):
    """Raised when the input buffer cannot be acquired at all."""


class OversizedInputError(ExtractionError):
    """Raised when an upload exceeds the configured size limit."""


class StageDegradedError(ExtractionError):
    """Raised inside a stage that ran but produced nothing useful."""


class StageUnavailableError(ExtractionError):
    """Raised when a capability a stage needs (renderer, OCR engine, endpoint) is missing."""


def collapse_whitespace(text: str | None) -> str:
    """Collapse every whitespace run to a single space and strip the ends."""

    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def count_cyrillic(text: str) -> int:
    return len(_CYRILLIC_RE.findall(text))


def count_latin(text: str) -> int:
    return len(_LATIN_RE.findall(text))


def count_digits(text: str) -> int:
    return len(_DIGIT_RE.findall(text))


def round_coord(value: float | None) -> float:
    """Round a coordinate to two decimal places (``None`` becomes 0)."""

    return round(float(value or 0), 2)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def trim_snippet(text: str | None, limit: int = 2000) -> str:
    """Return *text* cut to *limit* characters with an ellipsis when shortened."""

    if not text:
        return ""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}…"


def check_binary_exists(binary_name: str) -> bool:
    """Return True if a binary is available on PATH."""

    return shutil.which(binary_name) is not None


def guard_max_size(size: int, max_bytes: int | None) -> None:
    """Raise if *size* exceeds *max_bytes*."""

    if max_bytes is None:
        return
    if size > max_bytes:
        raise OversizedInputError(
            f"Document is {size} bytes, exceeds limit of {max_bytes}."
        )
