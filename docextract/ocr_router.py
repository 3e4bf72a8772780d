"""OCR language routing: resolve user language hints to Tesseract codes."""

from __future__ import annotations

from typing import Any, Iterable

DEFAULT_OCR_LANGUAGES = "rus+eng"

# Canonical profile id -> profile dict (tesseract_lang, script)
LANGUAGE_PROFILES: dict[str, dict[str, Any]] = {
    "english": {
        "id": "english",
        "tesseract_lang": "eng",
        "script": "latin",
    },
    "russian": {
        "id": "russian",
        "tesseract_lang": "rus",
        "script": "cyrillic",
    },
    "ukrainian": {
        "id": "ukrainian",
        "tesseract_lang": "ukr",
        "script": "cyrillic",
    },
    "kazakh": {
        "id": "kazakh",
        "tesseract_lang": "kaz",
        "script": "cyrillic",
    },
}

# Alias (e.g. "ru", "rus") -> canonical profile id
LANGUAGE_ALIASES: dict[str, str] = {
    "eng": "english",
    "en": "english",
    "rus": "russian",
    "ru": "russian",
    "ukr": "ukrainian",
    "uk": "ukrainian",
    "kaz": "kazakh",
    "kk": "kazakh",
}


def resolve_language(value: str) -> str | None:
    """Map one hint (``"ru"``, ``"Russian"``, ``"rus"``) to a Tesseract code."""

    normalized = value.strip().lower()
    if not normalized:
        return None
    profile_id = normalized if normalized in LANGUAGE_PROFILES else LANGUAGE_ALIASES.get(normalized)
    if profile_id is None:
        return None
    return LANGUAGE_PROFILES[profile_id]["tesseract_lang"]


def resolve_ocr_languages(
    languages: str | Iterable[str] | None,
    default: str = DEFAULT_OCR_LANGUAGES,
) -> str:
    """Resolve hints into a ``+``-joined Tesseract language string.

    Accepts ``"rus+eng"``, ``"ru,en"`` or a list. Unknown hints are dropped
    and duplicates collapsed; when nothing survives *default* is returned.
    """
    if languages is None:
        return default
    if isinstance(languages, str):
        parts = languages.replace(",", "+").split("+")
    else:
        parts = list(languages)

    codes: list[str] = []
    for part in parts:
        code = resolve_language(str(part))
        if code and code not in codes:
            codes.append(code)
    return "+".join(codes) if codes else default
