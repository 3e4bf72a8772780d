"""Centralized configuration for limits, collaborators and heuristic thresholds.

All env-driven settings live here so there is a single source of truth.
Import from ``docextract.config`` in api.py, services.py, etc.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass


def _env_bool(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


def _env_int(name: str, default: int, lo: int = 1, hi: int = 10_000) -> int:
    try:
        return max(lo, min(hi, int(os.environ.get(name, str(default)))))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float, lo: float = 0.0, hi: float = 1_000.0) -> float:
    try:
        return max(lo, min(hi, float(os.environ.get(name, str(default)))))
    except (TypeError, ValueError):
        return default


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or default


# ---------------------------------------------------------------------------
# Upload limits
# ---------------------------------------------------------------------------
MAX_FILE_SIZE_BYTES: int = _env_int(
    "MAX_FILE_SIZE_BYTES", default=20 * 1024 * 1024, lo=1, hi=500 * 1024 * 1024,
)
UPLOAD_CHUNK_SIZE: int = 64 * 1024  # 64 KiB streaming chunks

# ---------------------------------------------------------------------------
# OCR + rendering
# ---------------------------------------------------------------------------
OCR_LANGUAGES: str = _env_str("OCR_LANGUAGES", "rus+eng") or "rus+eng"
OCR_PAGE_LIMIT: int = _env_int("OCR_PAGE_LIMIT", default=10, hi=500)
OCR_TIMEOUT_SEC: int = _env_int("OCR_TIMEOUT_SEC", default=60, hi=3600)
OCR_RENDER_SCALE: float = _env_float("OCR_RENDER_SCALE", default=1.6, lo=0.5, hi=8.0)
TESSDATA_PATH: str | None = _env_str("TESSDATA_PATH")
RENDER_BACKEND: str = (_env_str("RENDER_BACKEND", "auto") or "auto").lower()

# ---------------------------------------------------------------------------
# Remote extraction fallback
# ---------------------------------------------------------------------------
REMOTE_EXTRACT_URL: str | None = _env_str("REMOTE_EXTRACT_URL")
REMOTE_TIMEOUT_SEC: float = _env_float("REMOTE_TIMEOUT_SEC", default=30.0, lo=1.0, hi=600.0)

# ---------------------------------------------------------------------------
# Page images / object storage (opt-in)
# ---------------------------------------------------------------------------
IMAGE_STORE_DIR: str = _env_str("IMAGE_STORE_DIR", "data/images") or "data/images"
PAGE_IMAGE_SCALE: float = _env_float("PAGE_IMAGE_SCALE", default=2.0, lo=0.5, hi=8.0)
MAX_PAGE_IMAGES: int = _env_int("MAX_PAGE_IMAGES", default=40, hi=500)
PUBLISH_PAGE_IMAGES: bool = _env_bool("PUBLISH_PAGE_IMAGES")
CLOUDINARY_CLOUD_NAME: str | None = _env_str("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_UPLOAD_PRESET: str | None = _env_str("CLOUDINARY_UPLOAD_PRESET")
CLOUDINARY_API_KEY: str | None = _env_str("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET: str | None = _env_str("CLOUDINARY_API_SECRET")
CLOUDINARY_FOLDER: str | None = _env_str("CLOUDINARY_FOLDER")

# ---------------------------------------------------------------------------
# Background jobs
# ---------------------------------------------------------------------------
ASYNC_WORKERS: int = _env_int("ASYNC_WORKERS", default=1, hi=16)
JOB_STORE_DIR: str | None = _env_str("JOB_STORE_DIR")
JOB_TTL_SECONDS: int = _env_int("JOB_TTL_SECONDS", default=3600, lo=60, hi=7 * 24 * 3600)


# ---------------------------------------------------------------------------
# Heuristic thresholds
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Thresholds:
    """Tunable constants for layout reconstruction, quality gating and fallbacks."""

    line_tolerance: float = 6.0
    column_gap_ratio: float = 0.08
    column_gap_min: float = 42.0
    column_padding: float = 12.0
    column_fit_slack: float = 2.0
    heading_upper_ratio: float = 0.65
    heading_max_chars: int = 32
    table_min_columns: int = 3
    table_min_rows: int = 3
    ocr_quality_threshold: float = 0.12
    min_fallback_chars: int = 40
    plain_line_height: float = 20.0
    plain_page_width: float = 600.0


DEFAULT_THRESHOLDS = Thresholds()


def log_startup_config() -> None:
    """Print one startup line summarising active configuration."""
    msg = (
        f"docextract config: MAX_FILE_SIZE_BYTES={MAX_FILE_SIZE_BYTES} "
        f"OCR_LANGUAGES={OCR_LANGUAGES} OCR_PAGE_LIMIT={OCR_PAGE_LIMIT} "
        f"OCR_TIMEOUT_SEC={OCR_TIMEOUT_SEC} RENDER_BACKEND={RENDER_BACKEND} "
        f"REMOTE_EXTRACT_URL={'set' if REMOTE_EXTRACT_URL else 'unset'} "
        f"PUBLISH_PAGE_IMAGES={PUBLISH_PAGE_IMAGES} "
        f"CLOUDINARY={'set' if CLOUDINARY_CLOUD_NAME else 'unset'} "
        f"ASYNC_WORKERS={ASYNC_WORKERS}"
    )
    print(msg, flush=True)
    sys.stderr.write(msg + "\n")
    sys.stderr.flush()
