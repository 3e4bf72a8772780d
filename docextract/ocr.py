"""Tesseract-based OCR for rendered PDF pages and uploaded images."""

from __future__ import annotations

import io
import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable

import cv2
import numpy as np
import pytesseract
from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from .ocr_router import DEFAULT_OCR_LANGUAGES
from .trace import TraceDelta
from .utils import (
    StageDegradedError,
    StageUnavailableError,
    check_binary_exists,
    collapse_whitespace,
)

if TYPE_CHECKING:
    from .services import PipelineServices

logger = logging.getLogger(__name__)

OCR_OEM = 1
OCR_THRESHOLD = 200
OCR_SELECTION_MIN_CONF = 70.0
OCR_USE_OTSU = True
OCR_PREPROCESS_STRATEGIES = (
    {
        "name": "standard",
        "threshold": OCR_THRESHOLD,
        "median_size": 3,
        "unsharp": (1, 150, 3),
        "autocontrast_cutoff": 1,
    },
    {
        "name": "aggressive",
        "threshold": 220,
        "median_size": 5,
        "unsharp": (2, 200, 3),
        "autocontrast_cutoff": 2,
    },
)

LAYOUT_PRESETS = {
    "text": {
        "psm": (6, 3),
        "preprocess": ("standard",),
    },
    "table": {
        "psm": (4, 6),
        "preprocess": ("aggressive", "standard"),
    },
    "noisy": {
        "psm": (4, 6, 11),
        "preprocess": ("aggressive", "standard"),
    },
}


class OcrTimeoutError(StageDegradedError):
    """Tesseract exceeded its per-call timeout."""


def _build_config(psm: int, tessdata_path: str | None = None) -> str:
    parts = [f"--oem {OCR_OEM}", f"--psm {psm}"]
    if tessdata_path:
        parts.append(f"--tessdata-dir \"{tessdata_path}\"")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Preprocessing
# ---------------------------------------------------------------------------

def _otsu_threshold(gray: Image.Image) -> int:
    """Compute an Otsu threshold for a grayscale image."""

    histogram = gray.histogram()
    total = sum(histogram)
    if total == 0:
        return OCR_THRESHOLD
    sum_total = sum(index * count for index, count in enumerate(histogram))

    sum_background = 0
    weight_background = 0
    max_variance = 0.0
    threshold = OCR_THRESHOLD
    for index, count in enumerate(histogram):
        weight_background += count
        if weight_background == 0:
            continue
        weight_foreground = total - weight_background
        if weight_foreground == 0:
            break
        sum_background += index * count
        mean_background = sum_background / weight_background
        mean_foreground = (sum_total - sum_background) / weight_foreground
        variance_between = (
            weight_background * weight_foreground * (mean_background - mean_foreground) ** 2
        )
        if variance_between > max_variance:
            max_variance = variance_between
            threshold = index
    return threshold


def _select_threshold(gray: Image.Image, threshold: int) -> int:
    if OCR_USE_OTSU:
        return int((_otsu_threshold(gray) + threshold) / 2)
    return threshold


def preprocess_image(
    image: Image.Image,
    threshold: int = OCR_THRESHOLD,
    median_size: int = 3,
    unsharp: tuple[int, int, int] = (1, 150, 3),
    autocontrast_cutoff: int = 1,
) -> Image.Image:
    """Grayscale, denoise, sharpen and binarise a page for Tesseract."""

    gray = image.convert("L")
    gray = ImageOps.autocontrast(gray, cutoff=autocontrast_cutoff)
    gray = gray.filter(ImageFilter.MedianFilter(size=median_size))
    gray = gray.filter(
        ImageFilter.UnsharpMask(radius=unsharp[0], percent=unsharp[1], threshold=unsharp[2])
    )
    cutoff = _select_threshold(gray, threshold)
    return gray.point(lambda x: 255 if x > cutoff else 0, mode="1")


def classify_layout(image: Image.Image) -> str:
    """Classify a page as text/table/noisy from ruling-line and ink density."""

    gray = cv2.cvtColor(np.array(image.convert("RGB")), cv2.COLOR_RGB2GRAY)
    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
    h_kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (40, 1))
    v_kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (1, 40))
    horizontal = cv2.dilate(cv2.erode(binary, h_kernel, iterations=1), h_kernel, iterations=2)
    vertical = cv2.dilate(cv2.erode(binary, v_kernel, iterations=1), v_kernel, iterations=2)
    line_density = (cv2.countNonZero(horizontal) + cv2.countNonZero(vertical)) / (
        gray.shape[0] * gray.shape[1]
    )
    if line_density > 0.01:
        return "table"

    small = cv2.resize(gray, (400, 400))
    edges = cv2.Canny(small, 100, 200)
    edge_density = cv2.countNonZero(edges) / edges.size
    ink_density = int(np.count_nonzero(small < 200)) / small.size
    if ink_density > 0.10 and edge_density < 0.08:
        return "text"
    return "noisy"


# ---------------------------------------------------------------------------
# Token scoring
# ---------------------------------------------------------------------------

def _extract_tokens(ocr_data: dict) -> tuple[list[str], list[float]]:
    token_texts: list[str] = []
    confidences: list[float] = []
    for index, raw in enumerate(ocr_data.get("text", [])):
        text = (raw or "").strip()
        if not text:
            continue
        try:
            confidence = float(ocr_data["conf"][index])
        except (KeyError, IndexError, TypeError, ValueError):
            confidence = -1.0
        if confidence < 0:
            continue
        token_texts.append(text)
        confidences.append(confidence)
    return token_texts, confidences


def _score_page(confidences: list[float]) -> tuple[float, int]:
    if not confidences:
        return 0.0, 0
    filtered = [c for c in confidences if c >= OCR_SELECTION_MIN_CONF]
    if not filtered:
        return 0.0, len(confidences)
    return sum(filtered) / len(filtered), len(confidences)


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------

class OcrEngine(ABC):
    name = "abstract"
    available = True

    @abstractmethod
    def recognize(self, image: Image.Image, languages: str) -> str:
        """Return the recognised text of *image*."""


class TesseractEngine(OcrEngine):
    """pytesseract with layout-aware preprocessing and PSM selection."""

    name = "tesseract"

    def __init__(self, timeout: int = 60, tessdata_path: str | None = None) -> None:
        self.timeout = timeout
        self.tessdata_path = tessdata_path
        self.available = check_binary_exists("tesseract")

    def _image_to_data(self, image: Image.Image, psm: int, languages: str) -> dict:
        try:
            return pytesseract.image_to_data(
                image,
                lang=languages,
                config=_build_config(psm, self.tessdata_path),
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout,
            )
        except pytesseract.TesseractNotFoundError as exc:
            raise StageUnavailableError("tesseract binary not found") from exc
        except RuntimeError as exc:
            # pytesseract signals a killed process with a bare RuntimeError
            if "timeout" in str(exc).lower():
                raise OcrTimeoutError(f"tesseract timed out after {self.timeout}s") from exc
            raise StageDegradedError(f"tesseract failed: {exc}") from exc

    def recognize(self, image: Image.Image, languages: str) -> str:
        layout = classify_layout(image)
        preset = LAYOUT_PRESETS.get(layout, LAYOUT_PRESETS["noisy"])
        strategies = [s for s in OCR_PREPROCESS_STRATEGIES if s["name"] in preset["preprocess"]]

        best_text, best_score = "", (-1.0, -1)
        for strategy in strategies:
            processed = preprocess_image(
                image,
                threshold=strategy["threshold"],
                median_size=strategy["median_size"],
                unsharp=strategy["unsharp"],
                autocontrast_cutoff=strategy["autocontrast_cutoff"],
            )
            try:
                for psm in preset["psm"]:
                    token_texts, confidences = _extract_tokens(
                        self._image_to_data(processed, psm, languages)
                    )
                    score = _score_page(confidences)
                    if score > best_score:
                        best_text, best_score = " ".join(token_texts), score
            finally:
                processed.close()
        logger.debug("OCR layout=%s score=%.1f tokens=%d", layout, best_score[0], best_score[1])
        return best_text


class UnavailableOcrEngine(OcrEngine):
    name = "none"
    available = False

    def recognize(self, image: Image.Image, languages: str) -> str:
        raise StageUnavailableError("no OCR engine available")


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------

def _require_capabilities(services: PipelineServices) -> None:
    if not services.renderer.available:
        raise StageUnavailableError("no rendering backend available")
    if not services.ocr_engine.available:
        raise StageUnavailableError("no OCR engine available")


def _recognize_page(
    data: bytes,
    page_number: int,
    services: PipelineServices,
    languages: str,
    delta: TraceDelta,
) -> str:
    try:
        with services.renderer.render_page(data, page_number, services.ocr_scale) as image:
            return collapse_whitespace(services.ocr_engine.recognize(image, languages))
    except OcrTimeoutError:
        logger.warning("OCR timeout on page %d", page_number)
        delta.add("ocr", f"page {page_number}: timeout", "warn")
    except Exception as exc:
        logger.warning("OCR failed on page %d: %s", page_number, exc)
        delta.add("ocr", f"page {page_number} failed: {exc}", "warn")
    return ""


def ocr_document(
    data: bytes,
    services: PipelineServices,
    page_limit: int | None = None,
    cancel: threading.Event | None = None,
    languages: str | None = None,
) -> tuple[list[str], TraceDelta]:
    """Render and recognise pages ``1..min(page_limit, page_count)``.

    Raises ``StageUnavailableError`` when no renderer or engine is live. A
    per-page failure becomes a ``warn`` entry and an empty page.
    """
    _require_capabilities(services)
    langs = languages or services.ocr_languages or DEFAULT_OCR_LANGUAGES
    limit = page_limit if page_limit is not None else services.ocr_page_limit
    delta = TraceDelta()
    try:
        page_count = services.renderer.page_count(data)
    except StageUnavailableError:
        raise
    except Exception as exc:
        logger.warning("OCR page count failed: %s", exc)
        delta.add("ocr", f"could not count pages: {exc}", "warn")
        return [], delta

    pages: list[str] = []
    for page_number in range(1, min(limit, page_count) + 1):
        if cancel is not None and cancel.is_set():
            delta.add("ocr", f"cancelled before page {page_number}", "warn")
            break
        pages.append(_recognize_page(data, page_number, services, langs, delta))

    recognised = sum(1 for page in pages if page)
    delta.add("ocr", f"recognised {recognised}/{len(pages)} page(s) with {langs}")
    return pages, delta


def ocr_selected_pages(
    data: bytes,
    page_numbers: Iterable[int],
    services: PipelineServices,
    cancel: threading.Event | None = None,
    languages: str | None = None,
) -> tuple[dict[int, str], TraceDelta]:
    """OCR only *page_numbers* (1-based); returns ``{page_number: text}``."""

    _require_capabilities(services)
    langs = languages or services.ocr_languages or DEFAULT_OCR_LANGUAGES
    delta = TraceDelta()
    results: dict[int, str] = {}
    for page_number in page_numbers:
        if cancel is not None and cancel.is_set():
            delta.add("ocr-patch", f"cancelled before page {page_number}", "warn")
            break
        results[page_number] = _recognize_page(data, page_number, services, langs, delta)
    return results, delta


def ocr_image(
    image_bytes: bytes,
    engine: OcrEngine,
    languages: str = DEFAULT_OCR_LANGUAGES,
) -> tuple[str, TraceDelta]:
    """Recognise an uploaded raster image.

    Raises ``StageUnavailableError`` when the engine is missing and
    ``StageDegradedError`` when the bytes are not a decodable image.
    """
    if not engine.available:
        raise StageUnavailableError("no OCR engine available")
    delta = TraceDelta()
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise StageDegradedError(f"image could not be decoded: {exc}") from exc
    try:
        text = collapse_whitespace(engine.recognize(image, languages))
    finally:
        image.close()
    delta.add("image-ocr", f"recognised {len(text)} characters with {languages}")
    return text, delta
