"""Page rasterisation backends.

The OCR and page-image stages only see the ``Renderer`` interface. Which
backend is live is decided once at startup from ``RENDER_BACKEND``.
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator

import fitz  # PyMuPDF
from pdf2image import convert_from_bytes, pdfinfo_from_bytes
from PIL import Image

from .utils import StageDegradedError, StageUnavailableError, check_binary_exists

logger = logging.getLogger(__name__)

PDF_POINTS_PER_INCH = 72


class Renderer(ABC):
    """Rasterises single PDF pages into PIL images."""

    name = "abstract"
    available = True

    @abstractmethod
    def page_count(self, data: bytes) -> int:
        ...

    @abstractmethod
    def _render(self, data: bytes, page_number: int, scale: float) -> Image.Image:
        ...

    @contextmanager
    def render_page(self, data: bytes, page_number: int, scale: float) -> Iterator[Image.Image]:
        """Yield page *page_number* (1-based) rendered at *scale*; always released."""

        image = self._render(data, page_number, scale)
        try:
            yield image
        finally:
            image.close()

    def render_png(self, data: bytes, page_number: int, scale: float) -> tuple[bytes, int, int]:
        """Return ``(png_bytes, width, height)`` for one page."""

        with self.render_page(data, page_number, scale) as image:
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
            return buffer.getvalue(), image.width, image.height


class PopplerRenderer(Renderer):
    """pdftoppm via pdf2image."""

    name = "poppler"

    def page_count(self, data: bytes) -> int:
        info = pdfinfo_from_bytes(data)
        return int(info.get("Pages", 0))

    def _render(self, data: bytes, page_number: int, scale: float) -> Image.Image:
        images = convert_from_bytes(
            data,
            dpi=int(PDF_POINTS_PER_INCH * scale),
            first_page=page_number,
            last_page=page_number,
        )
        if not images:
            raise StageDegradedError(f"poppler produced no image for page {page_number}")
        for extra in images[1:]:
            extra.close()
        return images[0]


class PyMuPDFRenderer(Renderer):
    """In-process pixmap rendering; no system binaries needed."""

    name = "pymupdf"

    def page_count(self, data: bytes) -> int:
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            return doc.page_count
        finally:
            doc.close()

    def _render(self, data: bytes, page_number: int, scale: float) -> Image.Image:
        doc = fitz.open(stream=data, filetype="pdf")
        try:
            page = doc.load_page(page_number - 1)
            pixmap = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
            return Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)
        finally:
            doc.close()


class UnavailableRenderer(Renderer):
    name = "none"
    available = False

    def page_count(self, data: bytes) -> int:
        raise StageUnavailableError("no rendering backend available")

    def _render(self, data: bytes, page_number: int, scale: float) -> Image.Image:
        raise StageUnavailableError("no rendering backend available")


def select_renderer(backend: str = "auto") -> Renderer:
    """Pick a renderer: ``auto`` prefers Poppler when ``pdftoppm`` is on PATH."""

    backend = (backend or "auto").strip().lower()
    if backend == "none":
        return UnavailableRenderer()
    if backend == "pymupdf":
        return PyMuPDFRenderer()
    if backend == "poppler":
        if not check_binary_exists("pdftoppm"):
            logger.warning("RENDER_BACKEND=poppler but pdftoppm is not on PATH")
            return UnavailableRenderer()
        return PopplerRenderer()
    if backend != "auto":
        logger.warning("Unknown RENDER_BACKEND %r, falling back to auto", backend)
    if check_binary_exists("pdftoppm"):
        return PopplerRenderer()
    return PyMuPDFRenderer()
