"""Structural PDF text extraction using PyMuPDF (fitz).

Each non-empty text span becomes a positioned ``TextBlock``; layout
reconstruction happens later in ``docextract.layout``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import fitz  # PyMuPDF

from .schema import TextBlock
from .trace import TraceDelta
from .utils import round_coord

logger = logging.getLogger(__name__)


@dataclass
class RawPage:
    """Unprocessed positioned text of one PDF page."""

    page_number: int
    width: float
    height: float
    blocks: list[TextBlock] = field(default_factory=list)


def _page_blocks(page: "fitz.Page", page_number: int) -> list[TextBlock]:
    blocks: list[TextBlock] = []
    page_dict = page.get_text("dict", flags=fitz.TEXT_PRESERVE_WHITESPACE)
    for block in page_dict.get("blocks", []):
        if block.get("type", 0) != 0:
            continue  # image block
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = (span.get("text") or "").strip()
                if not text:
                    continue
                x1, y1, x2, y2 = span.get("bbox", block.get("bbox", (0, 0, 0, 0)))
                blocks.append(TextBlock(
                    id=f"pg{page_number}-b{len(blocks)}",
                    text=text,
                    bbox=[round_coord(x1), round_coord(y1), round_coord(x2), round_coord(y2)],
                ))
    return blocks


def extract_structural_pages(data: bytes) -> tuple[list[RawPage], TraceDelta]:
    """Extract positioned spans for every page of a PDF buffer.

    Never raises: a document that cannot be opened yields ``[]`` plus an
    ``error`` entry, a page that fails to parse yields an empty page plus a
    ``warn`` entry so the page count stays intact.
    """
    delta = TraceDelta()
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:  # fitz raises its own FileDataError/RuntimeError family
        logger.warning("PDF open failed: %s", exc)
        delta.add("pdf-structural", f"could not open PDF: {exc}", "error")
        return [], delta

    pages: list[RawPage] = []
    try:
        for index in range(doc.page_count):
            page_number = index + 1
            try:
                page = doc.load_page(index)
                rect = page.rect
                pages.append(RawPage(
                    page_number=page_number,
                    width=round_coord(rect.width),
                    height=round_coord(rect.height),
                    blocks=_page_blocks(page, page_number),
                ))
            except Exception as exc:
                logger.warning("PDF page %d parse failed: %s", page_number, exc)
                delta.add("pdf-structural", f"page {page_number} failed: {exc}", "warn")
                pages.append(RawPage(page_number=page_number, width=0.0, height=0.0))
    finally:
        doc.close()

    block_count = sum(len(page.blocks) for page in pages)
    delta.add("pdf-structural", f"parsed {len(pages)} page(s), {block_count} text block(s)")
    return pages, delta


def pdf_page_count(data: bytes) -> int:
    """Return the page count of a PDF buffer, or 0 when it cannot be opened."""

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        logger.warning("PDF open failed: %s", exc)
        return 0
    try:
        return doc.page_count
    finally:
        doc.close()
