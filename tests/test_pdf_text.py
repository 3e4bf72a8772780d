"""Tests for docextract.pdf_text using PDFs generated with PyMuPDF."""

from __future__ import annotations

import fitz  # PyMuPDF

from docextract.layout import page_text, reconstruct_page
from docextract.pdf_text import extract_structural_pages, pdf_page_count


def _make_pdf(pages: list[list[str]]) -> bytes:
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page(width=612, height=792)
        for index, line in enumerate(lines):
            page.insert_text((72, 100 + index * 20), line, fontsize=11)
    data = doc.tobytes()
    doc.close()
    return data


class TestStructuralPages:
    def test_spans_become_blocks(self):
        data = _make_pdf([["Quarterly report", "Revenue grew in every region."]])
        pages, delta = extract_structural_pages(data)

        assert len(pages) == 1
        page = pages[0]
        assert page.page_number == 1
        assert (page.width, page.height) == (612, 792)
        assert [block.text for block in page.blocks] == [
            "Quarterly report",
            "Revenue grew in every region.",
        ]
        assert [block.id for block in page.blocks] == ["pg1-b0", "pg1-b1"]
        x1, y1, x2, y2 = page.blocks[0].bbox
        assert x1 < x2 and y1 < y2
        assert all(round(value, 2) == value for value in page.blocks[0].bbox)
        assert [entry.status for entry in delta] == ["info"]

    def test_blank_pages_are_kept(self):
        data = _make_pdf([["first page"], [], ["third page"]])
        pages, _ = extract_structural_pages(data)
        assert [page.page_number for page in pages] == [1, 2, 3]
        assert pages[1].blocks == []

    def test_garbage_bytes_yield_error_entry(self):
        pages, delta = extract_structural_pages(b"definitely not a pdf document")
        assert pages == []
        assert [entry.status for entry in delta] == ["error"]
        assert delta.entries[0].step == "pdf-structural"

    def test_page_text_from_reconstructed_page(self):
        data = _make_pdf([["Line one of text", "Line two of text"]])
        pages, _ = extract_structural_pages(data)
        assert page_text(reconstruct_page(pages[0])) == "Line one of text Line two of text"

    def test_page_count(self):
        assert pdf_page_count(_make_pdf([["a"], ["b"]])) == 2
        assert pdf_page_count(b"nope") == 0
