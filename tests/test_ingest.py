"""Tests for docextract.ingest (acquisition + kind detection)."""

from __future__ import annotations

import hashlib
import io
import unittest
from pathlib import Path

import pytest

from docextract.ingest import acquire_document, detect_kind
from docextract.utils import UnreadableInputError


class TestDetectKind(unittest.TestCase):
    def test_pdf_magic_beats_misleading_name_and_mime(self) -> None:
        data = b"%PDF-1.7\n..."
        self.assertEqual(detect_kind(data, "report.docx", "text/plain"), "pdf")

    def test_zip_magic_is_docx(self) -> None:
        self.assertEqual(detect_kind(b"PK\x03\x04rest", "archive.bin", None), "docx")

    def test_mime_substring_used_when_no_magic(self) -> None:
        self.assertEqual(detect_kind(b"garbage", "x", "application/pdf"), "pdf")
        mime = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
        self.assertEqual(detect_kind(b"garbage", "x", mime), "docx")

    def test_extension_fallback(self) -> None:
        self.assertEqual(detect_kind(b"hello", "notes.MD", None), "text")
        self.assertEqual(detect_kind(b"a,b\n1,2", "table.csv", ""), "text")
        self.assertEqual(detect_kind(b"\x00\x01", "scan.bmp", None), "image")

    def test_mime_families(self) -> None:
        self.assertEqual(detect_kind(b"hello", "readme", "text/x-rst"), "text")
        self.assertEqual(detect_kind(b"\x00\x01", "photo", "image/heic"), "image")

    def test_image_magic(self) -> None:
        self.assertEqual(detect_kind(b"\x89PNG\r\n\x1a\n....", "noext", None), "image")
        self.assertEqual(detect_kind(b"\xff\xd8\xff\xe0....", "", None), "image")
        self.assertEqual(detect_kind(b"RIFF\x00\x00\x00\x00WEBPVP8 ", "", None), "image")

    def test_text_starting_with_bm_is_not_an_image(self) -> None:
        self.assertEqual(detect_kind(b"BMW quarterly notes", "notes.txt", "text/plain"), "text")

    def test_unknown_is_binary(self) -> None:
        self.assertEqual(detect_kind(b"\x00\x01\x02", "blob", "application/octet-stream"), "binary")
        self.assertEqual(detect_kind(b"", None, None), "binary")


class TestAcquireDocument:
    def test_bytes_source(self):
        doc = acquire_document(b"hello", filename="a.txt", mime="TEXT/PLAIN")
        assert doc.size == 5
        assert doc.sha256 == hashlib.sha256(b"hello").hexdigest()
        assert doc.declared_mime == "text/plain"
        assert doc.filename == "a.txt"

    def test_path_source_sets_filename(self, tmp_path: Path):
        path = tmp_path / "memo.txt"
        path.write_bytes(b"memo")
        doc = acquire_document(path)
        assert doc.filename == "memo.txt"
        assert doc.data == b"memo"
        assert doc.declared_mime == "application/octet-stream"

    def test_file_object_source(self):
        doc = acquire_document(io.BytesIO(b"abc"), filename="f.bin")
        assert doc.data == b"abc"

    def test_missing_path_raises_unreadable(self, tmp_path: Path):
        with pytest.raises(UnreadableInputError):
            acquire_document(tmp_path / "nope.pdf")

    def test_none_raises_unreadable(self):
        with pytest.raises(UnreadableInputError):
            acquire_document(None)

    def test_text_mode_file_raises_unreadable(self):
        with pytest.raises(UnreadableInputError):
            acquire_document(io.StringIO("text"))

    def test_document_is_frozen(self):
        doc = acquire_document(b"x")
        with pytest.raises(Exception):
            doc.size = 2


if __name__ == "__main__":
    unittest.main()
