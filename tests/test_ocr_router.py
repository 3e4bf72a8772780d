"""Tests for docextract.ocr_router."""

from __future__ import annotations

import unittest

from docextract.ocr_router import DEFAULT_OCR_LANGUAGES, resolve_language, resolve_ocr_languages


class TestResolveLanguage(unittest.TestCase):
    def test_profile_names_and_aliases(self) -> None:
        self.assertEqual(resolve_language("Russian"), "rus")
        self.assertEqual(resolve_language("ru"), "rus")
        self.assertEqual(resolve_language("EN"), "eng")
        self.assertEqual(resolve_language("kk"), "kaz")
        self.assertEqual(resolve_language("ukrainian"), "ukr")

    def test_unknown_and_blank(self) -> None:
        self.assertIsNone(resolve_language("klingon"))
        self.assertIsNone(resolve_language("  "))


class TestResolveOcrLanguages(unittest.TestCase):
    def test_none_uses_default(self) -> None:
        self.assertEqual(resolve_ocr_languages(None), DEFAULT_OCR_LANGUAGES)
        self.assertEqual(resolve_ocr_languages(None, default="eng"), "eng")

    def test_plus_and_comma_strings(self) -> None:
        self.assertEqual(resolve_ocr_languages("rus+eng"), "rus+eng")
        self.assertEqual(resolve_ocr_languages("en, ru"), "eng+rus")

    def test_list_input_is_deduplicated(self) -> None:
        self.assertEqual(resolve_ocr_languages(["ru", "rus", "Russian", "uk"]), "rus+ukr")

    def test_unknown_hints_fall_back(self) -> None:
        self.assertEqual(resolve_ocr_languages(["xx", "yy"]), DEFAULT_OCR_LANGUAGES)
        self.assertEqual(resolve_ocr_languages("xx+en"), "eng")


if __name__ == "__main__":
    unittest.main()
