"""Tests for docextract.config."""

from __future__ import annotations

import os
import unittest
from dataclasses import FrozenInstanceError
from unittest.mock import patch


class TestConfig(unittest.TestCase):
    """Config values are read from env and have sensible defaults."""

    def test_defaults_are_sane(self) -> None:
        from docextract.config import (
            MAX_FILE_SIZE_BYTES,
            OCR_PAGE_LIMIT,
            OCR_RENDER_SCALE,
            REMOTE_TIMEOUT_SEC,
        )
        self.assertGreater(MAX_FILE_SIZE_BYTES, 0)
        self.assertGreater(OCR_PAGE_LIMIT, 0)
        self.assertGreater(OCR_RENDER_SCALE, 0)
        self.assertGreater(REMOTE_TIMEOUT_SEC, 0)

    def test_env_helpers_clamp_and_fall_back(self) -> None:
        from docextract.config import _env_bool, _env_float, _env_int

        with patch.dict(os.environ, {"DX_INT": "999999", "DX_BAD": "abc", "DX_FLAG": "Yes"}):
            self.assertEqual(_env_int("DX_INT", default=5, hi=100), 100)
            self.assertEqual(_env_int("DX_BAD", default=5), 5)
            self.assertEqual(_env_float("DX_BAD", default=1.5), 1.5)
            self.assertTrue(_env_bool("DX_FLAG"))
            self.assertFalse(_env_bool("DX_MISSING"))

    def test_thresholds_are_frozen(self) -> None:
        from docextract.config import DEFAULT_THRESHOLDS

        self.assertEqual(DEFAULT_THRESHOLDS.line_tolerance, 6.0)
        self.assertEqual(DEFAULT_THRESHOLDS.ocr_quality_threshold, 0.12)
        self.assertEqual(DEFAULT_THRESHOLDS.min_fallback_chars, 40)
        with self.assertRaises(FrozenInstanceError):
            DEFAULT_THRESHOLDS.line_tolerance = 10.0  # type: ignore[misc]

    def test_log_startup_config_runs(self) -> None:
        from docextract.config import log_startup_config
        # Should not raise.
        log_startup_config()


if __name__ == "__main__":
    unittest.main()
