"""Tests for docextract.api endpoints (sync + async)."""

from __future__ import annotations

import io
import tempfile
import time
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from docextract.ocr import UnavailableOcrEngine
from docextract.render import UnavailableRenderer
from docextract.services import PipelineServices
from docextract.storage import LocalImageStore


def _offline_services(**kwargs) -> PipelineServices:
    return PipelineServices(
        renderer=UnavailableRenderer(),
        ocr_engine=UnavailableOcrEngine(),
        publish_page_images=False,
        **kwargs,
    )


TEXT_BODY = "Meeting notes\nThe budget was approved.".encode("utf-8")


class TestHealthAndConfig(unittest.TestCase):
    def setUp(self) -> None:
        from docextract.api import app
        self.client = TestClient(app, raise_server_exceptions=False)

    def test_health(self) -> None:
        r = self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"status": "ok"})

    def test_startup_builds_services_once(self) -> None:
        from docextract.api import app, get_default_services

        services = _offline_services()
        with patch("docextract.api.build_services", return_value=services) as build:
            with TestClient(app):
                self.assertIs(get_default_services(), services)
                self.assertIs(get_default_services(), services)
        build.assert_called_once_with()

    @patch("docextract.api.get_default_services", return_value=_offline_services())
    def test_api_config(self, _services: MagicMock) -> None:
        r = self.client.get("/api/config")
        self.assertEqual(r.status_code, 200)
        data = r.json()
        self.assertIsInstance(data["max_file_size_bytes"], int)
        self.assertEqual(data["renderer"], "none")
        self.assertFalse(data["ocr_available"])
        self.assertIsNone(data["remote"])


class TestStreamUploadSizeLimit(unittest.TestCase):
    """Oversized and empty uploads are rejected before extraction."""

    def setUp(self) -> None:
        from docextract.api import app
        self.client = TestClient(app, raise_server_exceptions=False)

    @patch("docextract.api.MAX_FILE_SIZE_BYTES", 100)
    def test_oversized_upload_returns_413(self) -> None:
        r = self.client.post(
            "/api/extract",
            files={"file": ("big.pdf", io.BytesIO(b"x" * 200), "application/pdf")},
        )
        self.assertEqual(r.status_code, 413)
        self.assertIn("too large", r.json()["detail"].lower())

    @patch("docextract.api.MAX_FILE_SIZE_BYTES", 100)
    def test_async_oversized_returns_413(self) -> None:
        r = self.client.post(
            "/api/extract/async",
            files={"file": ("big.pdf", io.BytesIO(b"x" * 200), "application/pdf")},
        )
        self.assertEqual(r.status_code, 413)

    def test_empty_upload_returns_400(self) -> None:
        r = self.client.post(
            "/api/extract",
            files={"file": ("empty.pdf", io.BytesIO(b""), "application/pdf")},
        )
        self.assertEqual(r.status_code, 400)
        self.assertIn("empty", r.json()["detail"].lower())

    def test_invalid_page_limit_returns_400(self) -> None:
        r = self.client.post(
            "/api/extract?page_limit=0",
            files={"file": ("a.txt", io.BytesIO(TEXT_BODY), "text/plain")},
        )
        self.assertEqual(r.status_code, 400)


class TestSyncExtraction(unittest.TestCase):
    def setUp(self) -> None:
        from docextract.api import app
        self.client = TestClient(app, raise_server_exceptions=False)

    @patch("docextract.api.get_default_services", return_value=_offline_services())
    def test_extract_text_file(self, _services: MagicMock) -> None:
        r = self.client.post(
            "/api/extract",
            files={"file": ("notes.txt", io.BytesIO(TEXT_BODY), "text/plain")},
        )
        self.assertEqual(r.status_code, 200)
        data = r.json()
        self.assertEqual(data["text"], "Meeting notes\nThe budget was approved.")
        self.assertEqual(data["pages"], ["Meeting notes The budget was approved."])
        self.assertEqual(data["meta"]["extractor"], "text")
        self.assertEqual(data["meta"]["filename"], "notes.txt")
        self.assertEqual(data["meta"]["page_count"], 1)
        self.assertTrue(data["page_tagged_text"].startswith("<<<PAGE 1>>>"))
        self.assertTrue(data["meta"]["trace"])

    @patch("docextract.api.get_default_services")
    def test_extract_text_endpoint_never_uses_remote(self, services: MagicMock) -> None:
        remote = MagicMock()
        remote.endpoint = "http://peer"
        services.return_value = _offline_services(remote=remote)
        blank_pdf = b"%PDF-1.4\n%%EOF"
        r = self.client.post(
            "/api/extract-text",
            files={"file": ("scan.pdf", io.BytesIO(blank_pdf), "application/pdf")},
        )
        self.assertEqual(r.status_code, 200)
        data = r.json()
        self.assertEqual(set(data), {"text", "meta"})
        self.assertEqual(data["meta"]["extractor"], "pdf-unreadable")
        self.assertEqual(data["meta"]["pages"], [])
        remote.extract.assert_not_called()

    @patch("docextract.api.get_default_services", return_value=_offline_services())
    def test_remote_endpoint_cannot_be_chosen_by_the_client(self, _services: MagicMock) -> None:
        r = self.client.post(
            "/api/extract?remote_endpoint=http://169.254.169.254/latest",
            files={"file": ("scan.pdf", io.BytesIO(b"%PDF-1.4\n%%EOF"), "application/pdf")},
        )
        self.assertEqual(r.status_code, 200)
        remote = [e for e in r.json()["meta"]["trace"] if e["step"] == "remote"]
        self.assertEqual([e["detail"] for e in remote], ["skipped: no endpoint configured"])

    @patch("docextract.api.get_default_services", return_value=_offline_services())
    def test_extract_text_contract(self, _services: MagicMock) -> None:
        r = self.client.post(
            "/api/extract-text",
            files={"file": ("notes.txt", io.BytesIO(TEXT_BODY), "text/plain")},
        )
        meta = r.json()["meta"]
        self.assertEqual(meta["extractor"], "text")
        self.assertEqual(meta["page_count"], 1)
        self.assertFalse(meta["used_ocr"])


class TestAsyncEndpoints(unittest.TestCase):
    """Submit + poll flow with a mocked extract_document."""

    def setUp(self) -> None:
        from docextract.api import app
        self.client = TestClient(app, raise_server_exceptions=False)

    @patch("docextract.api.get_default_services", return_value=_offline_services())
    @patch("docextract.worker.extract_document")
    def test_submit_and_poll(self, mock_extract: MagicMock, _services: MagicMock) -> None:
        fake_result = MagicMock()
        fake_result.model_dump.return_value = {"text": "async text", "pages": ["async text"]}
        mock_extract.return_value = fake_result

        r = self.client.post(
            "/api/extract/async",
            files={"file": ("doc.txt", io.BytesIO(TEXT_BODY), "text/plain")},
        )
        self.assertEqual(r.status_code, 202)
        job_id = r.json()["job_id"]
        self.assertEqual(r.json()["status"], "accepted")

        for _ in range(50):
            r = self.client.get(f"/api/extract/async/{job_id}")
            self.assertEqual(r.status_code, 200)
            if r.json()["status"] in ("completed", "failed"):
                break
            time.sleep(0.1)

        data = r.json()
        self.assertEqual(data["status"], "completed")
        self.assertEqual(data["result"]["text"], "async text")

    def test_poll_unknown_job_returns_404(self) -> None:
        r = self.client.get("/api/extract/async/nonexistent")
        self.assertEqual(r.status_code, 404)

    def test_cancel_pending_job(self) -> None:
        from docextract.job_store import store

        job_id = store.create_job(filename="queued.pdf")
        r = self.client.delete(f"/api/extract/async/{job_id}")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"job_id": job_id, "status": "cancelled"})
        self.assertEqual(self.client.get(f"/api/extract/async/{job_id}").json()["status"], "cancelled")

    def test_cancel_completed_job_conflicts(self) -> None:
        from docextract.job_store import store

        job_id = store.create_job()
        store.set_completed(job_id, {})
        r = self.client.delete(f"/api/extract/async/{job_id}")
        self.assertEqual(r.status_code, 409)

    def test_cancel_unknown_job_returns_404(self) -> None:
        self.assertEqual(self.client.delete("/api/extract/async/nonexistent").status_code, 404)


class TestPageImages(unittest.TestCase):
    def setUp(self) -> None:
        from docextract.api import app
        self.client = TestClient(app, raise_server_exceptions=False)

    def test_serves_stored_image(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = LocalImageStore(tmp)
            store.put("abc/page-001.png", b"\x89PNG fake")
            with patch(
                "docextract.api.get_default_services",
                return_value=_offline_services(image_store=store),
            ):
                ok = self.client.get("/api/images/abc/page-001.png")
                missing = self.client.get("/api/images/abc/page-002.png")
            self.assertTrue(Path(tmp, "abc", "page-001.png").is_file())

        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.content, b"\x89PNG fake")
        self.assertEqual(ok.headers["content-type"], "image/png")
        self.assertEqual(missing.status_code, 404)

    @patch("docextract.api.get_default_services", return_value=_offline_services())
    def test_no_local_store_returns_404(self, _services: MagicMock) -> None:
        self.assertEqual(self.client.get("/api/images/abc/page-001.png").status_code, 404)


if __name__ == "__main__":
    unittest.main()
