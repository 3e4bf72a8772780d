"""Tests for docextract.storage (image stores, signatures, artifact cache)."""

from __future__ import annotations

import threading
import unittest
from pathlib import Path

import httpx
import pytest

from docextract.ingest import acquire_document
from docextract.ocr import UnavailableOcrEngine
from docextract.render import UnavailableRenderer
from docextract.schema import CloudUploadConfig
from docextract.services import PipelineServices
from docextract.storage import (
    ArtifactCache,
    CloudinaryImageStore,
    LocalImageStore,
    cloudinary_signature,
    page_image_key,
    sanitize_public_id,
    upload_original,
)


class TestHelpers(unittest.TestCase):
    def test_sanitize_public_id(self) -> None:
        self.assertEqual(sanitize_public_id("My Report (final).pdf"), "My-Report-final-pdf")
        self.assertEqual(sanitize_public_id("a//b__c"), "a//b__c")
        self.assertEqual(sanitize_public_id(None), "")
        self.assertEqual(len(sanitize_public_id("x" * 500)), 120)

    def test_signature_is_deterministic_and_order_free(self) -> None:
        first = cloudinary_signature({"timestamp": 1, "public_id": "p", "folder": None}, "secret")
        second = cloudinary_signature({"public_id": "p", "timestamp": 1}, "secret")
        self.assertEqual(first, second)
        self.assertEqual(len(first), 40)
        self.assertNotEqual(first, cloudinary_signature({"public_id": "p", "timestamp": 1}, "other"))

    def test_page_image_key(self) -> None:
        doc = acquire_document(b"abc")
        self.assertEqual(page_image_key(doc, 7), f"{doc.sha256}/page-007.png")


class TestArtifactCache(unittest.TestCase):
    def test_producer_runs_once(self) -> None:
        cache = ArtifactCache()
        calls: list[int] = []

        def producer() -> str:
            calls.append(1)
            return "url"

        self.assertEqual(cache.get_or_create("k", producer), "url")
        self.assertEqual(cache.get_or_create("k", producer), "url")
        self.assertEqual(len(calls), 1)
        self.assertEqual(cache.get("k"), "url")
        self.assertEqual(len(cache), 1)

    def test_none_is_not_cached(self) -> None:
        cache = ArtifactCache()
        self.assertIsNone(cache.get_or_create("k", lambda: None))
        self.assertEqual(cache.get_or_create("k", lambda: "later"), "later")

    def test_concurrent_callers_share_one_result(self) -> None:
        cache = ArtifactCache()
        calls: list[int] = []
        gate = threading.Event()

        def producer() -> str:
            gate.wait(1)
            calls.append(1)
            return "shared"

        results: list[str] = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.get_or_create("k", producer)))
            for _ in range(4)
        ]
        for thread in threads:
            thread.start()
        gate.set()
        for thread in threads:
            thread.join()
        self.assertEqual(results, ["shared"] * 4)
        self.assertEqual(len(calls), 1)


class TestLocalImageStore:
    def test_put_writes_file_and_returns_url(self, tmp_path: Path):
        store = LocalImageStore(tmp_path)
        url = store.put("abc/page-001.png", b"png-bytes")
        assert url == "/api/images/abc/page-001.png"
        assert (tmp_path / "abc" / "page-001.png").read_bytes() == b"png-bytes"

    def test_traversal_is_refused(self, tmp_path: Path):
        store = LocalImageStore(tmp_path / "root")
        assert store.resolve("../escape.png") is None
        assert store.put("../escape.png", b"x") is None
        assert not (tmp_path / "escape.png").exists()


class TestCloudinaryImageStore:
    def test_requires_credentials(self):
        with pytest.raises(ValueError):
            CloudinaryImageStore(cloud_name="demo")

    def test_unsigned_upload(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"secure_url": "https://res.cloudinary.com/demo/x.png"})

        store = CloudinaryImageStore(
            cloud_name="demo", upload_preset="unsigned", folder="docs",
            transport=httpx.MockTransport(handler),
        )
        url = store.put("abc/page-001.png", b"png", "image/png")

        assert url == "https://res.cloudinary.com/demo/x.png"
        assert seen["url"] == "https://api.cloudinary.com/v1_1/demo/image/upload"
        assert b'name="upload_preset"' in seen["body"]
        assert b"abc/page-001" in seen["body"]
        assert b'name="signature"' not in seen["body"]

    def test_signed_upload_carries_signature(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.read()
            return httpx.Response(200, json={"url": "http://res/x.pdf"})

        config = CloudUploadConfig(cloud_name="demo", api_key="key", api_secret="secret")
        store = CloudinaryImageStore.from_config(config, transport=httpx.MockTransport(handler))
        assert store.signed
        assert store.put("abc/original", b"%PDF", "application/pdf") == "http://res/x.pdf"
        assert b'name="signature"' in seen["body"]
        assert b'name="api_key"' in seen["body"]

    def test_failed_upload_returns_none(self):
        store = CloudinaryImageStore(
            cloud_name="demo", upload_preset="p",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        assert store.put("abc/page-001.png", b"png") is None

    def test_cache_keeps_cloud_accounts_apart(self):
        uploads: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            cloud = request.url.path.split("/")[2]
            uploads.append(cloud)
            return httpx.Response(200, json={"secure_url": f"https://res/{cloud}/doc.pdf"})

        services = PipelineServices(renderer=UnavailableRenderer(), ocr_engine=UnavailableOcrEngine())
        doc = acquire_document(b"%PDF-1.4 shared", "shared.pdf", "application/pdf")
        first = CloudinaryImageStore(
            cloud_name="alpha", upload_preset="p", transport=httpx.MockTransport(handler),
        )
        second = CloudinaryImageStore(
            cloud_name="beta", upload_preset="p", transport=httpx.MockTransport(handler),
        )

        first_url, _ = upload_original(doc, services, first)
        second_url, _ = upload_original(doc, services, second)
        again_url, _ = upload_original(doc, services, first)

        assert first_url == "https://res/alpha/doc.pdf"
        assert second_url == "https://res/beta/doc.pdf"
        assert again_url == first_url
        assert uploads == ["alpha", "beta"]

    def test_secret_is_hidden_from_repr(self):
        config = CloudUploadConfig(cloud_name="demo", api_key="key", api_secret="hunter2")
        assert "hunter2" not in repr(config)
