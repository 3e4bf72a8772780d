"""Tests for docextract.remote using httpx.MockTransport."""

from __future__ import annotations

import httpx

from docextract.ingest import acquire_document
from docextract.remote import RemoteExtractor, build_target_url, parse_payload


def _extractor(handler) -> RemoteExtractor:
    return RemoteExtractor("http://remote.test/", timeout=5, transport=httpx.MockTransport(handler))


def _doc():
    return acquire_document(b"%PDF-1.4 fake", filename="scan.pdf", mime="application/pdf")


class TestBuildTargetUrl:
    def test_appends_path_once(self):
        assert build_target_url("http://a.b") == "http://a.b/api/extract-text"
        assert build_target_url("http://a.b/") == "http://a.b/api/extract-text"
        assert build_target_url("http://a.b/api/extract-text") == "http://a.b/api/extract-text"


class TestParsePayload:
    def test_meta_fields_win(self):
        payload = parse_payload({"text": "t", "meta": {"pages": ["p1"], "extractor": "tika"}})
        assert payload.pages == ["p1"]
        assert payload.extractor == "tika"

    def test_top_level_fallback(self):
        payload = parse_payload({"text": "t", "pages": ["a", "b"]})
        assert payload.pages == ["a", "b"]
        assert payload.extractor is None

    def test_null_text_becomes_empty(self):
        assert parse_payload({"text": None}).text == ""


class TestRemoteExtractor:
    def test_success_posts_multipart_file(self):
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = request.read()
            return httpx.Response(200, json={"text": "remote text", "meta": {"extractor": "server-tika"}})

        payload, delta = _extractor(handler).extract(_doc())

        assert captured["url"] == "http://remote.test/api/extract-text"
        assert b'name="file"; filename="scan.pdf"' in captured["body"]
        assert payload.text == "remote text"
        assert payload.extractor == "server-tika"
        assert [e.status for e in delta] == ["info"]

    def test_not_found_is_an_error(self):
        payload, delta = _extractor(lambda r: httpx.Response(404)).extract(_doc())
        assert payload is None
        assert delta.entries[0].status == "error"
        assert "404" in delta.entries[0].detail

    def test_server_error_is_a_warning(self):
        payload, delta = _extractor(lambda r: httpx.Response(500)).extract(_doc())
        assert payload is None
        assert delta.entries[0].status == "warn"

    def test_malformed_body_is_a_warning(self):
        payload, delta = _extractor(lambda r: httpx.Response(200, content=b"<html>")).extract(_doc())
        assert payload is None
        assert delta.entries[0].status == "warn"
        assert "malformed" in delta.entries[0].detail

    def test_non_object_body_is_a_warning(self):
        payload, delta = _extractor(lambda r: httpx.Response(200, json=["a"])).extract(_doc())
        assert payload is None
        assert delta.entries[0].status == "warn"

    def test_timeout_is_a_warning(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        payload, delta = _extractor(handler).extract(_doc())
        assert payload is None
        assert delta.entries[0].status == "warn"
        assert "timeout" in delta.entries[0].detail

    def test_connection_failure_is_an_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        payload, delta = _extractor(handler).extract(_doc())
        assert payload is None
        assert delta.entries[0].status == "error"
