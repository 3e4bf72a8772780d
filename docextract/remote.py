"""Remote extraction fallback over HTTP.

The collaborator accepts a multipart ``file`` upload at
``<base>/api/extract-text`` and answers ``{"text": ..., "meta": {"pages": [...],
"extractor": ...}}``. Any failure means "fallback unavailable"; nothing here
raises into the pipeline.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from .schema import RawDocument, RemotePayload
from .trace import TraceDelta

logger = logging.getLogger(__name__)

REMOTE_EXTRACT_PATH = "/api/extract-text"


def build_target_url(endpoint: str) -> str:
    base = endpoint.strip().rstrip("/")
    if base.endswith(REMOTE_EXTRACT_PATH):
        return base
    return f"{base}{REMOTE_EXTRACT_PATH}"


def parse_payload(body: object) -> RemotePayload:
    """Validate a collaborator response, reading pages/extractor from ``meta``."""

    if not isinstance(body, dict):
        raise ValueError("response body is not a JSON object")
    meta = body.get("meta") if isinstance(body.get("meta"), dict) else {}
    return RemotePayload(
        text=body.get("text") or "",
        pages=meta.get("pages", body.get("pages")),
        extractor=meta.get("extractor", body.get("extractor")),
    )


class RemoteExtractor:
    """Posts documents to a remote extraction service."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.url = build_target_url(endpoint)
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def extract(self, doc: RawDocument) -> tuple[RemotePayload | None, TraceDelta]:
        delta = TraceDelta()
        files = {"file": (doc.filename, doc.data, doc.declared_mime)}
        try:
            with self._client() as client:
                response = client.post(self.url, files=files)
        except httpx.TimeoutException:
            logger.warning("Remote extraction timed out after %.1fs", self.timeout)
            delta.add("remote", f"timeout after {self.timeout:g}s", "warn")
            return None, delta
        except httpx.HTTPError as exc:
            logger.warning("Remote extraction request failed: %s", exc)
            delta.add("remote", f"request failed: {exc}", "error")
            return None, delta

        if not response.is_success:
            status = "error" if response.status_code == 404 else "warn"
            delta.add("remote", f"HTTP {response.status_code}", status)
            return None, delta

        try:
            payload = parse_payload(response.json())
        except (ValueError, ValidationError) as exc:
            logger.warning("Remote extraction returned an unusable body: %s", exc)
            delta.add("remote", f"malformed response: {exc}", "warn")
            return None, delta

        detail = "returned text" if payload.text.strip() else "responded without text"
        delta.add("remote", detail)
        return payload, delta
