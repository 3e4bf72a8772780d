"""Object storage for rendered page images and original uploads.

Uploads are keyed by content hash so repeated runs over the same document
reuse earlier URLs through ``ArtifactCache`` instead of re-uploading.
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Hashable, TypeVar

import httpx

from .schema import CloudUploadConfig, PageImageRef, RawDocument
from .trace import TraceDelta

if TYPE_CHECKING:
    from .services import PipelineServices

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"
PUBLIC_ID_MAX_CHARS = 120
PAGE_IMAGE_TAG = "document-page"


def sanitize_public_id(value: str | None) -> str:
    """Reduce *value* to ``[A-Za-z0-9/_-]`` with single dashes, at most 120 chars."""

    if not value:
        return ""
    cleaned = re.sub(r"[^a-zA-Z0-9/_-]", "-", str(value))
    cleaned = re.sub(r"-+", "-", cleaned).strip("-")
    return cleaned[:PUBLIC_ID_MAX_CHARS]


def cloudinary_signature(params: dict[str, object], api_secret: str) -> str:
    """SHA-1 over ``k=v&...`` (sorted, empty values dropped) followed by the secret."""

    entries = sorted(
        (key, ",".join(map(str, value)) if isinstance(value, (list, tuple)) else str(value))
        for key, value in params.items()
        if value not in (None, "")
    )
    base = "&".join(f"{key}={value}" for key, value in entries)
    return hashlib.sha1(f"{base}{api_secret}".encode("utf-8")).hexdigest()


def page_image_key(doc: RawDocument, page_number: int) -> str:
    return f"{doc.sha256}/page-{page_number:03d}.png"


class ImageStore(ABC):
    name = "abstract"

    @property
    def cache_namespace(self) -> str:
        """Distinguishes destinations in the artifact cache key."""
        return self.name

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "image/png") -> str | None:
        """Store *data* under *key* and return its URL, or None when the upload failed."""


class LocalImageStore(ImageStore):
    """Files under a local directory, served by the API at ``/api/images``."""

    name = "local"

    def __init__(self, root: str | Path, base_url: str = "/api/images") -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    @property
    def cache_namespace(self) -> str:
        return f"{self.name}:{self.root}:{self.base_url}"

    def resolve(self, key: str) -> Path | None:
        """Map *key* to a path inside the store root; None if it escapes the root."""

        root = self.root.resolve()
        path = (root / key).resolve()
        if root != path and root not in path.parents:
            return None
        return path

    def put(self, key: str, data: bytes, content_type: str = "image/png") -> str | None:
        path = self.resolve(key)
        if path is None:
            logger.warning("Refusing to store outside image root: %s", key)
            return None
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return f"{self.base_url}/{key}"


class CloudinaryImageStore(ImageStore):
    """Cloudinary upload API, unsigned (preset) or signed (key/secret)."""

    name = "cloudinary"

    def __init__(
        self,
        cloud_name: str,
        upload_preset: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        folder: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not (api_key and api_secret) and not upload_preset:
            raise ValueError("Cloudinary needs an upload preset or an API key/secret pair.")
        self.cloud_name = cloud_name
        self.upload_preset = upload_preset
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: CloudUploadConfig, **kwargs) -> CloudinaryImageStore:
        return cls(
            cloud_name=config.cloud_name,
            upload_preset=config.upload_preset,
            api_key=config.api_key,
            api_secret=config.api_secret,
            folder=config.folder,
            **kwargs,
        )

    @property
    def cache_namespace(self) -> str:
        return f"{self.name}:{self.cloud_name}:{self.folder or ''}"

    @property
    def signed(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def endpoint(self, resource_type: str) -> str:
        return f"{CLOUDINARY_API_BASE}/{self.cloud_name}/{resource_type}/upload"

    def _form_fields(self, public_id: str, tags: str) -> dict[str, str]:
        fields = {"public_id": public_id, "tags": tags}
        if self.folder:
            fields["folder"] = self.folder
        if self.signed:
            timestamp = int(time.time())
            fields["timestamp"] = str(timestamp)
            fields["api_key"] = self.api_key
            fields["signature"] = cloudinary_signature(
                {"public_id": public_id, "folder": self.folder, "tags": tags, "timestamp": timestamp},
                self.api_secret,
            )
        else:
            fields["upload_preset"] = self.upload_preset
        return fields

    def put(self, key: str, data: bytes, content_type: str = "image/png") -> str | None:
        resource_type = "image" if content_type.startswith("image/") else "auto"
        public_id = sanitize_public_id(key.rsplit(".", 1)[0])
        tags = PAGE_IMAGE_TAG if resource_type == "image" else "document-original"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    self.endpoint(resource_type),
                    data=self._form_fields(public_id, tags),
                    files={"file": (key.rsplit("/", 1)[-1], data, content_type)},
                )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Cloudinary upload of %s failed: %s", key, exc)
            return None
        return payload.get("secure_url") or payload.get("url") or None


class ArtifactCache:
    """Thread-safe, content-hash-keyed memo of published artifacts.

    ``get_or_create`` runs the producer at most once per key, even when
    several runs over the same document race for it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[Hashable, object] = {}
        self._key_locks: dict[Hashable, threading.Lock] = {}

    def get(self, key: Hashable):
        with self._lock:
            return self._values.get(key)

    def get_or_create(self, key: Hashable, producer: Callable[[], T | None]) -> T | None:
        with self._lock:
            if key in self._values:
                return self._values[key]  # type: ignore[return-value]
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            with self._lock:
                if key in self._values:
                    return self._values[key]  # type: ignore[return-value]
            value = producer()
            with self._lock:
                if value is not None:
                    self._values[key] = value
                self._key_locks.pop(key, None)
            return value

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


def publish_page_images(
    doc: RawDocument,
    services: PipelineServices,
    store: ImageStore,
    cancel: threading.Event | None = None,
) -> tuple[list[PageImageRef], TraceDelta]:
    """Render up to ``max_page_images`` pages and publish them through *store*."""

    delta = TraceDelta()
    renderer = services.renderer
    if not renderer.available:
        delta.add("page-images", "skipped: no rendering backend", "warn")
        return [], delta
    try:
        page_count = renderer.page_count(doc.data)
    except Exception as exc:
        logger.warning("Page image rendering failed: %s", exc)
        delta.add("page-images", f"could not count pages: {exc}", "warn")
        return [], delta

    refs: list[PageImageRef] = []
    for page_number in range(1, min(page_count, services.max_page_images) + 1):
        if cancel is not None and cancel.is_set():
            delta.add("page-images", f"cancelled before page {page_number}", "warn")
            break

        def produce(page_number: int = page_number) -> PageImageRef | None:
            png, width, height = renderer.render_png(doc.data, page_number, services.page_image_scale)
            url = store.put(page_image_key(doc, page_number), png, "image/png")
            if url is None:
                return None
            return PageImageRef(page=page_number, url=url, width=width, height=height)

        try:
            key = (store.cache_namespace, doc.sha256, page_number)
            ref = services.cache.get_or_create(key, produce)
        except Exception as exc:
            logger.warning("Page %d image failed: %s", page_number, exc)
            delta.add("page-images", f"page {page_number} failed: {exc}", "warn")
            continue
        if ref is None:
            delta.add("page-images", f"page {page_number} upload failed", "warn")
            continue
        refs.append(ref)

    delta.add("page-images", f"published {len(refs)} page image(s) via {store.name}")
    return refs, delta


def upload_original(
    doc: RawDocument,
    services: PipelineServices,
    store: ImageStore,
) -> tuple[str | None, TraceDelta]:
    """Publish the original upload once per content hash."""

    delta = TraceDelta()
    key = f"{doc.sha256}/{sanitize_public_id(doc.filename) or 'document'}"
    url = services.cache.get_or_create(
        (store.cache_namespace, doc.sha256, "original"),
        lambda: store.put(key, doc.data, doc.declared_mime),
    )
    if url is None:
        delta.add("upload-original", "upload failed", "warn")
    else:
        delta.add("upload-original", "original uploaded")
    return url, delta
