"""Long-lived collaborators shared by every extraction run.

Built once at startup by ``build_services`` and passed explicitly into the
pipeline, so tests can swap any piece (renderer, OCR engine, remote, store).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from . import config
from .config import DEFAULT_THRESHOLDS, Thresholds
from .ocr import OcrEngine, TesseractEngine, UnavailableOcrEngine
from .remote import RemoteExtractor
from .render import Renderer, select_renderer
from .storage import ArtifactCache, CloudinaryImageStore, ImageStore, LocalImageStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineServices:
    renderer: Renderer
    ocr_engine: OcrEngine
    remote: RemoteExtractor | None = None
    image_store: ImageStore | None = None
    cache: ArtifactCache = field(default_factory=ArtifactCache)
    thresholds: Thresholds = DEFAULT_THRESHOLDS
    ocr_languages: str = config.OCR_LANGUAGES
    ocr_page_limit: int = config.OCR_PAGE_LIMIT
    ocr_scale: float = config.OCR_RENDER_SCALE
    page_image_scale: float = config.PAGE_IMAGE_SCALE
    max_page_images: int = config.MAX_PAGE_IMAGES
    publish_page_images: bool = config.PUBLISH_PAGE_IMAGES
    remote_timeout: float = config.REMOTE_TIMEOUT_SEC

    def with_remote(self, endpoint: str | None) -> PipelineServices:
        """Return a copy pointing at *endpoint* (or the configured remote when None)."""

        if not endpoint or (self.remote and self.remote.endpoint == endpoint):
            return self
        return replace(self, remote=RemoteExtractor(endpoint, timeout=self.remote_timeout))

    def without_remote(self) -> PipelineServices:
        return self if self.remote is None else replace(self, remote=None)

    def describe(self) -> dict[str, object]:
        return {
            "renderer": self.renderer.name,
            "renderer_available": self.renderer.available,
            "ocr_engine": self.ocr_engine.name,
            "ocr_available": self.ocr_engine.available,
            "ocr_languages": self.ocr_languages,
            "ocr_page_limit": self.ocr_page_limit,
            "remote": self.remote.url if self.remote else None,
            "image_store": self.image_store.name if self.image_store else None,
            "publish_page_images": self.publish_page_images,
        }


def _build_image_store() -> ImageStore | None:
    if config.CLOUDINARY_CLOUD_NAME:
        try:
            return CloudinaryImageStore(
                cloud_name=config.CLOUDINARY_CLOUD_NAME,
                upload_preset=config.CLOUDINARY_UPLOAD_PRESET,
                api_key=config.CLOUDINARY_API_KEY,
                api_secret=config.CLOUDINARY_API_SECRET,
                folder=config.CLOUDINARY_FOLDER,
            )
        except ValueError as exc:
            logger.warning("Cloudinary disabled: %s", exc)
    return LocalImageStore(config.IMAGE_STORE_DIR)


def build_services() -> PipelineServices:
    """Assemble services from environment configuration."""

    engine: OcrEngine = TesseractEngine(
        timeout=config.OCR_TIMEOUT_SEC,
        tessdata_path=config.TESSDATA_PATH,
    )
    if not engine.available:
        logger.warning("tesseract not found on PATH; OCR strategies will be skipped")
        engine = UnavailableOcrEngine()

    renderer = select_renderer(config.RENDER_BACKEND)
    remote = (
        RemoteExtractor(config.REMOTE_EXTRACT_URL, timeout=config.REMOTE_TIMEOUT_SEC)
        if config.REMOTE_EXTRACT_URL
        else None
    )
    services = PipelineServices(
        renderer=renderer,
        ocr_engine=engine,
        remote=remote,
        image_store=_build_image_store(),
    )
    logger.info("Pipeline services: %s", services.describe())
    return services
