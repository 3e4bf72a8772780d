"""Main extraction orchestrator.

Picks a strategy chain by document kind and walks it until one strategy yields
usable text. The caller always gets a structurally valid ``ExtractionResult``;
only a failure to read the input at all raises.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Sequence

from .docx_text import extract_docx
from .ingest import Source, acquire_document, detect_kind
from .layout import (
    build_plain_layout,
    detect_language,
    page_text,
    reconstruct_page,
    summarize_layout,
)
from .ocr import ocr_document, ocr_image, ocr_selected_pages
from .ocr_router import resolve_ocr_languages
from .pdf_text import extract_structural_pages
from .quality import assess_readability, low_quality_pages, page_quality
from .schema import (
    ExtractionMeta,
    ExtractionResult,
    ExtractOptions,
    Kind,
    PageImageRef,
    RawDocument,
    StageText,
)
from .services import PipelineServices, build_services
from .storage import CloudinaryImageStore, ImageStore, publish_page_images, upload_original
from .text_decode import best_decoding
from .trace import TraceBuilder, TraceDelta
from .utils import ExtractionError, StageUnavailableError, collapse_whitespace

logger = logging.getLogger(__name__)

EXTRACTOR_PDF = "pdfjs"
EXTRACTOR_PDF_SOFT = "pdfjs-soft"
EXTRACTOR_REMOTE_DEFAULT = "server-pymupdf"
EXTRACTOR_PDF_OCR = "pdf-ocr"
EXTRACTOR_PDF_UNREADABLE = "pdf-unreadable"
EXTRACTOR_DOCX = "docx"
EXTRACTOR_TEXT = "text"
EXTRACTOR_IMAGE_OCR = "image-ocr"
EXTRACTOR_IMAGE_PREVIEW = "image-preview"
EXTRACTOR_BINARY = "binary"

OCR_EXTRACTORS = frozenset({EXTRACTOR_PDF_OCR, EXTRACTOR_IMAGE_OCR})

@dataclass
class PatchOutcome:
    pages: list[str]
    patched_pages: list[int] = field(default_factory=list)
    trace: TraceDelta = field(default_factory=TraceDelta)


@dataclass
class _Outcome:
    extractor: str
    stage: StageText
    patched_pages: list[int] = field(default_factory=list)


def join_pages(pages: Sequence[str]) -> str:
    return "\n".join(page for page in pages if page).strip()


def apply_adaptive_patch(
    pages: Sequence[str],
    data: bytes,
    services: PipelineServices,
    cancel: threading.Event | None = None,
    languages: str | None = None,
    page_count: int | None = None,
) -> PatchOutcome:
    """OCR pages scoring below the quality threshold and splice the results in.

    Pages at or above the threshold are never touched and the list never
    shrinks; it grows with ``""`` when a patched page lies past its end.
    ``page_count`` adds pages missing from *pages* to the candidates.
    """
    threshold = services.thresholds.ocr_quality_threshold
    patched = list(pages)
    delta = TraceDelta()
    targets = low_quality_pages(patched, threshold)
    if page_count is not None and page_count > len(patched):
        targets.extend(range(len(patched) + 1, page_count + 1))
    if not targets:
        return PatchOutcome(patched, [], delta)

    try:
        results, ocr_delta = ocr_selected_pages(data, targets, services, cancel, languages)
    except StageUnavailableError as exc:
        delta.add("ocr-patch", f"skipped: {exc}", "warn")
        return PatchOutcome(patched, [], delta)
    delta.merge(ocr_delta)

    patched_numbers: list[int] = []
    for number, text in sorted(results.items()):
        text = collapse_whitespace(text)
        if not text:
            continue
        while len(patched) < number:
            patched.append("")
        patched[number - 1] = text
        patched_numbers.append(number)

    if patched_numbers:
        delta.add(
            "ocr-patch",
            f"patched pages {', '.join(map(str, patched_numbers))} (threshold {threshold})",
        )
    else:
        delta.add("ocr-patch", f"no usable OCR for pages {', '.join(map(str, targets))}", "warn")
    return PatchOutcome(patched, patched_numbers, delta)


class _PipelineRun:
    """State of one ``extract_document`` call."""

    def __init__(
        self,
        doc: RawDocument,
        kind: Kind,
        services: PipelineServices,
        options: ExtractOptions,
        cancel: threading.Event | None,
    ) -> None:
        self.doc = doc
        self.kind = kind
        self.services = services
        self.options = options
        self.cancel = cancel
        self.trace = TraceBuilder()
        self.languages = resolve_ocr_languages(
            options.ocr.languages, default=services.ocr_languages
        )
        self.page_limit = options.ocr.page_limit or services.ocr_page_limit
        self._cancel_recorded = False

    @property
    def min_chars(self) -> int:
        return self.services.thresholds.min_fallback_chars

    def cancelled(self, before: str) -> bool:
        if self.cancel is None or not self.cancel.is_set():
            return False
        if not self._cancel_recorded:
            self.trace.record("cancelled", f"extraction cancelled before {before}", "warn")
            self._cancel_recorded = True
        return True

    # -- per-kind strategies ------------------------------------------------

    def run(self) -> _Outcome:
        handlers = {
            "pdf": self._extract_pdf,
            "docx": self._extract_docx,
            "text": self._extract_text,
            "image": self._extract_image,
        }
        handler = handlers.get(self.kind, self._extract_binary)
        return handler()

    def _structural(self) -> tuple[StageText, int]:
        thresholds = self.services.thresholds
        raw_pages, delta = extract_structural_pages(self.doc.data)
        self.trace.extend(delta)
        layouts = [reconstruct_page(raw, thresholds) for raw in raw_pages]
        pages = [page_text(layout, thresholds) for layout in layouts]
        stage = StageText(
            text=join_pages(pages),
            pages=pages,
            layout=summarize_layout(layouts) if layouts else None,
            languages=[layout.language for layout in layouts],
        )
        return stage, len(raw_pages)

    def _patch(self, stage: StageText, page_count: int) -> tuple[StageText, list[int]]:
        if self.cancelled("adaptive OCR patch"):
            return stage, []
        outcome = apply_adaptive_patch(
            stage.pages,
            self.doc.data,
            self.services,
            self.cancel,
            self.languages,
            page_count=page_count,
        )
        self.trace.extend(outcome.trace)
        self.cancelled("result assembly")
        if not outcome.patched_pages:
            return stage, []
        languages = list(stage.languages)
        languages.extend(["unknown"] * (len(outcome.pages) - len(languages)))
        for number in outcome.patched_pages:
            languages[number - 1] = detect_language(outcome.pages[number - 1])
        patched = stage.model_copy(update={
            "text": join_pages(outcome.pages),
            "pages": outcome.pages,
            "languages": languages,
        })
        return patched, outcome.patched_pages

    def _accept_structural(self, extractor: str, stage: StageText, page_count: int) -> _Outcome:
        stage, patched_pages = self._patch(stage, page_count)
        return _Outcome(extractor, stage, patched_pages)

    def _try_remote(self) -> _Outcome | None:
        remote = self.services.remote
        if remote is None:
            self.trace.record("remote", "skipped: no endpoint configured")
            return None
        payload, delta = remote.extract(self.doc)
        self.trace.extend(delta)
        if payload is None:
            return None
        text = payload.text.strip()
        if len(text) < self.min_chars:
            self.trace.record("remote", f"too little text ({len(text)} chars)", "warn")
            return None
        pages = [p for p in (payload.pages or []) if isinstance(p, str)] or [payload.text]
        layout = build_plain_layout(pages, self.services.thresholds)
        stage = StageText(
            text=text,
            pages=pages,
            layout=layout,
            languages=[page.language for page in layout.pages],
        )
        return _Outcome(payload.extractor or EXTRACTOR_REMOTE_DEFAULT, stage)

    def _try_full_ocr(self) -> _Outcome | None:
        try:
            pages, delta = ocr_document(
                self.doc.data, self.services, self.page_limit, self.cancel, self.languages,
            )
        except ExtractionError as exc:
            self.trace.record("ocr", f"skipped: {exc}", "warn")
            return None
        self.trace.extend(delta)
        self.cancelled("result assembly")
        text = join_pages(pages)
        if len(text) < self.min_chars:
            self.trace.record("ocr", f"too little text ({len(text)} chars)", "warn")
            return None
        layout = build_plain_layout(pages, self.services.thresholds)
        stage = StageText(
            text=text,
            pages=pages,
            layout=layout,
            languages=[page.language for page in layout.pages],
        )
        return _Outcome(EXTRACTOR_PDF_OCR, stage)

    def _extract_pdf(self) -> _Outcome:
        structural, page_count = self._structural()
        assessment = assess_readability(structural.text)
        self.trace.record(
            "assess",
            f"{assessment.reason}: {assessment.length} chars, score {assessment.score:.2f}",
        )
        if assessment.readable:
            return self._accept_structural(EXTRACTOR_PDF, structural, page_count)

        if not self.cancelled("remote extraction"):
            outcome = self._try_remote()
            if outcome is not None:
                return outcome
        if not self.cancelled("full OCR"):
            outcome = self._try_full_ocr()
            if outcome is not None:
                return outcome

        if structural.text:
            self.trace.record(
                "pdf-soft",
                f"using {len(structural.text)} chars of structural text despite a low score",
                "warn",
            )
            return self._accept_structural(EXTRACTOR_PDF_SOFT, structural, page_count)

        self.trace.record("pdf", "no strategy produced text", "warn")
        return _Outcome(EXTRACTOR_PDF_UNREADABLE, StageText())

    def _extract_docx(self) -> _Outcome:
        stage, delta = extract_docx(self.doc.data, self.services.thresholds)
        self.trace.extend(delta)
        return _Outcome(EXTRACTOR_DOCX, stage)

    def _extract_text(self) -> _Outcome:
        text, encoding = best_decoding(self.doc.data)
        self.trace.record("text", f"decoded {len(text)} chars as {encoding or 'nothing'}")
        pages = [text] if text else []
        layout = build_plain_layout(pages, self.services.thresholds)
        return _Outcome(EXTRACTOR_TEXT, StageText(
            text=text,
            pages=pages,
            layout=layout,
            languages=[page.language for page in layout.pages],
        ))

    def _extract_image(self) -> _Outcome:
        if self.cancelled("image OCR"):
            return _Outcome(EXTRACTOR_IMAGE_PREVIEW, StageText())
        try:
            text, delta = ocr_image(self.doc.data, self.services.ocr_engine, self.languages)
        except StageUnavailableError as exc:
            self.trace.record("image-ocr", f"skipped: {exc}", "warn")
            return _Outcome(EXTRACTOR_IMAGE_PREVIEW, StageText())
        except Exception as exc:
            logger.warning("Image OCR failed: %s", exc)
            self.trace.record("image-ocr", f"failed: {exc}", "error")
            return _Outcome(EXTRACTOR_IMAGE_PREVIEW, StageText())
        self.trace.extend(delta)
        pages = [text] if text else []
        layout = build_plain_layout(pages, self.services.thresholds)
        return _Outcome(EXTRACTOR_IMAGE_OCR, StageText(
            text=text,
            pages=pages,
            layout=layout,
            languages=[page.language for page in layout.pages],
        ))

    def _extract_binary(self) -> _Outcome:
        self.trace.record("binary", "unsupported document type, no text extracted")
        return _Outcome(EXTRACTOR_BINARY, StageText())

    # -- publishing ---------------------------------------------------------

    def _select_store(self) -> ImageStore | None:
        cloud = self.options.cloud_upload
        if cloud is not None:
            try:
                return CloudinaryImageStore.from_config(cloud)
            except ValueError as exc:
                self.trace.record("page-images", f"cloud upload disabled: {exc}", "warn")
                return None
        publish = self.options.publish_page_images
        if publish is None:
            publish = self.services.publish_page_images
        return self.services.image_store if publish else None

    def publish(self) -> tuple[list[PageImageRef] | None, str | None]:
        store = self._select_store()
        if store is None:
            return None, None
        cloud = self.options.cloud_upload

        original_url = None
        if cloud is not None and cloud.upload_original and not self.cancelled("original upload"):
            original_url, delta = upload_original(self.doc, self.services, store)
            self.trace.extend(delta)

        page_images = None
        wants_pages = cloud.page_images if cloud is not None else True
        if self.kind == "pdf" and wants_pages and not self.cancelled("page image rendering"):
            page_images, delta = publish_page_images(self.doc, self.services, store, self.cancel)
            self.trace.extend(delta)
        return page_images, original_url


def build_result(
    doc: RawDocument,
    kind: Kind,
    outcome: _Outcome,
    trace: TraceBuilder,
    page_images: list[PageImageRef] | None = None,
    original_url: str | None = None,
) -> ExtractionResult:
    """Assemble the final payload; ``meta.page_count`` always equals ``len(pages)``."""

    stage = outcome.stage
    pages = [collapse_whitespace(page) for page in stage.pages]
    languages = stage.languages or [page.language for page in (stage.layout.pages if stage.layout else [])]
    used_ocr = outcome.extractor in OCR_EXTRACTORS or bool(outcome.patched_pages)
    meta = ExtractionMeta(
        extractor=outcome.extractor,
        kind=kind,
        used_ocr=used_ocr,
        quality=page_quality(stage.text),
        trace=trace.snapshot(),
        languages=languages,
        page_count=len(pages),
        ocr_patched_pages=outcome.patched_pages,
        page_images=page_images,
        original_url=original_url,
        filename=doc.filename,
        mime=doc.declared_mime,
        size=doc.size,
        sha256=doc.sha256,
    )
    return ExtractionResult(text=stage.text, pages=pages, layout=stage.layout, meta=meta)


def extract_document(
    source: Source | None,
    filename: str | None = None,
    mime: str | None = None,
    options: ExtractOptions | None = None,
    services: PipelineServices | None = None,
    cancel: threading.Event | None = None,
) -> ExtractionResult:
    """Extract text and layout from *source*.

    Long-running callers build *services* once and pass them in; without
    them a fresh set is assembled from the environment for this call.

    Raises ``UnreadableInputError`` only when no bytes can be read. Every
    other failure degrades to the next strategy and is visible in
    ``meta.trace``; check ``meta.extractor`` and ``meta.quality`` to decide
    whether the text is trustworthy.
    """
    doc = acquire_document(source, filename, mime)
    options = options or ExtractOptions()
    if services is None:
        services = build_services()
    services = services.with_remote(options.remote_endpoint)

    kind = detect_kind(doc.data, doc.filename, doc.declared_mime)
    run = _PipelineRun(doc, kind, services, options, cancel)
    run.trace.record(
        "detect",
        f"{doc.filename}: kind={kind}, {doc.size} bytes, mime={doc.declared_mime}",
    )

    outcome = run.run()
    page_images, original_url = run.publish()
    run.trace.record(
        "result",
        f"extractor={outcome.extractor}, {len(outcome.stage.text)} chars, "
        f"{len(outcome.stage.pages)} page(s)",
    )
    logger.info(
        "Extracted %s (%s) with %s: %d chars",
        doc.filename, kind, outcome.extractor, len(outcome.stage.text),
    )
    return build_result(doc, kind, outcome, run.trace, page_images, original_url)
