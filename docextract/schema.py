"""Pydantic models for documents, layouts and extraction results."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

Kind = Literal["pdf", "docx", "text", "image", "binary"]
TraceStatus = Literal["info", "warn", "error"]
BBox = List[float]  # [x1, y1, x2, y2] in page units, top-left origin

PAGE_TAG_TEMPLATE = "<<<PAGE {number}>>>\n{text}"


def build_page_tagged_text(pages: list[str]) -> str:
    """Join pages with ``<<<PAGE n>>>`` markers; the only way tagged text is produced."""

    if not pages:
        return ""
    return "\n\n".join(
        PAGE_TAG_TEMPLATE.format(number=index, text=text)
        for index, text in enumerate(pages, start=1)
    )


class RawDocument(BaseModel):
    """Immutable input bytes plus the declared name and MIME type."""

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    filename: str = "document"
    declared_mime: str = "application/octet-stream"
    size: int
    sha256: str


class TextBlock(BaseModel):
    """One positioned text fragment on a page."""

    id: str
    text: str
    bbox: BBox
    column: int = 0
    line: int = 0
    heading: bool = False


class Line(BaseModel):
    """Blocks sharing a Y band, ordered left to right."""

    id: str
    y: float
    max_y: float
    x1: float
    x2: float
    blocks: List[TextBlock] = Field(default_factory=list)
    text: str = ""

    @property
    def number(self) -> int:
        return int(self.id.rsplit("-", 1)[-1])


class Column(BaseModel):
    """Vertical text band inferred from block-center clustering."""

    id: str
    start: float
    end: float
    center: float
    block_count: int = 0

    @property
    def index(self) -> int:
        return int(self.id.rsplit("-", 1)[-1])


class Heading(BaseModel):
    id: str
    text: str
    bbox: BBox


class TableCell(BaseModel):
    text: str
    bbox: BBox


class TableRow(BaseModel):
    y: float
    cells: List[TableCell] = Field(default_factory=list)


class TableRegion(BaseModel):
    """Consecutive lines with enough aligned cells to read as a table."""

    id: str
    rows: List[TableRow] = Field(default_factory=list)


class PageLayout(BaseModel):
    """Per-page structural summary."""

    page_number: int
    width: float
    height: float
    columns: List[Column] = Field(default_factory=list)
    headings: List[Heading] = Field(default_factory=list)
    blocks: List[TextBlock] = Field(default_factory=list)
    tables: List[TableRegion] = Field(default_factory=list)
    language: str = "unknown"


class LayoutSummary(BaseModel):
    page_count: int = 0
    heading_count: int = 0
    table_count: int = 0


class DocumentLayout(BaseModel):
    pages: List[PageLayout] = Field(default_factory=list)
    summary: LayoutSummary = Field(default_factory=LayoutSummary)


class TraceEntry(BaseModel):
    """One diagnostic record appended by a pipeline stage."""

    model_config = ConfigDict(frozen=True)

    step: str
    detail: str
    status: TraceStatus = "info"
    at: datetime


class PageImageRef(BaseModel):
    """Published rendering of one page."""

    page: int
    url: str
    width: int
    height: int


class ExtractionMeta(BaseModel):
    """Diagnostics and provenance attached to an extraction result."""

    model_config = ConfigDict(frozen=True)

    extractor: str
    kind: Kind | Literal["unknown"] = "unknown"
    used_ocr: bool = False
    quality: float = 0.0
    trace: List[TraceEntry] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    page_count: int = 0
    ocr_patched_pages: List[int] = Field(default_factory=list)
    page_images: List[PageImageRef] | None = None
    original_url: str | None = None
    filename: str | None = None
    mime: str | None = None
    size: int = 0
    sha256: str | None = None


class ExtractionResult(BaseModel):
    """Canonical extraction output payload."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    pages: List[str] = Field(default_factory=list)
    layout: DocumentLayout | None = None
    meta: ExtractionMeta

    @computed_field  # type: ignore[prop-decorator]
    @property
    def page_tagged_text(self) -> str:
        return build_page_tagged_text(self.pages)


class OcrOptions(BaseModel):
    languages: List[str] | str | None = None
    page_limit: int | None = Field(default=None, ge=1)


class CloudUploadConfig(BaseModel):
    """Per-request object-storage settings (Cloudinary)."""

    cloud_name: str
    upload_preset: str | None = None
    api_key: str | None = None
    api_secret: str | None = Field(default=None, repr=False)
    folder: str | None = None
    upload_original: bool = False
    page_images: bool = True


class ExtractOptions(BaseModel):
    """Caller overrides for one extraction run; ``None`` means service default."""

    ocr: OcrOptions = Field(default_factory=OcrOptions)
    remote_endpoint: str | None = None
    cloud_upload: CloudUploadConfig | None = None
    publish_page_images: bool | None = None


class StageText(BaseModel):
    """Text recovered by one strategy, before the orchestrator picks a winner."""

    text: str = ""
    pages: List[str] = Field(default_factory=list)
    layout: DocumentLayout | None = None
    languages: List[str] = Field(default_factory=list)


class RemotePayload(BaseModel):
    """Response contract of the remote extraction collaborator."""

    text: str = ""
    pages: List[str] | None = None
    extractor: str | None = None
