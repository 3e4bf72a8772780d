"""Buffer acquisition, content hashing and document-kind detection."""

from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, Union

from .schema import Kind, RawDocument
from .utils import UnreadableInputError, sha256_hex

Source = Union[bytes, bytearray, memoryview, str, Path, BinaryIO]

PDF_MAGIC = b"%PDF"
ZIP_MAGIC = b"PK\x03\x04"
IMAGE_MAGICS: tuple[bytes, ...] = (
    b"\x89PNG\r\n\x1a\n",
    b"\xff\xd8\xff",
    b"GIF87a",
    b"GIF89a",
    b"II*\x00",
    b"MM\x00*",
)

TEXT_EXTENSIONS = (".txt", ".md", ".csv", ".json", ".log")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".bmp", ".tif", ".tiff", ".webp")


def _read_source(source: Source) -> bytes:
    if isinstance(source, bytes):
        return source
    if isinstance(source, (bytearray, memoryview)):
        return bytes(source)
    if isinstance(source, (str, Path)):
        return Path(source).expanduser().read_bytes()
    if hasattr(source, "read"):
        data = source.read()
        if isinstance(data, str):
            raise TypeError("file object must be opened in binary mode")
        return bytes(data)
    raise TypeError(f"unsupported source type: {type(source).__name__}")


def acquire_document(
    source: Source | None,
    filename: str | None = None,
    mime: str | None = None,
) -> RawDocument:
    """Read *source* into an immutable ``RawDocument``.

    Raises ``UnreadableInputError`` when no bytes can be obtained; this is the
    only failure the pipeline surfaces to the caller.
    """
    if source is None:
        raise UnreadableInputError("No document was provided.")
    try:
        data = _read_source(source)
    except (OSError, TypeError, ValueError) as exc:
        raise UnreadableInputError(f"Could not read document: {exc}") from exc

    if not filename and isinstance(source, (str, Path)):
        filename = Path(source).name
    return RawDocument(
        data=data,
        filename=filename or "document",
        declared_mime=(mime or "application/octet-stream").strip().lower(),
        size=len(data),
        sha256=sha256_hex(data),
    )


def _sniff_magic(head: bytes) -> Kind | None:
    if head.startswith(PDF_MAGIC):
        return "pdf"
    if head.startswith(ZIP_MAGIC):
        return "docx"
    if head.startswith(b"RIFF") and head[8:12] == b"WEBP":
        return "image"
    if any(head.startswith(magic) for magic in IMAGE_MAGICS):
        return "image"
    return None


def _match_mime(mime: str) -> Kind | None:
    if "pdf" in mime:
        return "pdf"
    if "wordprocessingml" in mime:
        return "docx"
    return None


def _match_extension(name: str) -> Kind | None:
    if name.endswith(".pdf"):
        return "pdf"
    if name.endswith(".docx"):
        return "docx"
    if name.endswith(TEXT_EXTENSIONS):
        return "text"
    if name.endswith(IMAGE_EXTENSIONS):
        return "image"
    return None


def detect_kind(data: bytes, filename: str | None = None, mime: str | None = None) -> Kind:
    """Classify a buffer: magic bytes, then declared MIME, then file extension."""

    name = (filename or "").strip().lower()
    declared = (mime or "").strip().lower()

    kind = _sniff_magic(data[:16]) or _match_mime(declared) or _match_extension(name)
    if kind:
        return kind
    if declared.startswith("text/"):
        return "text"
    if declared.startswith("image/"):
        return "image"
    return "binary"
