"""DOCX paragraph extraction from ``word/document.xml`` via lxml."""

from __future__ import annotations

import io
import logging
import zipfile

from lxml import etree

from .config import DEFAULT_THRESHOLDS, Thresholds
from .layout import build_plain_layout
from .schema import StageText
from .trace import TraceDelta

logger = logging.getLogger(__name__)

DOCUMENT_ENTRY = "word/document.xml"
W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
NAMESPACES = {"w": W_NS}

# No DTDs or external entities: the XML comes from an untrusted upload.
_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


def _paragraph_texts(xml_bytes: bytes) -> list[str]:
    root = etree.fromstring(xml_bytes, parser=_PARSER)
    paragraphs: list[str] = []
    for paragraph in root.iter(f"{{{W_NS}}}p"):
        text = "".join(node.text or "" for node in paragraph.iterfind(".//w:t", NAMESPACES)).strip()
        if text:
            paragraphs.append(text)
    return paragraphs


def extract_docx(
    data: bytes,
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> tuple[StageText, TraceDelta]:
    """Extract paragraph text from a DOCX buffer as a single page.

    A missing document part or malformed XML yields empty text plus an
    ``error`` entry; nothing is raised.
    """
    delta = TraceDelta()
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            xml_bytes = archive.read(DOCUMENT_ENTRY)
    except KeyError:
        delta.add("docx", f"{DOCUMENT_ENTRY} not found in archive", "error")
        return StageText(), delta
    except (zipfile.BadZipFile, OSError) as exc:
        logger.warning("DOCX archive unreadable: %s", exc)
        delta.add("docx", f"archive unreadable: {exc}", "error")
        return StageText(), delta

    try:
        paragraphs = _paragraph_texts(xml_bytes)
    except etree.XMLSyntaxError as exc:
        logger.warning("DOCX XML malformed: %s", exc)
        delta.add("docx", f"malformed document XML: {exc}", "error")
        return StageText(), delta

    text = "\n".join(paragraphs)
    layout = build_plain_layout([text], thresholds)
    delta.add("docx", f"extracted {len(paragraphs)} paragraph(s)")
    return StageText(
        text=text,
        pages=[text],
        layout=layout,
        languages=[page.language for page in layout.pages],
    ), delta
