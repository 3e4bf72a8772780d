"""Layout reconstruction from positioned text blocks.

Groups spans into lines, clusters block centres into columns, flags headings
and table-like runs, then back-annotates every block. All geometry is in page
units with a top-left origin.
"""

from __future__ import annotations

import math
import re
from typing import Sequence

from .config import DEFAULT_THRESHOLDS, Thresholds
from .pdf_text import RawPage
from .schema import (
    Column,
    DocumentLayout,
    Heading,
    LayoutSummary,
    Line,
    PageLayout,
    TableCell,
    TableRegion,
    TableRow,
    TextBlock,
)
from .utils import collapse_whitespace, count_cyrillic, count_latin, round_coord

LANGUAGE_DOMINANCE = 1.2

_HEADING_STRIP_RE = re.compile(r"[\d\s.:-]+")
_UPPER_RE = re.compile(r"[A-ZА-ЯЁ]")
_LETTER_RE = re.compile(r"[A-Za-zА-Яа-яЁё]")
_NUMBERED_RE = re.compile(r"^\d+(\.\d+)*\s")
_SHORT_TITLE_RE = re.compile(r"^[A-ZА-ЯЁ0-9][A-Za-z0-9_\s«»\"'()-]+$")
_NEWLINES_RE = re.compile(r"\n+")


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------

def group_blocks_into_lines(
    blocks: Sequence[TextBlock],
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> list[Line]:
    """Group blocks whose top edges lie within the line tolerance.

    A block joins the first existing line whose ``y`` is within tolerance;
    the line's band then widens to cover it.
    """
    pending: list[dict] = []
    for block in sorted(blocks, key=lambda b: (b.bbox[1], b.bbox[0])):
        x1, y1, x2, y2 = block.bbox
        line = next(
            (item for item in pending if abs(item["y"] - y1) <= thresholds.line_tolerance),
            None,
        )
        if line is None:
            pending.append({"y": y1, "max_y": y2, "x1": x1, "x2": x2, "blocks": [block]})
            continue
        line["blocks"].append(block)
        line["y"] = min(line["y"], y1)
        line["max_y"] = max(line["max_y"], y2)
        line["x1"] = min(line["x1"], x1)
        line["x2"] = max(line["x2"], x2)

    lines: list[Line] = []
    for index, item in enumerate(pending, start=1):
        ordered = sorted(item["blocks"], key=lambda b: b.bbox[0])
        lines.append(Line(
            id=f"line-{index}",
            y=round_coord(item["y"]),
            max_y=round_coord(item["max_y"]),
            x1=round_coord(item["x1"]),
            x2=round_coord(item["x2"]),
            blocks=ordered,
            text=" ".join(block.text for block in ordered),
        ))
    return lines


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------

def detect_columns(
    blocks: Sequence[TextBlock],
    page_width: float,
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> list[Column]:
    """Cluster block centres into vertical bands separated by wide gaps."""

    if not blocks:
        return [Column(
            id="col-0",
            start=0.0,
            end=round_coord(page_width),
            center=round_coord(page_width / 2),
            block_count=0,
        )]

    centred = sorted(
        (((block.bbox[0] + block.bbox[2]) / 2, block) for block in blocks),
        key=lambda entry: entry[0],
    )
    gap = max(page_width * thresholds.column_gap_ratio, thresholds.column_gap_min)

    clusters: list[list[tuple[float, TextBlock]]] = [[centred[0]]]
    for previous, entry in zip(centred, centred[1:]):
        if entry[0] - previous[0] > gap:
            clusters.append([entry])
        else:
            clusters[-1].append(entry)

    columns: list[Column] = []
    for index, cluster in enumerate(clusters):
        min_x = min(block.bbox[0] for _, block in cluster)
        max_x = max(block.bbox[2] for _, block in cluster)
        columns.append(Column(
            id=f"col-{index}",
            start=round_coord(max(0.0, min_x - thresholds.column_padding)),
            end=round_coord(min(page_width, max_x + thresholds.column_padding)),
            center=round_coord(math.fsum(center for center, _ in cluster) / len(cluster)),
            block_count=len(cluster),
        ))
    return columns


def locate_column(
    block: TextBlock,
    columns: Sequence[Column],
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> int | None:
    """Return the index of the first column band that contains *block*, if any."""

    slack = thresholds.column_fit_slack
    for column in columns:
        if block.bbox[0] >= column.start - slack and block.bbox[2] <= column.end + slack:
            return column.index
    return None


# ---------------------------------------------------------------------------
# Headings and tables
# ---------------------------------------------------------------------------

def is_heading_text(text: str, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> bool:
    cleaned = _HEADING_STRIP_RE.sub("", text).strip()
    if not cleaned:
        return False
    letters = len(_LETTER_RE.findall(cleaned)) or 1
    if len(_UPPER_RE.findall(cleaned)) / letters > thresholds.heading_upper_ratio:
        return True
    if _NUMBERED_RE.match(text.strip()):
        return True
    return len(cleaned) <= thresholds.heading_max_chars and bool(_SHORT_TITLE_RE.match(cleaned))


def detect_headings(
    lines: Sequence[Line],
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> list[Heading]:
    """Flag uppercase-dominant, numbered or short capitalised lines."""

    return [
        Heading(id=line.id, text=line.text, bbox=[line.x1, line.y, line.x2, line.max_y])
        for line in lines
        if is_heading_text(line.text, thresholds)
    ]


def detect_tables(
    lines: Sequence[Line],
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> list[TableRegion]:
    """Return runs of consecutive lines that each carry enough non-empty cells."""

    runs: list[list[Line]] = []
    current: list[Line] = []
    for line in lines:
        cells = [block for block in line.blocks if block.text.strip()]
        if len(cells) >= thresholds.table_min_columns:
            current.append(line)
            continue
        if current:
            runs.append(current)
            current = []
    if current:
        runs.append(current)

    tables: list[TableRegion] = []
    for run in runs:
        if len(run) < thresholds.table_min_rows:
            continue
        tables.append(TableRegion(
            id=f"table-{len(tables) + 1}",
            rows=[
                TableRow(
                    y=line.y,
                    cells=[
                        TableCell(text=block.text, bbox=list(block.bbox))
                        for block in sorted(line.blocks, key=lambda b: b.bbox[0])
                    ],
                )
                for line in run
            ],
        ))
    return tables


# ---------------------------------------------------------------------------
# Page assembly
# ---------------------------------------------------------------------------

def annotate_blocks(
    blocks: Sequence[TextBlock],
    lines: Sequence[Line],
    columns: Sequence[Column],
    headings: Sequence[Heading],
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> list[TextBlock]:
    """Return copies of *blocks* carrying their column, line and heading flags."""

    line_of = {block.id: line for line in lines for block in line.blocks}
    heading_ids = {heading.id for heading in headings}
    annotated: list[TextBlock] = []
    for block in blocks:
        line = line_of.get(block.id)
        column = locate_column(block, columns, thresholds)
        annotated.append(block.model_copy(update={
            "column": column if column is not None else 0,
            "line": line.number if line else 0,
            "heading": bool(line and line.id in heading_ids),
        }))
    return annotated


def detect_language(text: str | None) -> str:
    """Classify text as ``ru``, ``en``, ``mixed`` or ``unknown``."""

    cleaned = re.sub(r"\s+", "", text or "")
    if not cleaned:
        return "unknown"
    cyrillic = count_cyrillic(cleaned)
    latin = count_latin(cleaned)
    if cyrillic > latin * LANGUAGE_DOMINANCE:
        return "ru"
    if latin > cyrillic * LANGUAGE_DOMINANCE:
        return "en"
    return "mixed"


def _bands_disjoint(columns: Sequence[Column]) -> bool:
    ordered = sorted(columns, key=lambda column: column.start)
    return all(left.end <= right.start for left, right in zip(ordered, ordered[1:]))


def page_text(layout: PageLayout, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> str:
    """Serialise annotated blocks in reading order.

    Multi-column pages read column by column, unless some block spans a
    column gap (its band then overlaps its neighbours); everything else reads
    top to bottom, left to right.
    """
    blocks = layout.blocks
    column_major = (
        len(layout.columns) > 1
        and _bands_disjoint(layout.columns)
        and all(locate_column(block, layout.columns, thresholds) is not None for block in blocks)
    )
    if column_major:
        ordered = sorted(blocks, key=lambda b: (b.column, b.bbox[1], b.bbox[0]))
    else:
        ordered = sorted(blocks, key=lambda b: (b.bbox[1], b.bbox[0]))
    return collapse_whitespace(" ".join(block.text for block in ordered))


def reconstruct_page(raw_page: RawPage, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> PageLayout:
    """Build the ``PageLayout`` for one structurally extracted page."""

    lines = group_blocks_into_lines(raw_page.blocks, thresholds)
    columns = detect_columns(raw_page.blocks, raw_page.width, thresholds)
    headings = detect_headings(lines, thresholds)
    tables = detect_tables(lines, thresholds)
    blocks = annotate_blocks(raw_page.blocks, lines, columns, headings, thresholds)

    layout = PageLayout(
        page_number=raw_page.page_number,
        width=raw_page.width,
        height=raw_page.height,
        columns=columns,
        headings=headings,
        blocks=blocks,
        tables=tables,
    )
    layout.language = detect_language(page_text(layout, thresholds))
    return layout


def summarize_layout(pages: Sequence[PageLayout]) -> DocumentLayout:
    return DocumentLayout(
        pages=list(pages),
        summary=LayoutSummary(
            page_count=len(pages),
            heading_count=sum(len(page.headings) for page in pages),
            table_count=sum(len(page.tables) for page in pages),
        ),
    )


def _is_plain_heading(text: str) -> bool:
    if _NUMBERED_RE.match(text):
        return True
    return text == text.upper() and any(ch.isalpha() for ch in text)


def build_plain_layout(
    pages: Sequence[str],
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> DocumentLayout:
    """Synthesise a single-column layout for text that has no geometry.

    Used for DOCX, plain text, OCR and remote output: one block per non-empty
    line, stacked at a fixed line height.
    """
    step = thresholds.plain_line_height
    width = thresholds.plain_page_width
    layouts: list[PageLayout] = []
    for page_number, text in enumerate(pages, start=1):
        rows = [row.strip() for row in _NEWLINES_RE.split(text or "")]
        rows = [row for row in rows if row]
        blocks = [
            TextBlock(
                id=f"plain-{page_number}-{index + 1}",
                text=row,
                bbox=[0.0, index * step, width, index * step + step - 2],
                column=0,
                line=index + 1,
                heading=_is_plain_heading(row),
            )
            for index, row in enumerate(rows)
        ]
        layouts.append(PageLayout(
            page_number=page_number,
            width=width,
            height=len(blocks) * step,
            columns=[Column(
                id="col-0", start=0.0, end=width, center=width / 2, block_count=len(blocks),
            )],
            headings=[
                Heading(id=block.id, text=block.text, bbox=list(block.bbox))
                for block in blocks
                if block.heading
            ],
            blocks=blocks,
            tables=[],
            language=detect_language(text),
        ))
    return summarize_layout(layouts)
