#!/usr/bin/env python3
"""Calibrate the readability thresholds against a labelled corpus.

The corpus is a CSV of ``path,label`` rows where label is ``readable`` or
``unreadable`` (1/0 and yes/no are accepted too). Each document's structural
PDF text (or decoded text for other kinds) is run through the assessor and
the verdicts are tallied into a confusion matrix. With ``--full`` the whole
pipeline runs and extractor counts are reported as well.
"""

from __future__ import annotations

import argparse
import csv
import json
from collections import Counter
from pathlib import Path

import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from docextract.extract import extract_document, join_pages
from docextract.ingest import acquire_document, detect_kind
from docextract.layout import page_text, reconstruct_page
from docextract.pdf_text import extract_structural_pages
from docextract.quality import assess_readability
from docextract.services import build_services
from docextract.text_decode import decode_text_buffer

_POSITIVE = {"readable", "1", "yes", "true"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Confusion matrix for the readability assessor.")
    parser.add_argument("corpus", help="CSV file with path,label rows.")
    parser.add_argument(
        "--full",
        action="store_true",
        help="Also run the full extraction pipeline and count extractors.",
    )
    return parser.parse_args()


def first_pass_text(path: Path) -> str:
    doc = acquire_document(path)
    kind = detect_kind(doc.data, doc.filename, doc.declared_mime)
    if kind == "pdf":
        raw_pages, _ = extract_structural_pages(doc.data)
        return join_pages([page_text(reconstruct_page(raw)) for raw in raw_pages])
    if kind == "text":
        return decode_text_buffer(doc.data)
    return ""


def main() -> int:
    args = parse_args()
    corpus = Path(args.corpus)
    matrix: Counter[str] = Counter()
    extractors: Counter[str] = Counter()
    misses: list[dict] = []
    services = build_services() if args.full else None

    with corpus.open(newline="", encoding="utf-8") as handle:
        for row in csv.reader(handle):
            if not row or row[0].startswith("#"):
                continue
            path = (corpus.parent / row[0].strip()).resolve()
            expected = row[1].strip().lower() in _POSITIVE if len(row) > 1 else True
            assessment = assess_readability(first_pass_text(path))
            cell = ("t" if assessment.readable == expected else "f") + ("p" if assessment.readable else "n")
            matrix[cell] += 1
            if cell in ("fp", "fn"):
                misses.append({
                    "path": str(path),
                    "expected": expected,
                    "reason": assessment.reason,
                    "score": round(assessment.score, 2) if assessment.length else None,
                    "length": assessment.length,
                })
            if args.full:
                extractors[extract_document(path, services=services).meta.extractor] += 1

    total = sum(matrix.values())
    summary = {
        "total": total,
        "confusion": {k: matrix.get(k, 0) for k in ("tp", "fp", "tn", "fn")},
        "accuracy": round((matrix["tp"] + matrix["tn"]) / total, 4) if total else 0,
        "misses": misses,
    }
    if args.full:
        summary["extractors"] = dict(extractors)
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
