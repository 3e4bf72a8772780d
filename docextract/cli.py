"""Command-line interface for document extraction."""

from __future__ import annotations

import argparse
import logging
import mimetypes
import sys
from dataclasses import replace
from pathlib import Path

from . import config
from .extract import extract_document
from .schema import ExtractOptions, OcrOptions
from .services import build_services
from .storage import LocalImageStore
from .utils import ExtractionError, guard_max_size


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""

    parser = argparse.ArgumentParser(
        description="Extract text and layout from a PDF, DOCX, text or image file.",
    )
    parser.add_argument("path", help="Path to the document.")
    parser.add_argument(
        "--mime",
        type=str,
        default=None,
        help="Declared MIME type (default: guessed from the file name).",
    )
    parser.add_argument(
        "--ocr-lang",
        type=str,
        action="append",
        default=None,
        metavar="LANG",
        help="OCR language hint, repeatable (e.g. --ocr-lang ru --ocr-lang en). Default: rus+eng.",
    )
    parser.add_argument(
        "--page-limit",
        type=int,
        default=None,
        help=f"Maximum pages to OCR (default: {config.OCR_PAGE_LIMIT}).",
    )
    parser.add_argument(
        "--remote-endpoint",
        type=str,
        default=None,
        metavar="URL",
        help="Base URL of a remote extraction service used as a fallback.",
    )
    parser.add_argument(
        "--upload-dir",
        type=str,
        default=None,
        metavar="DIR",
        help="Render PDF pages to PNG files under DIR and list them in meta.page_images.",
    )
    parser.add_argument(
        "--text-only",
        action="store_true",
        help="Print only the page-tagged text instead of the JSON result.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging level for diagnostics on stderr (default: WARNING).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        path = Path(args.path)
        if path.is_file():
            guard_max_size(path.stat().st_size, config.MAX_FILE_SIZE_BYTES)
        mime = args.mime or mimetypes.guess_type(path.name)[0]

        services = build_services()
        publish = None
        if args.upload_dir:
            services = replace(services, image_store=LocalImageStore(args.upload_dir, base_url=args.upload_dir))
            publish = True

        options = ExtractOptions(
            ocr=OcrOptions(languages=args.ocr_lang, page_limit=args.page_limit),
            remote_endpoint=args.remote_endpoint,
            publish_page_images=publish,
        )
        result = extract_document(path, mime=mime, options=options, services=services)
        if args.text_only:
            print(result.page_tagged_text)
        else:
            print(result.model_dump_json(indent=2))
        return 0
    except ExtractionError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:  # pragma: no cover - safety net
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
