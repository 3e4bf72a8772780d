"""FastAPI app for document text extraction."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, JSONResponse

from .config import MAX_FILE_SIZE_BYTES, UPLOAD_CHUNK_SIZE, log_startup_config
from .extract import extract_document
from .job_store import store as job_store
from .schema import ExtractOptions, OcrOptions
from .services import PipelineServices, build_services
from .storage import LocalImageStore
from .utils import ExtractionError
from .worker import enqueue as enqueue_job

app = FastAPI(title="docextract")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------
@app.on_event("startup")
def _startup() -> None:
    log_startup_config()
    app.state.services = build_services()


def get_default_services() -> PipelineServices:
    """Services built by the startup hook (built here when it has not run)."""
    services = getattr(app.state, "services", None)
    if services is None:
        services = app.state.services = build_services()
    return services


# ---------------------------------------------------------------------------
# Global error handler
# ---------------------------------------------------------------------------
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request, exc: Exception):  # noqa: ARG001
    if isinstance(exc, HTTPException):
        raise exc
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc) or "Internal server error"},
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
async def _stream_upload_to_temp(file: UploadFile) -> str:
    """Stream *file* to a temp file in chunks; enforce size limit. Returns path."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided.")
    total = 0
    tmp = tempfile.NamedTemporaryFile(delete=False, suffix=Path(file.filename).suffix)
    try:
        while True:
            chunk = await file.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > MAX_FILE_SIZE_BYTES:
                raise HTTPException(
                    status_code=413,
                    detail=f"File too large (limit {MAX_FILE_SIZE_BYTES // (1024*1024)} MB).",
                )
            tmp.write(chunk)
        tmp.flush()
    except Exception:
        tmp.close()
        os.unlink(tmp.name)
        raise
    finally:
        tmp.close()
    if total == 0:
        os.unlink(tmp.name)
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return tmp.name


def _build_options(
    ocr_lang: str | None,
    page_limit: int | None,
    publish_page_images: bool | None,
) -> ExtractOptions:
    if page_limit is not None and page_limit < 1:
        raise HTTPException(status_code=400, detail="page_limit must be >= 1.")
    return ExtractOptions(
        ocr=OcrOptions(languages=ocr_lang, page_limit=page_limit),
        publish_page_images=publish_page_images,
    )


async def _run_extract(file: UploadFile, options: ExtractOptions, use_remote: bool = True):
    temp_path = await _stream_upload_to_temp(file)
    services = get_default_services()
    if not use_remote:
        services = services.without_remote()
    try:
        return await run_in_threadpool(
            extract_document,
            temp_path,
            filename=file.filename,
            mime=file.content_type,
            options=options,
            services=services,
        )
    except ExtractionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


# ---------------------------------------------------------------------------
# Health / config
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/config")
async def api_config():
    """Expose limits and live capabilities so clients know what to expect."""
    return {
        "max_file_size_bytes": MAX_FILE_SIZE_BYTES,
        **get_default_services().describe(),
    }


# ---------------------------------------------------------------------------
# Sync extraction endpoints
# ---------------------------------------------------------------------------
@app.post("/api/extract")
async def api_extract_endpoint(
    file: UploadFile = File(...),
    ocr_lang: str | None = None,
    page_limit: int | None = None,
    publish_page_images: bool | None = None,
):
    """Extract text, pages and layout from an uploaded document."""
    options = _build_options(ocr_lang, page_limit, publish_page_images)
    result = await _run_extract(file, options)
    return result.model_dump(mode="json")


@app.post("/api/extract-text")
async def api_extract_text_endpoint(
    file: UploadFile = File(...),
    ocr_lang: str | None = None,
    page_limit: int | None = None,
):
    """Compact response in the remote-fallback contract: ``{text, meta: {pages, extractor}}``.

    Never forwards to another remote, so deployments can point at each other.
    """
    options = _build_options(ocr_lang, page_limit, False)
    result = await _run_extract(file, options, use_remote=False)
    return {
        "text": result.text,
        "meta": {
            "pages": result.pages,
            "extractor": result.meta.extractor,
            "page_count": result.meta.page_count,
            "quality": result.meta.quality,
            "used_ocr": result.meta.used_ocr,
        },
    }


# ---------------------------------------------------------------------------
# Async extraction endpoints
# ---------------------------------------------------------------------------
@app.post("/api/extract/async", status_code=202)
async def async_extract_endpoint(
    file: UploadFile = File(...),
    ocr_lang: str | None = None,
    page_limit: int | None = None,
    publish_page_images: bool | None = None,
):
    """Accept a document and return 202 + job_id. Poll /api/extract/async/{job_id} for result."""
    options = _build_options(ocr_lang, page_limit, publish_page_images)
    temp_path = await _stream_upload_to_temp(file)
    job_id = job_store.create_job(filename=file.filename)
    enqueue_job(
        job_id,
        temp_path,
        filename=file.filename,
        mime=file.content_type,
        options=options,
        services=get_default_services(),
    )
    return {"job_id": job_id, "status": "accepted"}


@app.get("/api/extract/async/{job_id}")
async def async_extract_status(job_id: str):
    """Poll job status. Returns result when completed, error when failed."""
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found.")
    return job


@app.delete("/api/extract/async/{job_id}")
async def async_extract_cancel(job_id: str):
    """Cancel a pending or running job; running jobs stop at the next page."""
    status = job_store.cancel_job(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Job not found.")
    if status in ("completed", "failed"):
        raise HTTPException(status_code=409, detail=f"Job already {status}.")
    return {"job_id": job_id, "status": status}


# ---------------------------------------------------------------------------
# Published page images (local store only)
# ---------------------------------------------------------------------------
@app.get("/api/images/{doc_id}/{name}")
async def page_image(doc_id: str, name: str):
    image_store = get_default_services().image_store
    if not isinstance(image_store, LocalImageStore):
        raise HTTPException(status_code=404, detail="Local image store is not enabled.")
    path = image_store.resolve(f"{doc_id}/{name}")
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Image not found.")
    return FileResponse(path, media_type="image/png")
