"""Background worker for async extraction jobs.

Uses a small ThreadPoolExecutor (ASYNC_WORKERS) so the ASGI event loop is not blocked.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor

from .config import ASYNC_WORKERS
from .extract import extract_document
from .job_store import store
from .schema import ExtractOptions
from .services import PipelineServices

logger = logging.getLogger(__name__)

_pool = ThreadPoolExecutor(max_workers=ASYNC_WORKERS, thread_name_prefix="docextract-job")


def _run(
    job_id: str,
    path: str,
    filename: str | None = None,
    mime: str | None = None,
    options: ExtractOptions | None = None,
    services: PipelineServices | None = None,
) -> None:
    """Execute ``extract_document`` and update the job store. Runs in a thread."""
    cancel = store.cancel_event(job_id)
    try:
        if cancel is not None and cancel.is_set():
            store.set_cancelled(job_id)
            return
        store.set_processing(job_id)
        result = extract_document(
            path,
            filename=filename,
            mime=mime,
            options=options,
            services=services,
            cancel=cancel,
        )
        payload = result.model_dump(mode="json")
        if cancel is not None and cancel.is_set():
            store.set_cancelled(job_id, payload)
        else:
            store.set_completed(job_id, payload)
    except Exception as exc:
        logger.exception("Job %s failed", job_id)
        store.set_failed(job_id, f"{type(exc).__name__}: {exc}")
    finally:
        # Temp file was created by _stream_upload_to_temp in api.py.
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError:
            logger.warning("Could not remove temp upload %s", path)


def enqueue(
    job_id: str,
    path: str,
    filename: str | None = None,
    mime: str | None = None,
    options: ExtractOptions | None = None,
    services: PipelineServices | None = None,
) -> None:
    """Submit an extraction job to the background thread pool."""
    _pool.submit(_run, job_id, path, filename, mime, options, services)
