"""In-memory job store for async extraction jobs with optional disk persistence.

Thread-safe. Each job goes through: pending -> processing -> completed | failed,
with ``cancelled`` reachable from pending or processing.

When JOB_STORE_DIR is set, finished jobs are persisted to disk as JSON so
results survive server restarts.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Literal

from . import config

logger = logging.getLogger(__name__)

JobStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]
FINISHED_STATUSES = ("completed", "failed", "cancelled")


class _JobEntry:
    __slots__ = ("status", "result", "error", "created_at", "updated_at", "filename", "cancel_event")

    def __init__(self, filename: str | None = None) -> None:
        now = time.time()
        self.status: JobStatus = "pending"
        self.result: Any | None = None
        self.error: str | None = None
        self.created_at: float = now
        self.updated_at: float = now
        self.filename: str | None = filename
        self.cancel_event = threading.Event()


class JobStore:
    """Thread-safe job store with optional disk persistence."""

    def __init__(self, persist_dir: str | None = None, ttl_seconds: int = 3600) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, _JobEntry] = {}
        self._ttl_seconds = ttl_seconds
        self._persist_dir: Path | None = Path(persist_dir) if persist_dir else None
        if self._persist_dir:
            self._persist_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create_job(self, filename: str | None = None) -> str:
        job_id = uuid.uuid4().hex
        with self._lock:
            self._evict_old()
            self._jobs[job_id] = _JobEntry(filename)
        return job_id

    def get_job(self, job_id: str) -> dict | None:
        with self._lock:
            entry = self._jobs.get(job_id)
            if entry is not None:
                return self._entry_to_dict(job_id, entry)

        if self._persist_dir:
            disk_path = self._persist_dir / f"{job_id}.json"
            if disk_path.exists():
                try:
                    return json.loads(disk_path.read_text())
                except (OSError, ValueError):
                    logger.warning("Failed to read persisted job %s", job_id)
        return None

    def cancel_event(self, job_id: str) -> threading.Event | None:
        with self._lock:
            entry = self._jobs.get(job_id)
            return entry.cancel_event if entry is not None else None

    def set_processing(self, job_id: str) -> None:
        with self._lock:
            entry = self._jobs.get(job_id)
            if entry is not None and entry.status == "pending":
                entry.status = "processing"
                entry.updated_at = time.time()

    def set_completed(self, job_id: str, result: Any) -> None:
        self._finish(job_id, "completed", result=result)

    def set_failed(self, job_id: str, error: str) -> None:
        self._finish(job_id, "failed", error=error)

    def set_cancelled(self, job_id: str, result: Any | None = None) -> None:
        self._finish(job_id, "cancelled", result=result)

    def cancel_job(self, job_id: str) -> JobStatus | None:
        """Request cancellation; returns the job's status afterwards, None if unknown.

        Pending jobs are cancelled at once. Processing jobs get their cancel
        event set and are marked cancelled by the worker when it stops.
        """
        with self._lock:
            entry = self._jobs.get(job_id)
            if entry is None:
                return None
            if entry.status in FINISHED_STATUSES:
                return entry.status
            entry.cancel_event.set()
            if entry.status == "pending":
                entry.status = "cancelled"
                entry.updated_at = time.time()
                self._persist_to_disk(job_id, entry)
            return entry.status

    def list_jobs(self, status_filter: str | None = None) -> list[dict]:
        """Return a list of job summaries (no result payloads)."""
        jobs: list[dict] = []
        with self._lock:
            for job_id, entry in self._jobs.items():
                if status_filter and entry.status != status_filter:
                    continue
                jobs.append({
                    "job_id": job_id,
                    "status": entry.status,
                    "created_at": entry.created_at,
                    "updated_at": entry.updated_at,
                    "filename": entry.filename,
                })
        return sorted(jobs, key=lambda j: j.get("created_at") or 0, reverse=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _finish(self, job_id: str, status: JobStatus, result: Any = None, error: str | None = None) -> None:
        with self._lock:
            entry = self._jobs.get(job_id)
            if entry is None:
                return
            entry.status = status
            entry.result = result
            entry.error = error
            entry.updated_at = time.time()
            self._persist_to_disk(job_id, entry)

    @staticmethod
    def _entry_to_dict(job_id: str, entry: _JobEntry) -> dict:
        return {
            "job_id": job_id,
            "status": entry.status,
            "result": entry.result,
            "error": entry.error,
            "created_at": entry.created_at,
            "updated_at": entry.updated_at,
            "filename": entry.filename,
        }

    def _persist_to_disk(self, job_id: str, entry: _JobEntry) -> None:
        """Write a finished job to disk (called under lock)."""
        if not self._persist_dir:
            return
        try:
            disk_path = self._persist_dir / f"{job_id}.json"
            disk_path.write_text(json.dumps(self._entry_to_dict(job_id, entry), default=str))
        except (OSError, TypeError, ValueError):
            logger.warning("Failed to persist job %s to disk", job_id)

    def _evict_old(self) -> None:
        """Remove finished in-memory entries older than the TTL (called under lock)."""
        now = time.time()
        stale = [
            jid
            for jid, entry in self._jobs.items()
            if (now - entry.updated_at) > self._ttl_seconds and entry.status in FINISHED_STATUSES
        ]
        for jid in stale:
            del self._jobs[jid]


# Module-level singleton used by worker and API.
store = JobStore(persist_dir=config.JOB_STORE_DIR, ttl_seconds=config.JOB_TTL_SECONDS)
