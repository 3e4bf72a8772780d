"""Append-only diagnostics trace for one extraction run.

Stages never share the orchestrator's trace. Each stage builds its own
``TraceDelta`` and returns it next to its result; the orchestrator folds the
delta into its ``TraceBuilder`` so ordering is preserved without aliasing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterator

from .schema import TraceEntry, TraceStatus

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def make_entry(step: str, detail: str, status: TraceStatus = "info") -> TraceEntry:
    return TraceEntry(step=step, detail=detail, status=status, at=datetime.now(timezone.utc))


class TraceDelta:
    """Ordered trace entries produced by a single stage."""

    __slots__ = ("_entries",)

    def __init__(self) -> None:
        self._entries: list[TraceEntry] = []

    def add(self, step: str, detail: str, status: TraceStatus = "info") -> TraceDelta:
        self._entries.append(make_entry(step, detail, status))
        return self

    def merge(self, other: TraceDelta) -> TraceDelta:
        self._entries.extend(other)
        return self

    def __iter__(self) -> Iterator[TraceEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[TraceEntry, ...]:
        return tuple(self._entries)


class TraceBuilder:
    """Owned by the orchestrator; the only writer of the run's trace."""

    def __init__(self) -> None:
        self._entries: list[TraceEntry] = []

    def record(self, step: str, detail: str, status: TraceStatus = "info") -> None:
        self._append(make_entry(step, detail, status))

    def extend(self, delta: TraceDelta) -> None:
        for entry in delta:
            self._append(entry)

    def snapshot(self) -> list[TraceEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _append(self, entry: TraceEntry) -> None:
        self._entries.append(entry)
        logger.log(_LOG_LEVELS[entry.status], "[%s] %s", entry.step, entry.detail)
