"""In-memory job registry tracking upload and transcode progress per video."""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

from .errors import StorageFault


LOGGER = logging.getLogger(__name__)


class Status(enum.IntEnum):
    UPLOAD_STARTED = 0
    UPLOAD_SUCCESS = 1
    UPLOAD_FAILURE = 2
    TRANSCODE_STARTED = 3
    TRANSCODE_480_SUCCESS = 4
    TRANSCODE_720_SUCCESS = 5
    TRANSCODE_SUCCESS = 6
    TRANSCODE_FAILURE = 7

    @property
    def is_failure(self) -> bool:
        return self in (Status.UPLOAD_FAILURE, Status.TRANSCODE_FAILURE)

    @property
    def is_terminal(self) -> bool:
        return self.is_failure or self is Status.TRANSCODE_SUCCESS

    @property
    def is_upload_phase(self) -> bool:
        return self <= Status.UPLOAD_FAILURE


@dataclass(frozen=True)
class FileProgress:
    total_bytes: int = 0
    uploaded_bytes: int = 0


@dataclass(frozen=True)
class JobRecord:
    id: str
    title: str
    progress: FileProgress = field(default_factory=FileProgress)
    status: Status = Status.UPLOAD_STARTED
    created_at: float = field(default_factory=time.time)


Listener = Callable[[JobRecord], None]


class JobRegistry:
    """Job records keyed by a mutable external id.

    Records live in an append-only arena; a separate index maps the current
    external id (temporary or durable) to the arena slot. Every mutation
    swaps the whole record so readers never observe a half-updated job.
    """

    def __init__(self) -> None:
        self._arena: List[JobRecord] = []
        self._index: Dict[str, int] = {}
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def create(self, record: JobRecord) -> JobRecord:
        with self._lock:
            if record.id in self._index:
                raise StorageFault(record.id, "a job with this id already exists")
            self._arena.append(record)
            self._index[record.id] = len(self._arena) - 1
        LOGGER.debug("Created job %s (%s)", record.id, record.title)
        self._notify(record)
        return record

    def rename(self, old_id: str, new_id: str) -> Optional[JobRecord]:
        with self._lock:
            slot = self._index.get(old_id)
            if slot is None:
                LOGGER.debug("Rename of unknown job %s ignored", old_id)
                return None
            if old_id == new_id:
                return self._arena[slot]
            if new_id in self._index:
                raise StorageFault(new_id, f"cannot rename {old_id}: id already in use")
            record = replace(self._arena[slot], id=new_id)
            self._arena[slot] = record
            del self._index[old_id]
            self._index[new_id] = slot
        LOGGER.debug("Renamed job %s -> %s", old_id, new_id)
        self._notify(record)
        return record

    def update_progress(self, job_id: str, progress: FileProgress) -> Optional[JobRecord]:
        return self._replace(job_id, progress=progress)

    def update_status(self, job_id: str, status: Status) -> Optional[JobRecord]:
        # No transition check: last writer wins.
        return self._replace(job_id, status=Status(status))

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            slot = self._index.get(job_id)
            return self._arena[slot] if slot is not None else None

    def snapshot(self) -> Tuple[JobRecord, ...]:
        """Return every record in creation order."""
        with self._lock:
            return tuple(self._arena)

    def __len__(self) -> int:
        with self._lock:
            return len(self._arena)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._index

    def _replace(self, job_id: str, **changes) -> Optional[JobRecord]:
        with self._lock:
            slot = self._index.get(job_id)
            if slot is None:
                return None
            record = replace(self._arena[slot], **changes)
            self._arena[slot] = record
        self._notify(record)
        return record

    def _notify(self, record: JobRecord) -> None:
        for listener in list(self._listeners):
            listener(record)
