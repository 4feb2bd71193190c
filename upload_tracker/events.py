"""Decoding and reduction of status stream messages.

Wire format: ``<CATEGORY>-<jobId>:<message>`` where ``message`` is ``OK`` on
success and a free-form failure description otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import MalformedEvent
from .jobs import JobRecord, JobRegistry, Status


LOGGER = logging.getLogger(__name__)

OK_MESSAGE = "OK"


class StatusCategory:
    UPLOAD_COMPLETE = "UC"
    TRANSCODE_STARTED = "TS"
    TRANSCODE_480 = "T4"
    TRANSCODE_720 = "T7"
    TRANSCODE_COMPLETE = "TC"


_SUCCESS_STATUSES: Dict[str, Status] = {
    StatusCategory.UPLOAD_COMPLETE: Status.UPLOAD_SUCCESS,
    StatusCategory.TRANSCODE_STARTED: Status.TRANSCODE_STARTED,
    StatusCategory.TRANSCODE_480: Status.TRANSCODE_480_SUCCESS,
    StatusCategory.TRANSCODE_720: Status.TRANSCODE_720_SUCCESS,
    StatusCategory.TRANSCODE_COMPLETE: Status.TRANSCODE_SUCCESS,
}


@dataclass(frozen=True)
class StatusEvent:
    category: str
    job_id: str
    message: str

    @property
    def ok(self) -> bool:
        return self.message == OK_MESSAGE


def parse_status_message(payload: str) -> StatusEvent:
    """Decode one push-stream payload, tolerating a leading SSE ``data:`` field."""
    text = payload.strip()
    if text.startswith("data:"):
        text = text[len("data:"):].strip()

    head, sep, _ = text.partition(":")
    if not sep:
        raise MalformedEvent(payload, "missing ':' separator")
    category, dash, job_id = head.partition("-")
    if not dash:
        raise MalformedEvent(payload, "missing '-' separator")
    if not category or not job_id:
        raise MalformedEvent(payload, "empty category or job id")

    # The server never puts ':' in job ids; the message is the last field.
    message = text.rsplit(":", 1)[1]
    return StatusEvent(category=category, job_id=job_id, message=message)


def reduce_status(event: StatusEvent) -> Status:
    """Map one event to the lifecycle status it reports.

    Stateless: an out-of-order event maps to the same status it always
    would, so regressions have to be filtered by the caller.
    """
    if not event.ok:
        if event.category == StatusCategory.UPLOAD_COMPLETE:
            return Status.UPLOAD_FAILURE
        return Status.TRANSCODE_FAILURE
    return _SUCCESS_STATUSES.get(event.category, Status.UPLOAD_STARTED)


def apply_event(
    registry: JobRegistry,
    event: StatusEvent,
    *,
    enforce_monotonic: bool = False,
) -> Optional[JobRecord]:
    """Commit the reduced status of ``event`` to the job it names."""
    status = reduce_status(event)
    if enforce_monotonic:
        current = registry.get(event.job_id)
        if current is not None and status < current.status:
            LOGGER.info(
                "Ignoring backward transition for job %s: %s -> %s",
                event.job_id,
                current.status.name,
                status.name,
            )
            return current

    record = registry.update_status(event.job_id, status)
    if record is None:
        LOGGER.debug("Status %s for unknown job %s dropped", status.name, event.job_id)
    elif status.is_failure:
        LOGGER.warning("Job %s failed at %s: %s", event.job_id, event.category, event.message)
    return record
