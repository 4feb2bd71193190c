"""Display-ready views of registry state."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from .jobs import FileProgress, JobRecord, Status
from .stream import ConnectionState


TRANSCODE_CHECKPOINTS = {
    Status.TRANSCODE_480_SUCCESS: "50%",
    Status.TRANSCODE_720_SUCCESS: "95%",
    Status.TRANSCODE_SUCCESS: "100%",
}


@dataclass(frozen=True)
class JobView:
    id: str
    title: str
    status: str
    upload_percent: str
    transcode_percent: str
    upload_label: str
    transcode_label: Optional[str]
    failed: bool
    playable: bool
    stale: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def upload_percent(progress: FileProgress) -> str:
    if progress.total_bytes <= 0:
        return "0%"
    return f"{progress.uploaded_bytes * 100 / progress.total_bytes:.2f}%"


def transcode_percent(status: Status) -> str:
    return TRANSCODE_CHECKPOINTS.get(status, "0%")


def upload_label(status: Status) -> str:
    if status is Status.UPLOAD_STARTED:
        return "Uploading"
    if status is Status.UPLOAD_FAILURE:
        return "Upload Failure"
    return "Uploaded"


def transcode_label(status: Status) -> Optional[str]:
    if status.is_upload_phase:
        return None
    if status is Status.TRANSCODE_SUCCESS:
        return "Transcoded"
    if status is Status.TRANSCODE_FAILURE:
        return "Transcode Failure"
    return "Transcoding"


def project_job(record: JobRecord, *, stale: bool = False) -> JobView:
    return JobView(
        id=record.id,
        title=record.title,
        status=record.status.name,
        upload_percent=upload_percent(record.progress),
        transcode_percent=transcode_percent(record.status),
        upload_label=upload_label(record.status),
        transcode_label=transcode_label(record.status),
        failed=record.status.is_failure,
        playable=record.status is Status.TRANSCODE_SUCCESS,
        stale=stale,
    )


def project_jobs(
    records: Iterable[JobRecord],
    connection_state: Optional[ConnectionState] = None,
) -> List[JobView]:
    """Project records in registry order.

    Non-terminal jobs are flagged stale once the status stream is closed,
    since nothing will move them forward any more.
    """
    closed = connection_state is ConnectionState.CLOSED
    return [
        project_job(record, stale=closed and not record.status.is_terminal)
        for record in records
    ]
