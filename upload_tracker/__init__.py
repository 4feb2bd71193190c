"""Upload and transcode job tracking for resumable video uploads."""

from .config import TrackerConfig, load_config
from .errors import MalformedEvent, StorageFault, TrackerError, TransportFailure
from .events import StatusEvent, apply_event, parse_status_message, reduce_status
from .jobs import FileProgress, JobRecord, JobRegistry, Status
from .projection import JobView, project_jobs
from .stream import ConnectionState, EventQueue, LatestEventSlot, StatusStreamClient
from .tracker import TrackerSession
from .upload import TusTransport, UploadCoordinator, UploadOutcome

__all__ = [
    "TrackerConfig",
    "load_config",
    "TrackerError",
    "MalformedEvent",
    "StorageFault",
    "TransportFailure",
    "StatusEvent",
    "parse_status_message",
    "reduce_status",
    "apply_event",
    "Status",
    "FileProgress",
    "JobRecord",
    "JobRegistry",
    "JobView",
    "project_jobs",
    "ConnectionState",
    "LatestEventSlot",
    "EventQueue",
    "StatusStreamClient",
    "UploadCoordinator",
    "UploadOutcome",
    "TusTransport",
    "TrackerSession",
]
