"""Error types raised by the upload tracker.

All errors inherit from TrackerError so callers can catch them in one place.
"""

from __future__ import annotations

from typing import Optional


class TrackerError(Exception):
    """Base exception for tracker failures."""


class MalformedEvent(TrackerError):
    """Raised when a status stream payload cannot be decoded."""

    def __init__(self, payload: str, reason: str = "missing delimiter") -> None:
        self.payload = payload
        self.reason = reason
        super().__init__(f"Malformed status event ({reason}): {payload!r}")


class TransportFailure(TrackerError):
    """Raised when an upload or the status stream connection fails."""

    def __init__(self, reason: str, location: Optional[str] = None) -> None:
        self.reason = reason
        self.location = location
        super().__init__(reason)


class StorageFault(TrackerError):
    """Raised when a registry operation would break the one-record-per-id rule."""

    def __init__(self, job_id: str, reason: str) -> None:
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Registry fault for job {job_id}: {reason}")
