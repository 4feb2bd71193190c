from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urljoin

from .upload import DEFAULT_CHUNK_SIZE, DEFAULT_RETRIES


DELIVERY_MODES = ("latest", "queue")


@dataclass
class TrackerConfig:
    server_url: str = "http://localhost:8080"
    upload_path: str = "/files/"
    status_path: str = "/status/stream"
    chunk_size: int = DEFAULT_CHUNK_SIZE
    upload_retries: int = DEFAULT_RETRIES
    request_timeout: float = 30.0
    # "latest" keeps only the newest unread event; "queue" keeps all of them in order.
    delivery: str = "latest"
    enforce_monotonic: bool = False
    upload_dir: str = "uploads"

    def __post_init__(self) -> None:
        if self.delivery not in DELIVERY_MODES:
            raise ValueError(f"delivery must be one of {DELIVERY_MODES}, got {self.delivery!r}")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.upload_retries < 0:
            raise ValueError("upload_retries must be >= 0")

    @property
    def upload_endpoint(self) -> str:
        return urljoin(self.server_url, self.upload_path)

    @property
    def status_url(self) -> str:
        return urljoin(self.server_url, self.status_path)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes"}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_config() -> TrackerConfig:
    """Build a config from ``TRACKER_*`` environment variables."""
    return TrackerConfig(
        server_url=os.getenv("TRACKER_SERVER_URL", "http://localhost:8080"),
        upload_path=os.getenv("TRACKER_UPLOAD_PATH", "/files/"),
        status_path=os.getenv("TRACKER_STATUS_PATH", "/status/stream"),
        chunk_size=_env_int("TRACKER_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
        upload_retries=_env_int("TRACKER_UPLOAD_RETRIES", DEFAULT_RETRIES),
        request_timeout=_env_float("TRACKER_REQUEST_TIMEOUT", 30.0),
        delivery=os.getenv("TRACKER_DELIVERY", "latest").strip().lower(),
        enforce_monotonic=_env_bool("TRACKER_ENFORCE_MONOTONIC", False),
        upload_dir=os.getenv("TRACKER_UPLOAD_DIR", "uploads"),
    )
