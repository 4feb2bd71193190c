"""Resumable upload coordination.

A job is registered under a locally derived temporary id before the server
knows about the file. When the upload finishes, the job is renamed to the
id the server assigned (the last segment of the upload location).
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Callable, Dict, Optional, Protocol
from urllib.parse import urljoin, urlsplit

import httpx

from .errors import TransportFailure
from .jobs import FileProgress, JobRecord, JobRegistry, Status

LOGGER = logging.getLogger(__name__)

TUS_VERSION = "1.0.0"
DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024
DEFAULT_RETRIES = 3

ProgressCallback = Callable[[int, int], None]
SuccessCallback = Callable[[], None]
ErrorCallback = Callable[[Exception], None]
CreatedCallback = Callable[[JobRecord], None]


def temporary_job_id(title: str, created_at: datetime, nonce: str = "") -> str:
    """Collision-avoidance id for a job the server has not accepted yet."""
    millis = int(created_at.timestamp() * 1000)
    seed = f"{title}{created_at.day}:{millis}:{nonce}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def durable_id_from_location(location: Optional[str]) -> Optional[str]:
    if not location:
        return None
    path = urlsplit(location).path
    segment = path.rsplit("/", 1)[-1]
    return segment or None


class UploadSession(Protocol):
    url: Optional[str]

    async def start(self) -> None:
        ...


class UploadTransport(Protocol):
    def open_session(
        self,
        source: BinaryIO,
        total_bytes: int,
        *,
        filename: str,
        on_progress: ProgressCallback,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
    ) -> UploadSession:
        ...


class TusSession:
    """One tus upload: a creation request followed by sequential PATCH chunks.

    A failed PATCH is resumed from the offset the server reports on HEAD, up
    to ``retries`` times in a row. Chunks are read off the event loop.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        source: BinaryIO,
        total_bytes: int,
        *,
        filename: str,
        chunk_size: int,
        retries: int,
        on_progress: ProgressCallback,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
    ) -> None:
        self.url: Optional[str] = None
        self._client = client
        self._endpoint = endpoint
        self._source = source
        self._total = total_bytes
        self._filename = filename
        self._chunk_size = chunk_size
        self._retries = retries
        self._on_progress = on_progress
        self._on_success = on_success
        self._on_error = on_error

    async def start(self) -> None:
        try:
            await self._create()
            await self._send_chunks()
        except (httpx.HTTPError, OSError, TransportFailure) as exc:
            failure = exc if isinstance(exc, TransportFailure) else TransportFailure(str(exc), self.url)
            self._on_error(failure)
            return
        self._on_success()

    def _headers(self, **extra: str) -> Dict[str, str]:
        headers = {"Tus-Resumable": TUS_VERSION}
        headers.update(extra)
        return headers

    async def _create(self) -> None:
        encoded_name = base64.b64encode(self._filename.encode("utf-8")).decode("ascii")
        response = await self._client.post(
            self._endpoint,
            headers={
                "Tus-Resumable": TUS_VERSION,
                "Upload-Length": str(self._total),
                "Upload-Metadata": f"filename {encoded_name}",
            },
        )
        response.raise_for_status()
        location = response.headers.get("Location")
        if not location:
            raise TransportFailure("Upload creation response carried no Location header")
        self.url = urljoin(str(response.url), location)

    def _read_chunk(self, offset: int) -> bytes:
        self._source.seek(offset)
        return self._source.read(self._chunk_size)

    async def _send_chunks(self) -> None:
        offset = 0
        failures = 0
        while offset < self._total:
            chunk = await asyncio.to_thread(self._read_chunk, offset)
            if not chunk:
                raise TransportFailure(
                    f"Source ended at {offset} of {self._total} bytes", self.url
                )
            try:
                offset = await self._patch(offset, chunk)
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                failures += 1
                if failures > self._retries:
                    raise
                LOGGER.warning(
                    "Chunk at offset %s of %s failed (%s); resuming (attempt %s of %s)",
                    offset,
                    self.url,
                    exc,
                    failures,
                    self._retries,
                )
                offset = await self._server_offset()
                continue
            failures = 0
            self._on_progress(offset, self._total)

    async def _patch(self, offset: int, chunk: bytes) -> int:
        response = await self._client.patch(
            self.url,
            content=chunk,
            headers=self._headers(**{
                "Upload-Offset": str(offset),
                "Content-Type": "application/offset+octet-stream",
            }),
        )
        response.raise_for_status()
        return int(response.headers.get("Upload-Offset", offset + len(chunk)))

    async def _server_offset(self) -> int:
        response = await self._client.head(self.url, headers=self._headers())
        response.raise_for_status()
        value = response.headers.get("Upload-Offset")
        if value is None:
            raise TransportFailure("Offset lookup carried no Upload-Offset header", self.url)
        return int(value)


class TusTransport:
    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retries: int = DEFAULT_RETRIES,
    ) -> None:
        self._client = client
        self._endpoint = endpoint
        self._chunk_size = chunk_size
        self._retries = retries

    def open_session(
        self,
        source: BinaryIO,
        total_bytes: int,
        *,
        filename: str,
        on_progress: ProgressCallback,
        on_success: SuccessCallback,
        on_error: ErrorCallback,
    ) -> TusSession:
        return TusSession(
            self._client,
            self._endpoint,
            source,
            total_bytes,
            filename=filename,
            chunk_size=self._chunk_size,
            retries=self._retries,
            on_progress=on_progress,
            on_success=on_success,
            on_error=on_error,
        )


@dataclass
class UploadOutcome:
    temporary_id: str
    job_id: str
    status: Status
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.status is Status.UPLOAD_SUCCESS


class UploadCoordinator:
    """Drives one upload session per job and keeps the registry in step.

    ``aliases`` maps each temporary id that has been renamed to its durable
    id, so callers holding the id handed out at creation can still find the
    job. The registry itself treats the old id as gone.
    """

    def __init__(
        self,
        registry: JobRegistry,
        transport: UploadTransport,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.aliases: Dict[str, str] = {}
        self._registry = registry
        self._transport = transport
        self._clock = clock

    def resolve(self, job_id: str) -> str:
        return self.aliases.get(job_id, job_id)

    async def upload(
        self,
        title: str,
        source: BinaryIO,
        total_bytes: int,
        *,
        on_created: Optional[CreatedCallback] = None,
    ) -> UploadOutcome:
        if total_bytes < 0:
            raise ValueError("total_bytes must be >= 0")

        created_at = self._clock()
        temp_id = temporary_job_id(title, created_at, uuid.uuid4().hex)
        record = self._registry.create(
            JobRecord(
                id=temp_id,
                title=title,
                progress=FileProgress(total_bytes=total_bytes, uploaded_bytes=0),
                status=Status.UPLOAD_STARTED,
                created_at=created_at.timestamp(),
            )
        )
        if on_created is not None:
            on_created(record)
        outcome = UploadOutcome(temporary_id=temp_id, job_id=temp_id, status=Status.UPLOAD_STARTED)
        finished = False
        session: Optional[UploadSession] = None

        def on_progress(uploaded: int, total: int) -> None:
            if finished:
                return
            # Keyed on the temporary id; inert once the job has been renamed.
            self._registry.update_progress(
                temp_id, FileProgress(total_bytes=total, uploaded_bytes=uploaded)
            )

        def rename(durable_id: str) -> None:
            self._registry.rename(temp_id, durable_id)
            self.aliases[temp_id] = durable_id

        def on_success() -> None:
            nonlocal finished
            finished = True
            durable_id = durable_id_from_location(session.url if session else None)
            if durable_id is None:
                LOGGER.error("Upload of %s finished without a location; marking failed", title)
                outcome.error = TransportFailure("Upload finished without a location")
                outcome.status = Status.UPLOAD_FAILURE
                self._registry.update_status(temp_id, Status.UPLOAD_FAILURE)
                return
            rename(durable_id)
            self._registry.update_status(durable_id, Status.UPLOAD_SUCCESS)
            outcome.job_id = durable_id
            outcome.status = Status.UPLOAD_SUCCESS
            LOGGER.info("Uploaded %s as job %s", title, durable_id)

        def on_error(exc: Exception) -> None:
            nonlocal finished
            finished = True
            durable_id = durable_id_from_location(session.url if session else None)
            job_id = temp_id
            if durable_id is not None:
                rename(durable_id)
                job_id = durable_id
            self._registry.update_status(job_id, Status.UPLOAD_FAILURE)
            outcome.job_id = job_id
            outcome.status = Status.UPLOAD_FAILURE
            outcome.error = exc
            LOGGER.error("Upload of %s failed: %s", title, exc)

        session = self._transport.open_session(
            source,
            total_bytes,
            filename=title,
            on_progress=on_progress,
            on_success=on_success,
            on_error=on_error,
        )
        await session.start()
        return outcome
