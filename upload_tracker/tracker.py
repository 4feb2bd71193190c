"""Session wiring: one HTTP client, one status stream, one registry."""

from __future__ import annotations

import asyncio
import io
import logging
from pathlib import Path
from typing import BinaryIO, List, Optional

import httpx

from .config import TrackerConfig
from .events import apply_event
from .jobs import JobRecord, JobRegistry
from .projection import JobView, project_jobs
from .stream import StatusStreamClient, make_mailbox
from .upload import CreatedCallback, TusTransport, UploadCoordinator, UploadOutcome, UploadTransport


LOGGER = logging.getLogger(__name__)


class TrackerSession:
    """Correlates uploads and stream events for the lifetime of one scope.

    ``async with TrackerSession(config) as session`` opens the status stream
    and starts applying its events; leaving the block tears everything down.
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        *,
        registry: Optional[JobRegistry] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[UploadTransport] = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self.registry = registry if registry is not None else JobRegistry()
        self._client = client
        self._owns_client = client is None
        self._transport = transport
        self.stream: Optional[StatusStreamClient] = None
        self._coordinator: Optional[UploadCoordinator] = None
        self._consumer: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "TrackerSession":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        transport = self._transport or TusTransport(
            self._client,
            self.config.upload_endpoint,
            chunk_size=self.config.chunk_size,
            retries=self.config.upload_retries,
        )
        self._coordinator = UploadCoordinator(self.registry, transport)
        self.stream = StatusStreamClient(
            self.config.status_url,
            client=self._client,
            mailbox=make_mailbox(self.config.delivery),
        )
        self.stream.start()
        self._consumer = asyncio.create_task(self._consume(), name="status-consumer")

    async def close(self) -> None:
        if self.stream is not None:
            await self.stream.aclose()
        if self._consumer is not None:
            # Releasing the mailbox lets the consumer return on its own.
            await self._consumer
            self._consumer = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _consume(self) -> None:
        if self.stream is None:
            raise RuntimeError("TrackerSession is not open")
        while True:
            event = await self.stream.mailbox.get()
            if event is None:
                return
            apply_event(
                self.registry,
                event,
                enforce_monotonic=self.config.enforce_monotonic,
            )

    async def upload_file(
        self,
        path: Path,
        title: Optional[str] = None,
        *,
        on_created: Optional[CreatedCallback] = None,
    ) -> UploadOutcome:
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Video file not found: {path}")
        with path.open("rb") as source:
            return await self._upload(
                title or path.name, source, path.stat().st_size, on_created=on_created
            )

    async def upload_bytes(
        self,
        title: str,
        data: bytes,
        *,
        on_created: Optional[CreatedCallback] = None,
    ) -> UploadOutcome:
        return await self._upload(title, io.BytesIO(data), len(data), on_created=on_created)

    async def _upload(
        self,
        title: str,
        source: BinaryIO,
        total_bytes: int,
        *,
        on_created: Optional[CreatedCallback] = None,
    ) -> UploadOutcome:
        if self._coordinator is None:
            raise RuntimeError("TrackerSession is not open")
        return await self._coordinator.upload(title, source, total_bytes, on_created=on_created)

    def resolve(self, job_id: str) -> Optional[JobRecord]:
        """Look a job up by its current id or by the temporary id it started with."""
        if self._coordinator is not None:
            job_id = self._coordinator.resolve(job_id)
        return self.registry.get(job_id)

    def views(self) -> List[JobView]:
        state = self.stream.state if self.stream is not None else None
        return project_jobs(self.registry.snapshot(), state)

    def settled(self) -> bool:
        return all(record.status.is_terminal for record in self.registry.snapshot())

    async def wait_until_settled(self, timeout: float, poll_interval: float = 0.5) -> bool:
        """Wait until every job is terminal, the stream dies, or ``timeout`` elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.settled():
            if self.stream is not None and self.stream.close_reason is not None:
                LOGGER.warning("Status stream closed; job statuses are no longer updated")
                await asyncio.sleep(0)
                return self.settled()
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(poll_interval)
        return True
