"""Client for the server-sent status stream.

One client owns one connection. There is no reconnection: once the
connection closes, for whatever reason, the client never publishes again and
callers should treat job statuses as stale.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from typing import Callable, Deque, List, Optional

import httpx
from httpx_sse import aconnect_sse

from .errors import MalformedEvent, TransportFailure
from .events import StatusEvent, parse_status_message


LOGGER = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class CloseReason(str, enum.Enum):
    ERROR = "ERROR"
    REMOTE = "REMOTE"
    TEARDOWN = "TEARDOWN"


class LatestEventSlot:
    """Single-slot mailbox: a publish overwrites whatever was not yet read."""

    def __init__(self) -> None:
        self._event: Optional[StatusEvent] = None
        self._ready = asyncio.Event()
        self._released = False

    def publish(self, event: StatusEvent) -> None:
        if self._released:
            return
        self._event = event
        self._ready.set()

    def take_nowait(self) -> Optional[StatusEvent]:
        event, self._event = self._event, None
        self._ready.clear()
        return event

    async def get(self) -> Optional[StatusEvent]:
        while not self._released:
            await self._ready.wait()
            event = self.take_nowait()
            if event is not None:
                return event
        return None

    def release(self) -> None:
        self._released = True
        self._event = None
        self._ready.set()


class EventQueue:
    """Unbounded ordered mailbox; nothing published is dropped."""

    def __init__(self) -> None:
        self._events: Deque[StatusEvent] = deque()
        self._ready = asyncio.Event()
        self._released = False

    def publish(self, event: StatusEvent) -> None:
        if self._released:
            return
        self._events.append(event)
        self._ready.set()

    def take_nowait(self) -> Optional[StatusEvent]:
        if not self._events:
            self._ready.clear()
            return None
        event = self._events.popleft()
        if not self._events:
            self._ready.clear()
        return event

    async def get(self) -> Optional[StatusEvent]:
        while not self._released:
            await self._ready.wait()
            event = self.take_nowait()
            if event is not None:
                return event
        return None

    def release(self) -> None:
        self._released = True
        self._events.clear()
        self._ready.set()


def make_mailbox(delivery: str):
    if delivery == "latest":
        return LatestEventSlot()
    if delivery == "queue":
        return EventQueue()
    raise ValueError(f"Unknown delivery mode: {delivery!r}")


StateListener = Callable[[ConnectionState], None]


class StatusStreamClient:
    """Owns the status stream connection and feeds decoded events to a mailbox.

    Use as an async context manager; the connection opens on entry and is torn
    down on exit::

        async with StatusStreamClient(url, client=http) as stream:
            event = await stream.mailbox.get()
    """

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient,
        mailbox=None,
    ) -> None:
        self.url = url
        self.mailbox = mailbox if mailbox is not None else LatestEventSlot()
        self.state = ConnectionState.CONNECTING
        self.close_reason: Optional[CloseReason] = None
        self.error: Optional[TransportFailure] = None
        self._client = client
        self._task: Optional[asyncio.Task] = None
        self._closed = asyncio.Event()
        self._listeners: List[StateListener] = []

    async def __aenter__(self) -> "StatusStreamClient":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("Status stream already started")
        self._task = asyncio.create_task(self._run(), name="status-stream")

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def aclose(self) -> None:
        """Tear the connection down and release the mailbox."""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._close(CloseReason.TEARDOWN)
        self.mailbox.release()

    async def _run(self) -> None:
        try:
            async with aconnect_sse(self._client, "GET", self.url, timeout=None) as source:
                source.response.raise_for_status()
                self._set_state(ConnectionState.OPEN)
                LOGGER.info("Status stream open: %s", self.url)
                async for sse in source.aiter_sse():
                    self._handle_data(sse.data)
        except httpx.HTTPError as exc:
            self.error = TransportFailure(f"Status stream failed: {exc}")
            LOGGER.error("Status stream %s closed after error: %s", self.url, exc)
            self._close(CloseReason.ERROR)
            return
        except Exception as exc:  # noqa: BLE001
            self.error = TransportFailure(f"Status stream crashed: {exc}")
            LOGGER.exception("Status stream %s crashed", self.url)
            self._close(CloseReason.ERROR)
            return
        LOGGER.warning("Status stream %s ended by server; no further updates", self.url)
        self._close(CloseReason.REMOTE)

    def _handle_data(self, data: str) -> None:
        # Multi-line data fields arrive joined with "\n" by the SSE decoder.
        if not data:
            return
        try:
            event = parse_status_message(data)
        except MalformedEvent as exc:
            LOGGER.warning("Dropping status event: %s", exc)
            return
        LOGGER.debug("Status event %s for job %s: %s", event.category, event.job_id, event.message)
        self.mailbox.publish(event)

    def _close(self, reason: CloseReason) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.close_reason = reason
        self.state = ConnectionState.CLOSED
        self._closed.set()
        self._notify(ConnectionState.CLOSED)

    def _set_state(self, state: ConnectionState) -> None:
        self.state = state
        self._notify(state)

    def _notify(self, state: ConnectionState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Connection state listener failed on %s", state.value)
