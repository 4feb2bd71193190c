import asyncio

import httpx
import pytest

from upload_tracker.config import TrackerConfig
from upload_tracker.jobs import FileProgress, Status
from upload_tracker.stream import ConnectionState
from upload_tracker.tracker import TrackerSession


def _media_server(uploaded: asyncio.Event, status_lines):
    async def status_body():
        await uploaded.wait()
        for line in status_lines:
            yield f"data: {line}\n\n".encode()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/status/stream":
            return httpx.Response(200, content=status_body(), headers={"Content-Type": "text/event-stream"})
        if request.method == "POST":
            return httpx.Response(201, headers={"Location": "/files/D1"})
        offset = int(request.headers["Upload-Offset"])
        return httpx.Response(204, headers={"Upload-Offset": str(offset + len(request.content))})

    return handler


def test_session_correlates_upload_and_status_stream():
    config = TrackerConfig(server_url="http://media.test", chunk_size=4)

    async def scenario():
        uploaded = asyncio.Event()
        handler = _media_server(uploaded, ["UC-D1:OK", "T4-D1:OK", "TC-D1:OK"])
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            async with TrackerSession(config, client=client) as session:
                outcome = await session.upload_bytes("clip.mp4", b"0123456789")
                uploaded.set()
                settled = await session.wait_until_settled(1, poll_interval=0.01)
                by_temporary_id = session.resolve(outcome.temporary_id)
                return outcome, settled, session.registry.snapshot(), session.views(), by_temporary_id

    outcome, settled, records, views, by_temporary_id = asyncio.run(scenario())

    assert outcome.job_id == "D1"
    assert settled
    assert len(records) == 1
    assert records[0].status is Status.TRANSCODE_SUCCESS
    assert records[0].progress == FileProgress(total_bytes=10, uploaded_bytes=10)
    assert views[0].playable
    assert by_temporary_id == records[0]


def test_session_reports_stale_jobs_after_stream_failure():
    config = TrackerConfig(server_url="http://media.test")

    def handler(request):
        if request.url.path == "/status/stream":
            raise httpx.ConnectError("refused", request=request)
        if request.method == "POST":
            return httpx.Response(201, headers={"Location": "/files/D2"})
        return httpx.Response(204, headers={"Upload-Offset": "3"})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            async with TrackerSession(config, client=client) as session:
                await session.stream.wait_closed()
                await session.upload_bytes("clip.mp4", b"abc")
                settled = await session.wait_until_settled(1, poll_interval=0.01)
                return settled, session.stream.state, session.views()

    settled, state, views = asyncio.run(scenario())

    assert not settled
    assert state is ConnectionState.CLOSED
    assert views[0].status == "UPLOAD_SUCCESS"
    assert views[0].stale


class RecordingSession:
    def __init__(self, on_success):
        self.url = None
        self._on_success = on_success

    async def start(self):
        await asyncio.sleep(0)
        self.url = "http://media.test/files/D5"
        self._on_success()


class RecordingTransport:
    def __init__(self):
        self.filenames = []

    def open_session(self, source, total_bytes, *, filename, on_progress, on_success, on_error):
        self.filenames.append(filename)
        return RecordingSession(on_success)


def test_session_uses_an_injected_transport_and_reports_created_jobs():
    config = TrackerConfig(server_url="http://media.test")
    transport = RecordingTransport()
    created = []

    def handler(request):
        return httpx.Response(200, content=b"", headers={"Content-Type": "text/event-stream"})

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            async with TrackerSession(config, client=client, transport=transport) as session:
                outcome = await session.upload_bytes(
                    "clip.mp4", b"abc", on_created=lambda record: created.append(record.id)
                )
                return outcome, session.resolve(created[0]), session.resolve("missing")

    outcome, resolved, missing = asyncio.run(scenario())

    assert transport.filenames == ["clip.mp4"]
    assert created == [outcome.temporary_id]
    assert resolved.id == "D5"
    assert missing is None


def test_unopened_session_refuses_to_consume_or_upload():
    session = TrackerSession(TrackerConfig())

    with pytest.raises(RuntimeError, match="not open"):
        asyncio.run(session._consume())
    with pytest.raises(RuntimeError, match="not open"):
        asyncio.run(session.upload_bytes("clip.mp4", b"abc"))
