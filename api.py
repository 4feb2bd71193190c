from __future__ import annotations

import asyncio
import logging
import shutil
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, List, Optional, Set

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from upload_tracker.config import load_config
from upload_tracker.jobs import JobRecord
from upload_tracker.projection import project_job
from upload_tracker.tracker import TrackerSession


LOGGER = logging.getLogger(__name__)

CONFIG = load_config()
UPLOAD_DIR = Path(CONFIG.upload_dir)


class JobViewOut(BaseModel):
    id: str
    title: str
    status: str
    upload_percent: str = Field(..., description="Uploaded bytes as a percentage")
    transcode_percent: str = Field(..., description="Transcode checkpoint reached")
    upload_label: str
    transcode_label: Optional[str] = None
    failed: bool = False
    playable: bool = False
    stale: bool = False


class JobListOut(BaseModel):
    connection: str = Field(..., description="Status stream connection state")
    jobs: List[JobViewOut] = Field(default_factory=list)


def open_session() -> TrackerSession:
    return TrackerSession(CONFIG)


_background: Set[asyncio.Task] = set()


@asynccontextmanager
async def lifespan(app: FastAPI):
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    session = open_session()
    await session.open()
    app.state.session = session

    yield

    for task in list(_background):
        task.cancel()
    await asyncio.gather(*_background, return_exceptions=True)
    await session.close()


app = FastAPI(title="Video Upload Tracker API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _store_upload(file: UploadFile, target_path: Path) -> Path:
    with target_path.open("wb") as buffer:
        shutil.copyfileobj(file.file, buffer)
    return target_path


async def _run_upload(
    session: TrackerSession,
    path: Path,
    title: str,
    on_created: Callable[[JobRecord], None],
) -> None:
    try:
        outcome = await session.upload_file(path, title=title, on_created=on_created)
    except Exception:  # noqa: BLE001
        LOGGER.exception("Upload of %s could not be started", title)
        return
    finally:
        path.unlink(missing_ok=True)
    if outcome.error is not None:
        LOGGER.warning("Upload %s ended as %s", outcome.job_id, outcome.status.name)


@app.post("/uploads", status_code=202)
async def create_upload(video: UploadFile = File(...)):
    if not video.filename:
        raise HTTPException(status_code=400, detail="Please upload a video file.")

    session: TrackerSession = app.state.session
    timestamp = int(time.time())
    safe_name = Path(video.filename).name.replace(" ", "_")
    upload_path = UPLOAD_DIR / f"{timestamp}_{safe_name}"
    _store_upload(video, upload_path)

    created: asyncio.Future = asyncio.get_running_loop().create_future()

    def on_created(record: JobRecord) -> None:
        if not created.done():
            created.set_result(record.id)

    def on_done(task: asyncio.Task) -> None:
        _background.discard(task)
        if not created.done():
            created.set_result(None)

    task = asyncio.create_task(_run_upload(session, upload_path, safe_name, on_created))
    _background.add(task)
    task.add_done_callback(on_done)

    job_id = await created
    if job_id is None:
        raise HTTPException(status_code=500, detail="Upload could not be started.")
    return {"job_id": job_id, "title": safe_name}


@app.get("/jobs", response_model=JobListOut)
async def list_jobs():
    session: TrackerSession = app.state.session
    state = session.stream.state if session.stream is not None else None
    return {
        "connection": state.value if state is not None else "CLOSED",
        "jobs": [view.as_dict() for view in session.views()],
    }


@app.get("/jobs/{job_id}", response_model=JobViewOut)
async def job_status(job_id: str):
    session: TrackerSession = app.state.session
    record = session.resolve(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found.")
    stale = session.stream is not None and session.stream.close_reason is not None
    return project_job(record, stale=stale and not record.status.is_terminal).as_dict()
