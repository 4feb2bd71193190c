import asyncio

import main
from upload_tracker.jobs import JobRecord, Status
from upload_tracker.projection import project_jobs


def test_parse_args_defaults():
    args = main.parse_args(["clip.mp4"])

    assert args.files == ["clip.mp4"]
    assert args.wait == 0.0
    assert args.delivery is None
    assert not args.monotonic
    assert not args.json


def test_main_reports_missing_files(tmp_path, capsys):
    exit_code = main.main([str(tmp_path / "missing.mp4")])

    assert exit_code == 1
    assert "file not found" in capsys.readouterr().err


def test_main_prints_job_views(monkeypatch, tmp_path, capsys):
    video = tmp_path / "clip.mp4"
    video.write_bytes(b"data")

    async def fake_run(args):
        return project_jobs([JobRecord(id="D1", title="clip.mp4", status=Status.TRANSCODE_480_SUCCESS)]), 0

    monkeypatch.setattr(main, "run", fake_run)

    exit_code = main.main([str(video)])

    assert exit_code == 0
    assert "clip.mp4 [D1]: Uploaded 0% -> Transcoding 50%" in capsys.readouterr().out


class FlakySession:
    def __init__(self, config):
        self.config = config
        self.started = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def upload_file(self, path, title=None):
        await asyncio.sleep(0)
        if path.name == "broken.mp4":
            raise OSError("disk read failed")
        self.started.append(path.name)

    async def wait_until_settled(self, timeout):
        return True

    def views(self):
        return project_jobs(
            [JobRecord(id=f"D{index}", title=name, status=Status.UPLOAD_SUCCESS) for index, name in enumerate(self.started)]
        )


def test_main_keeps_other_uploads_when_one_cannot_start(monkeypatch, tmp_path, capsys):
    good = tmp_path / "good.mp4"
    good.write_bytes(b"data")
    broken = tmp_path / "broken.mp4"
    broken.write_bytes(b"data")
    monkeypatch.setattr(main, "TrackerSession", FlakySession)

    exit_code = main.main([str(good), str(broken)])

    assert exit_code == 1
    assert "good.mp4 [D0]: Uploaded 0%" in capsys.readouterr().out
