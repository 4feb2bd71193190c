import pytest

from upload_tracker.jobs import FileProgress, JobRecord, Status
from upload_tracker.projection import project_job, project_jobs, transcode_percent, upload_percent
from upload_tracker.stream import ConnectionState


def test_upload_percent_is_formatted_with_two_decimals():
    assert upload_percent(FileProgress(total_bytes=200, uploaded_bytes=50)) == "25.00%"
    assert upload_percent(FileProgress(total_bytes=3, uploaded_bytes=1)) == "33.33%"


def test_upload_percent_of_empty_file_is_zero():
    assert upload_percent(FileProgress(total_bytes=0, uploaded_bytes=0)) == "0%"


@pytest.mark.parametrize(
    "status, expected",
    [
        (Status.UPLOAD_STARTED, "0%"),
        (Status.UPLOAD_SUCCESS, "0%"),
        (Status.TRANSCODE_STARTED, "0%"),
        (Status.TRANSCODE_480_SUCCESS, "50%"),
        (Status.TRANSCODE_720_SUCCESS, "95%"),
        (Status.TRANSCODE_SUCCESS, "100%"),
        (Status.TRANSCODE_FAILURE, "0%"),
    ],
)
def test_transcode_percent_follows_status_checkpoints(status, expected):
    assert transcode_percent(status) == expected


def test_project_job_labels_and_flags():
    failed = project_job(JobRecord(id="D1", title="a.mp4", status=Status.TRANSCODE_FAILURE))
    done = project_job(JobRecord(id="D2", title="b.mp4", status=Status.TRANSCODE_SUCCESS))
    uploading = project_job(
        JobRecord(id="T3", title="c.mp4", progress=FileProgress(100, 10))
    )

    assert (failed.upload_label, failed.transcode_label, failed.failed) == (
        "Uploaded",
        "Transcode Failure",
        True,
    )
    assert done.playable and done.transcode_percent == "100%"
    assert uploading.upload_label == "Uploading"
    assert uploading.transcode_label is None
    assert uploading.upload_percent == "10.00%"


def test_project_jobs_marks_unfinished_jobs_stale_when_stream_is_closed():
    records = [
        JobRecord(id="D1", title="a.mp4", status=Status.TRANSCODE_STARTED),
        JobRecord(id="D2", title="b.mp4", status=Status.TRANSCODE_SUCCESS),
    ]

    open_views = project_jobs(records, ConnectionState.OPEN)
    closed_views = project_jobs(records, ConnectionState.CLOSED)

    assert [view.id for view in closed_views] == ["D1", "D2"]
    assert [view.stale for view in open_views] == [False, False]
    assert [view.stale for view in closed_views] == [True, False]
    assert closed_views[0].as_dict()["status"] == "TRANSCODE_STARTED"
