from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Tuple

from upload_tracker.config import load_config
from upload_tracker.errors import TrackerError
from upload_tracker.projection import JobView
from upload_tracker.tracker import TrackerSession

LOGGER = logging.getLogger(__name__)

# Expose the FastAPI app when this file is imported by ASGI hosts.
try:
    from api import app as fastapi_app  # type: ignore
except ImportError:  # pragma: no cover - api extras not installed
    fastapi_app = None

app = fastapi_app


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Upload videos over tus and follow their transcoding status.",
    )
    parser.add_argument("files", nargs="+", help="Video files to upload")
    parser.add_argument(
        "--server",
        default=None,
        help="Base URL of the media server (default: TRACKER_SERVER_URL or http://localhost:8080)",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=0.0,
        help="Seconds to keep following the status stream after uploading (default: 0)",
    )
    parser.add_argument(
        "--delivery",
        choices=("latest", "queue"),
        default=None,
        help="Status event delivery: keep only the newest unread event, or queue all of them",
    )
    parser.add_argument(
        "--monotonic",
        action="store_true",
        help="Ignore status events that would move a job backwards",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print machine-readable JSON results",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> Tuple[List[JobView], int]:
    """Upload every file and return the job views plus the number of uploads that never started."""
    config = load_config()
    overrides = {}
    if args.server:
        overrides["server_url"] = args.server
    if args.delivery:
        overrides["delivery"] = args.delivery
    if args.monotonic:
        overrides["enforce_monotonic"] = True
    config = replace(config, **overrides)

    async with TrackerSession(config) as session:
        results = await asyncio.gather(
            *(session.upload_file(Path(name)) for name in args.files),
            return_exceptions=True,
        )
        not_started = 0
        for name, result in zip(args.files, results):
            if isinstance(result, Exception):
                not_started += 1
                LOGGER.error("Upload of %s could not be started: %s", name, result)
        if args.wait > 0:
            await session.wait_until_settled(args.wait)
        return session.views(), not_started


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    missing = [name for name in args.files if not Path(name).is_file()]
    if missing:
        print(f"Error: file not found: {', '.join(missing)}", file=sys.stderr)
        return 1

    try:
        views, not_started = asyncio.run(run(args))
    except (TrackerError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except Exception as exc:  # noqa: BLE001
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([view.as_dict() for view in views], indent=2))
    else:
        for view in views:
            transcode = f" -> {view.transcode_label} {view.transcode_percent}" if view.transcode_label else ""
            stale = " (stale)" if view.stale else ""
            print(f"{view.title} [{view.id}]: {view.upload_label} {view.upload_percent}{transcode}{stale}")
    return 1 if not_started or any(view.failed for view in views) else 0


if __name__ == "__main__":
    raise SystemExit(main())
