"""
Pytest fixtures for timeline export tests.

Most tests build timelines in memory and never touch ffmpeg. Tests that run
the real binaries are marked with @pytest.mark.requires_ffmpeg.
Run `pytest -m "not requires_ffmpeg"` to skip them in CI.
"""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path

import pytest

from timeline_export.render.output_settings import resolve_output_settings
from timeline_export.render.timeline import ExportSettings, TimelineElement, Track

ASSET_ID_A = "3f1c2a7e-4b5d-4c6e-8f90-a1b2c3d4e5f6"
ASSET_ID_B = "9e8d7c6b-5a49-4f38-9e27-1d0c9b8a7f65"
ASSET_ID_AUDIO = "0a1b2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring ffmpeg/ffprobe on PATH (skipped in CI)"
    )


requires_ffmpeg = pytest.mark.skipif(
    shutil.which(os.environ.get("FFMPEG_PATH", "ffmpeg")) is None,
    reason="ffmpeg not available",
)


def make_element(
    element_id: str,
    kind: str = "video",
    track_id: str = "track-video",
    start: int = 0,
    end: int = 5000,
    **kwargs,
) -> TimelineElement:
    if kind in ("video", "audio", "image", "gif") and "asset_id" not in kwargs and "external_asset" not in kwargs:
        kwargs["asset_id"] = ASSET_ID_A
    return TimelineElement(
        id=element_id,
        kind=kind,
        track_id=track_id,
        timeline_start_ms=start,
        timeline_end_ms=end,
        **kwargs,
    )


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="timeline_export_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def tracks() -> list[Track]:
    """Video on top (index 0), then text, then audio."""
    return [
        Track(id="track-video", index=0, kind="video", name="Video 1"),
        Track(id="track-text", index=1, kind="text", name="Titles"),
        Track(id="track-audio", index=2, kind="audio", name="Music"),
    ]


@pytest.fixture
def export_settings() -> ExportSettings:
    return ExportSettings(resolution="720p", fps=30, quality="medium")


@pytest.fixture
def output_settings(export_settings):
    return resolve_output_settings(export_settings)


# =============================================================================
# Pipeline fakes (no network, no ffmpeg)
# =============================================================================


class FakeDownloader:
    """Writes a placeholder file for every media asset."""

    def __init__(self):
        self.calls = 0

    async def download_all(self, job_id, elements, dest_dir, on_progress=None):
        self.calls += 1
        paths = {}
        for index, element in enumerate(e for e in elements if e.is_media):
            path = os.path.join(dest_dir, f"{job_id}_{index}.mp4")
            with open(path, "wb") as f:
                f.write(b"media")
            paths[element.asset_key] = path
        if on_progress:
            on_progress(1.0)
        return paths


class FakeExecutor:
    """Reports progress and writes an MP4 placeholder.

    With `gate` set, the render blocks until the event is released.
    """

    def __init__(self, gate: asyncio.Event | None = None, error: Exception | None = None):
        self.gate = gate
        self.error = error
        self.started = asyncio.Event()
        self.graphs = []

    async def run(self, graph, output, output_path, on_progress=None):
        self.graphs.append(graph)
        self.started.set()
        if on_progress:
            on_progress(0.5, graph.duration_s / 2)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        with open(output_path, "wb") as f:
            f.write(b"\x00\x00\x00\x18ftypmp42")
        if on_progress:
            on_progress(1.0, graph.duration_s)
        return output_path


async def no_probe(paths):
    return {}
