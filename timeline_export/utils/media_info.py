"""Media file information utilities using FFprobe."""

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass

from timeline_export.config import get_settings

logger = logging.getLogger(__name__)


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


@dataclass
class MediaInfo:
    """Media file information."""

    duration_ms: int | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    has_video: bool = False
    has_audio: bool = False


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = _get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}")


def parse_probe_output(data: dict) -> MediaInfo:
    """Build MediaInfo from `ffprobe -show_format -show_streams` JSON."""
    info = MediaInfo()

    format_info = data.get("format", {})
    if "duration" in format_info:
        info.duration_ms = int(float(format_info["duration"]) * 1000)

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")

            r_frame_rate = stream.get("r_frame_rate", "0/1")
            if "/" in r_frame_rate:
                num, den = r_frame_rate.split("/")
                if int(den) > 0:
                    info.fps = round(int(num) / int(den), 3)

        elif codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")
            info.sample_rate = int(stream.get("sample_rate", 0)) or None
            info.channels = stream.get("channels")

    return info


def get_media_info(file_path: str) -> MediaInfo:
    """
    Get complete media file information.

    Args:
        file_path: Path to media file

    Returns:
        MediaInfo with stream details

    Raises:
        RuntimeError: If ffprobe fails
    """
    return parse_probe_output(_run_ffprobe(file_path, "-show_format", "-show_streams"))


async def probe_media(paths: list[str]) -> dict[str, MediaInfo]:
    """Probe several files concurrently; unreadable files are left out.

    A file ffprobe cannot read still goes to the renderer, which reports a
    classified failure for it.
    """

    async def _probe(path: str) -> tuple[str, MediaInfo | None]:
        try:
            return path, await asyncio.to_thread(get_media_info, path)
        except (RuntimeError, OSError) as e:
            logger.warning(f"[PROBE] Could not probe {path}: {e}")
            return path, None

    results = await asyncio.gather(*(_probe(p) for p in dict.fromkeys(paths)))
    return {path: info for path, info in results if info is not None}
