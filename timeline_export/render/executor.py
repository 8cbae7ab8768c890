"""FFmpeg subprocess supervision for one render.

One process per job. Progress comes from `-progress pipe:1` on stdout;
stderr is drained concurrently into a bounded tail used to classify failures.
The executor never retries: a failed render fails the job.
"""

import asyncio
import logging
import os
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from timeline_export.config import get_settings
from timeline_export.exceptions import RenderError
from timeline_export.render.filter_graph import FilterGraph, serialize_filter_graph
from timeline_export.render.output_settings import OutputSettings

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 200
PROGRESS_STEP = 0.01

# (fraction of the timeline rendered 0.0-1.0, current output timestamp in seconds)
ProgressCallback = Callable[[float, float], None]


class FailureCategory(str, Enum):
    CORRUPTED_INPUT = "RENDER_CORRUPTED_INPUT"
    MISSING_FILE = "RENDER_MISSING_FILE"
    PERMISSION_DENIED = "RENDER_PERMISSION_DENIED"
    UNSUPPORTED_CODEC = "RENDER_UNSUPPORTED_CODEC"
    FILTER_ERROR = "RENDER_FILTER_ERROR"
    STORAGE_EXHAUSTED = "RENDER_STORAGE_EXHAUSTED"
    OUT_OF_MEMORY = "RENDER_OUT_OF_MEMORY"
    INVALID_PARAMETERS = "RENDER_INVALID_PARAMETERS"
    UNKNOWN = "RENDER_UNKNOWN"


# Checked in order; the first category with a matching line wins.
FAILURE_PATTERNS: list[tuple[FailureCategory, re.Pattern[str]]] = [
    (FailureCategory.STORAGE_EXHAUSTED, re.compile(r"no space left on device|disk quota exceeded", re.I)),
    (FailureCategory.OUT_OF_MEMORY, re.compile(r"cannot allocate memory|out of memory|\bkilled\b", re.I)),
    (FailureCategory.PERMISSION_DENIED, re.compile(r"permission denied|operation not permitted", re.I)),
    (FailureCategory.MISSING_FILE, re.compile(r"no such file or directory", re.I)),
    (
        FailureCategory.UNSUPPORTED_CODEC,
        re.compile(
            r"unknown encoder|encoder not found|decoder \(codec .*\) not found|"
            r"unsupported codec|codec not currently supported|no decoder for",
            re.I,
        ),
    ),
    (
        FailureCategory.CORRUPTED_INPUT,
        re.compile(
            r"invalid data found when processing input|moov atom not found|corrupt|"
            r"error while decoding|invalid nal unit|truncat",
            re.I,
        ),
    ),
    (
        FailureCategory.FILTER_ERROR,
        re.compile(
            r"error (?:initializing|reinitializing) (?:complex )?filters|no such filter|"
            r"failed to configure|unconnected output|cannot find a matching stream|"
            r"matches no streams|error parsing (?:a )?filter|invalid stream specifier",
            re.I,
        ),
    ),
    (
        FailureCategory.INVALID_PARAMETERS,
        re.compile(
            r"invalid argument|option not found|unrecognized option|"
            r"error splitting the argument list|invalid value",
            re.I,
        ),
    ),
]

KILLED_RETURN_CODES = {-9, 137}


@dataclass
class RenderFailure:
    category: FailureCategory
    returncode: int | None
    detail: str | None = None


def classify_failure(stderr: str, returncode: int | None) -> RenderFailure:
    """Map FFmpeg diagnostics to a failure category."""
    if returncode in KILLED_RETURN_CODES:
        return RenderFailure(
            category=FailureCategory.OUT_OF_MEMORY,
            returncode=returncode,
            detail="ffmpeg was killed",
        )

    for category, pattern in FAILURE_PATTERNS:
        match = pattern.search(stderr)
        if match:
            line_start = stderr.rfind("\n", 0, match.start()) + 1
            line_end = stderr.find("\n", match.end())
            detail = stderr[line_start : line_end if line_end != -1 else None].strip()
            return RenderFailure(category=category, returncode=returncode, detail=detail)

    last_line = stderr.strip().splitlines()[-1] if stderr.strip() else None
    return RenderFailure(category=FailureCategory.UNKNOWN, returncode=returncode, detail=last_line)


def parse_progress_line(line: str) -> float | None:
    """Return the output timestamp in seconds for an `out_time_us`/`out_time_ms` line."""
    key, _, value = line.partition("=")
    # out_time_ms is reported in microseconds as well
    if key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        return int(value) / 1_000_000
    except ValueError:
        return None


class TranscodeExecutor:
    """Runs the compiled graph through FFmpeg."""

    def __init__(
        self,
        ffmpeg_path: str | None = None,
        threads: int | None = None,
        max_muxing_queue: int | None = None,
    ):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.threads = threads if threads is not None else settings.ffmpeg_threads
        self.max_muxing_queue = max_muxing_queue or settings.ffmpeg_max_muxing_queue

    def build_command(
        self,
        graph: FilterGraph,
        output: OutputSettings,
        output_path: str,
    ) -> list[str]:
        cmd = [self.ffmpeg_path, "-y", "-hide_banner", "-nostats", "-progress", "pipe:1"]
        for graph_input in graph.inputs:
            cmd.extend(graph_input.to_args())
        cmd += [
            "-filter_complex", serialize_filter_graph(graph),
            "-map", f"[{graph.video_output}]",
            "-map", f"[{graph.audio_output}]",
            "-c:v", "libx264",
            "-preset", output.preset,
            "-crf", str(output.crf),
            "-maxrate", output.video_bitrate,
            "-bufsize", output.buffer_size,
            "-pix_fmt", "yuv420p",
            "-r", str(output.fps),
            "-c:a", "aac",
            "-b:a", output.audio_bitrate,
            "-ar", str(output.audio_sample_rate),
            "-movflags", "+faststart",
            "-threads", str(self.threads),
            "-max_muxing_queue_size", str(self.max_muxing_queue),
            "-t", f"{graph.duration_s:.3f}",
            output_path,
        ]
        return cmd

    async def run(
        self,
        graph: FilterGraph,
        output: OutputSettings,
        output_path: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Render and return the output path.

        Raises:
            RenderError: with the classified failure category as its code.
        """
        cmd = self.build_command(graph, output, output_path)
        logger.info(
            f"[FFMPEG] Starting render: {len(graph.inputs)} input(s), {graph.duration_s:.3f}s, "
            f"{output.width}x{output.height}@{output.fps}"
        )
        logger.debug(f"[FFMPEG] filter_complex: {cmd[cmd.index('-filter_complex') + 1]}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RenderError(FailureCategory.MISSING_FILE.value, detail=str(e)) from e
        except PermissionError as e:
            raise RenderError(FailureCategory.PERMISSION_DENIED.value, detail=str(e)) from e
        logger.info(f"[FFMPEG] Started pid={proc.pid}")

        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        stderr_task = asyncio.create_task(self._drain_stderr(proc.stderr, stderr_tail))
        try:
            await self._read_progress(proc.stdout, graph.duration_s, on_progress)
            await stderr_task
            returncode = await proc.wait()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            stderr_task.cancel()
            raise

        if returncode != 0:
            failure = classify_failure("\n".join(stderr_tail), returncode)
            logger.error(
                f"[FFMPEG] Render failed (rc={returncode}, {failure.category.value}): {failure.detail}"
            )
            raise RenderError(failure.category.value, detail=failure.detail)

        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            logger.error(f"[FFMPEG] Render produced no output at {output_path}")
            raise RenderError(FailureCategory.UNKNOWN.value, detail="ffmpeg produced no output")

        logger.info(f"[FFMPEG] Render complete: {output_path} ({os.path.getsize(output_path)} bytes)")
        return output_path

    @staticmethod
    async def _drain_stderr(stream: asyncio.StreamReader, tail: deque[str]) -> None:
        async for raw_line in stream:
            tail.append(raw_line.decode("utf-8", errors="replace").rstrip())

    @staticmethod
    async def _read_progress(
        stream: asyncio.StreamReader,
        duration_s: float,
        on_progress: ProgressCallback | None,
    ) -> None:
        last_fraction = 0.0
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line == "progress=end":
                if on_progress:
                    on_progress(1.0, duration_s)
                continue
            time_s = parse_progress_line(line)
            if time_s is None or duration_s <= 0:
                continue
            fraction = min(1.0, max(0.0, time_s / duration_s))
            if fraction >= last_fraction + PROGRESS_STEP:
                last_fraction = fraction
                if on_progress:
                    on_progress(fraction, time_s)
