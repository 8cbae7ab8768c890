"""
Tests for the FFmpeg executor.

The subprocess is replaced with a fake whose stdout/stderr are real
asyncio.StreamReaders, so progress parsing and failure classification run
exactly as they do against ffmpeg.
"""

import asyncio
from unittest.mock import patch

import pytest

from conftest import requires_ffmpeg
from timeline_export.exceptions import RenderError
from timeline_export.render.compiler import compile_filter_graph
from timeline_export.render.executor import (
    FailureCategory,
    TranscodeExecutor,
    classify_failure,
    parse_progress_line,
)


class FakeProcess:
    def __init__(self, stdout_lines, stderr_lines, returncode=0, on_exit=None):
        self.pid = 4242
        self.returncode = None
        self._exit_code = returncode
        self._on_exit = on_exit
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        for line in stdout_lines:
            self.stdout.feed_data(f"{line}\n".encode())
        self.stdout.feed_eof()
        for line in stderr_lines:
            self.stderr.feed_data(f"{line}\n".encode())
        self.stderr.feed_eof()
        self.killed = False

    async def wait(self):
        if self._on_exit:
            self._on_exit()
        self.returncode = self._exit_code
        return self._exit_code

    def kill(self):
        self.killed = True


@pytest.fixture
def executor():
    return TranscodeExecutor(ffmpeg_path="ffmpeg", threads=2, max_muxing_queue=1024)


@pytest.fixture
def graph(tracks, output_settings):
    return compile_filter_graph([], tracks, output_settings, {})


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "stderr,category",
        [
            ("input.mp4: Invalid data found when processing input", FailureCategory.CORRUPTED_INPUT),
            ("[mov,mp4] moov atom not found", FailureCategory.CORRUPTED_INPUT),
            ("/tmp/x.mp4: No such file or directory", FailureCategory.MISSING_FILE),
            ("/out/x.mp4: Permission denied", FailureCategory.PERMISSION_DENIED),
            ("Unknown encoder 'libx265'", FailureCategory.UNSUPPORTED_CODEC),
            ("Error initializing complex filters.", FailureCategory.FILTER_ERROR),
            ("No such filter: 'drawtextx'", FailureCategory.FILTER_ERROR),
            ("av_interleaved_write_frame(): No space left on device", FailureCategory.STORAGE_EXHAUSTED),
            ("Cannot allocate memory", FailureCategory.OUT_OF_MEMORY),
            ("Unrecognized option 'foo'.", FailureCategory.INVALID_PARAMETERS),
            ("something else entirely", FailureCategory.UNKNOWN),
        ],
    )
    def test_categories(self, stderr, category):
        assert classify_failure(stderr, 1).category == category

    def test_killed_process_is_out_of_memory(self):
        assert classify_failure("", -9).category == FailureCategory.OUT_OF_MEMORY

    def test_detail_is_matching_line(self):
        stderr = "frame=10\n/tmp/a.mp4: No such file or directory\nConversion failed!"
        failure = classify_failure(stderr, 1)
        assert failure.detail == "/tmp/a.mp4: No such file or directory"

    def test_unknown_keeps_last_line(self):
        failure = classify_failure("line one\nlast words\n", 1)
        assert failure.detail == "last words"


class TestParseProgressLine:
    def test_out_time_us(self):
        assert parse_progress_line("out_time_us=2500000") == 2.5

    def test_out_time_ms_is_microseconds(self):
        assert parse_progress_line("out_time_ms=1000000") == 1.0

    @pytest.mark.parametrize("line", ["frame=30", "out_time=00:00:01.000000", "out_time_us=N/A", ""])
    def test_ignored(self, line):
        assert parse_progress_line(line) is None


class TestBuildCommand:
    def test_maps_final_labels_and_encoding(self, executor, graph, output_settings):
        cmd = executor.build_command(graph, output_settings, "/tmp/out.mp4")

        assert cmd[0] == "ffmpeg"
        assert cmd[-1] == "/tmp/out.mp4"
        assert cmd[cmd.index("-progress") + 1] == "pipe:1"
        maps = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-map"]
        assert maps == ["[final_video]", "[final_audio]"]
        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-pix_fmt") + 1] == "yuv420p"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[cmd.index("-movflags") + 1] == "+faststart"
        assert cmd[cmd.index("-crf") + 1] == str(output_settings.crf)
        assert cmd[cmd.index("-t") + 1] == "2.000"

    def test_lavfi_canvas_input(self, executor, graph, output_settings):
        cmd = executor.build_command(graph, output_settings, "/tmp/out.mp4")
        i = cmd.index("-f")
        assert cmd[i + 1] == "lavfi"
        assert cmd[i + 3].startswith("color=c=black:s=720x1280")


class TestRun:
    @pytest.mark.asyncio
    async def test_success_reports_progress(self, executor, graph, output_settings, tmp_path):
        output_path = tmp_path / "out.mp4"
        progress: list[float] = []
        proc = FakeProcess(
            ["out_time_us=500000", "out_time_us=1000000", "out_time_us=1000000", "progress=end"],
            [],
            on_exit=lambda: output_path.write_bytes(b"mp4"),
        )

        with patch("asyncio.create_subprocess_exec", return_value=proc) as spawn:
            result = await executor.run(
                graph, output_settings, str(output_path), on_progress=lambda f, _t: progress.append(f)
            )

        assert result == str(output_path)
        assert spawn.call_args.args[0] == "ffmpeg"
        assert progress == [0.25, 0.5, 1.0]

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_classified(self, executor, graph, output_settings, tmp_path):
        proc = FakeProcess([], ["Input #0", "/tmp/gone.mp4: No such file or directory"], returncode=1)

        with patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(RenderError) as exc_info:
                await executor.run(graph, output_settings, str(tmp_path / "out.mp4"))

        assert exc_info.value.code == FailureCategory.MISSING_FILE.value
        assert exc_info.value.detail == "/tmp/gone.mp4: No such file or directory"

    @pytest.mark.asyncio
    async def test_empty_output_fails(self, executor, graph, output_settings, tmp_path):
        output_path = tmp_path / "out.mp4"
        proc = FakeProcess(["progress=end"], [], on_exit=output_path.touch)

        with patch("asyncio.create_subprocess_exec", return_value=proc):
            with pytest.raises(RenderError) as exc_info:
                await executor.run(graph, output_settings, str(output_path))

        assert exc_info.value.code == FailureCategory.UNKNOWN.value

    @pytest.mark.asyncio
    async def test_missing_binary(self, graph, output_settings, tmp_path):
        executor = TranscodeExecutor(ffmpeg_path="/nonexistent/ffmpeg")
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(RenderError) as exc_info:
                await executor.run(graph, output_settings, str(tmp_path / "out.mp4"))
        assert exc_info.value.code == FailureCategory.MISSING_FILE.value


@requires_ffmpeg
class TestRealFfmpeg:
    """Renders through the real binary; skipped when ffmpeg is missing."""

    @pytest.mark.requires_ffmpeg
    @pytest.mark.asyncio
    async def test_empty_timeline_renders(self, tracks, output_settings, temp_output_dir):
        graph = compile_filter_graph([], tracks, output_settings, {})
        output_path = temp_output_dir / "empty.mp4"

        await TranscodeExecutor().run(graph, output_settings, str(output_path))

        assert output_path.stat().st_size > 0
