import os
import sys
import time

import pytest

from app.core.errors import EngineError, EngineUnavailable, ExportCancelled
from app.schemas.timeline import RenderSettings
from app.services.filtergraph_compiler import FiltergraphCompiler
from app.services.media_engine import MediaEngine, parse_progress_line
from conftest import entry, image_asset

MISSING_BINARY = "definitely-not-ffmpeg-4c1d"


@pytest.mark.parametrize("line, expected", [
    ("out_time_ms=5000000\n", 50.0),
    ("out_time_ms=0", 0.0),
    ("out_time_ms=25000000", 100.0),
    ("progress=end", 100.0),
    ("progress=continue", None),
    ("frame=42", None),
    ("out_time_ms=N/A", None),
])
def test_parse_progress_line(line, expected):
    assert parse_progress_line(line, total_duration=10.0) == expected


def test_progress_without_known_duration():
    assert parse_progress_line("out_time_ms=5000000", total_duration=0) is None


def test_missing_binary_is_unavailable():
    engine = MediaEngine(binary=MISSING_BINARY, probe_binary=MISSING_BINARY)
    assert not engine.is_available()


async def test_run_with_missing_binary_raises_unavailable(tmp_path):
    engine = MediaEngine(binary=MISSING_BINARY)
    plan = FiltergraphCompiler().compile([entry("e1", "A", 1.0)], [image_asset("A")], None, RenderSettings())

    with pytest.raises(EngineUnavailable):
        await engine.run(plan, {"A": str(tmp_path / "a.png")}, str(tmp_path / "out.mp4"))


def test_convert_single_with_missing_binary_raises_unavailable(tmp_path):
    engine = MediaEngine(binary=MISSING_BINARY)

    with pytest.raises(EngineUnavailable):
        engine.convert_single(str(tmp_path / "a.png"), str(tmp_path / "out.mp4"), is_image=True)


def test_probe_with_missing_binary_raises_unavailable(tmp_path):
    engine = MediaEngine(probe_binary=MISSING_BINARY)

    with pytest.raises(EngineUnavailable):
        engine.probe(str(tmp_path / "clip.mp4"))


# Stand-in binaries: each receives the full ffmpeg argument list, the last
# argument being the output path.
WRITE_OUTPUT = 'for last; do :; done\necho partial > "$last"\n'


@pytest.fixture
def fake_binary(tmp_path):
    def _make(body):
        path = tmp_path / "fake-ffmpeg"
        path.write_text("#!/bin/sh\n" + WRITE_OUTPUT + body)
        path.chmod(0o755)
        return str(path)
    return _make


@pytest.fixture
def one_second_plan():
    return FiltergraphCompiler().compile([entry("e1", "A", 1.0)], [image_asset("A")], None, RenderSettings())


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")
class TestRun:
    async def test_success_reports_progress(self, tmp_path, fake_binary, one_second_plan):
        engine = MediaEngine(binary=fake_binary('echo "out_time_ms=500000"\necho "progress=end"\n'),
                             poll_interval=0.05)
        output = str(tmp_path / "out.mp4")
        reported = []

        assert await engine.run(one_second_plan, {"A": "a.png"}, output, on_progress=reported.append) == output
        assert reported == [50.0, 100.0]
        assert os.path.exists(output)

    async def test_failing_progress_listener_does_not_affect_export(self, tmp_path, fake_binary, one_second_plan):
        engine = MediaEngine(binary=fake_binary('echo "out_time_ms=500000"\n'), poll_interval=0.05)
        output = str(tmp_path / "out.mp4")

        def broken_listener(percent):
            raise RuntimeError("listener went away")

        await engine.run(one_second_plan, {"A": "a.png"}, output, on_progress=broken_listener)

        assert os.path.exists(output)

    async def test_non_zero_exit_raises_with_stderr_tail(self, tmp_path, fake_binary, one_second_plan):
        engine = MediaEngine(binary=fake_binary('echo "Unknown encoder \'libx264\'" >&2\nexit 1\n'),
                             poll_interval=0.05)
        output = str(tmp_path / "out.mp4")

        with pytest.raises(EngineError) as excinfo:
            await engine.run(one_second_plan, {"A": "a.png"}, output)

        assert "Unknown encoder 'libx264'" in excinfo.value.details
        assert not os.path.exists(output)

    async def test_disconnect_terminates_and_removes_partial_output(self, tmp_path, fake_binary, one_second_plan):
        engine = MediaEngine(binary=fake_binary("exec sleep 30\n"), poll_interval=0.05, terminate_timeout=5.0)
        output = str(tmp_path / "out.mp4")

        async def disconnected():
            return os.path.exists(output)

        started = time.monotonic()
        with pytest.raises(ExportCancelled):
            await engine.run(one_second_plan, {"A": "a.png"}, output, is_cancelled=disconnected)

        assert time.monotonic() - started < 5
        assert not os.path.exists(output)

    async def test_process_ignoring_terminate_is_killed(self, tmp_path, fake_binary, one_second_plan):
        # Ignored signals survive exec, so sleep ignores SIGTERM as well.
        engine = MediaEngine(binary=fake_binary("trap '' TERM\nexec sleep 30\n"),
                             poll_interval=0.05, terminate_timeout=0.2)
        output = str(tmp_path / "out.mp4")

        async def disconnected():
            return os.path.exists(output)

        started = time.monotonic()
        with pytest.raises(ExportCancelled):
            await engine.run(one_second_plan, {"A": "a.png"}, output, is_cancelled=disconnected)

        assert time.monotonic() - started < 5
        assert not os.path.exists(output)
