import asyncio
import logging
import os
import shutil
import subprocess
from collections import deque
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import ffmpeg

from app.core.config import settings
from app.core.errors import EngineError, EngineUnavailable, ExportCancelled
from app.schemas.plan import CompiledPlan

# Configure logging
logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]
CancelCheck = Callable[[], Awaitable[bool]]

STDERR_TAIL_LINES = 40


def parse_progress_line(line: str, total_duration: float) -> Optional[float]:
    """
    Converts one `-progress` key=value line into a percentage.

    Only `out_time_ms` (which FFmpeg reports in microseconds) and the final
    `progress=end` marker carry position information; other keys yield None.
    """
    key, _, value = line.strip().partition("=")
    if key == "progress" and value == "end":
        return 100.0
    if key != "out_time_ms" or total_duration <= 0:
        return None
    try:
        seconds = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(100.0, seconds / total_duration * 100))


class MediaEngine:
    """
    Thin wrapper around the FFmpeg binaries.

    Compiled plans run as asyncio subprocesses so a long export never blocks
    other requests and can be terminated when the client goes away. Probing
    and the simplified single-clip conversion go through ffmpeg-python.
    """

    def __init__(self, binary: Optional[str] = None, probe_binary: Optional[str] = None,
                 poll_interval: float = 0.5, terminate_timeout: float = 5.0):
        self.binary = binary or settings.FFMPEG_BINARY
        self.probe_binary = probe_binary or settings.FFPROBE_BINARY
        self.poll_interval = poll_interval
        self.terminate_timeout = terminate_timeout

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def list_formats(self, limit: int = 10) -> List[str]:
        """Returns a few of the container formats the engine supports."""
        try:
            result = subprocess.run(
                [self.binary, "-hide_banner", "-formats"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=True,
            )
        except FileNotFoundError as e:
            raise EngineUnavailable(details=str(e)) from e
        except subprocess.CalledProcessError as e:
            raise EngineError("Could not list formats", details=e.stderr.decode("utf8", "replace")) from e

        formats = []
        in_table = False
        for line in result.stdout.decode("utf8", "replace").splitlines():
            if line.strip() == "--":
                in_table = True
                continue
            parts = line.split()
            if in_table and len(parts) >= 2:
                formats.append(parts[1])
            if len(formats) >= limit:
                break
        return formats

    def probe(self, path: str) -> Dict[str, Any]:
        """Returns duration and stream layout of a media file."""
        try:
            info = ffmpeg.probe(path, cmd=self.probe_binary)
        except ffmpeg.Error as e:
            error_message = e.stderr.decode('utf8') if e.stderr else "Unknown ffprobe error"
            logger.error(f"FFprobe failed for {path}: {error_message}")
            raise EngineError("Could not read media file", details=error_message) from e
        except FileNotFoundError as e:
            raise EngineUnavailable(details=str(e)) from e

        streams = info.get("streams", [])
        duration = info.get("format", {}).get("duration")
        return {
            "duration": float(duration) if duration is not None else None,
            "has_video": any(s.get("codec_type") == "video" for s in streams),
            "has_audio": any(s.get("codec_type") == "audio" for s in streams),
        }

    async def run(
        self,
        plan: CompiledPlan,
        locations: Mapping[str, str],
        output_path: str,
        on_progress: Optional[ProgressCallback] = None,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> str:
        """
        Executes a compiled plan, writing the result to `output_path`.

        Raises EngineUnavailable if the binary cannot be spawned, EngineError
        on a non-zero exit and ExportCancelled if `is_cancelled` reports the
        caller has gone away.
        """
        args = plan.to_command(locations, output_path, binary=self.binary)
        logger.info(f"FFmpeg process started: {subprocess.list2cmdline(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise EngineUnavailable(details=str(e)) from e

        stderr_tail: deque = deque(maxlen=STDERR_TAIL_LINES)
        readers = asyncio.gather(
            self._read_progress(process.stdout, plan.nominal_duration, on_progress),
            self._read_stderr(process.stderr, stderr_tail),
        )
        waiter = asyncio.ensure_future(process.wait())

        try:
            while not waiter.done():
                await asyncio.wait({waiter}, timeout=self.poll_interval)
                if waiter.done():
                    break
                if is_cancelled is not None and await is_cancelled():
                    logger.warning("Client disconnected, terminating FFmpeg")
                    raise ExportCancelled()
            await readers
        except (ExportCancelled, asyncio.CancelledError):
            await self._terminate(process, waiter)
            readers.cancel()
            self._remove_partial(output_path)
            raise

        if process.returncode != 0:
            details = "\n".join(stderr_tail)
            logger.error(f"FFmpeg failed ({process.returncode}): {details}")
            self._remove_partial(output_path)
            raise EngineError(details=details or f"FFmpeg exited with status {process.returncode}")

        logger.info("Video processing completed")
        return output_path

    def convert_single(self, input_path: str, output_path: str, is_image: bool,
                       width: Optional[int] = None, height: Optional[int] = None,
                       image_duration: Optional[float] = None) -> str:
        """
        Simplified conversion of one clip without a timeline.

        A still image becomes a short silent clip; a video is re-encoded at the
        target size.
        """
        width = width or settings.DEFAULT_WIDTH
        height = height or settings.DEFAULT_HEIGHT
        logger.info(f"Starting single clip conversion: {input_path} -> {output_path}")

        try:
            if is_image:
                stream = ffmpeg.input(input_path, loop=1, t=image_duration or settings.DEFAULT_IMAGE_DURATION)
                stream = ffmpeg.output(stream, output_path, **{
                    'r': settings.OUTPUT_FPS,
                    's': f"{width}x{height}",
                    'vcodec': 'libx264',
                    'pix_fmt': 'yuv420p',
                    'an': None,
                })
            else:
                stream = ffmpeg.input(input_path)
                stream = ffmpeg.output(stream, output_path, **{
                    's': f"{width}x{height}",
                    'vcodec': 'libx264',
                    'preset': 'fast',
                    'crf': settings.CRF,
                })
            stream.overwrite_output().run(cmd=self.binary, capture_stdout=True, capture_stderr=True)

            logger.info("Single clip conversion successful.")
            return output_path

        except ffmpeg.Error as e:
            # Decode stderr to get the actual error message from ffmpeg
            error_message = e.stderr.decode('utf8') if e.stderr else "Unknown ffmpeg error"
            logger.error(f"FFmpeg failed: {error_message}")
            raise EngineError("Processing failed", details=error_message) from e
        except FileNotFoundError as e:
            raise EngineUnavailable(details=str(e)) from e

    # --- Internals ---

    async def _read_progress(self, stream, total_duration: float,
                             on_progress: Optional[ProgressCallback]) -> None:
        last_reported = -1.0
        async for raw in stream:
            percent = parse_progress_line(raw.decode("utf8", "replace"), total_duration)
            if percent is None or percent == last_reported:
                continue
            last_reported = percent
            logger.info(f"Processing: {percent:.1f}% done")
            if on_progress is not None:
                try:
                    on_progress(percent)
                except Exception as e:
                    # Progress is advisory; a failing listener must not affect the export.
                    logger.warning(f"Progress callback failed: {e}")

    async def _read_stderr(self, stream, tail: deque) -> None:
        async for raw in stream:
            line = raw.decode("utf8", "replace").rstrip()
            if line:
                tail.append(line)

    async def _terminate(self, process, waiter) -> None:
        if process.returncode is not None:
            return
        process.terminate()
        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout=self.terminate_timeout)
        except asyncio.TimeoutError:
            logger.warning("FFmpeg did not exit after terminate, killing it")
            process.kill()
            await waiter

    def _remove_partial(self, output_path: str) -> None:
        try:
            if os.path.exists(output_path):
                os.remove(output_path)
        except OSError as e:
            logger.error(f"Failed to remove partial output {output_path}: {e}")
