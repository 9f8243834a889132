"""ffprobe / ffmpeg wrappers used by the upload pipeline.

Both tools run as asyncio subprocesses so a timeout or a cancelled request
kills the child process instead of leaving it running.
"""
import asyncio
import enum
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from app.core.exceptions import ProbeError, RemuxError

logger = logging.getLogger(__name__)

# height / width of a 16:9 frame and of a 9:16 frame
LANDSCAPE_RATIO = 9 / 16
PORTRAIT_RATIO = 16 / 9
ASPECT_RATIO_TOLERANCE = 0.1

REMUX_SUFFIX = ".processing"


@dataclass(frozen=True)
class StreamDescriptor:
    width: int
    height: int

    @property
    def aspect_ratio(self) -> float:
        return self.height / self.width


class Orientation(str, enum.Enum):
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"
    OTHER = "other"


def classify_orientation(stream: StreamDescriptor) -> Orientation:
    """Classify a stream by its height/width ratio, within ASPECT_RATIO_TOLERANCE."""
    ratio = stream.aspect_ratio
    if abs(ratio - LANDSCAPE_RATIO) <= ASPECT_RATIO_TOLERANCE:
        return Orientation.LANDSCAPE
    if abs(ratio - PORTRAIT_RATIO) <= ASPECT_RATIO_TOLERANCE:
        return Orientation.PORTRAIT
    return Orientation.OTHER


class MediaProber(Protocol):
    async def probe(self, path: Path, timeout: float | None = None) -> StreamDescriptor:
        ...


class MediaRemuxer(Protocol):
    async def remux(self, input_path: Path, timeout: float | None = None) -> Path:
        ...


async def _run_tool(cmd: list[str], timeout: float | None) -> tuple[int, bytes, bytes]:
    """Run a command to completion, killing it on timeout or cancellation.

    Raises:
        FileNotFoundError: the binary does not exist
        asyncio.TimeoutError: the command outlived ``timeout``
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        process.kill()
        await process.wait()
        raise
    return process.returncode, stdout, stderr


def _last_line(stderr: bytes) -> str:
    text = stderr.decode("utf-8", errors="ignore").strip()
    return text.splitlines()[-1] if text else "unknown error"


class FFprobeProber:
    """Read stream geometry with ffprobe."""

    def __init__(self, ffprobe_bin: str = "ffprobe", timeout: float | None = None):
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout

    async def probe(self, path: Path, timeout: float | None = None) -> StreamDescriptor:
        """Return width and height of the first video stream in ``path``.

        Raises:
            ProbeError: ffprobe is missing, fails, times out, prints malformed
                output, or the file has no usable video stream
        """
        cmd = [self.ffprobe_bin, "-v", "error", "-print_format", "json", "-show_streams", str(path)]
        timeout = timeout if timeout is not None else self.timeout
        try:
            returncode, stdout, stderr = await _run_tool(cmd, timeout)
        except FileNotFoundError as e:
            raise ProbeError(f"ffprobe not available: {e}") from e
        except asyncio.TimeoutError:
            logger.error("ffprobe timeout", extra={"file_path": str(path), "timeout": timeout})
            raise ProbeError(f"ffprobe timed out after {timeout} seconds") from None

        if returncode != 0:
            raise ProbeError(f"ffprobe failed: {_last_line(stderr)}")

        try:
            probe_data = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(f"Failed to parse ffprobe output: {e}") from e

        streams = probe_data.get("streams") if isinstance(probe_data, dict) else None
        if not streams:
            raise ProbeError("No streams found in file")

        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        if video_stream is None:
            raise ProbeError("No video stream found in file")

        try:
            width = int(video_stream.get("width") or 0)
            height = int(video_stream.get("height") or 0)
        except (TypeError, ValueError) as e:
            raise ProbeError(f"Invalid stream dimensions: {e}") from e
        if width <= 0 or height <= 0:
            raise ProbeError(f"Invalid stream dimensions: {width}x{height}")

        logger.debug("Probed video stream", extra={"file_path": str(path), "width": width, "height": height})
        return StreamDescriptor(width=width, height=height)


class FFmpegRemuxer:
    """Rewrite an MP4 so the moov atom precedes the media data, without re-encoding."""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", timeout: float | None = None):
        self.ffmpeg_bin = ffmpeg_bin
        self.timeout = timeout

    @staticmethod
    def output_path_for(input_path: Path) -> Path:
        return input_path.with_name(input_path.name + REMUX_SUFFIX)

    async def remux(self, input_path: Path, timeout: float | None = None) -> Path:
        """Write a fast-start copy of ``input_path`` next to it and return its path.

        The input is never touched. Partial output is removed on failure.

        Raises:
            RemuxError: ffmpeg is missing, exits non-zero, times out, or
                produced no output file
        """
        output_path = self.output_path_for(input_path)
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-i", str(input_path),
            "-c", "copy",
            "-movflags", "faststart",
            "-f", "mp4",
            str(output_path),
        ]
        timeout = timeout if timeout is not None else self.timeout

        try:
            returncode, _, stderr = await _run_tool(cmd, timeout)
        except FileNotFoundError as e:
            raise RemuxError(f"ffmpeg not available: {e}") from e
        except asyncio.TimeoutError:
            output_path.unlink(missing_ok=True)
            logger.error("ffmpeg remux timeout", extra={"input": str(input_path), "timeout": timeout})
            raise RemuxError(f"ffmpeg timed out after {timeout} seconds") from None
        except asyncio.CancelledError:
            output_path.unlink(missing_ok=True)
            raise

        if returncode != 0:
            output_path.unlink(missing_ok=True)
            error_msg = _last_line(stderr)
            logger.error(
                "ffmpeg remux failed",
                extra={"input": str(input_path), "returncode": returncode, "error": error_msg},
            )
            raise RemuxError(f"Fast-start remux failed: {error_msg}")

        if not output_path.exists():
            raise RemuxError("Fast-start remux produced no output file")

        logger.debug(
            "Remuxed for fast start",
            extra={"input": str(input_path), "output": str(output_path), "size_bytes": output_path.stat().st_size},
        )
        return output_path
