"""Tests for the ffprobe / ffmpeg wrappers and orientation classification."""
import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from app.core.exceptions import ProbeError, RemuxError
from app.services.media_service import (
    FFmpegRemuxer,
    FFprobeProber,
    Orientation,
    StreamDescriptor,
    classify_orientation,
)

EXEC = "app.services.media_service.asyncio.create_subprocess_exec"


def _process(returncode=0, stdout=b"", stderr=b""):
    process = Mock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    process.wait = AsyncMock(return_value=returncode)
    process.kill = Mock()
    return process


def _ffprobe_output(*streams) -> bytes:
    return json.dumps({"streams": list(streams)}).encode()


@pytest.mark.parametrize(
    "width,height,expected",
    [
        (1920, 1080, Orientation.LANDSCAPE),
        (1280, 720, Orientation.LANDSCAPE),
        (1080, 1920, Orientation.PORTRAIT),
        (720, 1280, Orientation.PORTRAIT),
        (1000, 1000, Orientation.OTHER),
        (640, 480, Orientation.OTHER),
        (2560, 1080, Orientation.OTHER),
    ],
)
def test_classify_orientation(width, height, expected):
    assert classify_orientation(StreamDescriptor(width=width, height=height)) is expected


@pytest.mark.parametrize("factor", [1, 2, 3, 10])
def test_classification_ignores_uniform_scaling(factor):
    for width, height in [(16, 9), (9, 16), (4, 3)]:
        base = classify_orientation(StreamDescriptor(width=width, height=height))
        scaled = classify_orientation(StreamDescriptor(width=width * factor, height=height * factor))
        assert base is scaled


def test_near_widescreen_within_tolerance():
    # 1920x1088 is a common encoder-padded 1080p frame
    assert classify_orientation(StreamDescriptor(width=1920, height=1088)) is Orientation.LANDSCAPE


@pytest.mark.asyncio
async def test_probe_reads_first_video_stream(tmp_path):
    output = _ffprobe_output(
        {"index": 0, "codec_type": "audio", "codec_name": "aac"},
        {"index": 1, "codec_type": "video", "codec_name": "h264", "width": 1080, "height": 1920},
    )
    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.return_value = _process(stdout=output)

        stream = await FFprobeProber("ffprobe").probe(tmp_path / "clip.mp4")

    assert stream == StreamDescriptor(width=1080, height=1920)
    cmd = mock_exec.call_args[0]
    assert cmd[0] == "ffprobe"
    assert "-show_streams" in cmd
    assert str(tmp_path / "clip.mp4") in cmd


@pytest.mark.asyncio
async def test_probe_no_streams(tmp_path):
    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.return_value = _process(stdout=_ffprobe_output())

        with pytest.raises(ProbeError, match="No streams"):
            await FFprobeProber().probe(tmp_path / "clip.mp4")


@pytest.mark.asyncio
async def test_probe_audio_only(tmp_path):
    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.return_value = _process(stdout=_ffprobe_output({"codec_type": "audio"}))

        with pytest.raises(ProbeError, match="No video stream"):
            await FFprobeProber().probe(tmp_path / "clip.mp4")


@pytest.mark.asyncio
async def test_probe_zero_dimensions(tmp_path):
    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.return_value = _process(
            stdout=_ffprobe_output({"codec_type": "video", "width": 0, "height": 1080})
        )

        with pytest.raises(ProbeError, match="Invalid stream dimensions"):
            await FFprobeProber().probe(tmp_path / "clip.mp4")


@pytest.mark.asyncio
async def test_probe_nonzero_exit(tmp_path):
    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.return_value = _process(returncode=1, stderr=b"clip.mp4: Invalid data found when processing input")

        with pytest.raises(ProbeError, match="ffprobe failed: .*Invalid data"):
            await FFprobeProber().probe(tmp_path / "clip.mp4")


@pytest.mark.asyncio
async def test_probe_malformed_output(tmp_path):
    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.return_value = _process(stdout=b"not json")

        with pytest.raises(ProbeError, match="Failed to parse"):
            await FFprobeProber().probe(tmp_path / "clip.mp4")


@pytest.mark.asyncio
async def test_probe_missing_binary(tmp_path):
    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.side_effect = FileNotFoundError("ffprobe")

        with pytest.raises(ProbeError, match="not available"):
            await FFprobeProber().probe(tmp_path / "clip.mp4")


@pytest.mark.asyncio
async def test_probe_timeout_kills_process(tmp_path):
    process = _process()
    process.communicate = AsyncMock(side_effect=asyncio.TimeoutError)
    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.return_value = process

        with pytest.raises(ProbeError, match="timed out"):
            await FFprobeProber().probe(tmp_path / "clip.mp4", timeout=1)

    process.kill.assert_called_once()
    process.wait.assert_awaited_once()


@pytest.mark.asyncio
async def test_remux_writes_faststart_copy(tmp_path):
    input_path = tmp_path / "tubely-upload-abc.mp4"
    input_path.write_bytes(b"raw")

    async def fake_exec(*cmd, **kwargs):
        Path(cmd[-1]).write_bytes(b"remuxed")
        return _process()

    with patch(EXEC, side_effect=fake_exec) as mock_exec:
        output_path = await FFmpegRemuxer("ffmpeg").remux(input_path)

    assert output_path == tmp_path / "tubely-upload-abc.mp4.processing"
    assert output_path.read_bytes() == b"remuxed"
    assert input_path.exists()
    cmd = list(mock_exec.call_args[0])
    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-c") + 1] == "copy"
    assert cmd[cmd.index("-movflags") + 1] == "faststart"
    assert cmd[cmd.index("-i") + 1] == str(input_path)


@pytest.mark.asyncio
async def test_remux_failure_removes_partial_output(tmp_path):
    input_path = tmp_path / "clip.mp4"
    input_path.write_bytes(b"raw")

    async def fake_exec(*cmd, **kwargs):
        Path(cmd[-1]).write_bytes(b"partial")
        return _process(returncode=1, stderr=b"moov atom not found\n")

    with patch(EXEC, side_effect=fake_exec):
        with pytest.raises(RemuxError, match="moov atom not found"):
            await FFmpegRemuxer().remux(input_path)

    assert not FFmpegRemuxer.output_path_for(input_path).exists()
    assert input_path.exists()


@pytest.mark.asyncio
async def test_remux_without_output_file(tmp_path):
    input_path = tmp_path / "clip.mp4"
    input_path.write_bytes(b"raw")

    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.return_value = _process()

        with pytest.raises(RemuxError, match="no output file"):
            await FFmpegRemuxer().remux(input_path)


@pytest.mark.asyncio
async def test_remux_timeout_kills_process(tmp_path):
    input_path = tmp_path / "clip.mp4"
    input_path.write_bytes(b"raw")
    process = _process()
    process.communicate = AsyncMock(side_effect=asyncio.TimeoutError)

    with patch(EXEC, new_callable=AsyncMock) as mock_exec:
        mock_exec.return_value = process

        with pytest.raises(RemuxError, match="timed out"):
            await FFmpegRemuxer(timeout=1).remux(input_path)

    process.kill.assert_called_once()
