from __future__ import annotations

import asyncio
from io import BytesIO
import json
import logging
import math
from pathlib import Path
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from vilm.errors import FrameExtractionError
from vilm.media.image_io import fit_within

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    async def probe_duration(self, video: Path) -> float: ...

    async def extract_frame(self, video: Path, seconds: float, max_size: tuple[int, int]) -> Image.Image: ...


async def _run(cmd: list[str]) -> tuple[int, bytes, bytes]:
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise FrameExtractionError(f"cannot run {cmd[0]}: {exc}") from exc
    try:
        out, err = await proc.communicate()
    except asyncio.CancelledError:
        # Outer timeouts cancel us; do not leave decoders running.
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    return int(proc.returncode or 0), out, err


def _stderr_tail(err: bytes, limit: int = 400) -> str:
    text = err.decode("utf-8", errors="replace").strip()
    if len(text) > limit:
        text = "..." + text[-limit:]
    return text


def parse_duration(ffprobe_json: bytes | str) -> float:
    try:
        payload = json.loads(ffprobe_json or "{}")
    except ValueError as exc:
        raise FrameExtractionError(f"invalid ffprobe output: {exc}") from exc
    if not isinstance(payload, dict):
        raise FrameExtractionError("invalid ffprobe output")
    raw = (payload.get("format") or {}).get("duration")
    if raw is None:
        raise FrameExtractionError("ffprobe reported no duration")
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise FrameExtractionError(f"invalid duration {raw!r}") from exc


class FFmpegFrameSource:
    """Reads durations with ffprobe and single frames with ffmpeg."""

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe", time_tolerance: float = 0.1):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.time_tolerance = max(0.0, float(time_tolerance))

    async def probe_duration(self, video: Path) -> float:
        cmd = [
            self.ffprobe, "-v", "error",
            "-print_format", "json",
            "-show_format",
            str(video),
        ]
        code, out, err = await _run(cmd)
        if code != 0:
            raise FrameExtractionError(f"ffprobe failed for {video}: {_stderr_tail(err)}")
        return parse_duration(out)

    async def _grab_png(self, video: Path, seconds: float) -> bytes:
        cmd = [
            self.ffmpeg, "-hide_banner", "-loglevel", "error", "-nostdin",
            "-ss", f"{max(0.0, seconds):.3f}",
            "-i", str(video),
            "-frames:v", "1",
            "-f", "image2pipe", "-vcodec", "png", "-",
        ]
        code, out, err = await _run(cmd)
        if code != 0:
            raise FrameExtractionError(f"ffmpeg failed at {seconds:.3f}s for {video}: {_stderr_tail(err)}")
        return out

    async def extract_frame(self, video: Path, seconds: float, max_size: tuple[int, int]) -> Image.Image:
        if not math.isfinite(seconds):
            seconds = 0.0
        data = await self._grab_png(video, seconds)
        if not data and seconds > 0 and self.time_tolerance > 0:
            # Seeking onto the very last frame can yield nothing; step back once.
            retry_at = max(0.0, seconds - self.time_tolerance)
            logger.debug("no frame at %.3fs in %s, retrying at %.3fs", seconds, video, retry_at)
            data = await self._grab_png(video, retry_at)
        if not data:
            raise FrameExtractionError(f"no frame decoded at {seconds:.3f}s for {video}")
        try:
            with Image.open(BytesIO(data)) as img:
                frame = img.convert("RGB")
        except (UnidentifiedImageError, OSError) as exc:
            raise FrameExtractionError(f"undecodable frame at {seconds:.3f}s for {video}: {exc}") from exc
        return fit_within(frame, max_size)
