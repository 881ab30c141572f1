from __future__ import annotations

import asyncio
from pathlib import Path

from PIL import Image
import pytest

from vilm.errors import FrameExtractionError
from vilm.media.image_io import fit_within


class FakeFrameSource:
    """Synthetic frames keyed by timestamp; no video decoding involved."""

    def __init__(self, duration: float = 30.0, color: tuple[int, int, int] = (200, 40, 40), size: tuple[int, int] = (640, 360)):
        self.duration = duration
        self.color = color
        self.size = size
        self.fail_at: set[int] = set()
        self.fail_all = False
        self.fail_probe = False
        self.requested: list[float] = []
        self.delay = 0.0

    async def probe_duration(self, video: Path) -> float:
        if self.fail_probe:
            raise FrameExtractionError(f"cannot probe {video}")
        return self.duration

    async def extract_frame(self, video: Path, seconds: float, max_size: tuple[int, int]) -> Image.Image:
        if self.delay:
            await asyncio.sleep(self.delay)
        index = len(self.requested)
        self.requested.append(seconds)
        if self.fail_all or index in self.fail_at:
            raise FrameExtractionError(f"decode failed at {seconds:.3f}")
        return fit_within(Image.new("RGB", self.size, self.color), max_size)


@pytest.fixture
def frame_source() -> FakeFrameSource:
    return FakeFrameSource()


@pytest.fixture
def library(tmp_path: Path) -> Path:
    root = tmp_path / "library"
    root.mkdir()
    return root
