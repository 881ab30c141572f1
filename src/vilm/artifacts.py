from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import math
from pathlib import Path
from typing import Iterable, Sequence

from PIL import Image

from vilm.config import ContactSheetConfig, ThumbnailConfig
from vilm.errors import ArtifactError
from vilm.media.image_io import aspect_fill, encode_jpeg, fit_within, gray_level, write_atomic
from vilm.media.video_io import FFmpegFrameSource, FrameSource
from vilm.models import Asset
from vilm.paths import contact_sheet_path, ensure_catalog_subdirectories, thumbnail_path

logger = logging.getLogger(__name__)

SHORT_VIDEO_SECONDS = 20.0
SAMPLE_WINDOW = (0.02, 0.98)


def pick_thumbnail_second(duration: float) -> float:
    """Capture time for the representative frame.

    Short clips use their midpoint. Longer ones use 10% in, kept at least
    1s from either end, which skips most black leaders and slates.
    """
    if not math.isfinite(duration) or duration <= 0:
        return 0.0
    if duration < SHORT_VIDEO_SECONDS:
        return duration * 0.5
    return min(max(duration * 0.10, 1.0), duration - 1.0)


def sample_times(duration: float, frame_count: int) -> list[float]:
    """``frame_count`` evenly spaced times strictly inside the sampling window."""
    count = max(1, frame_count)
    if not math.isfinite(duration) or duration <= 0:
        return [0.0] * count
    start = min(1.0, max(0.0, duration * SAMPLE_WINDOW[0]))
    end = max(start, duration * SAMPLE_WINDOW[1])
    if count == 1:
        return [(start + end) * 0.5]
    step = (end - start) / (count + 1)
    return [start + step * i for i in range(1, count + 1)]


@dataclass(frozen=True, slots=True)
class SheetGeometry:
    columns: int = 4
    rows: int = 3
    cell_width: int = 320
    cell_height: int = 180
    margin: int = 8

    @classmethod
    def from_config(cls, cfg: ContactSheetConfig) -> SheetGeometry:
        return cls(
            columns=cfg.columns,
            rows=cfg.rows,
            cell_width=cfg.cell_width,
            cell_height=cfg.cell_height,
            margin=cfg.margin,
        )

    @property
    def cells(self) -> int:
        return max(1, self.columns) * max(1, self.rows)

    @property
    def cell_size(self) -> tuple[int, int]:
        return (self.cell_width, self.cell_height)

    @property
    def canvas_size(self) -> tuple[int, int]:
        cols = max(1, self.columns)
        rows = max(1, self.rows)
        width = cols * self.cell_width + (cols + 1) * self.margin
        height = rows * self.cell_height + (rows + 1) * self.margin
        return (width, height)

    def cell_origin(self, index: int) -> tuple[int, int]:
        """Top-left corner of cell ``index``, filled row-major from the top."""
        cols = max(1, self.columns)
        col = index % cols
        row = index // cols
        x = self.margin + col * (self.cell_width + self.margin)
        y = self.margin + row * (self.cell_height + self.margin)
        return (x, y)


def compose_grid(frames: Sequence[Image.Image], geometry: SheetGeometry, background_gray: float = 0.10) -> Image.Image:
    level = gray_level(background_gray)
    canvas = Image.new("RGB", geometry.canvas_size, (level, level, level))
    for index, frame in enumerate(frames[: geometry.cells]):
        canvas.paste(aspect_fill(frame, geometry.cell_size), geometry.cell_origin(index))
    return canvas


def render_contact_sheet(
    frames: Sequence[Image.Image],
    geometry: SheetGeometry,
    quality: float = 0.85,
    background_gray: float = 0.10,
) -> bytes:
    if not frames:
        raise ArtifactError("cannot render a contact sheet without frames")
    return encode_jpeg(compose_grid(frames, geometry, background_gray), quality)


@dataclass(slots=True)
class ArtifactResult:
    kind: str
    asset_id: str
    path: Path
    written: bool
    frames_used: int = 0
    frame_errors: list[str] = field(default_factory=list)


def _ensure_dirs(library_root: Path, asset_id: str) -> None:
    try:
        ensure_catalog_subdirectories(library_root)
    except OSError as exc:
        raise ArtifactError(f"cannot create catalog directories: {exc}", asset_id=asset_id) from exc


def _write(path: Path, data: bytes, asset_id: str) -> None:
    try:
        write_atomic(path, data)
    except OSError as exc:
        raise ArtifactError(f"cannot write {path}: {exc}", asset_id=asset_id) from exc


class ArtifactGenerator:
    def __init__(self, frame_source: FrameSource | None = None):
        self.frames = frame_source or FFmpegFrameSource()

    async def _duration(self, video: Path, asset_id: str) -> float:
        try:
            return await self.frames.probe_duration(video)
        except ArtifactError as exc:
            raise ArtifactError(f"cannot read duration of {video}: {exc}", asset_id=asset_id) from exc

    async def generate_thumbnail(
        self,
        asset: Asset,
        library_root: Path,
        config: ThumbnailConfig | None = None,
        overwrite: bool = False,
    ) -> ArtifactResult:
        cfg = config or ThumbnailConfig()
        root = Path(library_root)
        destination = thumbnail_path(root, asset.id)
        if destination.exists() and not overwrite:
            logger.debug("thumbnail exists for %s", asset.id)
            return ArtifactResult("thumbnail", asset.id, destination, written=False)

        _ensure_dirs(root, asset.id)
        video = root / asset.relative_path
        duration = await self._duration(video, asset.id)
        seconds = pick_thumbnail_second(duration)
        try:
            frame = await self.frames.extract_frame(video, seconds, cfg.max_size)
        except ArtifactError as exc:
            raise ArtifactError(f"thumbnail frame failed for {video}: {exc}", asset_id=asset.id) from exc

        try:
            data = encode_jpeg(fit_within(frame, cfg.max_size), cfg.quality)
        except OSError as exc:
            raise ArtifactError(f"cannot encode thumbnail for {video}: {exc}", asset_id=asset.id) from exc
        _write(destination, data, asset.id)
        logger.info("thumbnail written %s (%.2fs of %.2fs)", destination.name, seconds, duration)
        return ArtifactResult("thumbnail", asset.id, destination, written=True, frames_used=1)

    async def generate_contact_sheet(
        self,
        asset: Asset,
        library_root: Path,
        config: ContactSheetConfig | None = None,
    ) -> ArtifactResult:
        cfg = config or ContactSheetConfig()
        root = Path(library_root)
        destination = contact_sheet_path(root, asset.id)
        # Sheets are never regenerated once present.
        if destination.exists():
            logger.debug("contact sheet exists for %s", asset.id)
            return ArtifactResult("contact_sheet", asset.id, destination, written=False)

        _ensure_dirs(root, asset.id)
        video = root / asset.relative_path
        geometry = SheetGeometry.from_config(cfg)
        duration = await self._duration(video, asset.id)

        frames: list[Image.Image] = []
        frame_errors: list[str] = []
        for t in sample_times(duration, geometry.cells):
            try:
                frames.append(await self.frames.extract_frame(video, t, geometry.cell_size))
            except ArtifactError as exc:
                logger.warning("contact sheet frame skipped for %s at %.2fs: %s", asset.id, t, exc)
                frame_errors.append(f"{t:.3f}: {exc}")

        if not frames:
            raise ArtifactError(
                f"no frames could be extracted from {video}",
                asset_id=asset.id,
                frame_errors=frame_errors,
            )

        try:
            data = render_contact_sheet(frames, geometry, cfg.quality, cfg.background_gray)
        except OSError as exc:
            raise ArtifactError(f"cannot encode contact sheet for {video}: {exc}", asset_id=asset.id) from exc
        _write(destination, data, asset.id)
        logger.info("contact sheet written %s (%d/%d frames)", destination.name, len(frames), geometry.cells)
        return ArtifactResult(
            "contact_sheet",
            asset.id,
            destination,
            written=True,
            frames_used=len(frames),
            frame_errors=frame_errors,
        )


@dataclass(slots=True)
class BatchReport:
    generated: list[ArtifactResult] = field(default_factory=list)
    skipped: list[ArtifactResult] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "generated": len(self.generated),
            "skipped": len(self.skipped),
            "failed": dict(self.failed),
        }


async def generate_all(
    generator: ArtifactGenerator,
    assets: Iterable[Asset],
    library_root: Path,
    thumbnail: ThumbnailConfig | None = None,
    contact_sheet: ContactSheetConfig | None = None,
    overwrite: bool = False,
    jobs: int = 1,
    timeout: float | None = None,
    thumbnails: bool = True,
    contact_sheets: bool = True,
) -> BatchReport:
    """Generate artifacts for many assets with at most ``jobs`` in flight.

    A failing asset is logged and recorded; the rest still run. ``timeout``
    bounds each asset's whole generation, since decoding has no deadline of
    its own.
    """
    report = BatchReport()
    gate = asyncio.Semaphore(max(1, jobs))

    async def _one(asset: Asset) -> list[ArtifactResult]:
        out: list[ArtifactResult] = []
        if thumbnails:
            out.append(await generator.generate_thumbnail(asset, library_root, thumbnail, overwrite=overwrite))
        if contact_sheets:
            out.append(await generator.generate_contact_sheet(asset, library_root, contact_sheet))
        return out

    async def _guarded(asset: Asset) -> None:
        async with gate:
            try:
                if timeout is not None and timeout > 0:
                    results = await asyncio.wait_for(_one(asset), timeout)
                else:
                    results = await _one(asset)
            except asyncio.TimeoutError:
                logger.error("artifact generation timed out for %s after %.1fs", asset.relative_path, timeout)
                report.failed[asset.id] = f"timed out after {timeout}s"
                return
            except ArtifactError as exc:
                logger.error("artifact generation failed for %s: %s", asset.relative_path, exc)
                report.failed[asset.id] = str(exc)
                return
            except Exception as exc:
                logger.exception("artifact generation crashed for %s", asset.relative_path)
                report.failed[asset.id] = f"{type(exc).__name__}: {exc}"
                return
        for result in results:
            (report.generated if result.written else report.skipped).append(result)

    await asyncio.gather(*(_guarded(a) for a in assets))
    return report
