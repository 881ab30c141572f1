import asyncio
from io import BytesIO
from pathlib import Path

from PIL import Image
import pytest

from vilm.artifacts import ArtifactGenerator, generate_all, sample_times
from vilm.config import ContactSheetConfig, ThumbnailConfig
from vilm.errors import ArtifactError
from vilm.models import Asset


def _asset(library: Path, rel: str = "clips/a.mp4") -> Asset:
    path = library / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"fake-video")
    return Asset(relative_path=rel, file_name=path.name)


def _size(path: Path) -> tuple[int, int]:
    with Image.open(BytesIO(path.read_bytes())) as img:
        return img.size


def test_thumbnail_written_within_max_size(library: Path, frame_source) -> None:
    frame_source.size = (1920, 1080)
    asset = _asset(library)
    gen = ArtifactGenerator(frame_source)

    result = asyncio.run(gen.generate_thumbnail(asset, library, ThumbnailConfig(max_width=640, max_height=360)))

    assert result.written
    assert result.path == library / ".catalog" / "thumbnails" / f"{asset.id}.jpg"
    assert _size(result.path) == (640, 360)
    assert (library / ".catalog" / "contactSheets").is_dir()
    assert frame_source.requested == [pytest.approx(3.0)]


def test_thumbnail_is_idempotent_without_overwrite(library: Path, frame_source) -> None:
    asset = _asset(library)
    gen = ArtifactGenerator(frame_source)
    first = asyncio.run(gen.generate_thumbnail(asset, library))
    original = first.path.read_bytes()

    frame_source.color = (0, 0, 255)
    second = asyncio.run(gen.generate_thumbnail(asset, library))

    assert second.written is False
    assert second.path.read_bytes() == original
    assert len(frame_source.requested) == 1


def test_thumbnail_overwrite_regenerates(library: Path, frame_source) -> None:
    asset = _asset(library)
    gen = ArtifactGenerator(frame_source)
    first = asyncio.run(gen.generate_thumbnail(asset, library))
    original = first.path.read_bytes()

    frame_source.color = (0, 0, 255)
    second = asyncio.run(gen.generate_thumbnail(asset, library, overwrite=True))

    assert second.written
    assert second.path.read_bytes() != original


def test_thumbnail_failure_raises_and_writes_nothing(library: Path, frame_source) -> None:
    frame_source.fail_all = True
    asset = _asset(library)
    gen = ArtifactGenerator(frame_source)

    with pytest.raises(ArtifactError) as info:
        asyncio.run(gen.generate_thumbnail(asset, library))

    assert info.value.asset_id == asset.id
    assert not (library / ".catalog" / "thumbnails" / f"{asset.id}.jpg").exists()


def test_duration_failure_is_an_artifact_error(library: Path, frame_source) -> None:
    frame_source.fail_probe = True
    gen = ArtifactGenerator(frame_source)
    with pytest.raises(ArtifactError, match="duration"):
        asyncio.run(gen.generate_contact_sheet(_asset(library), library))


def test_contact_sheet_geometry_and_sampling(library: Path, frame_source) -> None:
    asset = _asset(library)
    gen = ArtifactGenerator(frame_source)

    result = asyncio.run(gen.generate_contact_sheet(asset, library))

    assert result.written
    assert result.frames_used == 12
    assert result.path == library / ".catalog" / "contactSheets" / f"{asset.id}.jpg"
    assert _size(result.path) == (1320, 572)
    assert frame_source.requested == pytest.approx(sample_times(30.0, 12))


def test_contact_sheet_skips_failed_frames(library: Path, frame_source) -> None:
    frame_source.fail_at = {0, 5, 11}
    asset = _asset(library)
    gen = ArtifactGenerator(frame_source)

    result = asyncio.run(gen.generate_contact_sheet(asset, library, ContactSheetConfig(columns=2, rows=6)))

    assert result.written
    assert result.frames_used == 9
    assert len(result.frame_errors) == 3
    assert _size(result.path) == (2 * 320 + 3 * 8, 6 * 180 + 7 * 8)


def test_contact_sheet_abandoned_when_every_frame_fails(library: Path, frame_source) -> None:
    frame_source.fail_all = True
    asset = _asset(library)
    gen = ArtifactGenerator(frame_source)

    with pytest.raises(ArtifactError) as info:
        asyncio.run(gen.generate_contact_sheet(asset, library))

    assert len(info.value.frame_errors) == 12
    sheets = library / ".catalog" / "contactSheets"
    assert list(sheets.iterdir()) == []


def test_contact_sheet_never_overwritten(library: Path, frame_source) -> None:
    asset = _asset(library)
    gen = ArtifactGenerator(frame_source)
    first = asyncio.run(gen.generate_contact_sheet(asset, library))
    original = first.path.read_bytes()

    frame_source.color = (0, 0, 255)
    second = asyncio.run(gen.generate_contact_sheet(asset, library))

    assert second.written is False
    assert second.path.read_bytes() == original


def test_generate_all_continues_past_failures(library: Path, frame_source) -> None:
    good = _asset(library, "good.mp4")
    bad = _asset(library, "bad.mp4")
    gen = ArtifactGenerator(frame_source)

    async def _probe(video: Path) -> float:
        if video.name == "bad.mp4":
            raise ArtifactError("corrupt container")
        return 30.0

    frame_source.probe_duration = _probe
    report = asyncio.run(generate_all(gen, [bad, good], library, jobs=2))

    assert set(report.failed) == {bad.id}
    assert {r.kind for r in report.generated} == {"thumbnail", "contact_sheet"}
    assert all(r.asset_id == good.id for r in report.generated)

    again = asyncio.run(generate_all(gen, [good], library))
    assert len(again.skipped) == 2
    assert again.to_dict() == {"generated": 0, "skipped": 2, "failed": {}}


def test_generate_all_timeout_marks_asset_failed(library: Path, frame_source) -> None:
    frame_source.delay = 0.5
    asset = _asset(library)
    gen = ArtifactGenerator(frame_source)

    report = asyncio.run(generate_all(gen, [asset], library, timeout=0.05, contact_sheets=False))

    assert asset.id in report.failed
    assert "timed out" in report.failed[asset.id]
    assert not (library / ".catalog" / "thumbnails" / f"{asset.id}.jpg").exists()


def test_generate_all_records_unexpected_errors(library: Path, frame_source) -> None:
    good = _asset(library, "good.mp4")
    bad = _asset(library, "bad.mp4")
    gen = ArtifactGenerator(frame_source)

    async def _probe(video: Path) -> float:
        if video.name == "bad.mp4":
            raise ValueError("could not convert string to float: 'N/A'")
        return 30.0

    frame_source.probe_duration = _probe
    report = asyncio.run(generate_all(gen, [bad, good], library, jobs=2))

    assert set(report.failed) == {bad.id}
    assert report.failed[bad.id].startswith("ValueError:")
    assert len(report.generated) == 2
    assert all(r.asset_id == good.id for r in report.generated)
