from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from vilm.artifacts import ArtifactGenerator, generate_all
from vilm.catalog import Catalog
from vilm.config import AppConfig
from vilm.errors import StorageError
from vilm.ids import normalize_asset_id
from vilm.media.video_io import FFmpegFrameSource, FrameSource
from vilm.models import Asset, ReviewStatus
from vilm.output_models import AssetOutput, ScanOutput, StatusOutput
from vilm.paths import catalog_relative, contact_sheet_path, store_path, thumbnail_path
from vilm.scanner import scan


class LibraryService:
    def __init__(self, root: Path | str, config: AppConfig | None = None, frame_source: FrameSource | None = None):
        self.config = config or AppConfig()
        self.root = Path(root).expanduser().resolve()
        self.catalog = Catalog.open(self.root)
        media = self.config.media
        self.generator = ArtifactGenerator(
            frame_source
            or FFmpegFrameSource(ffmpeg=media.ffmpeg, ffprobe=media.ffprobe, time_tolerance=media.time_tolerance)
        )

    def close(self) -> None:
        self.catalog.close()

    def _artifact(self, path: Path) -> str | None:
        if not path.exists():
            return None
        return catalog_relative(self.root, path)

    def _to_output(self, asset: Asset) -> dict[str, Any]:
        return AssetOutput(
            id=asset.id,
            relative_path=asset.relative_path,
            file_name=asset.file_name,
            status=asset.status.value,
            created_at=asset.created_at,
            tags=list(asset.tags),
            actors=asset.actors,
            actions=asset.actions,
            thumbnail=self._artifact(thumbnail_path(self.root, asset.id)),
            contact_sheet=self._artifact(contact_sheet_path(self.root, asset.id)),
        ).model_dump()

    def _require(self, identifier: str) -> Asset:
        try:
            asset_id = normalize_asset_id(identifier)
        except ValueError as exc:
            raise StorageError(str(exc)) from exc
        asset = self.catalog.get(asset_id)
        if asset is None:
            raise StorageError(f"asset not found: {identifier}")
        return asset

    def scan(self) -> dict[str, Any]:
        stats = scan(self.root, self.catalog)
        return ScanOutput(
            root=str(self.root),
            scanned=stats.scanned,
            added=stats.added,
            existing=stats.existing,
            skipped=stats.skipped,
            errors=[str(e) for e in stats.errors],
        ).model_dump()

    def assets(self, status: ReviewStatus | None = None) -> list[Asset]:
        rows = self.catalog.fetch_all()
        if status is not None:
            rows = [a for a in rows if a.status == status]
        return sorted(rows, key=lambda a: a.relative_path.lower())

    def list_assets(self, status: ReviewStatus | None = None) -> list[dict[str, Any]]:
        return [self._to_output(a) for a in self.assets(status)]

    def get(self, identifier: str) -> dict[str, Any]:
        return self._to_output(self._require(identifier))

    def set_status(self, identifier: str, status: ReviewStatus) -> dict[str, Any]:
        asset = self._require(identifier)
        asset.status = status
        self.catalog.update(asset)
        return self._to_output(asset)

    def add_tag(self, identifier: str, tag: str) -> dict[str, Any]:
        asset = self._require(identifier)
        value = tag.strip()
        if value and value not in asset.tags:
            asset.tags.append(value)
            self.catalog.update(asset)
        return self._to_output(asset)

    def remove_tag(self, identifier: str, tag: str) -> dict[str, Any]:
        asset = self._require(identifier)
        value = tag.strip()
        if value in asset.tags:
            asset.tags = [t for t in asset.tags if t != value]
            self.catalog.update(asset)
        return self._to_output(asset)

    def generate_artifacts(
        self,
        overwrite: bool = False,
        jobs: int | None = None,
        timeout: float | None = None,
        thumbnails: bool = True,
        contact_sheets: bool = True,
    ) -> dict[str, Any]:
        report = asyncio.run(
            generate_all(
                self.generator,
                self.assets(),
                self.root,
                thumbnail=self.config.thumbnail,
                contact_sheet=self.config.contact_sheet,
                overwrite=overwrite,
                jobs=jobs or self.config.workers,
                timeout=timeout,
                thumbnails=thumbnails,
                contact_sheets=contact_sheets,
            )
        )
        return report.to_dict()

    def status(self) -> dict[str, Any]:
        rows = self.catalog.fetch_all()
        reviewed = sum(1 for a in rows if a.status == ReviewStatus.REVIEWED)
        return StatusOutput(
            root=str(self.root),
            catalog=str(store_path(self.root)),
            migrations=self.catalog.migrations(),
            assets=len(rows),
            reviewed=reviewed,
            unreviewed=len(rows) - reviewed,
            thumbnails=sum(1 for a in rows if thumbnail_path(self.root, a.id).exists()),
            contact_sheets=sum(1 for a in rows if contact_sheet_path(self.root, a.id).exists()),
        ).model_dump()
