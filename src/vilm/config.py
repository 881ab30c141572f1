from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from vilm.paths import config_root


@dataclass(slots=True)
class ThumbnailConfig:
    max_width: int = 640
    max_height: int = 360
    quality: float = 0.85

    @property
    def max_size(self) -> tuple[int, int]:
        return (self.max_width, self.max_height)


@dataclass(slots=True)
class ContactSheetConfig:
    columns: int = 4
    rows: int = 3
    cell_width: int = 320
    cell_height: int = 180
    margin: int = 8
    background_gray: float = 0.10
    quality: float = 0.85

    @property
    def cell_size(self) -> tuple[int, int]:
        return (self.cell_width, self.cell_height)


@dataclass(slots=True)
class MediaConfig:
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"
    time_tolerance: float = 0.1


@dataclass(slots=True)
class AppConfig:
    workers: int = 1
    thumbnail: ThumbnailConfig = field(default_factory=ThumbnailConfig)
    contact_sheet: ContactSheetConfig = field(default_factory=ContactSheetConfig)
    media: MediaConfig = field(default_factory=MediaConfig)


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def _to_config(data: dict[str, Any]) -> AppConfig:
    return AppConfig(
        workers=max(1, int(data.get("workers", 1))),
        thumbnail=ThumbnailConfig(**data.get("thumbnail", {})),
        contact_sheet=ContactSheetConfig(**data.get("contact_sheet", {})),
        media=MediaConfig(**data.get("media", {})),
    )


def default_config_path() -> Path:
    return config_root() / "config.yaml"


def load_config(config_path: Path | None = None, overrides: dict[str, Any] | None = None) -> AppConfig:
    path = config_path or default_config_path()
    base: dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text())
        if isinstance(loaded, dict):
            base = loaded
    if overrides:
        base = _merge(base, overrides)
    return _to_config(base)


def write_default_config(path: Path | None = None) -> Path:
    target = path or default_config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.exists():
        return target
    target.write_text(yaml.safe_dump(asdict(AppConfig()), sort_keys=False))
    return target
