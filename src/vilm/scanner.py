from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
from typing import Iterator

from vilm.catalog import Catalog
from vilm.errors import ScanError
from vilm.models import Asset
from vilm.paths import CATALOG_DIRNAME

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {
    ".mp4",
    ".mov",
    ".m4v",
}


@dataclass(slots=True)
class ScanStats:
    scanned: int = 0
    added: int = 0
    existing: int = 0
    errors: list[ScanError] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.errors)


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def _standardize(path: Path | str) -> str:
    return os.path.normpath(os.path.abspath(os.fspath(path)))


def relative_path_for(root: Path, file_path: Path) -> str:
    """Path of ``file_path`` below ``root`` with forward slashes.

    Falls back to the bare file name when the file does not live under the
    root once both are standardized.
    """
    root_std = _standardize(root)
    file_std = _standardize(file_path)
    prefix = root_std if root_std.endswith(os.sep) else root_std + os.sep
    if file_std.startswith(prefix):
        rel = file_std[len(prefix) :]
        return rel.replace(os.sep, "/").lstrip("/")
    return Path(file_std).name


def iter_video_files(root: Path, errors: list[ScanError] | None = None) -> Iterator[Path]:
    def _onerror(exc: OSError) -> None:
        err = ScanError(exc.filename or root, exc.strerror or str(exc))
        logger.warning("skipping unreadable entry %s", err)
        if errors is not None:
            errors.append(err)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_onerror):
        # Pruning in place keeps os.walk out of hidden folders and the catalog.
        dirnames[:] = sorted(d for d in dirnames if not _is_hidden(d) and d != CATALOG_DIRNAME)
        for name in sorted(filenames):
            if _is_hidden(name):
                continue
            if Path(name).suffix.lower() not in SUPPORTED_EXTENSIONS:
                continue
            path = Path(dirpath) / name
            try:
                if not path.is_file():
                    continue
            except OSError as exc:
                _onerror(exc)
                continue
            yield path


def scan(root: Path | str, catalog: Catalog) -> ScanStats:
    """Walk ``root`` once and register every supported video in ``catalog``."""
    library_root = Path(root).expanduser()
    if not library_root.is_dir():
        raise ScanError(library_root, "not a directory")

    stats = ScanStats()
    for path in iter_video_files(library_root, stats.errors):
        stats.scanned += 1
        asset = Asset(relative_path=relative_path_for(library_root, path), file_name=path.name)
        if catalog.insert_if_absent(asset):
            stats.added += 1
            logger.info("registered %s", asset.relative_path)
        else:
            stats.existing += 1
    return stats
