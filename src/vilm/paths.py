from __future__ import annotations

from pathlib import Path
import os

APP_NAME = "vilm"

CATALOG_DIRNAME = ".catalog"
STORE_FILENAME = "catalog.sqlite"
THUMBNAILS_DIRNAME = "thumbnails"
CONTACT_SHEETS_DIRNAME = "contactSheets"
ARTIFACT_SUFFIX = ".jpg"


def config_root() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        base = Path(xdg)
    else:
        base = Path.home() / ".config"
    root = base / APP_NAME
    root.mkdir(parents=True, exist_ok=True)
    return root


def catalog_dir(library_root: Path) -> Path:
    return Path(library_root) / CATALOG_DIRNAME


def store_path(library_root: Path) -> Path:
    return catalog_dir(library_root) / STORE_FILENAME


def thumbnails_dir(library_root: Path) -> Path:
    return catalog_dir(library_root) / THUMBNAILS_DIRNAME


def contact_sheets_dir(library_root: Path) -> Path:
    return catalog_dir(library_root) / CONTACT_SHEETS_DIRNAME


def thumbnail_path(library_root: Path, asset_id: str) -> Path:
    return thumbnails_dir(library_root) / f"{asset_id}{ARTIFACT_SUFFIX}"


def contact_sheet_path(library_root: Path, asset_id: str) -> Path:
    return contact_sheets_dir(library_root) / f"{asset_id}{ARTIFACT_SUFFIX}"


def catalog_relative(library_root: Path, path: Path) -> str:
    """Path of a catalog file relative to the library root, forward slashes."""
    return Path(path).relative_to(Path(library_root)).as_posix()


def ensure_catalog_subdirectories(library_root: Path) -> None:
    thumbnails_dir(library_root).mkdir(parents=True, exist_ok=True)
    contact_sheets_dir(library_root).mkdir(parents=True, exist_ok=True)
