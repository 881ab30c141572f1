from __future__ import annotations

from pathlib import Path


class VilmError(Exception):
    """Base class for every error the library core raises."""


class StorageError(VilmError):
    """The catalog could not be opened, migrated, read or written.

    The library should be treated as unusable until the cause is fixed;
    nothing retries automatically.
    """


class ScanError(VilmError):
    """A directory entry could not be enumerated during a scan."""

    def __init__(self, path: Path | str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = Path(path)


class ArtifactError(VilmError):
    """Generating a derived image for one asset failed.

    ``frame_errors`` holds the soft per-frame failures collected along the
    way, which are only fatal when nothing usable was extracted.
    """

    def __init__(self, message: str, asset_id: str | None = None, frame_errors: list[str] | None = None):
        super().__init__(message)
        self.asset_id = asset_id
        self.frame_errors = list(frame_errors or [])


class FrameExtractionError(ArtifactError):
    """A single duration probe or frame grab failed."""
