from __future__ import annotations

from pydantic import BaseModel


class AssetOutput(BaseModel):
    id: str
    relative_path: str
    file_name: str
    status: str
    created_at: str
    tags: list[str] = []
    actors: list[str] = []
    actions: list[str] = []
    thumbnail: str | None = None
    contact_sheet: str | None = None


class ScanOutput(BaseModel):
    root: str
    scanned: int
    added: int
    existing: int
    skipped: int
    errors: list[str] = []


class StatusOutput(BaseModel):
    root: str
    catalog: str
    migrations: list[str] = []
    assets: int
    reviewed: int
    unreviewed: int
    thumbnails: int
    contact_sheets: int
