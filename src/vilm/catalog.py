from __future__ import annotations

import logging
from pathlib import Path
import sqlite3

from vilm.db import Database, Migration, applied_migrations
from vilm.errors import StorageError
from vilm.models import Asset, ReviewStatus, decode_tags, encode_tags
from vilm.paths import catalog_dir, store_path

logger = logging.getLogger(__name__)

ASSET_COLUMNS = "id, relative_path, file_name, status, created_at, tags"


def _row_to_asset(row: sqlite3.Row) -> Asset:
    try:
        status = ReviewStatus(str(row["status"]))
    except ValueError as exc:
        raise StorageError(f"asset {row['id']} has unknown status {row['status']!r}") from exc
    return Asset(
        id=str(row["id"]),
        relative_path=str(row["relative_path"]),
        file_name=str(row["file_name"]),
        status=status,
        created_at=str(row["created_at"]),
        tags=decode_tags(row["tags"]),
    )


class Catalog:
    """Asset registry for one library root, stored under ``<root>/.catalog``."""

    def __init__(self, root: Path, db: Database):
        self.root = root
        self.db = db

    @classmethod
    def open(cls, root: Path | str, migrations: list[Migration] | None = None) -> Catalog:
        """Create the catalog directory if needed, open the store and migrate it."""
        library_root = Path(root).expanduser()
        try:
            catalog_dir(library_root).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"cannot create catalog directory under {library_root}: {exc}") from exc
        db = Database(store_path(library_root))
        try:
            applied = db.initialize(migrations)
        except StorageError:
            db.close()
            raise
        if applied:
            logger.info("catalog %s migrated: %s", store_path(library_root), ", ".join(applied))
        return cls(library_root, db)

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> Catalog:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def insert_if_absent(self, asset: Asset) -> bool:
        """Register ``asset`` unless its relative path is already known.

        An existing row is never touched, so rescans keep ids and tags.
        """
        with self.db.connect() as conn:
            cur = conn.execute(
                f"INSERT OR IGNORE INTO assets ({ASSET_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    asset.id,
                    asset.relative_path,
                    asset.file_name,
                    asset.status.value,
                    asset.created_at,
                    encode_tags(asset.tags),
                ),
            )
            return cur.rowcount == 1

    def update(self, asset: Asset) -> None:
        with self.db.connect() as conn:
            cur = conn.execute(
                """
                UPDATE assets
                SET relative_path = ?,
                    file_name = ?,
                    status = ?,
                    created_at = ?,
                    tags = ?
                WHERE id = ?
                """,
                (
                    asset.relative_path,
                    asset.file_name,
                    asset.status.value,
                    asset.created_at,
                    encode_tags(asset.tags),
                    asset.id,
                ),
            )
            if cur.rowcount == 0:
                raise StorageError(f"asset not found: {asset.id}")

    def fetch_all(self) -> list[Asset]:
        with self.db.connect() as conn:
            rows = conn.execute(f"SELECT {ASSET_COLUMNS} FROM assets").fetchall()
        return [_row_to_asset(r) for r in rows]

    def get(self, asset_id: str) -> Asset | None:
        with self.db.connect() as conn:
            row = conn.execute(f"SELECT {ASSET_COLUMNS} FROM assets WHERE id = ?", (asset_id,)).fetchone()
        if row is None:
            return None
        return _row_to_asset(row)

    def count(self) -> int:
        with self.db.connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM assets").fetchone()
        return int(row["n"])

    def migrations(self) -> list[str]:
        with self.db.connect() as conn:
            return applied_migrations(conn)
