from pathlib import Path
import sqlite3

import pytest

from vilm.catalog import Catalog
from vilm.db import Migration, load_migrations
from vilm.errors import StorageError


V1_SQL = """
CREATE TABLE assets (
  id TEXT PRIMARY KEY NOT NULL,
  relative_path TEXT NOT NULL UNIQUE,
  file_name TEXT NOT NULL,
  status TEXT NOT NULL,
  created_at TEXT NOT NULL
);
CREATE TABLE schema_migrations (
  identifier TEXT PRIMARY KEY NOT NULL,
  applied_at TEXT NOT NULL
);
INSERT INTO schema_migrations(identifier, applied_at) VALUES('0001_create_assets', '2024-01-01T00:00:00+00:00');
INSERT INTO assets(id, relative_path, file_name, status, created_at)
VALUES('6F1C1C52-5A8F-4F1E-9A0B-2B8D3C4E5F60', 'clips/a.mp4', 'a.mp4', 'reviewed', '2024-01-01T00:00:00+00:00');
"""


def _columns(path: Path) -> dict[str, sqlite3.Row]:
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    rows = conn.execute("PRAGMA table_info(assets)").fetchall()
    conn.close()
    return {r["name"]: r for r in rows}


def test_open_creates_catalog_and_schema(library: Path) -> None:
    with Catalog.open(library) as catalog:
        assert catalog.migrations() == ["0001_create_assets", "0002_add_tags"]

    store = library / ".catalog" / "catalog.sqlite"
    assert store.is_file()
    cols = _columns(store)
    assert set(cols) == {"id", "relative_path", "file_name", "status", "created_at", "tags"}
    assert cols["tags"]["dflt_value"] == "'[]'"
    assert cols["tags"]["notnull"] == 1


def test_migrations_are_ordered_by_prefix() -> None:
    ids = [m.identifier for m in load_migrations()]
    assert ids == sorted(ids)
    assert ids[0] == "0001_create_assets"


def test_reopen_is_a_noop(library: Path) -> None:
    Catalog.open(library).close()
    with Catalog.open(library) as catalog:
        assert catalog.migrations() == ["0001_create_assets", "0002_add_tags"]


def test_v1_catalog_gains_tags_column(library: Path) -> None:
    store = library / ".catalog" / "catalog.sqlite"
    store.parent.mkdir(parents=True)
    conn = sqlite3.connect(store)
    conn.executescript(V1_SQL)
    conn.close()

    with Catalog.open(library) as catalog:
        assets = catalog.fetch_all()
        assert catalog.migrations()[-1] == "0002_add_tags"

    assert len(assets) == 1
    assert assets[0].relative_path == "clips/a.mp4"
    assert assets[0].status.value == "reviewed"
    assert assets[0].tags == []


def test_failed_migration_rolls_back(library: Path) -> None:
    migrations = load_migrations() + [
        Migration("0003_broken", "ALTER TABLE assets ADD COLUMN rating INTEGER;\nALTER TABLE missing ADD COLUMN x TEXT;"),
    ]
    with pytest.raises(StorageError):
        Catalog.open(library, migrations=migrations)

    cols = _columns(library / ".catalog" / "catalog.sqlite")
    assert "rating" not in cols
    with Catalog.open(library) as catalog:
        assert "0003_broken" not in catalog.migrations()


def test_unknown_migration_is_rejected(library: Path) -> None:
    newer = load_migrations() + [Migration("0003_add_rating", "ALTER TABLE assets ADD COLUMN rating INTEGER;")]
    Catalog.open(library, migrations=newer).close()

    with pytest.raises(StorageError, match="newer version"):
        Catalog.open(library)


def test_open_fails_when_catalog_path_is_a_file(library: Path) -> None:
    (library / ".catalog").write_text("in the way")
    with pytest.raises(StorageError):
        Catalog.open(library)


GRDB_V1_SQL = """
CREATE TABLE grdb_migrations (identifier TEXT NOT NULL PRIMARY KEY);
INSERT INTO grdb_migrations(identifier) VALUES('v1');
CREATE TABLE assets (
  id TEXT PRIMARY KEY NOT NULL,
  relative_path TEXT NOT NULL UNIQUE,
  file_name TEXT NOT NULL,
  status TEXT NOT NULL,
  created_at TEXT NOT NULL
);
INSERT INTO assets(id, relative_path, file_name, status, created_at)
VALUES('6F1C1C52-5A8F-4F1E-9A0B-2B8D3C4E5F60', 'clips/a.mp4', 'a.mp4', 'unreviewed', '2024-01-01T00:00:00Z');
"""

GRDB_V2_SQL = """
CREATE TABLE grdb_migrations (identifier TEXT NOT NULL PRIMARY KEY);
INSERT INTO grdb_migrations(identifier) VALUES('v1');
INSERT INTO grdb_migrations(identifier) VALUES('v2');
CREATE TABLE assets (
  id TEXT PRIMARY KEY NOT NULL,
  relative_path TEXT NOT NULL UNIQUE,
  file_name TEXT NOT NULL,
  status TEXT NOT NULL,
  created_at TEXT NOT NULL,
  tags TEXT NOT NULL DEFAULT '[]'
);
INSERT INTO assets(id, relative_path, file_name, status, created_at, tags)
VALUES('6F1C1C52-5A8F-4F1E-9A0B-2B8D3C4E5F60', 'clips/a.mp4', 'a.mp4', 'reviewed', '2024-01-01T00:00:00Z', '["actor:Jane"]');
"""


def _write_store(library: Path, sql: str) -> Path:
    store = library / ".catalog" / "catalog.sqlite"
    store.parent.mkdir(parents=True)
    conn = sqlite3.connect(store)
    conn.executescript(sql)
    conn.close()
    return store


def test_grdb_catalog_opens_without_reapplying(library: Path) -> None:
    _write_store(library, GRDB_V2_SQL)

    with Catalog.open(library) as catalog:
        assert catalog.migrations() == ["0001_create_assets", "0002_add_tags"]
        assets = catalog.fetch_all()

    assert len(assets) == 1
    assert assets[0].status.value == "reviewed"
    assert assets[0].tags == ["actor:Jane"]

    with Catalog.open(library) as catalog:
        assert catalog.count() == 1


def test_grdb_v1_catalog_gains_tags_column(library: Path) -> None:
    store = _write_store(library, GRDB_V1_SQL)

    with Catalog.open(library) as catalog:
        assert catalog.migrations() == ["0001_create_assets", "0002_add_tags"]
        assets = catalog.fetch_all()

    assert "tags" in _columns(store)
    assert assets[0].tags == []
