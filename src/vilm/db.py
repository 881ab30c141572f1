from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Iterator

from vilm.errors import StorageError
from vilm.util.time import now_iso

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

MIGRATIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  identifier TEXT PRIMARY KEY NOT NULL,
  applied_at TEXT NOT NULL
)
"""


@dataclass(frozen=True, slots=True)
class Migration:
    identifier: str
    sql: str


def load_migrations(directory: Path = MIGRATIONS_DIR) -> list[Migration]:
    """Migrations ordered by their numeric file prefix (``0001_name.sql``)."""
    out: list[Migration] = []
    for path in sorted(directory.glob("*.sql")):
        out.append(Migration(identifier=path.stem, sql=path.read_text()))
    return out


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type IN ('table','view') AND name = ?",
        (name,),
    ).fetchone()
    return row is not None


def applied_migrations(conn: sqlite3.Connection) -> list[str]:
    if not _table_exists(conn, "schema_migrations"):
        return []
    rows = conn.execute("SELECT identifier FROM schema_migrations ORDER BY identifier").fetchall()
    return [str(r["identifier"]) for r in rows]


# Catalogs written by the original app track migrations in GRDB's own table.
LEGACY_MIGRATION_IDS = {
    "v1": "0001_create_assets",
    "v2": "0002_add_tags",
}


def adopt_legacy_history(conn: sqlite3.Connection, known_ids: list[str]) -> list[str]:
    """Record GRDB-applied migrations under their ``schema_migrations`` names."""
    if not _table_exists(conn, "grdb_migrations"):
        return []
    rows = conn.execute("SELECT identifier FROM grdb_migrations").fetchall()
    adopted: list[str] = []
    for row in rows:
        ident = LEGACY_MIGRATION_IDS.get(str(row["identifier"]))
        if ident is None or ident not in known_ids:
            continue
        cur = conn.execute(
            "INSERT OR IGNORE INTO schema_migrations(identifier, applied_at) VALUES(?, ?)",
            (ident, now_iso()),
        )
        if cur.rowcount == 1:
            adopted.append(ident)
    conn.commit()
    return sorted(adopted)


def _apply(conn: sqlite3.Connection, migration: Migration) -> None:
    # executescript() commits any pending transaction first, so the migration
    # and its bookkeeping row share one explicit transaction.
    script = (
        "BEGIN;\n"
        f"{migration.sql}\n"
        "INSERT INTO schema_migrations(identifier, applied_at) "
        f"VALUES('{migration.identifier}', '{now_iso()}');\n"
        "COMMIT;\n"
    )
    try:
        conn.executescript(script)
    except sqlite3.Error as exc:
        if conn.in_transaction:
            conn.rollback()
        raise StorageError(f"migration {migration.identifier} failed: {exc}") from exc


def migrate(conn: sqlite3.Connection, migrations: list[Migration] | None = None) -> list[str]:
    """Apply pending migrations in order and return the identifiers applied now."""
    known = migrations if migrations is not None else load_migrations()
    known_ids = [m.identifier for m in known]
    try:
        conn.execute(MIGRATIONS_TABLE_SQL)
        conn.commit()
        adopted = adopt_legacy_history(conn, known_ids)
        done = applied_migrations(conn)
    except sqlite3.Error as exc:
        raise StorageError(f"cannot read migration state: {exc}") from exc
    if adopted:
        logger.info("adopted legacy migrations: %s", ", ".join(adopted))

    unknown = [ident for ident in done if ident not in known_ids]
    if unknown:
        raise StorageError(f"catalog was migrated by a newer version (unknown migrations: {', '.join(unknown)})")
    if known_ids[: len(done)] != done:
        raise StorageError(f"catalog migrations out of order: {', '.join(done)}")

    applied_now: list[str] = []
    for migration in known[len(done) :]:
        logger.debug("applying migration %s", migration.identifier)
        _apply(conn, migration)
        applied_now.append(migration.identifier)
    return applied_now


class Database:
    """One SQLite connection shared by every caller; writes are serialised."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.RLock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            # The catalog travels with the library folder; keep it a single file.
            self._conn.execute("PRAGMA journal_mode = DELETE")
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"cannot open catalog store {self.path}: {exc}") from exc

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StorageError(str(exc)) from exc
            except BaseException:
                self._conn.rollback()
                raise

    def initialize(self, migrations: list[Migration] | None = None) -> list[str]:
        with self._lock:
            return migrate(self._conn, migrations)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
