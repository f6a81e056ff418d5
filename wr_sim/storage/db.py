"""SQLite storage utilities and migrations."""
from __future__ import annotations

import datetime as dt
import logging
import pathlib
import sqlite3

LOGGER = logging.getLogger(__name__)

MIGRATIONS_DIR = pathlib.Path(__file__).resolve().parent / "migrations"


class MigrationError(RuntimeError):
    """Raised when migrations fail."""


def get_connection(db_path: str | pathlib.Path) -> sqlite3.Connection:
    path_obj = pathlib.Path(db_path)
    conn = sqlite3.connect(path_obj)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_db(
    db_path: str | pathlib.Path,
    migrations_dir: str | pathlib.Path = MIGRATIONS_DIR,
) -> None:
    """Create the database file if needed and apply pending migrations."""
    path_obj = pathlib.Path(db_path)
    if path_obj.parent and not path_obj.parent.exists():
        path_obj.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(path_obj)
    try:
        apply_migrations(conn, migrations_dir)
    finally:
        conn.close()


def apply_migrations(conn: sqlite3.Connection, migrations_dir: str | pathlib.Path) -> list[str]:
    migrations_path = pathlib.Path(migrations_dir)
    if not migrations_path.exists():
        raise MigrationError(f"Missing migrations dir: {migrations_path}")

    try:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations (version TEXT PRIMARY KEY, applied_at TEXT NOT NULL);"
        )
        applied = {
            row[0]
            for row in conn.execute("SELECT version FROM schema_migrations;").fetchall()
        }
    except sqlite3.DatabaseError as exc:
        raise MigrationError(f"Cannot read schema_migrations: {exc}") from exc

    migration_files = sorted(
        p for p in migrations_path.iterdir() if p.is_file() and p.suffix == ".sql"
    )
    newly_applied: list[str] = []
    for migration in migration_files:
        version = migration.stem
        if version in applied:
            continue

        LOGGER.info("Applying migration %s", migration.name)
        sql = migration.read_text(encoding="utf-8")
        try:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?);",
                (version, _utc_now()),
            )
            conn.commit()
        except sqlite3.DatabaseError as exc:
            conn.rollback()
            raise MigrationError(f"Failed migration {migration.name}: {exc}") from exc
        newly_applied.append(version)
    return newly_applied


def _utc_now() -> str:
    return dt.datetime.now(tz=dt.timezone.utc).isoformat()
