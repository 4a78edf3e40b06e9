"""
Database Migration Runner for cronlog

Handles versioned schema migrations for the SQLite slot store.
Migrations are stored as numbered SQL files in the migrations/ directory.
"""

import logging
import re
import sqlite3
from pathlib import Path

from cronlog.core.paths import DB_PATH

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
DEFAULT_DB_PATH = DB_PATH

# Seconds a connection waits on a locked database before raising
BUSY_TIMEOUT_SECONDS = 30.0

EXPECTED_TABLES = ("schema_version", "jobs", "hour_slots", "slot_events")


def get_connection(db_path: Path | str | None = None) -> sqlite3.Connection:
    """
    Get a connection to the SQLite database.

    Args:
        db_path: Path to the database file. Defaults to ~/.cronlog/db/cronlog.sqlite

    Returns:
        sqlite3.Connection with foreign keys enabled and Row factory
    """
    db_path = Path(db_path) if db_path is not None else DEFAULT_DB_PATH
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), timeout=BUSY_TIMEOUT_SECONDS)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = sqlite3.Row
    return conn


def get_current_version(conn: sqlite3.Connection) -> int:
    """
    Get the current schema version from the database.

    Returns:
        Current version number, or 0 if no migrations applied
    """
    try:
        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0
    except sqlite3.OperationalError:
        return 0


class MigrationRunner:
    """
    Manages database schema migrations.

    Migrations are SQL files in the migrations/ directory named like:
    - 001_initial_schema.sql
    - 002_add_feature.sql

    Each migration file is executed as a script and must insert its own
    record into schema_version.
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = Path(db_path) if db_path is not None else DEFAULT_DB_PATH
        self.migrations_dir = MIGRATIONS_DIR

    def get_pending_migrations(self) -> list[tuple[int, Path]]:
        """
        Get list of migrations that haven't been applied yet.

        Returns:
            List of (version, path) tuples for pending migrations
        """
        if not self.migrations_dir.exists():
            return []

        conn = get_connection(self.db_path)
        try:
            current_version = get_current_version(conn)
        finally:
            conn.close()

        pending = []
        for migration_file in sorted(self.migrations_dir.glob("*.sql")):
            match = re.match(r"^(\d+)_", migration_file.name)
            if match:
                version = int(match.group(1))
                if version > current_version:
                    pending.append((version, migration_file))

        return sorted(pending, key=lambda x: x[0])

    def apply_migration(self, conn: sqlite3.Connection, migration_path: Path) -> None:
        """Apply a single migration file."""
        logger.info(f"Applying migration: {migration_path.name}")

        conn.executescript(migration_path.read_text())
        conn.commit()

        logger.info(f"Successfully applied migration: {migration_path.name}")

    def run_migrations(self) -> int:
        """
        Run all pending migrations.

        Returns:
            Number of migrations applied
        """
        pending = self.get_pending_migrations()

        if not pending:
            logger.debug("No pending migrations")
            return 0

        logger.info(f"Found {len(pending)} pending migration(s)")

        conn = get_connection(self.db_path)
        try:
            # WAL lets readers (status queries) proceed while a slot is written
            conn.execute("PRAGMA journal_mode = WAL")
            for _version, migration_path in pending:
                try:
                    self.apply_migration(conn, migration_path)
                except sqlite3.Error as e:
                    logger.error(f"Migration failed: {migration_path.name}: {e}")
                    raise
        finally:
            conn.close()

        return len(pending)

    def get_status(self) -> dict:
        """Get the current migration status."""
        conn = get_connection(self.db_path)
        try:
            current_version = get_current_version(conn)
        finally:
            conn.close()

        pending = self.get_pending_migrations()

        return {
            "current_version": current_version,
            "pending_migrations": len(pending),
            "pending_files": [p.name for _, p in pending],
            "database_path": str(self.db_path),
        }


def init_database(db_path: Path | str | None = None) -> int:
    """
    Initialize the database by running all pending migrations.

    Returns:
        Number of migrations applied
    """
    applied = MigrationRunner(db_path).run_migrations()

    if applied > 0:
        logger.info(f"Applied {applied} migration(s)")

    return applied


def verify_schema(conn: sqlite3.Connection) -> dict:
    """
    Verify that all expected tables exist in the database.

    Returns:
        Dictionary with verification results
    """
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    existing_tables = [row[0] for row in cursor.fetchall()]

    missing = [t for t in EXPECTED_TABLES if t not in existing_tables]
    extra = [t for t in existing_tables if t not in EXPECTED_TABLES and not t.startswith("sqlite_")]

    return {
        "valid": len(missing) == 0,
        "expected": list(EXPECTED_TABLES),
        "existing": existing_tables,
        "missing": missing,
        "extra": extra,
    }
