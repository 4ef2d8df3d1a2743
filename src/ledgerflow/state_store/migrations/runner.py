"""
Versioned schema migrations for the ledger database.

Migration modules live next to this file and are named `NNN_name.py`
(001_import_hash_unique.py, 002_pair_id_index.py, ...). Each one defines:
- VERSION: int
- NAME: str
- upgrade(conn) -> None
- downgrade(conn) -> None  (optional)
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATION_PACKAGE = "ledgerflow.state_store.migrations"
MIGRATION_GLOB = "[0-9][0-9][0-9]_*.py"


class MigrationError(Exception):
    """A migration module is malformed or cannot run in the requested direction."""


@dataclass
class Migration:
    """One schema step."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None

    @property
    def label(self) -> str:
        return f"{self.version:03d}_{self.name}"


def get_all_migrations() -> list[Migration]:
    """
    Load every migration module in this package, ordered by version.

    Raises:
        MigrationError: If a module lacks VERSION, NAME or upgrade, or two
            modules share a version
    """
    migrations: dict[int, Migration] = {}

    for py_file in sorted(Path(__file__).parent.glob(MIGRATION_GLOB)):
        module = importlib.import_module(f"{MIGRATION_PACKAGE}.{py_file.stem}")
        try:
            migration = Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        except AttributeError as e:
            raise MigrationError(f"Malformed migration {py_file.stem}: {e}") from e

        if migration.version in migrations:
            raise MigrationError(f"Duplicate migration version {migration.version}")
        migrations[migration.version] = migration

    return [migrations[v] for v in sorted(migrations)]


class MigrationRunner:
    """
    Applies and reverts migrations on one connection.

    Applied versions are recorded in the `migrations` table.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._ensure_migrations_table()

    def _ensure_migrations_table(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        rows = self.conn.execute("SELECT version FROM migrations").fetchall()
        return {row[0] for row in rows}

    def get_current_version(self) -> int:
        """Highest applied version (0 for a fresh database)."""
        value = self.conn.execute("SELECT MAX(version) FROM migrations").fetchone()[0]
        return value or 0

    def get_pending(self) -> list[Migration]:
        applied = self.get_applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def apply_migration(self, migration: Migration) -> None:
        """Run one upgrade and record it, rolling back on failure."""
        logger.info(f"Applying migration {migration.label}")
        try:
            migration.upgrade(self.conn)
            applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, applied_at),
            )
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"Migration {migration.label} failed: {e}")
            raise

    def rollback_migration(self, migration: Migration) -> None:
        """Run one downgrade and forget it, rolling back on failure."""
        if migration.downgrade is None:
            raise MigrationError(f"Migration {migration.label} cannot be rolled back")

        logger.info(f"Rolling back migration {migration.label}")
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"Rollback of {migration.label} failed: {e}")
            raise

    def run_pending(self) -> list[int]:
        """Apply every pending migration in order. Returns applied versions."""
        applied = []
        for migration in self.get_pending():
            self.apply_migration(migration)
            applied.append(migration.version)

        if applied:
            logger.info(f"Applied migrations: {applied}")
        else:
            logger.debug("Ledger schema is up to date")
        return applied

    def migrate_to(self, target_version: int) -> None:
        """Upgrade or downgrade until `target_version` is the current version."""
        current = self.get_current_version()
        by_version = {m.version: m for m in get_all_migrations()}

        if target_version > current:
            for version in sorted(v for v in by_version if current < v <= target_version):
                self.apply_migration(by_version[version])
        elif target_version < current:
            applied = self.get_applied_versions()
            for version in sorted((v for v in applied if v > target_version), reverse=True):
                if version in by_version:
                    self.rollback_migration(by_version[version])
