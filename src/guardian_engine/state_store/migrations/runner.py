"""
Migration runner for versioned schema changes.

Migration modules live next to this file and are named ``NNN_name.py``.
Each one defines VERSION, NAME, ``upgrade(conn)`` and optionally
``downgrade(conn)``.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ...schemas.records import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class Migration:
    """One schema step."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None


def get_all_migrations() -> list[Migration]:
    """Load every migration module in this package, sorted by version.

    A module missing VERSION, NAME or upgrade is an error: silently skipping
    it would leave the schema behind the code.
    """
    migrations = []
    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{__package__}.{py_file.stem}")
        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )
    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """Applies pending migrations and records them in a ``migrations`` table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
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

    def applied_versions(self) -> set[int]:
        """Versions already applied."""
        return {row[0] for row in self.conn.execute("SELECT version FROM migrations")}

    def current_version(self) -> int:
        """Highest applied version (0 for a fresh database)."""
        return max(self.applied_versions(), default=0)

    def _apply(self, migration: Migration) -> None:
        logger.info("Applying migration %03d_%s", migration.version, migration.name)
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, utc_now_iso()),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Migration %03d_%s failed", migration.version, migration.name)
            raise

    def _revert(self, migration: Migration) -> None:
        if migration.downgrade is None:
            raise NotImplementedError(
                f"Migration {migration.version} ({migration.name}) does not support rollback"
            )
        logger.info("Reverting migration %03d_%s", migration.version, migration.name)
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Rollback of %03d_%s failed", migration.version, migration.name)
            raise

    def run_pending(self) -> list[int]:
        """Apply every migration not yet recorded. Returns the applied versions."""
        applied = self.applied_versions()
        done = []
        for migration in get_all_migrations():
            if migration.version not in applied:
                self._apply(migration)
                done.append(migration.version)
        if done:
            logger.info("Applied %d migrations: %s", len(done), done)
        return done

    def migrate_to(self, target_version: int) -> None:
        """Upgrade or downgrade until the schema is at target_version."""
        applied = self.applied_versions()
        for migration in get_all_migrations():
            if migration.version <= target_version and migration.version not in applied:
                self._apply(migration)
        for migration in reversed(get_all_migrations()):
            if migration.version > target_version and migration.version in applied:
                self._revert(migration)
