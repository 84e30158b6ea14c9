"""Database migration system for schema versioning."""

import logging
import sqlite3
from pathlib import Path
from typing import Optional, List

from .database import DatabaseConnection

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).parent / "schema"


class MigrationRunner:
    """
    Manages catalog schema migrations.

    Migration files live in ``schema/`` and are named ``NNN_description.sql``.
    Each file is applied in its own transaction and records its version in
    ``schema_version``; running the migrations twice is a no-op.
    """

    def __init__(self, db: DatabaseConnection, schema_dir: Path = SCHEMA_DIR):
        """
        Initialize migration runner.

        Args:
            db: Database connection
            schema_dir: Directory containing migration SQL files
        """
        self.db = db
        self.schema_dir = schema_dir

    def get_current_version(self) -> int:
        """
        Get current schema version from database.

        Returns:
            Current version number (0 if schema_version table doesn't exist)
        """
        try:
            row = self.db.fetch_one("SELECT MAX(version) AS version FROM schema_version")
        except sqlite3.OperationalError:
            logger.debug("schema_version table not found, assuming version 0")
            return 0

        if row and row['version'] is not None:
            return row['version']
        return 0

    def _get_available_migrations(self) -> List[tuple[int, Path]]:
        """
        Get list of available migration files.

        Returns:
            List of (version, path) tuples sorted by version
        """
        migrations = []

        if not self.schema_dir.exists():
            logger.warning(f"Schema directory not found: {{'path': {str(self.schema_dir)!r}}}")
            return migrations

        for sql_file in self.schema_dir.glob("*.sql"):
            try:
                version = int(sql_file.stem.split('_')[0])
            except (ValueError, IndexError):
                logger.warning(f"Skipping invalid migration file: {{'name': {sql_file.name!r}}}")
                continue
            migrations.append((version, sql_file))

        migrations.sort(key=lambda x: x[0])
        return migrations

    def apply_migrations(self, target_version: Optional[int] = None) -> int:
        """
        Apply pending migrations up to target version.

        Args:
            target_version: Version to migrate to (None = latest)

        Returns:
            Schema version after migrating

        Raises:
            sqlite3.Error: If a migration fails (that migration is rolled back)
        """
        current_version = self.get_current_version()
        available_migrations = self._get_available_migrations()

        if not available_migrations:
            logger.info("No migrations found")
            return current_version

        if target_version is None:
            target_version = max(v for v, _ in available_migrations)

        pending_migrations = [
            (version, path) for version, path in available_migrations
            if current_version < version <= target_version
        ]

        if not pending_migrations:
            logger.debug(f"No pending migrations: {{'version': {current_version}}}")
            return current_version

        logger.info(f"Applying migrations: {{'from': {current_version}, 'to': {target_version}, 'count': {len(pending_migrations)}}}")

        for version, migration_path in pending_migrations:
            self._apply_migration(version, migration_path)

        return target_version

    def _apply_migration(self, version: int, migration_path: Path):
        """
        Apply a single migration file atomically.

        Raises:
            sqlite3.Error: If migration fails
        """
        logger.info(f"Applying migration: {{'version': {version}, 'file': {migration_path.name!r}}}")

        sql = migration_path.read_text(encoding='utf-8')
        script = (
            "BEGIN;\n"
            f"{sql}\n"
            f"INSERT INTO schema_version (version, applied_timestamp) VALUES ({version}, datetime('now'));\n"
            "COMMIT;"
        )

        try:
            self.db.executescript(script)
        except sqlite3.Error as e:
            logger.error(f"Failed to apply migration: {{'version': {version}, 'error': {str(e)!r}}}")
            try:
                self.db.execute("ROLLBACK").close()
            except sqlite3.Error:
                logger.debug("No open transaction to roll back")
            raise

    def verify_schema(self) -> bool:
        """
        Verify that database schema matches the latest migration.

        Returns:
            True if schema is up to date, False otherwise
        """
        current_version = self.get_current_version()
        available_migrations = self._get_available_migrations()

        if not available_migrations:
            return False

        latest_version = max(v for v, _ in available_migrations)
        if current_version < latest_version:
            logger.warning(f"Schema out of date: {{'current': {current_version}, 'latest': {latest_version}}}")
            return False

        return True
