"""Database connection manager for SQLite with WAL mode and proper configuration."""

import sqlite3
import logging
from pathlib import Path
from typing import Optional
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """
    Manages one SQLite connection to the catalog.

    Features:
    - WAL mode so scan workers can read while another thread writes
    - Busy timeout instead of immediate "database is locked" failures
    - Autocommit by default; ``transaction()`` groups statements atomically
      and may be nested (inner blocks join the outer transaction)

    A connection must only be used by one thread at a time; the catalog keeps
    one instance per thread.
    """

    def __init__(self, db_path: Path):
        """
        Initialize database connection manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._transaction_depth = 0

    def connect(self) -> sqlite3.Connection:
        """
        Establish database connection with proper configuration.

        Returns:
            SQLite connection object

        Raises:
            sqlite3.Error: If connection fails
        """
        if self._connection is not None:
            return self._connection

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.debug(f"Connecting to database: {{'path': {str(self.db_path)!r}}}")
        self._connection = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,  # closed from the owning catalog on shutdown
            timeout=30.0,
            isolation_level=None,
        )
        self._connection.row_factory = sqlite3.Row

        self._apply_pragmas()
        return self._connection

    def _apply_pragmas(self):
        """Apply SQLite PRAGMAs for concurrency and integrity."""
        cursor = self._connection.cursor()

        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA temp_store=MEMORY")
        # Dependent records (EXIF, video metadata, URLs, faces) cascade with media
        cursor.execute("PRAGMA foreign_keys=ON")

        cursor.close()

    @property
    def in_transaction(self) -> bool:
        return self._transaction_depth > 0

    @contextmanager
    def transaction(self):
        """
        Context manager for explicit transactions.

        Usage:
            with db.transaction() as cursor:
                cursor.execute(...)
                cursor.execute(...)
            # Commits on success, rolls back on exception

        Nested blocks reuse the outer transaction; only the outermost block
        commits or rolls back.
        """
        if self._connection is None:
            self.connect()

        cursor = self._connection.cursor()
        outermost = self._transaction_depth == 0
        self._transaction_depth += 1
        try:
            if outermost:
                cursor.execute("BEGIN IMMEDIATE")
            yield cursor
            if outermost:
                self._connection.execute("COMMIT")
        except BaseException:
            if outermost:
                self._connection.execute("ROLLBACK")
            raise
        finally:
            self._transaction_depth -= 1
            cursor.close()

    def execute(self, sql: str, parameters=None):
        """
        Execute a single SQL statement.

        Args:
            sql: SQL statement
            parameters: Optional parameters for parameterized query

        Returns:
            Cursor object
        """
        if self._connection is None:
            self.connect()

        cursor = self._connection.cursor()
        if parameters:
            cursor.execute(sql, parameters)
        else:
            cursor.execute(sql)
        return cursor

    def executemany(self, sql: str, parameters):
        """
        Execute a SQL statement with multiple parameter sets.

        Returns:
            Cursor object
        """
        if self._connection is None:
            self.connect()

        cursor = self._connection.cursor()
        cursor.executemany(sql, parameters)
        return cursor

    def executescript(self, script: str) -> None:
        """Run a multi-statement SQL script (migrations)."""
        if self._connection is None:
            self.connect()
        self._connection.executescript(script)

    def fetch_one(self, sql: str, parameters=None) -> Optional[sqlite3.Row]:
        cursor = self.execute(sql, parameters)
        try:
            return cursor.fetchone()
        finally:
            cursor.close()

    def fetch_all(self, sql: str, parameters=None) -> list:
        cursor = self.execute(sql, parameters)
        try:
            return cursor.fetchall()
        finally:
            cursor.close()

    def close(self):
        """Close database connection."""
        if self._connection is not None:
            try:
                cursor = self._connection.cursor()
                cursor.execute("PRAGMA wal_checkpoint(PASSIVE)")
                cursor.close()
            except sqlite3.Error as e:
                logger.warning(f"Failed to checkpoint WAL: {{'error': {str(e)!r}}}")

            self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
