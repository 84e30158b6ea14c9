"""Data Access Layer for scan_runs table."""

import logging
import uuid
from typing import Optional, Dict, Any

from ..database import DatabaseConnection
from ..models import now_timestamp

logger = logging.getLogger(__name__)


class ScanRunDAL:
    """
    Data access layer for scan_runs table.

    One row per user scan with its outcome and file counters.
    """

    def __init__(self, db: DatabaseConnection):
        """
        Initialize scan run DAL.

        Args:
            db: Database connection
        """
        self.db = db

    def create_scan_run(self, user_id: str) -> str:
        """
        Create a new scan run for a user.

        Returns:
            scan_run_id (UUID4 string)
        """
        scan_run_id = str(uuid.uuid4())

        cursor = self.db.execute(
            """
            INSERT INTO scan_runs (scan_run_id, user_id, status, start_timestamp)
            VALUES (?, ?, 'running', ?)
            """,
            (scan_run_id, user_id, now_timestamp())
        )
        cursor.close()

        logger.debug(f"Created scan run: {{'scan_run_id': {scan_run_id!r}, 'user_id': {user_id!r}}}")
        return scan_run_id

    def update_scan_run(self, scan_run_id: str, **fields):
        """
        Update scan run fields.

        Args:
            scan_run_id: Scan run ID
            **fields: Fields to update (e.g., new_files=10)
        """
        if not fields:
            return

        set_clause = ", ".join(f"{key} = ?" for key in fields.keys())
        values = list(fields.values())
        values.append(scan_run_id)

        cursor = self.db.execute(
            f"UPDATE scan_runs SET {set_clause} WHERE scan_run_id = ?",
            tuple(values)
        )
        cursor.close()

    def complete_scan_run(self, scan_run_id: str, status: str = 'completed', message: Optional[str] = None):
        """
        Mark scan run as finished.

        Args:
            scan_run_id: Scan run ID
            status: Final status ('completed', 'failed' or 'cancelled')
            message: Human-readable outcome
        """
        end_timestamp = now_timestamp()

        cursor = self.db.execute(
            """
            UPDATE scan_runs
            SET status = ?,
                message = ?,
                end_timestamp = ?,
                duration_seconds = (julianday(?) - julianday(start_timestamp)) * 86400
            WHERE scan_run_id = ?
            """,
            (status, message, end_timestamp, end_timestamp, scan_run_id)
        )
        cursor.close()

        logger.debug(f"Completed scan run: {{'scan_run_id': {scan_run_id!r}, 'status': {status!r}}}")

    def get_scan_run(self, scan_run_id: str) -> Optional[Dict[str, Any]]:
        row = self.db.fetch_one("SELECT * FROM scan_runs WHERE scan_run_id = ?", (scan_run_id,))
        return dict(row) if row else None

    def get_latest_scan_run(self, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Get the most recent scan run, optionally for one user.

        Returns:
            Dictionary with scan run data, or None if no runs exist
        """
        if user_id is None:
            row = self.db.fetch_one("SELECT * FROM scan_runs ORDER BY start_timestamp DESC LIMIT 1")
        else:
            row = self.db.fetch_one(
                "SELECT * FROM scan_runs WHERE user_id = ? ORDER BY start_timestamp DESC LIMIT 1",
                (user_id,)
            )
        return dict(row) if row else None
