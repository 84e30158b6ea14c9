"""Data Access Layer for processing_errors table."""

import logging
from typing import List, Dict, Any

from ..database import DatabaseConnection
from ..models import now_timestamp

logger = logging.getLogger(__name__)


class ProcessingErrorDAL:
    """
    Data access layer for processing_errors table.

    Records non-fatal per-file failures encountered during scanning.
    """

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def insert_error(self, scan_run_id: str, file_path: str, error_category: str, error_message: str):
        """
        Insert a processing error.

        Args:
            scan_run_id: Scan run ID
            file_path: Path to file or directory that failed
            error_category: Category from classify_error()
            error_message: Detailed error message
        """
        cursor = self.db.execute(
            """
            INSERT INTO processing_errors (
                scan_run_id, file_path, error_category, error_message, timestamp
            )
            VALUES (?, ?, ?, ?, ?)
            """,
            (scan_run_id, file_path, error_category, error_message, now_timestamp())
        )
        cursor.close()

        logger.debug(f"Recorded error: {{'path': {file_path!r}, 'category': {error_category!r}}}")

    def get_errors_by_scan(self, scan_run_id: str) -> List[Dict[str, Any]]:
        rows = self.db.fetch_all(
            "SELECT * FROM processing_errors WHERE scan_run_id = ? ORDER BY error_id",
            (scan_run_id,)
        )
        return [dict(row) for row in rows]

    def get_error_count_by_category(self, scan_run_id: str) -> Dict[str, int]:
        rows = self.db.fetch_all(
            """
            SELECT error_category, COUNT(*) AS count
            FROM processing_errors
            WHERE scan_run_id = ?
            GROUP BY error_category
            """,
            (scan_run_id,)
        )
        return {row['error_category']: row['count'] for row in rows}
