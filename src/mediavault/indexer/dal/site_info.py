"""Data Access Layer for the single-row site_info table."""

import logging
from typing import Optional

from ..database import DatabaseConnection
from ..models import SiteInfo, ThumbnailFilter

logger = logging.getLogger(__name__)


class SiteInfoDAL:
    """Persisted scanner settings (one row, id 1)."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def get(self) -> Optional[SiteInfo]:
        row = self.db.fetch_one("SELECT * FROM site_info WHERE site_info_id = 1")
        if row is None:
            return None
        return SiteInfo(
            periodic_scan_interval=row['periodic_scan_interval'],
            concurrent_workers=row['concurrent_workers'],
            thumbnail_method=ThumbnailFilter(row['thumbnail_method']),
        )

    def initialize(self, defaults: SiteInfo) -> SiteInfo:
        """Seed the row from defaults unless it already exists."""
        cursor = self.db.execute(
            """
            INSERT OR IGNORE INTO site_info (
                site_info_id, periodic_scan_interval, concurrent_workers, thumbnail_method
            )
            VALUES (1, ?, ?, ?)
            """,
            (defaults.periodic_scan_interval, defaults.concurrent_workers,
             defaults.thumbnail_method.value)
        )
        if cursor.rowcount:
            logger.info(f"Initialized site info: {{'concurrent_workers': {defaults.concurrent_workers}, "
                        f"'periodic_scan_interval': {defaults.periodic_scan_interval}, "
                        f"'thumbnail_method': {defaults.thumbnail_method.value!r}}}")
        cursor.close()
        return self.get()

    def update(self, **fields):
        """
        Update settings.

        Args:
            **fields: periodic_scan_interval, concurrent_workers and/or thumbnail_method
        """
        if not fields:
            return
        values = {
            key: value.value if isinstance(value, ThumbnailFilter) else value
            for key, value in fields.items()
        }
        set_clauses = [f"{key} = ?" for key in values]
        cursor = self.db.execute(
            f"UPDATE site_info SET {', '.join(set_clauses)} WHERE site_info_id = 1",
            tuple(values.values())
        )
        cursor.close()
