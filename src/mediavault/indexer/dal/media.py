"""Data Access Layer for media and its dependent records."""

import logging
import uuid
from typing import Any, Dict, List, Optional

from ..database import DatabaseConnection
from ..models import (
    Media, MediaExif, MediaURL, VideoMetadata,
    format_timestamp, now_timestamp,
)
from .albums import SUBTREE_CTE

logger = logging.getLogger(__name__)

EXIF_COLUMNS = (
    'camera', 'maker', 'lens', 'date_shot', 'exposure', 'aperture', 'iso',
    'focal_length', 'flash', 'exposure_program', 'orientation',
    'gps_latitude', 'gps_longitude', 'gps_altitude',
)

VIDEO_COLUMNS = (
    'width', 'height', 'duration', 'codec', 'framerate', 'bitrate',
    'color_profile', 'audio', 'creation_time',
)


class MediaDAL:
    """
    Data access layer for media, media_exif, video_metadata and media_urls.

    Callers wrap the writes of one file in a single transaction so a media
    record is never visible half-populated.
    """

    def __init__(self, db: DatabaseConnection):
        """
        Initialize media DAL.

        Args:
            db: Database connection
        """
        self.db = db

    def generate_media_id(self) -> str:
        return uuid.uuid4().hex

    def insert_media(self, media: Dict[str, Any]) -> str:
        """
        Insert a new media record.

        Args:
            media: Dictionary with media data
                Required: album_id, owner_id, title, media_path, media_type
                Optional: media_id, mime_type, file_size, fingerprint,
                capture_timestamp, blurhash, width, height, scan_run_id

        Returns:
            media_id
        """
        media_id = media.get('media_id') or self.generate_media_id()
        now = now_timestamp()
        cursor = self.db.execute(
            """
            INSERT INTO media (
                media_id, album_id, owner_id, title, media_path, media_type,
                mime_type, file_size, fingerprint, capture_timestamp, blurhash,
                width, height, status, scan_run_id,
                first_seen_timestamp, last_seen_timestamp, updated_timestamp
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'present', ?, ?, ?, ?)
            """,
            (
                media_id,
                media['album_id'],
                media['owner_id'],
                media['title'],
                media['media_path'],
                media['media_type'],
                media.get('mime_type'),
                media.get('file_size', 0),
                media.get('fingerprint'),
                format_timestamp(media.get('capture_timestamp')),
                media.get('blurhash'),
                media.get('width'),
                media.get('height'),
                media.get('scan_run_id'),
                now,
                now,
                now,
            )
        )
        cursor.close()

        logger.debug(f"Inserted media: {{'media_id': {media_id!r}, 'path': {media['media_path']!r}}}")
        return media_id

    def update_media(self, media_id: str, **fields):
        """
        Update media fields.

        Args:
            media_id: Media ID
            **fields: Column values to set
        """
        if not fields:
            return

        fields = {
            key: format_timestamp(value) if key == 'capture_timestamp' else value
            for key, value in fields.items()
        }
        fields['updated_timestamp'] = now_timestamp()

        set_clauses = [f"{key} = ?" for key in fields]
        params = list(fields.values()) + [media_id]
        cursor = self.db.execute(
            f"UPDATE media SET {', '.join(set_clauses)} WHERE media_id = ?",
            tuple(params)
        )
        cursor.close()

    def mark_seen(self, media_id: str, scan_run_id: str, album_id: Optional[str] = None):
        """Record that an unchanged file was seen; revives tombstoned media."""
        if album_id is None:
            cursor = self.db.execute(
                """
                UPDATE media
                SET status = 'present', scan_run_id = ?, last_seen_timestamp = ?
                WHERE media_id = ?
                """,
                (scan_run_id, now_timestamp(), media_id)
            )
        else:
            cursor = self.db.execute(
                """
                UPDATE media
                SET status = 'present', scan_run_id = ?, last_seen_timestamp = ?, album_id = ?
                WHERE media_id = ?
                """,
                (scan_run_id, now_timestamp(), album_id, media_id)
            )
        cursor.close()

    def mark_subtree_missing(self, root_album_id: str, scan_run_id: str) -> List[str]:
        """
        Tombstone media below a root album that were not seen in this scan run.

        Returns:
            Ids of media newly marked missing
        """
        rows = self.db.fetch_all(
            SUBTREE_CTE + """
            SELECT media_id FROM media
            WHERE album_id IN (SELECT album_id FROM subtree)
              AND status = 'present'
              AND (scan_run_id IS NULL OR scan_run_id != ?)
            """,
            (root_album_id, scan_run_id)
        )
        media_ids = [row['media_id'] for row in rows]
        if media_ids:
            placeholders = ','.join('?' * len(media_ids))
            cursor = self.db.execute(
                f"UPDATE media SET status = 'missing' WHERE media_id IN ({placeholders})",
                tuple(media_ids)
            )
            cursor.close()
        return media_ids

    def get_media(self, media_id: str, with_details: bool = False) -> Optional[Media]:
        row = self.db.fetch_one("SELECT * FROM media WHERE media_id = ?", (media_id,))
        if row is None:
            return None
        media = Media.from_row(row)
        if with_details:
            self._attach_details(media)
        return media

    def get_media_by_path(self, owner_id: str, path: str) -> Optional[Media]:
        row = self.db.fetch_one(
            "SELECT * FROM media WHERE owner_id = ? AND media_path = ?",
            (owner_id, path)
        )
        return Media.from_row(row) if row else None

    def _attach_details(self, media: Media):
        media.exif = self.get_exif(media.media_id)
        media.video_metadata = self.get_video_metadata(media.media_id)
        media.urls = self.get_urls(media.media_id)

    def list_album_media(self, album_id: str, include_missing: bool = False) -> List[Media]:
        sql = "SELECT * FROM media WHERE album_id = ?"
        if not include_missing:
            sql += " AND status = 'present'"
        sql += " ORDER BY capture_timestamp, title"
        rows = self.db.fetch_all(sql, (album_id,))
        return [Media.from_row(row) for row in rows]

    def list_subtree_media(self, root_album_id: str, include_missing: bool = True) -> List[Media]:
        sql = SUBTREE_CTE + "SELECT * FROM media WHERE album_id IN (SELECT album_id FROM subtree)"
        if not include_missing:
            sql += " AND status = 'present'"
        rows = self.db.fetch_all(sql, (root_album_id,))
        return [Media.from_row(row) for row in rows]

    def list_timeline_media(
        self,
        owner_id: str,
        only_favorites: bool = False,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Media]:
        """Present media of a user, newest capture first."""
        sql = "SELECT * FROM media WHERE owner_id = ? AND status = 'present'"
        if only_favorites:
            sql += " AND favorite = 1"
        sql += " ORDER BY capture_timestamp DESC, album_id, title"
        params: list = [owner_id]
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(offset)
        rows = self.db.fetch_all(sql, tuple(params))
        return [Media.from_row(row) for row in rows]

    def set_favorite(self, media_id: str, favorite: bool):
        cursor = self.db.execute(
            "UPDATE media SET favorite = ? WHERE media_id = ?",
            (int(favorite), media_id)
        )
        cursor.close()

    def list_missing_before(self, owner_id: Optional[str], cutoff: str) -> List[Media]:
        sql = "SELECT * FROM media WHERE status = 'missing' AND last_seen_timestamp < ?"
        params: list = [cutoff]
        if owner_id is not None:
            sql += " AND owner_id = ?"
            params.append(owner_id)
        rows = self.db.fetch_all(sql, tuple(params))
        return [Media.from_row(row) for row in rows]

    def delete_media(self, media_id: str):
        """Hard-delete a media record; EXIF, video metadata, URLs and faces cascade."""
        cursor = self.db.execute("DELETE FROM media WHERE media_id = ?", (media_id,))
        cursor.close()

    def count_media(self, owner_id: Optional[str] = None, status: str = 'present') -> int:
        if owner_id is None:
            row = self.db.fetch_one("SELECT COUNT(*) AS n FROM media WHERE status = ?", (status,))
        else:
            row = self.db.fetch_one(
                "SELECT COUNT(*) AS n FROM media WHERE owner_id = ? AND status = ?",
                (owner_id, status)
            )
        return row['n']

    # Dependent records

    def replace_exif(self, media_id: str, exif: Optional[MediaExif]):
        cursor = self.db.execute("DELETE FROM media_exif WHERE media_id = ?", (media_id,))
        cursor.close()
        if exif is None:
            return

        values = [getattr(exif, column) for column in EXIF_COLUMNS]
        values[EXIF_COLUMNS.index('date_shot')] = format_timestamp(exif.date_shot)
        cursor = self.db.execute(
            f"""
            INSERT INTO media_exif (media_id, {', '.join(EXIF_COLUMNS)})
            VALUES (?, {', '.join('?' * len(EXIF_COLUMNS))})
            """,
            (media_id, *values)
        )
        cursor.close()

    def get_exif(self, media_id: str) -> Optional[MediaExif]:
        row = self.db.fetch_one("SELECT * FROM media_exif WHERE media_id = ?", (media_id,))
        return MediaExif.from_row(row) if row else None

    def replace_video_metadata(self, media_id: str, video: Optional[VideoMetadata]):
        cursor = self.db.execute("DELETE FROM video_metadata WHERE media_id = ?", (media_id,))
        cursor.close()
        if video is None:
            return

        values = [getattr(video, column) for column in VIDEO_COLUMNS]
        values[VIDEO_COLUMNS.index('creation_time')] = format_timestamp(video.creation_time)
        cursor = self.db.execute(
            f"""
            INSERT INTO video_metadata (media_id, {', '.join(VIDEO_COLUMNS)})
            VALUES (?, {', '.join('?' * len(VIDEO_COLUMNS))})
            """,
            (media_id, *values)
        )
        cursor.close()

    def get_video_metadata(self, media_id: str) -> Optional[VideoMetadata]:
        row = self.db.fetch_one("SELECT * FROM video_metadata WHERE media_id = ?", (media_id,))
        return VideoMetadata.from_row(row) if row else None

    def replace_urls(self, media_id: str, urls: List[MediaURL]):
        """Replace all URL records of a media; one record per purpose."""
        cursor = self.db.execute("DELETE FROM media_urls WHERE media_id = ?", (media_id,))
        cursor.close()
        if not urls:
            return

        cursor = self.db.executemany(
            """
            INSERT INTO media_urls (media_id, purpose, file_path, width, height, file_size, content_type)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (media_id, url.purpose.value, url.file_path, url.width, url.height,
                 url.file_size, url.content_type)
                for url in urls
            ]
        )
        cursor.close()

    def get_urls(self, media_id: str) -> List[MediaURL]:
        rows = self.db.fetch_all(
            "SELECT * FROM media_urls WHERE media_id = ? ORDER BY purpose",
            (media_id,)
        )
        return [MediaURL.from_row(row) for row in rows]
