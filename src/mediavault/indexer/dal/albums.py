"""Data Access Layer for albums table."""

import logging
import uuid
from typing import List, Optional, Tuple

from ..database import DatabaseConnection
from ..errors import ConflictError, InvalidArgumentError
from ..models import Album, now_timestamp

logger = logging.getLogger(__name__)

# Album ids of a subtree, root included
SUBTREE_CTE = """
    WITH RECURSIVE subtree(album_id) AS (
        SELECT album_id FROM albums WHERE album_id = ?
        UNION ALL
        SELECT a.album_id FROM albums a JOIN subtree s ON a.parent_album_id = s.album_id
    )
"""


class AlbumDAL:
    """
    Data access layer for albums table.

    Every scanned directory is an album. Albums form a forest per owner:
    the parent is referenced by id and must belong to the same owner.
    """

    def __init__(self, db: DatabaseConnection):
        """
        Initialize album DAL.

        Args:
            db: Database connection
        """
        self.db = db

    def insert_album(
        self,
        owner_id: str,
        path: str,
        title: str,
        parent_album_id: Optional[str] = None,
        scan_run_id: Optional[str] = None
    ) -> Album:
        """
        Insert a new album.

        Raises:
            InvalidArgumentError: If the parent is unknown or owned by someone else
        """
        album_id = uuid.uuid4().hex
        if parent_album_id is not None:
            self._check_parent(album_id, parent_album_id, owner_id)

        now = now_timestamp()
        cursor = self.db.execute(
            """
            INSERT INTO albums (
                album_id, owner_id, parent_album_id, title, album_path,
                status, scan_run_id, first_seen_timestamp, last_seen_timestamp
            )
            VALUES (?, ?, ?, ?, ?, 'present', ?, ?, ?)
            """,
            (album_id, owner_id, parent_album_id, title, path, scan_run_id, now, now)
        )
        cursor.close()

        logger.debug(f"Inserted album: {{'album_id': {album_id!r}, 'path': {path!r}}}")
        return self.get_album(album_id)

    def upsert_album(
        self,
        owner_id: str,
        path: str,
        title: str,
        parent_album_id: Optional[str],
        scan_run_id: str
    ) -> Tuple[Album, bool]:
        """
        Insert the album for a directory or mark the existing one as seen.

        Returns:
            (album, created) tuple
        """
        existing = self.get_album_by_path(owner_id, path)
        if existing is None:
            return self.insert_album(owner_id, path, title, parent_album_id, scan_run_id), True

        if existing.parent_album_id != parent_album_id:
            self._check_parent(existing.album_id, parent_album_id, owner_id)

        cursor = self.db.execute(
            """
            UPDATE albums
            SET parent_album_id = ?, title = ?, status = 'present',
                scan_run_id = ?, last_seen_timestamp = ?
            WHERE album_id = ?
            """,
            (parent_album_id, title, scan_run_id, now_timestamp(), existing.album_id)
        )
        cursor.close()
        return self.get_album(existing.album_id), False

    def _check_parent(self, album_id: str, parent_album_id: Optional[str], owner_id: str):
        """
        Reject a parent link that crosses owners or would close a cycle.

        Raises:
            InvalidArgumentError: Unknown parent or parent owned by another user
            ConflictError: The link would make the album its own ancestor
        """
        if parent_album_id is None:
            return

        current = parent_album_id
        while current is not None:
            row = self.db.fetch_one(
                "SELECT owner_id, parent_album_id FROM albums WHERE album_id = ?",
                (current,)
            )
            if row is None:
                raise InvalidArgumentError("Parent album does not exist", album_id=parent_album_id)
            if row['owner_id'] != owner_id:
                raise InvalidArgumentError("Parent album belongs to another user", album_id=parent_album_id)
            if current == album_id:
                raise ConflictError("Album cannot be its own ancestor", album_id=album_id)
            current = row['parent_album_id']

    def get_album(self, album_id: str) -> Optional[Album]:
        row = self.db.fetch_one("SELECT * FROM albums WHERE album_id = ?", (album_id,))
        return Album.from_row(row) if row else None

    def get_album_by_path(self, owner_id: str, path: str) -> Optional[Album]:
        row = self.db.fetch_one(
            "SELECT * FROM albums WHERE owner_id = ? AND album_path = ?",
            (owner_id, path)
        )
        return Album.from_row(row) if row else None

    def list_root_albums(self, owner_id: str) -> List[Album]:
        """Root albums (root paths) of a user, ordered by path."""
        rows = self.db.fetch_all(
            """
            SELECT * FROM albums
            WHERE owner_id = ? AND parent_album_id IS NULL
            ORDER BY album_path
            """,
            (owner_id,)
        )
        return [Album.from_row(row) for row in rows]

    def list_owners_with_roots(self) -> List[str]:
        rows = self.db.fetch_all(
            """
            SELECT DISTINCT a.owner_id FROM albums a
            JOIN users u ON u.user_id = a.owner_id
            WHERE a.parent_album_id IS NULL
            ORDER BY u.username
            """
        )
        return [row['owner_id'] for row in rows]

    def list_child_albums(self, album_id: str, include_missing: bool = False) -> List[Album]:
        sql = "SELECT * FROM albums WHERE parent_album_id = ?"
        if not include_missing:
            sql += " AND status = 'present'"
        sql += " ORDER BY title, album_path"
        rows = self.db.fetch_all(sql, (album_id,))
        return [Album.from_row(row) for row in rows]

    def list_subtree_album_ids(self, album_id: str) -> List[str]:
        rows = self.db.fetch_all(SUBTREE_CTE + "SELECT album_id FROM subtree", (album_id,))
        return [row['album_id'] for row in rows]

    def get_ancestors(self, album_id: str) -> List[Album]:
        """
        Breadcrumb from the root album down to (and including) the album.

        Returns:
            List of albums, root first; empty if the album is unknown
        """
        chain = []
        current = self.get_album(album_id)
        while current is not None:
            chain.append(current)
            if current.parent_album_id is None:
                break
            current = self.get_album(current.parent_album_id)
        chain.reverse()
        return chain

    def find_root_album(self, album_id: str) -> Optional[Album]:
        chain = self.get_ancestors(album_id)
        return chain[0] if chain else None

    def mark_subtree_missing(self, root_album_id: str, scan_run_id: str) -> int:
        """
        Tombstone albums of a root's subtree that were not seen in this scan run.

        Returns:
            Number of albums marked missing
        """
        rows = self.db.fetch_all(
            SUBTREE_CTE + """
            SELECT album_id FROM albums
            WHERE album_id IN (SELECT album_id FROM subtree)
              AND status = 'present'
              AND (scan_run_id IS NULL OR scan_run_id != ?)
            """,
            (root_album_id, scan_run_id)
        )
        album_ids = [row['album_id'] for row in rows]
        if album_ids:
            placeholders = ','.join('?' * len(album_ids))
            cursor = self.db.execute(
                f"UPDATE albums SET status = 'missing' WHERE album_id IN ({placeholders})",
                tuple(album_ids)
            )
            cursor.close()
        return len(album_ids)

    def touch_subtree(self, album_id: str, scan_run_id: str):
        """
        Attribute a subtree's albums and media to a scan run without changing status.

        Used when a directory could not be listed, so its contents are not
        tombstoned for a transient failure.
        """
        for table in ('albums', 'media'):
            cursor = self.db.execute(
                SUBTREE_CTE + f"""
                UPDATE {table} SET scan_run_id = ?
                WHERE album_id IN (SELECT album_id FROM subtree)
                """,
                (album_id, scan_run_id)
            )
            cursor.close()

    def set_cover(self, album_id: str, media_id: Optional[str]):
        cursor = self.db.execute(
            "UPDATE albums SET cover_media_id = ? WHERE album_id = ?",
            (media_id, album_id)
        )
        cursor.close()

    def clear_cover_references(self, media_ids: List[str]):
        if not media_ids:
            return
        placeholders = ','.join('?' * len(media_ids))
        cursor = self.db.execute(
            f"UPDATE albums SET cover_media_id = NULL WHERE cover_media_id IN ({placeholders})",
            tuple(media_ids)
        )
        cursor.close()

    def delete_album(self, album_id: str):
        """Hard-delete an album; child albums and media cascade."""
        cursor = self.db.execute("DELETE FROM albums WHERE album_id = ?", (album_id,))
        cursor.close()
        logger.debug(f"Deleted album: {{'album_id': {album_id!r}}}")

    def list_missing_before(self, owner_id: Optional[str], cutoff: str) -> List[Album]:
        sql = "SELECT * FROM albums WHERE status = 'missing' AND last_seen_timestamp < ?"
        params: list = [cutoff]
        if owner_id is not None:
            sql += " AND owner_id = ?"
            params.append(owner_id)
        rows = self.db.fetch_all(sql, tuple(params))
        return [Album.from_row(row) for row in rows]
