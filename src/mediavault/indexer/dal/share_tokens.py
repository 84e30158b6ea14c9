"""Data Access Layer for share_tokens table."""

import logging
from typing import List, Optional, Sequence

from ..database import DatabaseConnection
from ..models import (
    AlbumTarget, MediaTarget, ShareTarget, ShareToken,
    format_timestamp, now_timestamp, parse_timestamp,
)

logger = logging.getLogger(__name__)


def _token_from_row(row) -> ShareToken:
    if row['album_id'] is not None:
        target: ShareTarget = AlbumTarget(album_id=row['album_id'])
    else:
        target = MediaTarget(media_id=row['media_id'])
    return ShareToken(
        token=row['token'],
        owner_id=row['owner_id'],
        target=target,
        expire=parse_timestamp(row['expire']),
        has_password=row['password_hash'] is not None,
        created_timestamp=parse_timestamp(row['created_timestamp']),
    )


class ShareTokenDAL:
    """
    Data access layer for share_tokens table.

    Targets are stored as plain ids without foreign keys so tokens survive
    the removal of what they point at.
    """

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def insert_token(self, token: str, owner_id: str, target: ShareTarget, expire=None,
                     password_hash: Optional[str] = None):
        album_id = target.album_id if isinstance(target, AlbumTarget) else None
        media_id = target.media_id if isinstance(target, MediaTarget) else None
        cursor = self.db.execute(
            """
            INSERT INTO share_tokens (
                token, owner_id, album_id, media_id, expire, password_hash, created_timestamp
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (token, owner_id, album_id, media_id, format_timestamp(expire),
             password_hash, now_timestamp())
        )
        cursor.close()

    def get_token(self, token: str) -> Optional[ShareToken]:
        row = self.db.fetch_one("SELECT * FROM share_tokens WHERE token = ?", (token,))
        return _token_from_row(row) if row else None

    def get_password_hash(self, token: str) -> Optional[str]:
        row = self.db.fetch_one("SELECT password_hash FROM share_tokens WHERE token = ?", (token,))
        return row['password_hash'] if row else None

    def set_password_hash(self, token: str, password_hash: Optional[str]):
        cursor = self.db.execute(
            "UPDATE share_tokens SET password_hash = ? WHERE token = ?",
            (password_hash, token)
        )
        cursor.close()

    def delete_token(self, token: str) -> bool:
        cursor = self.db.execute("DELETE FROM share_tokens WHERE token = ?", (token,))
        deleted = cursor.rowcount > 0
        cursor.close()
        return deleted

    def list_for_album(self, album_id: str) -> List[ShareToken]:
        rows = self.db.fetch_all(
            "SELECT * FROM share_tokens WHERE album_id = ? ORDER BY created_timestamp",
            (album_id,)
        )
        return [_token_from_row(row) for row in rows]

    def list_for_media(self, media_id: str) -> List[ShareToken]:
        rows = self.db.fetch_all(
            "SELECT * FROM share_tokens WHERE media_id = ? ORDER BY created_timestamp",
            (media_id,)
        )
        return [_token_from_row(row) for row in rows]

    def list_active_referencing(self, album_ids: Sequence[str], media_ids: Sequence[str],
                                now: str) -> List[ShareToken]:
        """Unexpired tokens pointing at any of the given albums or media."""
        tokens: List[ShareToken] = []
        for column, ids in (('album_id', album_ids), ('media_id', media_ids)):
            # Chunk to stay below SQLite's host parameter limit
            for start in range(0, len(ids), 500):
                chunk = list(ids[start:start + 500])
                placeholders = ','.join('?' * len(chunk))
                rows = self.db.fetch_all(
                    f"""
                    SELECT * FROM share_tokens
                    WHERE {column} IN ({placeholders})
                      AND (expire IS NULL OR expire > ?)
                    """,
                    (*chunk, now)
                )
                tokens.extend(_token_from_row(row) for row in rows)
        return tokens
