"""Data Access Layer for face_groups and image_faces tables."""

import logging
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..database import DatabaseConnection
from ..models import FaceGroup, FaceRectangle, ImageFace, now_timestamp
from ..faces.embeddings import embedding_to_hex, hex_to_embedding

logger = logging.getLogger(__name__)


def _face_from_row(row) -> ImageFace:
    return ImageFace(
        image_face_id=row['image_face_id'],
        media_id=row['media_id'],
        face_group_id=row['face_group_id'],
        rectangle=FaceRectangle(
            min_x=row['rect_min_x'],
            max_x=row['rect_max_x'],
            min_y=row['rect_min_y'],
            max_y=row['rect_max_y'],
        ),
    )


class FaceDAL:
    """
    Data access layer for face groups and the image faces they contain.

    Every image face references exactly one group; the face clusterer keeps
    groups non-empty by deleting the ones it empties.
    """

    def __init__(self, db: DatabaseConnection):
        self.db = db

    # Groups

    def insert_group(self, owner_id: str, label: Optional[str] = None) -> str:
        face_group_id = uuid.uuid4().hex
        cursor = self.db.execute(
            """
            INSERT INTO face_groups (face_group_id, owner_id, label, created_timestamp)
            VALUES (?, ?, ?, ?)
            """,
            (face_group_id, owner_id, label, now_timestamp())
        )
        cursor.close()
        return face_group_id

    def get_group(self, face_group_id: str, with_faces: bool = False) -> Optional[FaceGroup]:
        row = self.db.fetch_one(
            "SELECT * FROM face_groups WHERE face_group_id = ?",
            (face_group_id,)
        )
        if row is None:
            return None
        group = FaceGroup(
            face_group_id=row['face_group_id'],
            owner_id=row['owner_id'],
            label=row['label'],
        )
        if with_faces:
            group.image_faces = self.list_group_faces(face_group_id)
        return group

    def list_groups(self, owner_id: str, with_faces: bool = True) -> List[FaceGroup]:
        """Face groups of a user; labeled groups first, then by size."""
        rows = self.db.fetch_all(
            """
            SELECT g.*, COUNT(f.image_face_id) AS face_count
            FROM face_groups g
            LEFT JOIN image_faces f ON f.face_group_id = g.face_group_id
            WHERE g.owner_id = ?
            GROUP BY g.face_group_id
            ORDER BY g.label IS NULL, g.label, face_count DESC, g.created_timestamp
            """,
            (owner_id,)
        )
        groups = [
            FaceGroup(face_group_id=row['face_group_id'], owner_id=row['owner_id'], label=row['label'])
            for row in rows
        ]
        if with_faces:
            for group in groups:
                group.image_faces = self.list_group_faces(group.face_group_id)
        return groups

    def set_label(self, face_group_id: str, label: Optional[str]):
        cursor = self.db.execute(
            "UPDATE face_groups SET label = ? WHERE face_group_id = ?",
            (label, face_group_id)
        )
        cursor.close()

    def delete_group(self, face_group_id: str):
        cursor = self.db.execute("DELETE FROM face_groups WHERE face_group_id = ?", (face_group_id,))
        cursor.close()

    def delete_empty_groups(self, owner_id: str) -> int:
        cursor = self.db.execute(
            """
            DELETE FROM face_groups
            WHERE owner_id = ?
              AND NOT EXISTS (
                  SELECT 1 FROM image_faces f WHERE f.face_group_id = face_groups.face_group_id
              )
            """,
            (owner_id,)
        )
        count = cursor.rowcount
        cursor.close()
        if count:
            logger.debug(f"Deleted empty face groups: {{'owner_id': {owner_id!r}, 'count': {count}}}")
        return count

    # Faces

    def insert_face(
        self,
        media_id: str,
        face_group_id: str,
        rectangle: FaceRectangle,
        embedding: np.ndarray
    ) -> str:
        image_face_id = uuid.uuid4().hex
        cursor = self.db.execute(
            """
            INSERT INTO image_faces (
                image_face_id, media_id, face_group_id,
                rect_min_x, rect_max_x, rect_min_y, rect_max_y, embedding
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                image_face_id, media_id, face_group_id,
                rectangle.min_x, rectangle.max_x, rectangle.min_y, rectangle.max_y,
                embedding_to_hex(embedding),
            )
        )
        cursor.close()
        return image_face_id

    def get_faces(self, image_face_ids: Sequence[str]) -> List[ImageFace]:
        if not image_face_ids:
            return []
        placeholders = ','.join('?' * len(image_face_ids))
        rows = self.db.fetch_all(
            f"SELECT * FROM image_faces WHERE image_face_id IN ({placeholders})",
            tuple(image_face_ids)
        )
        return [_face_from_row(row) for row in rows]

    def get_face_owners(self, image_face_ids: Sequence[str]) -> Dict[str, str]:
        """Map face id to the owner of the face's group."""
        if not image_face_ids:
            return {}
        placeholders = ','.join('?' * len(image_face_ids))
        rows = self.db.fetch_all(
            f"""
            SELECT f.image_face_id, g.owner_id
            FROM image_faces f JOIN face_groups g ON g.face_group_id = f.face_group_id
            WHERE f.image_face_id IN ({placeholders})
            """,
            tuple(image_face_ids)
        )
        return {row['image_face_id']: row['owner_id'] for row in rows}

    def list_group_faces(self, face_group_id: str) -> List[ImageFace]:
        rows = self.db.fetch_all(
            "SELECT * FROM image_faces WHERE face_group_id = ? ORDER BY media_id, rect_min_x",
            (face_group_id,)
        )
        return [_face_from_row(row) for row in rows]

    def list_media_faces(self, media_id: str) -> List[ImageFace]:
        rows = self.db.fetch_all(
            "SELECT * FROM image_faces WHERE media_id = ? ORDER BY rect_min_x, rect_min_y",
            (media_id,)
        )
        return [_face_from_row(row) for row in rows]

    def move_faces(self, image_face_ids: Sequence[str], face_group_id: str) -> int:
        if not image_face_ids:
            return 0
        placeholders = ','.join('?' * len(image_face_ids))
        cursor = self.db.execute(
            f"UPDATE image_faces SET face_group_id = ? WHERE image_face_id IN ({placeholders})",
            (face_group_id, *image_face_ids)
        )
        count = cursor.rowcount
        cursor.close()
        return count

    def move_group_faces(self, src_group_id: str, dst_group_id: str) -> int:
        cursor = self.db.execute(
            "UPDATE image_faces SET face_group_id = ? WHERE face_group_id = ?",
            (dst_group_id, src_group_id)
        )
        count = cursor.rowcount
        cursor.close()
        return count

    def delete_media_faces(self, media_id: str) -> int:
        cursor = self.db.execute("DELETE FROM image_faces WHERE media_id = ?", (media_id,))
        count = cursor.rowcount
        cursor.close()
        return count

    def load_embeddings(
        self,
        owner_id: str,
        labeled: Optional[bool] = None
    ) -> List[Tuple[str, str, np.ndarray]]:
        """
        Load (image_face_id, face_group_id, embedding) for a user's faces.

        Args:
            owner_id: Owner of the face groups
            labeled: True for labeled groups only, False for unlabeled only,
                None for all groups
        """
        sql = """
            SELECT f.image_face_id, f.face_group_id, f.embedding
            FROM image_faces f JOIN face_groups g ON g.face_group_id = f.face_group_id
            WHERE g.owner_id = ?
        """
        if labeled is True:
            sql += " AND g.label IS NOT NULL"
        elif labeled is False:
            sql += " AND g.label IS NULL"
        sql += " ORDER BY f.face_group_id, f.image_face_id"
        rows = self.db.fetch_all(sql, (owner_id,))
        return [
            (row['image_face_id'], row['face_group_id'], hex_to_embedding(row['embedding']))
            for row in rows
        ]
