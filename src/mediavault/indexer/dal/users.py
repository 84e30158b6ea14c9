"""Data Access Layer for users table."""

import logging
import uuid
from typing import List, Optional

from ..database import DatabaseConnection
from ..models import User, now_timestamp

logger = logging.getLogger(__name__)


class UserDAL:
    """Data access layer for users table."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def insert_user(self, username: str, is_admin: bool = False) -> User:
        """
        Insert a new user.

        Raises:
            sqlite3.IntegrityError: If the username is taken
        """
        user_id = uuid.uuid4().hex
        created = now_timestamp()
        cursor = self.db.execute(
            """
            INSERT INTO users (user_id, username, is_admin, created_timestamp)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, username, int(is_admin), created)
        )
        cursor.close()

        logger.debug(f"Inserted user: {{'user_id': {user_id!r}, 'username': {username!r}}}")
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> Optional[User]:
        row = self.db.fetch_one("SELECT * FROM users WHERE user_id = ?", (user_id,))
        return User.from_row(row) if row else None

    def get_user_by_name(self, username: str) -> Optional[User]:
        row = self.db.fetch_one("SELECT * FROM users WHERE username = ?", (username,))
        return User.from_row(row) if row else None

    def list_users(self) -> List[User]:
        rows = self.db.fetch_all("SELECT * FROM users ORDER BY username")
        return [User.from_row(row) for row in rows]
