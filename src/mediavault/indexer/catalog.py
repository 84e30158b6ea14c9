"""Persisted catalog of users, albums, media and face groups."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from mediavault.common import absolute_path, is_within

from .dal import (
    AlbumDAL, FaceDAL, MediaDAL, ProcessingErrorDAL, ScanRunDAL,
    ShareTokenDAL, SiteInfoDAL, UserDAL,
)
from .database import DatabaseConnection
from .errors import ConflictError, ForbiddenError, InvalidArgumentError, NotFoundError
from .migrations import MigrationRunner
from .models import (
    Album, FaceGroup, Media, SiteInfo, TimelineGroup, User,
    format_timestamp, now_timestamp,
)

logger = logging.getLogger(__name__)


class MediaCatalog:
    """
    Thread-safe access to the SQLite catalog.

    Each thread gets its own connection. Writes that must not interleave
    for one user (face assignment during scans, face group mutations,
    root removal) run under that user's owner lock; a small registry of
    face groups currently being mutated turns racing mutations on the same
    group into ConflictError instead of silently serializing them.

    Args:
        db_path: Path to the SQLite database file
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._connections: List[DatabaseConnection] = []
        self._connections_lock = threading.Lock()
        self._owner_locks: Dict[str, threading.RLock] = {}
        self._owner_locks_guard = threading.Lock()
        self._busy_groups: set = set()
        self._busy_lock = threading.Lock()

    # Connections and locking

    @property
    def db(self) -> DatabaseConnection:
        connection = getattr(self._local, 'connection', None)
        if connection is None:
            connection = DatabaseConnection(self.db_path)
            connection.connect()
            self._local.connection = connection
            with self._connections_lock:
                self._connections.append(connection)
        return connection

    def initialize(self):
        """Apply pending schema migrations."""
        version = MigrationRunner(self.db).apply_migrations()
        logger.info(f"Catalog ready: {{'path': {str(self.db_path)!r}, 'schema_version': {version}}}")

    def close(self):
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for connection in connections:
            connection.close()
        self._local = threading.local()

    def release_connection(self):
        """Close the calling thread's connection, e.g. when a scan worker ends."""
        connection = getattr(self._local, 'connection', None)
        if connection is None:
            return
        self._local.connection = None
        with self._connections_lock:
            if connection in self._connections:
                self._connections.remove(connection)
        connection.close()

    def transaction(self):
        return self.db.transaction()

    def owner_lock(self, owner_id: str) -> threading.RLock:
        with self._owner_locks_guard:
            lock = self._owner_locks.get(owner_id)
            if lock is None:
                lock = threading.RLock()
                self._owner_locks[owner_id] = lock
            return lock

    @contextmanager
    def claim_face_groups(self, face_group_ids: Iterable[str]):
        """
        Mark face groups as being mutated for the duration of the block.

        Raises:
            ConflictError: Another mutation already holds one of the groups
        """
        ids = set(face_group_ids)
        with self._busy_lock:
            clash = ids & self._busy_groups
            if clash:
                raise ConflictError(
                    "Face group is being modified by another operation",
                    face_group_ids=sorted(clash),
                )
            self._busy_groups |= ids
        try:
            yield
        finally:
            with self._busy_lock:
                self._busy_groups -= ids

    # Data access layers bound to the calling thread's connection

    @property
    def users(self) -> UserDAL:
        return UserDAL(self.db)

    @property
    def albums(self) -> AlbumDAL:
        return AlbumDAL(self.db)

    @property
    def media(self) -> MediaDAL:
        return MediaDAL(self.db)

    @property
    def faces(self) -> FaceDAL:
        return FaceDAL(self.db)

    @property
    def share_tokens(self) -> ShareTokenDAL:
        return ShareTokenDAL(self.db)

    @property
    def site_info(self) -> SiteInfoDAL:
        return SiteInfoDAL(self.db)

    @property
    def scan_runs(self) -> ScanRunDAL:
        return ScanRunDAL(self.db)

    @property
    def processing_errors(self) -> ProcessingErrorDAL:
        return ProcessingErrorDAL(self.db)

    # Users

    def create_user(self, username: str, is_admin: bool = False) -> User:
        """
        Raises:
            InvalidArgumentError: Empty username
            ConflictError: Username already taken
        """
        username = username.strip()
        if not username:
            raise InvalidArgumentError("Username must not be empty")
        try:
            user = self.users.insert_user(username, is_admin)
        except sqlite3.IntegrityError as e:
            raise ConflictError("Username already exists", username=username) from e
        logger.info(f"Created user: {{'user_id': {user.user_id!r}, 'username': {username!r}}}")
        return user

    def get_user(self, user_id: str) -> User:
        user = self.users.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found", user_id=user_id)
        return user

    def get_user_by_name(self, username: str) -> User:
        user = self.users.get_user_by_name(username)
        if user is None:
            raise NotFoundError("User not found", username=username)
        return user

    def list_users(self) -> List[User]:
        return self.users.list_users()

    # Root paths

    def list_root_albums(self, user_id: str) -> List[Album]:
        return self.albums.list_root_albums(user_id)

    def users_with_root_paths(self) -> List[str]:
        return self.albums.list_owners_with_roots()

    def user_add_root_path(self, user_id: str, path: str) -> Album:
        """
        Register a directory as a new root album of a user.

        Raises:
            NotFoundError: Unknown user or path does not exist
            InvalidArgumentError: Path is not a directory
            ConflictError: Path equals, contains or lies within an existing root
        """
        self.get_user(user_id)
        root_path = absolute_path(path)
        fs_path = Path(root_path)
        if not fs_path.exists():
            raise NotFoundError("Root path does not exist", path=root_path)
        if not fs_path.is_dir():
            raise InvalidArgumentError("Root path is not a directory", path=root_path)

        with self.owner_lock(user_id):
            with self.transaction():
                for existing in self.albums.list_root_albums(user_id):
                    if is_within(root_path, existing.path) or is_within(existing.path, root_path):
                        raise ConflictError(
                            "Root path overlaps an existing root path",
                            path=root_path,
                            existing_path=existing.path,
                        )
                album = self.albums.insert_album(user_id, root_path, fs_path.name or root_path)

        logger.info(f"Added root path: {{'user_id': {user_id!r}, 'path': {root_path!r}, 'album_id': {album.album_id!r}}}")
        return album

    def user_remove_root_album(self, user_id: str, album_id: str) -> List[Tuple[str, str]]:
        """
        Remove a root album with all descendant albums and media.

        Returns:
            (album_id, media_id) pairs of removed media, for derived asset cleanup

        Raises:
            NotFoundError: Unknown album
            ForbiddenError: Album belongs to another user
            InvalidArgumentError: Album is not a root album
            ConflictError: An unexpired share token references the subtree
        """
        album = self.get_album(album_id, user_id=user_id)
        if not album.is_root:
            raise InvalidArgumentError("Album is not a root album", album_id=album_id)

        with self.owner_lock(user_id):
            with self.transaction():
                album_ids = self.albums.list_subtree_album_ids(album_id)
                removed = [(m.album_id, m.media_id) for m in self.media.list_subtree_media(album_id)]
                tokens = self.share_tokens.list_active_referencing(
                    album_ids, [media_id for _, media_id in removed], now_timestamp()
                )
                if tokens:
                    raise ConflictError(
                        "Root album is still shared",
                        album_id=album_id,
                        share_tokens=len(tokens),
                    )
                self.albums.delete_album(album_id)
                self.faces.delete_empty_groups(user_id)

        logger.info(f"Removed root album: {{'user_id': {user_id!r}, 'album_id': {album_id!r}, 'media': {len(removed)}}}")
        return removed

    # Albums

    def get_album(self, album_id: str, user_id: Optional[str] = None) -> Album:
        """
        Raises:
            NotFoundError: Unknown album
            ForbiddenError: user_id given and not the owner
        """
        album = self.albums.get_album(album_id)
        if album is None:
            raise NotFoundError("Album not found", album_id=album_id)
        if user_id is not None and album.owner_id != user_id:
            raise ForbiddenError("Album belongs to another user", album_id=album_id)
        return album

    def list_child_albums(self, album_id: str, user_id: Optional[str] = None) -> List[Album]:
        self.get_album(album_id, user_id)
        return self.albums.list_child_albums(album_id)

    def album_path(self, album_id: str, user_id: Optional[str] = None) -> List[Album]:
        """Breadcrumb of albums from the root down to album_id."""
        self.get_album(album_id, user_id)
        return self.albums.get_ancestors(album_id)

    def list_album_media(self, album_id: str, user_id: Optional[str] = None) -> List[Media]:
        self.get_album(album_id, user_id)
        return self.media.list_album_media(album_id)

    def set_album_cover(self, user_id: str, album_id: str, media_id: str) -> Album:
        """
        Raises:
            InvalidArgumentError: Media is not inside the album's subtree
        """
        self.get_album(album_id, user_id)
        media = self.get_media(media_id, user_id)
        if media.album_id not in self.albums.list_subtree_album_ids(album_id):
            raise InvalidArgumentError("Cover media is not part of the album", album_id=album_id, media_id=media_id)
        self.albums.set_cover(album_id, media_id)
        return self.get_album(album_id)

    def reset_album_cover(self, user_id: str, album_id: str) -> Album:
        self.get_album(album_id, user_id)
        self.albums.set_cover(album_id, None)
        return self.get_album(album_id)

    # Media

    def get_media(self, media_id: str, user_id: Optional[str] = None, with_details: bool = True) -> Media:
        """
        Raises:
            NotFoundError: Unknown media
            ForbiddenError: user_id given and not the owner
        """
        media = self.media.get_media(media_id, with_details=with_details)
        if media is None:
            raise NotFoundError("Media not found", media_id=media_id)
        if user_id is not None and media.owner_id != user_id:
            raise ForbiddenError("Media belongs to another user", media_id=media_id)
        return media

    def set_media_favorite(self, user_id: str, media_id: str, favorite: bool) -> Media:
        self.get_media(media_id, user_id, with_details=False)
        self.media.set_favorite(media_id, favorite)
        return self.get_media(media_id)

    def timeline(
        self,
        user_id: str,
        only_favorites: bool = False,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[TimelineGroup]:
        """
        Present media of a user ordered by capture date (newest first),
        grouped by capture day and album.

        Pagination applies to media, before grouping.
        """
        if limit is not None and limit < 0:
            raise InvalidArgumentError("limit must not be negative", limit=limit)
        if offset < 0:
            raise InvalidArgumentError("offset must not be negative", offset=offset)

        groups: Dict[Tuple[str, str], TimelineGroup] = {}
        for media in self.media.list_timeline_media(user_id, only_favorites, limit, offset):
            day = media.capture_timestamp.date().isoformat() if media.capture_timestamp else ""
            key = (day, media.album_id)
            group = groups.get(key)
            if group is None:
                group = groups[key] = TimelineGroup(album_id=media.album_id, date=day)
            group.media.append(media)
        return list(groups.values())

    def purge_missing(self, older_than: timedelta = timedelta(0), user_id: Optional[str] = None) -> List[Tuple[str, str]]:
        """
        Hard-delete tombstoned media and albums last seen before now - older_than.

        Returns:
            (album_id, media_id) pairs of deleted media, for derived asset cleanup
        """
        cutoff = format_timestamp(datetime.now(timezone.utc) - older_than)
        removed: List[Tuple[str, str]] = []
        owners = set()

        with self.transaction():
            for media in self.media.list_missing_before(user_id, cutoff):
                removed.append((media.album_id, media.media_id))
                owners.add(media.owner_id)
                self.media.delete_media(media.media_id)
            for album in self.albums.list_missing_before(user_id, cutoff):
                if self.albums.get_album(album.album_id) is None:
                    continue  # already removed with a missing ancestor
                for media in self.media.list_subtree_media(album.album_id):
                    removed.append((media.album_id, media.media_id))
                owners.add(album.owner_id)
                self.albums.delete_album(album.album_id)
            self.albums.clear_cover_references([media_id for _, media_id in removed])
            for owner_id in owners:
                self.faces.delete_empty_groups(owner_id)

        if removed:
            logger.info(f"Purged missing media: {{'count': {len(removed)}}}")
        return removed

    # Face groups (read side)

    def list_face_groups(self, user_id: str) -> List[FaceGroup]:
        return self.faces.list_groups(user_id)

    def get_face_group(self, face_group_id: str, user_id: Optional[str] = None) -> FaceGroup:
        """
        Raises:
            NotFoundError: Unknown face group
            ForbiddenError: user_id given and not the owner
        """
        group = self.faces.get_group(face_group_id, with_faces=True)
        if group is None:
            raise NotFoundError("Face group not found", face_group_id=face_group_id)
        if user_id is not None and group.owner_id != user_id:
            raise ForbiddenError("Face group belongs to another user", face_group_id=face_group_id)
        return group

    # Site info

    def initialize_site_info(self, defaults: SiteInfo) -> SiteInfo:
        return self.site_info.initialize(defaults)

    def get_site_info(self) -> SiteInfo:
        site_info = self.site_info.get()
        if site_info is None:
            raise NotFoundError("Site info has not been initialized")
        return site_info

    def update_site_info(self, **fields) -> SiteInfo:
        self.site_info.update(**fields)
        return self.get_site_info()
