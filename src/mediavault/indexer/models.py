"""Catalog records and value types shared across the indexer."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Mapping, Optional, Union


class MediaType(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"


class EntityStatus(str, Enum):
    """Lifecycle of albums and media. Missing records are tombstones."""
    PRESENT = "present"
    MISSING = "missing"


class ThumbnailFilter(str, Enum):
    """Resampling filter used when downsampling derived images."""
    NEAREST_NEIGHBOR = "NearestNeighbor"
    BOX = "Box"
    LINEAR = "Linear"
    MITCHELL_NETRAVALI = "MitchellNetravali"
    CATMULL_ROM = "CatmullRom"
    LANCZOS = "Lanczos"


class MediaPurpose(str, Enum):
    """What a derived (or original) media file is used for."""
    ORIGINAL = "original"
    THUMBNAIL = "thumbnail"
    HIGHRES = "highres"
    VIDEO_THUMBNAIL = "video_thumbnail"
    VIDEO_WEB = "video_web"


class NotificationType(str, Enum):
    MESSAGE = "Message"
    PROGRESS = "Progress"
    CLOSE = "Close"


class JobState(str, Enum):
    QUEUED = "Queued"
    RUNNING = "Running"
    FINISHED = "Finished"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp column, tolerating NULL."""
    if value is None:
        return None
    return datetime.fromisoformat(value)


def now_timestamp() -> str:
    """Current UTC time as an ISO string for catalog columns."""
    return datetime.now(timezone.utc).isoformat()


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


@dataclass
class User:
    user_id: str
    username: str
    is_admin: bool = False
    created_timestamp: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        return cls(
            user_id=row["user_id"],
            username=row["username"],
            is_admin=bool(row["is_admin"]),
            created_timestamp=parse_timestamp(row["created_timestamp"]),
        )


@dataclass
class Album:
    """A directory-backed node of a user's album forest.

    ``parent_album_id`` is None only for root albums (root paths).
    """
    album_id: str
    owner_id: str
    title: str
    path: str
    parent_album_id: Optional[str] = None
    cover_media_id: Optional[str] = None
    status: EntityStatus = EntityStatus.PRESENT
    first_seen_timestamp: Optional[datetime] = None
    last_seen_timestamp: Optional[datetime] = None

    @property
    def is_root(self) -> bool:
        return self.parent_album_id is None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Album":
        return cls(
            album_id=row["album_id"],
            owner_id=row["owner_id"],
            title=row["title"],
            path=row["album_path"],
            parent_album_id=row["parent_album_id"],
            cover_media_id=row["cover_media_id"],
            status=EntityStatus(row["status"]),
            first_seen_timestamp=parse_timestamp(row["first_seen_timestamp"]),
            last_seen_timestamp=parse_timestamp(row["last_seen_timestamp"]),
        )


@dataclass
class MediaExif:
    """EXIF fields of a photo. Every field is independently optional."""
    camera: Optional[str] = None
    maker: Optional[str] = None
    lens: Optional[str] = None
    date_shot: Optional[datetime] = None
    exposure: Optional[str] = None
    aperture: Optional[float] = None
    iso: Optional[int] = None
    focal_length: Optional[float] = None
    flash: Optional[str] = None
    exposure_program: Optional[str] = None
    orientation: Optional[int] = None
    gps_latitude: Optional[float] = None
    gps_longitude: Optional[float] = None
    gps_altitude: Optional[float] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MediaExif":
        return cls(
            camera=row["camera"],
            maker=row["maker"],
            lens=row["lens"],
            date_shot=parse_timestamp(row["date_shot"]),
            exposure=row["exposure"],
            aperture=row["aperture"],
            iso=row["iso"],
            focal_length=row["focal_length"],
            flash=row["flash"],
            exposure_program=row["exposure_program"],
            orientation=row["orientation"],
            gps_latitude=row["gps_latitude"],
            gps_longitude=row["gps_longitude"],
            gps_altitude=row["gps_altitude"],
        )


@dataclass
class VideoMetadata:
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    codec: Optional[str] = None
    framerate: Optional[float] = None
    bitrate: Optional[int] = None
    color_profile: Optional[str] = None
    audio: Optional[str] = None
    creation_time: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "VideoMetadata":
        return cls(
            width=row["width"],
            height=row["height"],
            duration=row["duration"],
            codec=row["codec"],
            framerate=row["framerate"],
            bitrate=row["bitrate"],
            color_profile=row["color_profile"],
            audio=row["audio"],
            creation_time=parse_timestamp(row["creation_time"]),
        )


@dataclass
class MediaURL:
    purpose: MediaPurpose
    file_path: str
    width: int
    height: int
    file_size: int
    content_type: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MediaURL":
        return cls(
            purpose=MediaPurpose(row["purpose"]),
            file_path=row["file_path"],
            width=row["width"],
            height=row["height"],
            file_size=row["file_size"],
            content_type=row["content_type"],
        )


@dataclass
class Media:
    """A file-backed leaf of the album tree."""
    media_id: str
    album_id: str
    owner_id: str
    title: str
    path: str
    media_type: MediaType
    mime_type: Optional[str] = None
    file_size: int = 0
    fingerprint: Optional[str] = None
    capture_timestamp: Optional[datetime] = None
    favorite: bool = False
    blurhash: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    status: EntityStatus = EntityStatus.PRESENT
    first_seen_timestamp: Optional[datetime] = None
    last_seen_timestamp: Optional[datetime] = None
    exif: Optional[MediaExif] = None
    video_metadata: Optional[VideoMetadata] = None
    urls: List[MediaURL] = field(default_factory=list)

    def url(self, purpose: MediaPurpose) -> Optional[MediaURL]:
        for media_url in self.urls:
            if media_url.purpose == purpose:
                return media_url
        return None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Media":
        return cls(
            media_id=row["media_id"],
            album_id=row["album_id"],
            owner_id=row["owner_id"],
            title=row["title"],
            path=row["media_path"],
            media_type=MediaType(row["media_type"]),
            mime_type=row["mime_type"],
            file_size=row["file_size"],
            fingerprint=row["fingerprint"],
            capture_timestamp=parse_timestamp(row["capture_timestamp"]),
            favorite=bool(row["favorite"]),
            blurhash=row["blurhash"],
            width=row["width"],
            height=row["height"],
            status=EntityStatus(row["status"]),
            first_seen_timestamp=parse_timestamp(row["first_seen_timestamp"]),
            last_seen_timestamp=parse_timestamp(row["last_seen_timestamp"]),
        )


@dataclass(frozen=True)
class FaceRectangle:
    """Face bounding box as fractions (0-1) of image width/height."""
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    def __post_init__(self):
        for value in (self.min_x, self.max_x, self.min_y, self.max_y):
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"Face rectangle coordinates must be within [0, 1]: {self}")
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise ValueError(f"Face rectangle minimum exceeds maximum: {self}")


@dataclass
class ImageFace:
    image_face_id: str
    media_id: str
    face_group_id: str
    rectangle: FaceRectangle


@dataclass
class FaceGroup:
    face_group_id: str
    owner_id: str
    label: Optional[str] = None
    image_faces: List[ImageFace] = field(default_factory=list)

    @property
    def is_labeled(self) -> bool:
        return self.label is not None


@dataclass(frozen=True)
class AlbumTarget:
    album_id: str


@dataclass(frozen=True)
class MediaTarget:
    media_id: str


ShareTarget = Union[AlbumTarget, MediaTarget]


@dataclass
class ShareToken:
    """Capability granting anonymous access to exactly one album or media."""
    token: str
    owner_id: str
    target: ShareTarget
    expire: Optional[datetime] = None
    has_password: bool = False
    created_timestamp: Optional[datetime] = None


@dataclass
class SiteInfo:
    """Process-wide scanner settings mirrored into the catalog."""
    periodic_scan_interval: int
    concurrent_workers: int
    thumbnail_method: ThumbnailFilter


@dataclass
class ScannerResult:
    finished: bool
    success: bool
    message: str


@dataclass
class Notification:
    """Event pushed to notification subscribers."""
    key: str
    type: NotificationType
    header: str = ""
    content: str = ""
    progress: Optional[float] = None
    positive: bool = False
    negative: bool = False
    timeout: Optional[int] = None


@dataclass
class TimelineGroup:
    """Media from one album captured on one day."""
    album_id: str
    date: str
    media: List[Media] = field(default_factory=list)
