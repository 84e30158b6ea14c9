"""Wiring of the indexing engine behind one admin-facing facade."""

import importlib.util
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .catalog import MediaCatalog
from .config import MediaVaultConfig
from .faces.clusterer import FaceClusterer
from .faces.detector import FaceDetector, FacenetDetector
from .metadata.extractor import MetadataExtractor
from .models import Album, FaceGroup, ImageFace, Media, ShareTarget, ShareToken, SiteInfo, ThumbnailFilter, User
from .notifications import NotificationBroker, Subscription
from .orchestrator import ScanOrchestrator
from .scan_job import ScanJob
from .sharing import ShareTokenService
from .thumbnails import ThumbnailGenerator

logger = logging.getLogger(__name__)


class MediaLibrary:
    """
    The media indexing engine: catalog, scanner and admin operations.

    Args:
        config: Service configuration
        face_detector: Detector to use instead of the configured default.
            Ignored when face detection is disabled in the configuration.
    """

    def __init__(self, config: MediaVaultConfig, face_detector: Optional[FaceDetector] = None):
        self.config = config
        scanner = config.scanner

        self.catalog = MediaCatalog(Path(scanner.database_path))
        self.catalog.initialize()
        site_info = self.catalog.initialize_site_info(SiteInfo(
            periodic_scan_interval=scanner.periodic_scan_interval,
            concurrent_workers=scanner.concurrent_workers,
            thumbnail_method=config.thumbnails.filter,
        ))

        self.extractor = MetadataExtractor(
            use_ffprobe=scanner.use_ffprobe,
            use_exiftool=scanner.use_exiftool,
        )
        self.thumbnails = ThumbnailGenerator(
            cache_path=Path(scanner.cache_path),
            thumbnail_filter=site_info.thumbnail_method,
            thumbnail_size=config.thumbnails.thumbnail_size,
            jpeg_quality=config.thumbnails.jpeg_quality,
            blurhash_components=(
                config.thumbnails.blurhash_x_components,
                config.thumbnails.blurhash_y_components,
            ),
            use_ffmpeg=scanner.use_ffmpeg,
        )

        if not config.faces.enabled:
            self.face_detector = None
        elif face_detector is not None:
            self.face_detector = face_detector
        elif importlib.util.find_spec("facenet_pytorch") is None:
            logger.warning("Face detection disabled: install the 'faces' extra (torch, facenet-pytorch)")
            self.face_detector = None
        else:
            self.face_detector = FacenetDetector(
                min_face_size=config.faces.min_face_size,
                confidence_threshold=config.faces.confidence_threshold,
            )

        self.clusterer = FaceClusterer(self.catalog, config.faces.similarity_threshold)
        self.sharing = ShareTokenService(self.catalog)
        self.broker = NotificationBroker()
        self.orchestrator = ScanOrchestrator(
            self.catalog, self.broker, self._create_job, self.thumbnails
        )

    def _create_job(self, user_id: str, regenerate_thumbnails: bool = False, on_progress=None) -> ScanJob:
        scanner = self.config.scanner
        return ScanJob(
            user_id,
            catalog=self.catalog,
            extractor=self.extractor,
            thumbnails=self.thumbnails,
            clusterer=self.clusterer,
            face_detector=self.face_detector,
            fingerprint_mode=scanner.fingerprint_mode,
            allow_raw=scanner.use_exiftool,
            regenerate_thumbnails=regenerate_thumbnails,
            progress_interval=scanner.progress_interval,
            on_progress=on_progress,
        )

    # Lifecycle

    def start(self):
        self.orchestrator.start()

    def close(self, wait: bool = True):
        self.orchestrator.shutdown(wait=wait)
        self.broker.shutdown()
        self.catalog.close()

    def __enter__(self) -> "MediaLibrary":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def subscribe(self) -> Subscription:
        return self.broker.subscribe()

    # Users and root paths

    def create_user(self, username: str, is_admin: bool = False) -> User:
        return self.catalog.create_user(username, is_admin)

    def user_add_root_path(self, user_id: str, path: Union[str, Path]) -> Album:
        return self.catalog.user_add_root_path(user_id, str(path))

    def user_remove_root_album(self, user_id: str, album_id: str) -> Album:
        """Remove a root album, its subtree and every derived file of its media."""
        album = self.catalog.get_album(album_id, user_id=user_id)
        removed = self.catalog.user_remove_root_album(user_id, album_id)
        self._remove_assets(removed)
        return album

    def purge_missing(self, older_than: timedelta = timedelta(0), user_id: Optional[str] = None) -> int:
        """Hard-delete tombstoned media and albums; returns the number of media removed."""
        removed = self.catalog.purge_missing(older_than, user_id)
        self._remove_assets(removed)
        return len(removed)

    def _remove_assets(self, removed: Iterable[Tuple[str, str]]):
        for album_id, media_id in removed:
            try:
                self.thumbnails.remove_assets(album_id, media_id)
            except OSError as e:
                logger.warning(f"Failed to remove derived files: {{'media_id': {media_id!r}, 'error': {str(e)!r}}}")

    # Scanner

    def scan_all(self) -> List[ScanJob]:
        return self.orchestrator.scan_all()

    def scan_user(self, user_id: str, regenerate_thumbnails: bool = False) -> ScanJob:
        return self.orchestrator.scan_user(user_id, regenerate_thumbnails)

    def set_periodic_scan_interval(self, seconds: int) -> int:
        return self.orchestrator.set_periodic_scan_interval(seconds)

    def set_scanner_concurrent_workers(self, workers: int) -> int:
        return self.orchestrator.set_concurrent_workers(workers)

    def set_thumbnail_downsample_method(self, method: Union[ThumbnailFilter, str]) -> ThumbnailFilter:
        return self.orchestrator.set_thumbnail_downsample_method(method)

    def site_info(self) -> SiteInfo:
        return self.catalog.get_site_info()

    # Faces

    def set_face_group_label(self, user_id: str, face_group_id: str, label: Optional[str]) -> FaceGroup:
        return self.clusterer.set_face_group_label(user_id, face_group_id, label)

    def combine_face_groups(self, user_id: str, destination_group_id: str, source_group_id: str) -> FaceGroup:
        return self.clusterer.combine_face_groups(user_id, destination_group_id, source_group_id)

    def move_image_faces(self, user_id: str, image_face_ids: Sequence[str], destination_group_id: str) -> FaceGroup:
        return self.clusterer.move_image_faces(user_id, image_face_ids, destination_group_id)

    def detach_image_faces(self, user_id: str, image_face_ids: Sequence[str]) -> FaceGroup:
        return self.clusterer.detach_image_faces(user_id, image_face_ids)

    def recognize_unlabeled_faces(self, user_id: str) -> List[ImageFace]:
        return self.clusterer.recognize_unlabeled_faces(user_id)

    # Share tokens

    def create_share_token(self, user_id: str, target: ShareTarget, expire: Optional[datetime] = None,
                           password: Optional[str] = None) -> ShareToken:
        return self.sharing.create_share_token(user_id, target, expire, password)

    def validate_share_token(self, token: str, password: Optional[str] = None) -> Union[Album, Media]:
        return self.sharing.validate(token, password)
