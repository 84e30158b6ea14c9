"""A single user's scan: walk root paths, diff against the catalog, index changes."""

import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from mediavault.common import LogContext, normalize_path

from .catalog import MediaCatalog
from .errors import IndexerError, classify_error
from .faces.clusterer import FaceClusterer
from .faces.detector import FaceDetector
from .fingerprint import compute_fingerprint
from .metadata.extractor import MetadataExtractor
from .mime_detector import detect_media_type, is_candidate_extension
from .models import Album, JobState, Media, MediaType, ScannerResult, now_timestamp
from .path_utils import should_scan_directory, should_scan_file
from .progress import ProgressTracker
from .thumbnails import ThumbnailGenerator

logger = logging.getLogger(__name__)

# Warnings quoted verbatim in the terminal message
MESSAGE_WARNING_LIMIT = 5


@dataclass
class ScanStatistics:
    new_files: int = 0
    changed_files: int = 0
    unchanged_files: int = 0
    regenerated_files: int = 0
    missing_files: int = 0
    missing_albums: int = 0
    error_files: int = 0

    @property
    def processed(self) -> int:
        return self.new_files + self.changed_files + self.unchanged_files + self.error_files


@dataclass
class _Directory:
    path: Path
    parent_album_id: Optional[str]
    root_album: Album


@dataclass
class _ScanContext:
    scan_run_id: str
    warnings: List[str] = field(default_factory=list)


class ScanJob:
    """
    Scan of all root paths of one user.

    Directories are walked depth-first in lexical order and files within a
    directory in lexical filename order. Each new or changed file goes
    through MetadataExtractor, ThumbnailGenerator and (photos only) the face
    detector, then all of its records are written in one transaction.

    Cancellation is cooperative: it is checked before each directory and
    each file, never while a file is being written.

    Args:
        user_id: Owner whose root paths are scanned
        catalog: Media catalog
        extractor: Metadata extractor
        thumbnails: Derived asset generator
        clusterer: Face group assignment
        face_detector: Face detector, or None to leave faces untouched
        fingerprint_mode: 'stat' or 'content'
        allow_raw: Index camera RAW files (requires exiftool)
        regenerate_thumbnails: Regenerate derived assets of unchanged media
        progress_interval: Report progress every N files
        on_progress: Called with the job whenever progress is reported
    """

    def __init__(
        self,
        user_id: str,
        catalog: MediaCatalog,
        extractor: MetadataExtractor,
        thumbnails: ThumbnailGenerator,
        clusterer: FaceClusterer,
        face_detector: Optional[FaceDetector] = None,
        fingerprint_mode: str = "stat",
        allow_raw: bool = False,
        regenerate_thumbnails: bool = False,
        progress_interval: int = 10,
        on_progress: Optional[Callable[["ScanJob"], None]] = None,
    ):
        self.job_id = uuid.uuid4().hex
        self.user_id = user_id
        self.catalog = catalog
        self.extractor = extractor
        self.thumbnails = thumbnails
        self.clusterer = clusterer
        self.face_detector = face_detector
        self.fingerprint_mode = fingerprint_mode
        self.allow_raw = allow_raw
        self.regenerate_thumbnails = regenerate_thumbnails
        self.progress_interval = max(progress_interval, 1)
        self.on_progress = on_progress

        self.statistics = ScanStatistics()
        self.tracker = ProgressTracker(log_interval=100, label=user_id)
        self.warnings: List[str] = []

        self._state = JobState.QUEUED
        self._success = False
        self._message = "Queued"
        self._state_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._finished_event = threading.Event()

    # Status

    @property
    def state(self) -> JobState:
        with self._state_lock:
            return self._state

    @property
    def progress(self) -> float:
        if self.state == JobState.FINISHED and self._success:
            return 1.0
        return self.tracker.fraction

    @property
    def result(self) -> ScannerResult:
        with self._state_lock:
            return ScannerResult(
                finished=self._state == JobState.FINISHED,
                success=self._success,
                message=self._message,
            )

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self):
        """Request cancellation; the job stops at the next directory or file boundary."""
        self._cancel_event.set()
        logger.info(f"Scan cancellation requested: {{'user_id': {self.user_id!r}, 'job_id': {self.job_id!r}}}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the job finished. Returns False on timeout."""
        return self._finished_event.wait(timeout)

    def _set_state(self, state: JobState, message: str, success: bool = False):
        with self._state_lock:
            self._state = state
            self._message = message
            self._success = success
        if state == JobState.FINISHED:
            self._finished_event.set()

    def finish_without_running(self, message: str):
        """Mark a queued job finished (e.g. cancelled before admission)."""
        self._set_state(JobState.FINISHED, message, success=False)

    # Execution

    def run(self) -> ScannerResult:
        """Run the scan to completion, cancellation or failure."""
        self._set_state(JobState.RUNNING, "Scanning")
        scan_run_id = None

        with LogContext(user_id=self.user_id, job_id=self.job_id):
            try:
                scan_run_id = self.catalog.scan_runs.create_scan_run(self.user_id)
                ctx = _ScanContext(scan_run_id=scan_run_id, warnings=self.warnings)
                self._report_progress()

                roots = self.catalog.list_root_albums(self.user_id)
                logger.info(f"Starting scan: {{'user_id': {self.user_id!r}, 'roots': {len(roots)}}}")

                reachable_roots = []
                for root in roots:
                    if self.cancelled:
                        break
                    if self._scan_root(root, ctx):
                        reachable_roots.append(root)

                if self.cancelled:
                    message = f"Scan cancelled after {self.statistics.processed} files"
                    self._complete(scan_run_id, 'cancelled', message, success=False)
                    return self.result

                for root in reachable_roots:
                    self._tombstone_unseen(root, scan_run_id)

                self._complete(scan_run_id, 'completed', self._summary(), success=True)

            except Exception as e:
                logger.error(f"Scan failed: {{'user_id': {self.user_id!r}, 'error': {str(e)!r}}}", exc_info=True)
                message = f"Scan failed: {e}"
                if scan_run_id is not None:
                    try:
                        self._complete(scan_run_id, 'failed', message, success=False)
                    except Exception as complete_error:
                        logger.error(f"Failed to record scan failure: {{'error': {str(complete_error)!r}}}")
                        self._set_state(JobState.FINISHED, message, success=False)
                else:
                    self._set_state(JobState.FINISHED, message, success=False)

        return self.result

    def _complete(self, scan_run_id: str, status: str, message: str, success: bool):
        stats = self.statistics
        self.catalog.scan_runs.update_scan_run(
            scan_run_id,
            new_files=stats.new_files,
            changed_files=stats.changed_files,
            unchanged_files=stats.unchanged_files,
            missing_files=stats.missing_files,
            error_files=stats.error_files,
        )
        self.catalog.scan_runs.complete_scan_run(scan_run_id, status, message)
        self.tracker.log_final_summary()
        self._set_state(JobState.FINISHED, message, success=success)
        self._report_progress()

    def _summary(self) -> str:
        stats = self.statistics
        message = (
            f"Scanned {stats.processed} files: {stats.new_files} new, "
            f"{stats.changed_files} changed, {stats.unchanged_files} unchanged, "
            f"{stats.missing_files} removed"
        )
        if self.warnings:
            shown = "; ".join(self.warnings[:MESSAGE_WARNING_LIMIT])
            more = len(self.warnings) - MESSAGE_WARNING_LIMIT
            message += f". {len(self.warnings)} warnings: {shown}"
            if more > 0:
                message += f" (and {more} more)"
        return message

    def _warn(self, ctx: _ScanContext, path: Path, error: Exception):
        category = classify_error(error)
        text = error.message if isinstance(error, IndexerError) else str(error)
        logger.warning(f"Skipping file: {{'path': {str(path)!r}, 'category': {category!r}, 'error': {text!r}}}")
        ctx.warnings.append(f"{path.name}: {text}")
        self.catalog.processing_errors.insert_error(ctx.scan_run_id, str(path), category, text)

    def _report_progress(self):
        if self.on_progress is not None:
            self.on_progress(self)

    # Walk

    def _scan_root(self, root: Album, ctx: _ScanContext) -> bool:
        """
        Walk one root path.

        Returns:
            False if the root was unreachable (its subtree is left untouched)
        """
        root_path = Path(root.path)
        if not root_path.is_dir():
            logger.warning(f"Root path unreachable: {{'path': {root.path!r}}}")
            ctx.warnings.append(f"{root.path}: root path unreachable")
            return False

        stack = [_Directory(path=root_path, parent_album_id=None, root_album=root)]
        while stack:
            if self.cancelled:
                return True
            directory = stack.pop()
            subdirectories = self._scan_directory(directory, ctx)
            stack.extend(reversed(subdirectories))
        return True

    def _scan_directory(self, directory: _Directory, ctx: _ScanContext) -> List[_Directory]:
        path_str = normalize_path(directory.path)
        title = directory.path.name or path_str
        with self.catalog.transaction():
            album, created = self.catalog.albums.upsert_album(
                self.user_id, path_str, title, directory.parent_album_id, ctx.scan_run_id
            )
        if created:
            logger.debug(f"New album: {{'path': {path_str!r}}}")

        try:
            entries = sorted(os.scandir(directory.path), key=lambda entry: entry.name)
        except OSError as e:
            self._warn(ctx, directory.path, e)
            with self.catalog.transaction():
                self.catalog.albums.touch_subtree(album.album_id, ctx.scan_run_id)
            return []

        subdirectories = []
        files = []
        for entry in entries:
            entry_path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=False):
                    if should_scan_directory(entry_path):
                        subdirectories.append(_Directory(entry_path, album.album_id, directory.root_album))
                elif entry.is_file():
                    if should_scan_file(entry_path) and is_candidate_extension(entry_path, self.allow_raw):
                        files.append(entry_path)
            except OSError as e:
                self._warn(ctx, entry_path, e)

        self.tracker.discover(len(files))

        for file_path in files:
            if self.cancelled:
                return []
            self._process_file(file_path, album, ctx)
            self.tracker.increment()
            if self.statistics.processed % self.progress_interval == 0:
                self._report_progress()

        return subdirectories

    # Files

    def _process_file(self, file_path: Path, album: Album, ctx: _ScanContext):
        path_str = normalize_path(file_path)
        existing = self.catalog.media.get_media_by_path(self.user_id, path_str)

        try:
            fingerprint = compute_fingerprint(file_path, self.fingerprint_mode)
            if existing is not None and existing.fingerprint == fingerprint:
                if self.regenerate_thumbnails:
                    self._regenerate_assets(file_path, existing, album, ctx)
                else:
                    self.catalog.media.mark_seen(existing.media_id, ctx.scan_run_id, album.album_id)
                self.statistics.unchanged_files += 1
                return

            self._index_file(file_path, path_str, fingerprint, existing, album, ctx)
            if existing is None:
                self.statistics.new_files += 1
            else:
                self.statistics.changed_files += 1

        except Exception as e:
            self.statistics.error_files += 1
            self._warn(ctx, file_path, e)
            if existing is not None:
                # Keep the previous record rather than tombstoning it
                self.catalog.media.mark_seen(existing.media_id, ctx.scan_run_id)

    def _index_file(self, file_path: Path, path_str: str, fingerprint: str,
                    existing: Optional[Media], album: Album, ctx: _ScanContext):
        media_dal = self.catalog.media
        media_type, mime_type = detect_media_type(file_path, allow_raw=self.allow_raw)
        metadata = self.extractor.extract(file_path, media_type, mime_type)
        file_size = file_path.stat().st_size
        media_id = existing.media_id if existing is not None else media_dal.generate_media_id()

        detected = None
        if media_type == MediaType.PHOTO:
            assets = self.thumbnails.generate_photo(
                file_path, album.album_id, media_id, mime_type, file_size,
                keep_image=self.face_detector is not None,
            )
            if self.face_detector is not None:
                detected = self._detect_faces(file_path, assets.image)
                assets.image = None
        else:
            assets = self.thumbnails.generate_video(
                file_path, album.album_id, media_id, mime_type, file_size,
                video=metadata.video, reuse_transcode=False,
            )
        self.warnings.extend(assets.warnings)

        capture = metadata.capture_date
        if capture is None:
            if existing is not None and existing.first_seen_timestamp is not None:
                capture = existing.first_seen_timestamp
            else:
                capture = datetime.now(timezone.utc)

        fields = dict(
            album_id=album.album_id,
            title=file_path.name,
            media_type=media_type.value,
            mime_type=mime_type,
            file_size=file_size,
            fingerprint=fingerprint,
            capture_timestamp=capture,
            blurhash=assets.blurhash,
            width=assets.width or metadata.width,
            height=assets.height or metadata.height,
        )

        with self.catalog.owner_lock(self.user_id):
            with self.catalog.transaction():
                if existing is None:
                    media_dal.insert_media(dict(
                        fields,
                        media_id=media_id,
                        owner_id=self.user_id,
                        media_path=path_str,
                        scan_run_id=ctx.scan_run_id,
                    ))
                else:
                    media_dal.update_media(
                        media_id,
                        status='present',
                        scan_run_id=ctx.scan_run_id,
                        last_seen_timestamp=now_timestamp(),
                        **fields,
                    )
                media_dal.replace_exif(media_id, metadata.exif)
                media_dal.replace_video_metadata(media_id, metadata.video)
                media_dal.replace_urls(media_id, assets.urls)
                if detected is not None:
                    self.clusterer.replace_media_faces(self.user_id, media_id, detected)

        logger.debug(f"Indexed media: {{'path': {path_str!r}, 'media_id': {media_id!r}, 'type': {media_type.value!r}}}")

    def _detect_faces(self, file_path: Path, image) -> Optional[list]:
        """Run face detection; a failure keeps the media's previous faces."""
        try:
            return self.face_detector.detect(image)
        except Exception as e:
            logger.warning(f"Face detection failed: {{'path': {str(file_path)!r}, 'error': {str(e)!r}}}")
            self.warnings.append(f"{file_path.name}: face detection failed")
            return None

    def _regenerate_assets(self, file_path: Path, existing: Media, album: Album, ctx: _ScanContext):
        if existing.media_type == MediaType.PHOTO:
            assets = self.thumbnails.generate_photo(
                file_path, album.album_id, existing.media_id, existing.mime_type,
                existing.file_size, keep_image=False,
            )
        else:
            assets = self.thumbnails.generate_video(
                file_path, album.album_id, existing.media_id, existing.mime_type,
                existing.file_size, video=self.catalog.media.get_video_metadata(existing.media_id),
                reuse_transcode=True,
            )
        self.warnings.extend(assets.warnings)
        self.statistics.regenerated_files += 1

        with self.catalog.transaction():
            self.catalog.media.mark_seen(existing.media_id, ctx.scan_run_id, album.album_id)
            self.catalog.media.update_media(existing.media_id, blurhash=assets.blurhash)
            self.catalog.media.replace_urls(existing.media_id, assets.urls)

    def _tombstone_unseen(self, root: Album, scan_run_id: str):
        with self.catalog.transaction():
            missing_media = self.catalog.media.mark_subtree_missing(root.album_id, scan_run_id)
            missing_albums = self.catalog.albums.mark_subtree_missing(root.album_id, scan_run_id)
            self.catalog.albums.clear_cover_references(missing_media)

        self.statistics.missing_files += len(missing_media)
        self.statistics.missing_albums += missing_albums
        if missing_media or missing_albums:
            logger.info(f"Tombstoned missing entries: {{'root': {root.path!r}, 'media': {len(missing_media)}, 'albums': {missing_albums}}}")
