"""Derived asset generation: thumbnails, high-res previews, web videos and blurhashes.

Assets live at ``<cache_path>/<album_id>/<media_id>/<purpose>.<ext>`` and are
written to a temporary file in the same directory, then renamed into place,
so a catalog record never references a partially written file.
"""

import logging
import os
import subprocess
import tempfile
import threading
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Callable, List, Optional

import blurhash
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ParseError, ToolNotFoundError, UnsupportedMediaError
from .mime_detector import WEB_PHOTO_MIME_TYPES, WEB_VIDEO_MIME_TYPES, is_raw_mime_type
from .models import MediaPurpose, MediaURL, ThumbnailFilter, VideoMetadata

logger = logging.getLogger(__name__)

# Pillow has no Mitchell-Netravali kernel; bicubic is its closest filter.
# Pillow's bicubic uses a = -0.5, which is the Catmull-Rom spline.
RESAMPLING_FILTERS = {
    ThumbnailFilter.NEAREST_NEIGHBOR: Image.Resampling.NEAREST,
    ThumbnailFilter.BOX: Image.Resampling.BOX,
    ThumbnailFilter.LINEAR: Image.Resampling.BILINEAR,
    ThumbnailFilter.MITCHELL_NETRAVALI: Image.Resampling.BICUBIC,
    ThumbnailFilter.CATMULL_ROM: Image.Resampling.BICUBIC,
    ThumbnailFilter.LANCZOS: Image.Resampling.LANCZOS,
}

BLURHASH_SOURCE_SIZE = 32
FFMPEG_TIMEOUT = 30
TRANSCODE_TIMEOUT = 3600

ASSET_EXTENSIONS = {
    MediaPurpose.THUMBNAIL: '.jpg',
    MediaPurpose.HIGHRES: '.jpg',
    MediaPurpose.VIDEO_THUMBNAIL: '.jpg',
    MediaPurpose.VIDEO_WEB: '.mp4',
}


@dataclass
class GeneratedAssets:
    """Outcome of one generation run for a media file."""
    urls: List[MediaURL] = field(default_factory=list)
    blurhash: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    # Orientation-corrected RGB image, kept for face detection on photos
    image: Optional[Image.Image] = None
    warnings: List[str] = field(default_factory=list)


def compute_blurhash(image: Image.Image, x_components: int = 4, y_components: int = 3,
                     resample=Image.Resampling.BOX) -> str:
    """Encode a compact placeholder hash from a downscaled copy of the image."""
    small = image.convert('RGB')
    small.thumbnail((BLURHASH_SOURCE_SIZE, BLURHASH_SOURCE_SIZE), resample)
    return blurhash.encode(np.asarray(small, dtype=np.uint8), x_components, y_components)


def _write_atomic(target: Path, writer: Callable[[Path], None]) -> None:
    """Run writer against a temp file next to target, then rename it over target."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.stem}-", suffix=target.suffix, dir=target.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        writer(tmp_path)
        os.replace(tmp_path, target)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def _run_ffmpeg(args: List[str], timeout: int = FFMPEG_TIMEOUT) -> None:
    """
    Run ffmpeg quietly.

    Raises:
        ToolNotFoundError: ffmpeg is not installed
        UnsupportedMediaError: ffmpeg rejected the input
    """
    try:
        subprocess.run(
            ['ffmpeg', '-hide_banner', '-loglevel', 'error', '-y', *args],
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError("ffmpeg not found", tool='ffmpeg') from e
    except subprocess.CalledProcessError as e:
        raise UnsupportedMediaError("ffmpeg failed", stderr=(e.stderr or '').strip()) from e
    except subprocess.TimeoutExpired as e:
        raise UnsupportedMediaError("ffmpeg timed out") from e


def _read_raw_preview(file_path: Path) -> bytes:
    """Embedded JPEG preview of a camera RAW file, via exiftool."""
    for tag in ('-JpgFromRaw', '-PreviewImage'):
        try:
            result = subprocess.run(
                ['exiftool', '-b', tag, str(file_path)],
                capture_output=True,
                check=True,
                timeout=30
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError("exiftool not found", tool='exiftool') from e
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            raise ParseError("exiftool failed", path=str(file_path)) from e
        if result.stdout:
            return result.stdout
    raise UnsupportedMediaError("RAW file has no embedded preview", path=str(file_path))


class ThumbnailGenerator:
    """
    Produces MediaURL records and blurhashes for photos and videos.

    The downsampling filter may be changed at runtime with set_filter();
    only generations started afterwards use the new filter.

    Args:
        cache_path: Root directory for derived assets
        thumbnail_filter: Initial resampling filter
        thumbnail_size: Bounding box edge of thumbnails
        jpeg_quality: JPEG quality of derived images
        blurhash_components: (x, y) blurhash component counts
        use_ffmpeg: Extract keyframes and transcode videos with ffmpeg
    """

    def __init__(
        self,
        cache_path: Path,
        thumbnail_filter: ThumbnailFilter = ThumbnailFilter.LANCZOS,
        thumbnail_size: int = 1024,
        jpeg_quality: int = 70,
        blurhash_components: tuple = (4, 3),
        use_ffmpeg: bool = True,
    ):
        self.cache_path = Path(cache_path)
        self.thumbnail_size = thumbnail_size
        self.jpeg_quality = jpeg_quality
        self.blurhash_components = blurhash_components
        self.use_ffmpeg = use_ffmpeg
        self._filter = ThumbnailFilter(thumbnail_filter)
        self._lock = threading.Lock()

    @property
    def filter(self) -> ThumbnailFilter:
        with self._lock:
            return self._filter

    def set_filter(self, thumbnail_filter: ThumbnailFilter):
        with self._lock:
            self._filter = ThumbnailFilter(thumbnail_filter)
        logger.info(f"Thumbnail filter changed: {{'filter': {self._filter.value!r}}}")

    def asset_dir(self, album_id: str, media_id: str) -> Path:
        return self.cache_path / album_id / media_id

    def asset_path(self, album_id: str, media_id: str, purpose: MediaPurpose) -> Path:
        return self.asset_dir(album_id, media_id) / f"{purpose.value}{ASSET_EXTENSIONS[purpose]}"

    def remove_assets(self, album_id: str, media_id: str):
        """Delete every derived file of a media."""
        directory = self.asset_dir(album_id, media_id)
        if not directory.exists():
            return
        for child in directory.iterdir():
            child.unlink()
        directory.rmdir()

    # Photos

    def generate_photo(
        self,
        source_path: Path,
        album_id: str,
        media_id: str,
        mime_type: str,
        file_size: int,
        keep_image: bool = True
    ) -> GeneratedAssets:
        """
        Generate thumbnail, optional high-res preview and blurhash for a photo.

        Raises:
            UnsupportedMediaError: The image cannot be decoded
        """
        resample = RESAMPLING_FILTERS[self.filter]
        image = self._load_photo(source_path, mime_type)
        width, height = image.size

        assets = GeneratedAssets(width=width, height=height)
        assets.urls.append(MediaURL(
            purpose=MediaPurpose.ORIGINAL,
            file_path=str(source_path),
            width=width,
            height=height,
            file_size=file_size,
            content_type=mime_type,
        ))

        thumbnail = image.copy()
        thumbnail.thumbnail((self.thumbnail_size, self.thumbnail_size), resample)
        assets.urls.append(self._save_jpeg(thumbnail, album_id, media_id, MediaPurpose.THUMBNAIL))

        if mime_type not in WEB_PHOTO_MIME_TYPES:
            assets.urls.append(self._save_jpeg(image, album_id, media_id, MediaPurpose.HIGHRES))

        assets.blurhash = compute_blurhash(thumbnail, *self.blurhash_components, resample=resample)
        self._remove_stale(album_id, media_id, assets.urls)

        if keep_image:
            assets.image = image
        return assets

    def _load_photo(self, source_path: Path, mime_type: str) -> Image.Image:
        """Decode a photo to an orientation-corrected RGB image."""
        try:
            if is_raw_mime_type(mime_type):
                opened = Image.open(BytesIO(_read_raw_preview(source_path)))
            else:
                opened = Image.open(source_path)
            with opened as img:
                img.load()
                transposed = ImageOps.exif_transpose(img)
                return transposed.convert('RGB')
        except PermissionError:
            raise
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            raise UnsupportedMediaError("Cannot decode image", path=str(source_path), error=str(e)) from e

    def _save_jpeg(self, image: Image.Image, album_id: str, media_id: str, purpose: MediaPurpose) -> MediaURL:
        target = self.asset_path(album_id, media_id, purpose)
        _write_atomic(target, lambda tmp: image.save(tmp, 'JPEG', quality=self.jpeg_quality))
        return MediaURL(
            purpose=purpose,
            file_path=str(target),
            width=image.width,
            height=image.height,
            file_size=target.stat().st_size,
            content_type='image/jpeg',
        )

    # Videos

    def generate_video(
        self,
        source_path: Path,
        album_id: str,
        media_id: str,
        mime_type: str,
        file_size: int,
        video: Optional[VideoMetadata] = None,
        reuse_transcode: bool = True
    ) -> GeneratedAssets:
        """
        Generate keyframe thumbnail, blurhash and (if needed) a web rendition.

        ffmpeg failures are reported as warnings; the video is still indexed
        with whatever assets could be produced.

        Args:
            reuse_transcode: Keep an existing web rendition that is newer than
                the source instead of transcoding again
        """
        width = video.width if video else None
        height = video.height if video else None
        assets = GeneratedAssets(width=width, height=height)
        assets.urls.append(MediaURL(
            purpose=MediaPurpose.ORIGINAL,
            file_path=str(source_path),
            width=width or 0,
            height=height or 0,
            file_size=file_size,
            content_type=mime_type,
        ))

        if not self.use_ffmpeg:
            self._remove_stale(album_id, media_id, assets.urls)
            return assets

        resample = RESAMPLING_FILTERS[self.filter]
        try:
            frame = self._extract_keyframe(source_path, video)
            frame.thumbnail((self.thumbnail_size, self.thumbnail_size), resample)
            assets.urls.append(self._save_jpeg(frame, album_id, media_id, MediaPurpose.VIDEO_THUMBNAIL))
            assets.blurhash = compute_blurhash(frame, *self.blurhash_components, resample=resample)
        except (ToolNotFoundError, UnsupportedMediaError) as e:
            logger.warning(f"Video keyframe extraction failed: {{'path': {str(source_path)!r}, 'error': {e.message!r}}}")
            assets.warnings.append(f"{source_path}: keyframe extraction failed ({e.message})")

        if mime_type not in WEB_VIDEO_MIME_TYPES:
            try:
                assets.urls.append(self._transcode(source_path, album_id, media_id, width, height, reuse_transcode))
            except (ToolNotFoundError, UnsupportedMediaError) as e:
                logger.warning(f"Video transcode failed: {{'path': {str(source_path)!r}, 'error': {e.message!r}}}")
                assets.warnings.append(f"{source_path}: web transcode failed ({e.message})")

        self._remove_stale(album_id, media_id, assets.urls)
        return assets

    def _extract_keyframe(self, source_path: Path, video: Optional[VideoMetadata]) -> Image.Image:
        offset = 1.0
        if video is not None and video.duration:
            offset = min(offset, video.duration / 2)

        with tempfile.TemporaryDirectory(prefix="mediavault-frame-") as tmp_dir:
            frame_path = Path(tmp_dir) / "frame.jpg"
            _run_ffmpeg([
                '-skip_frame', 'nokey',
                '-ss', f"{offset:.3f}",
                '-i', str(source_path),
                '-frames:v', '1',
                '-q:v', '2',
                str(frame_path),
            ])
            if not frame_path.exists():
                raise UnsupportedMediaError("ffmpeg produced no frame", path=str(source_path))
            with Image.open(frame_path) as img:
                return img.convert('RGB')

    def _transcode(self, source_path: Path, album_id: str, media_id: str,
                   width: Optional[int], height: Optional[int], reuse: bool) -> MediaURL:
        target = self.asset_path(album_id, media_id, MediaPurpose.VIDEO_WEB)
        fresh = (
            reuse
            and target.exists()
            and target.stat().st_mtime_ns >= source_path.stat().st_mtime_ns
        )
        if not fresh:
            logger.info(f"Transcoding video: {{'path': {str(source_path)!r}}}")
            _write_atomic(target, lambda tmp: _run_ffmpeg([
                '-i', str(source_path),
                '-c:v', 'libx264',
                '-preset', 'medium',
                '-pix_fmt', 'yuv420p',
                '-vf', 'scale=trunc(iw/2)*2:trunc(ih/2)*2',
                '-c:a', 'aac',
                '-movflags', '+faststart',
                '-f', 'mp4',
                str(tmp),
            ], timeout=TRANSCODE_TIMEOUT))

        return MediaURL(
            purpose=MediaPurpose.VIDEO_WEB,
            file_path=str(target),
            width=width or 0,
            height=height or 0,
            file_size=target.stat().st_size,
            content_type='video/mp4',
        )

    def _remove_stale(self, album_id: str, media_id: str, urls: List[MediaURL]):
        """Delete derived files of purposes this generation did not produce."""
        directory = self.asset_dir(album_id, media_id)
        if not directory.exists():
            return
        keep = {Path(url.file_path).name for url in urls if url.purpose != MediaPurpose.ORIGINAL}
        for child in directory.iterdir():
            if child.name not in keep and not child.name.startswith('.'):
                child.unlink()
