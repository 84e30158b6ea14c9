"""Metadata extraction for one media file.

Combines type detection, Pillow/ExifTool EXIF reading and ffprobe video
probing into a single result. Missing or corrupt metadata is never fatal;
only files that cannot be read as media at all raise UnsupportedMediaError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from ..errors import ParseError, ToolNotFoundError, UnsupportedMediaError
from ..mime_detector import detect_media_type, is_raw_mime_type
from ..models import MediaExif, MediaType, VideoMetadata
from .exif_extractor import extract_exif, extract_exif_with_exiftool
from .video_extractor import extract_video_metadata

logger = logging.getLogger(__name__)

# EXIF orientations that swap width and height when applied
TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}


@dataclass
class ExtractedMetadata:
    media_type: MediaType
    mime_type: str
    width: Optional[int] = None
    height: Optional[int] = None
    exif: Optional[MediaExif] = None
    video: Optional[VideoMetadata] = None

    @property
    def capture_date(self) -> Optional[datetime]:
        """EXIF shot date for photos, container creation time for videos."""
        if self.exif is not None and self.exif.date_shot is not None:
            return self.exif.date_shot
        if self.video is not None and self.video.creation_time is not None:
            return self.video.creation_time
        return None


class MetadataExtractor:
    """
    Produces type, EXIF/video metadata and capture date for media files.

    Args:
        use_ffprobe: Probe videos with ffprobe
        use_exiftool: Read camera RAW files through exiftool
    """

    def __init__(self, use_ffprobe: bool = True, use_exiftool: bool = False):
        self.use_ffprobe = use_ffprobe
        self.use_exiftool = use_exiftool
        self._ffprobe_missing_logged = False

    def extract(self, file_path: Path, media_type: Optional[MediaType] = None,
                mime_type: Optional[str] = None) -> ExtractedMetadata:
        """
        Extract metadata from a media file.

        Args:
            file_path: Path to the file
            media_type: Declared type; detected when omitted
            mime_type: Declared MIME type; detected when omitted

        Raises:
            UnsupportedMediaError: File is unreadable or not a photo/video
            PermissionError: File cannot be opened
        """
        if media_type is None or mime_type is None:
            media_type, mime_type = detect_media_type(file_path, allow_raw=self.use_exiftool)

        if media_type == MediaType.PHOTO:
            return self._extract_photo(file_path, mime_type)
        return self._extract_video(file_path, mime_type)

    def _extract_photo(self, file_path: Path, mime_type: str) -> ExtractedMetadata:
        result = ExtractedMetadata(media_type=MediaType.PHOTO, mime_type=mime_type)

        if is_raw_mime_type(mime_type):
            try:
                result.exif, size = extract_exif_with_exiftool(file_path)
            except (ToolNotFoundError, ParseError) as e:
                raise UnsupportedMediaError(
                    "Cannot read RAW file", path=str(file_path), error=str(e)
                ) from e
            if size is not None:
                result.width, result.height = size
            return result

        try:
            with Image.open(file_path) as img:
                width, height = img.size
                result.exif = extract_exif(img)
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            raise UnsupportedMediaError(
                "Cannot decode image", path=str(file_path), error=str(e)
            ) from e
        except PermissionError:
            raise
        except (OSError, SyntaxError, ValueError) as e:
            raise UnsupportedMediaError(
                "Corrupt image", path=str(file_path), error=str(e)
            ) from e

        if result.exif is not None and result.exif.orientation in TRANSPOSED_ORIENTATIONS:
            width, height = height, width
        result.width, result.height = width, height
        return result

    def _extract_video(self, file_path: Path, mime_type: str) -> ExtractedMetadata:
        result = ExtractedMetadata(media_type=MediaType.VIDEO, mime_type=mime_type)
        if not self.use_ffprobe:
            return result

        try:
            result.video = extract_video_metadata(file_path)
        except ToolNotFoundError:
            if not self._ffprobe_missing_logged:
                logger.warning("ffprobe not found - video metadata extraction disabled")
                self._ffprobe_missing_logged = True
            return result
        except ParseError as e:
            raise UnsupportedMediaError(
                "Cannot probe video", path=str(file_path), error=str(e)
            ) from e

        result.width = result.video.width
        result.height = result.video.height
        return result
