"""Media type detection by extension, confirmed by content sniffing (filetype)."""

import logging
from pathlib import Path
from typing import Optional, Tuple

import filetype

from .errors import UnsupportedMediaError
from .models import MediaType

logger = logging.getLogger(__name__)

PHOTO_EXTENSIONS = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.jpe': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.bmp': 'image/bmp',
    '.tif': 'image/tiff',
    '.tiff': 'image/tiff',
    '.heic': 'image/heic',
    '.heif': 'image/heif',
}

# Only read through exiftool; Pillow cannot decode them
RAW_EXTENSIONS = {
    '.dng': 'image/x-adobe-dng',
    '.cr2': 'image/x-canon-cr2',
    '.cr3': 'image/x-canon-cr3',
    '.nef': 'image/x-nikon-nef',
    '.arw': 'image/x-sony-arw',
    '.orf': 'image/x-olympus-orf',
    '.rw2': 'image/x-panasonic-rw2',
    '.raf': 'image/x-fuji-raf',
}

VIDEO_EXTENSIONS = {
    '.mp4': 'video/mp4',
    '.m4v': 'video/x-m4v',
    '.mov': 'video/quicktime',
    '.avi': 'video/x-msvideo',
    '.mkv': 'video/x-matroska',
    '.webm': 'video/webm',
    '.mts': 'video/mp2t',
    '.m2ts': 'video/mp2t',
    '.3gp': 'video/3gpp',
    '.wmv': 'video/x-ms-wmv',
}

# Formats browsers display natively
WEB_PHOTO_MIME_TYPES = {'image/jpeg', 'image/png', 'image/gif', 'image/webp'}
WEB_VIDEO_MIME_TYPES = {'video/mp4', 'video/webm'}


def detect_mime_type(file_path: Path) -> Optional[str]:
    """
    Detect MIME type of a file by reading its magic bytes.

    Returns:
        MIME type string, or None if the content is not recognized

    Raises:
        OSError: If file cannot be read
    """
    kind = filetype.guess(str(file_path))
    if kind is not None:
        return kind.mime
    return None


def is_image_mime_type(mime_type: str) -> bool:
    return mime_type.startswith('image/')


def is_video_mime_type(mime_type: str) -> bool:
    return mime_type.startswith('video/')


def is_web_compatible(mime_type: str) -> bool:
    """True if browsers can show the file without a converted rendition."""
    return mime_type in WEB_PHOTO_MIME_TYPES or mime_type in WEB_VIDEO_MIME_TYPES


def is_raw_mime_type(mime_type: str) -> bool:
    return mime_type in RAW_EXTENSIONS.values()


def is_candidate_extension(path: Path, allow_raw: bool = False) -> bool:
    """Cheap pre-filter used by the directory walk."""
    suffix = path.suffix.lower()
    if suffix in PHOTO_EXTENSIONS or suffix in VIDEO_EXTENSIONS:
        return True
    return allow_raw and suffix in RAW_EXTENSIONS


def detect_media_type(file_path: Path, allow_raw: bool = False) -> Tuple[MediaType, str]:
    """
    Classify a file as photo or video.

    The extension proposes a type; the content signature, when recognized,
    overrides it. Content that is recognized as something other than media
    is rejected even if the extension looks right.

    Args:
        file_path: Path to the file
        allow_raw: Accept camera RAW extensions (requires exiftool)

    Returns:
        (media_type, mime_type) tuple

    Raises:
        UnsupportedMediaError: If the file is not a supported photo or video
        OSError: If file cannot be read
    """
    suffix = file_path.suffix.lower()
    sniffed = detect_mime_type(file_path)

    if sniffed is not None:
        if is_image_mime_type(sniffed):
            if allow_raw and suffix in RAW_EXTENSIONS:
                return MediaType.PHOTO, RAW_EXTENSIONS[suffix]
            return MediaType.PHOTO, sniffed
        if is_video_mime_type(sniffed):
            return MediaType.VIDEO, sniffed
        raise UnsupportedMediaError(
            "Content is not a photo or video",
            path=str(file_path),
            mime_type=sniffed,
        )

    # Signature unknown to filetype: trust the extension
    if suffix in PHOTO_EXTENSIONS:
        return MediaType.PHOTO, PHOTO_EXTENSIONS[suffix]
    if suffix in VIDEO_EXTENSIONS:
        return MediaType.VIDEO, VIDEO_EXTENSIONS[suffix]
    if allow_raw and suffix in RAW_EXTENSIONS:
        return MediaType.PHOTO, RAW_EXTENSIONS[suffix]

    raise UnsupportedMediaError("Unrecognized file type", path=str(file_path))
