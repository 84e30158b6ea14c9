"""Path utilities for the media scanner."""

import os
from pathlib import Path

from mediavault.common import normalize_path

__all__ = ['normalize_path', 'should_scan_file', 'should_scan_directory', 'is_hidden', 'NOMEDIA_MARKER']

# System files to exclude (cross-platform)
SYSTEM_FILES = {
    'thumbs.db',      # Windows thumbnail cache
    'desktop.ini',    # Windows folder settings
    '.ds_store',      # macOS folder metadata
    'icon\r',         # macOS custom folder icon (has literal carriage return!)
}

# System directories to exclude
SYSTEM_DIRECTORIES = {
    '$recycle.bin',
    'system volume information',
    '@eadir',         # Synology thumbnail cache
    'lost+found',
}

# Temporary file extensions to exclude
TEMP_EXTENSIONS = {'.tmp', '.temp', '.cache', '.bak', '.swp', '.part', '.crdownload'}

# A directory containing this file is skipped together with its subtree
NOMEDIA_MARKER = '.nomedia'


def is_hidden(path: Path) -> bool:
    """
    Cross-platform hidden file detection.

    Unix/Linux/macOS: Files starting with '.'
    Windows: Files with FILE_ATTRIBUTE_HIDDEN flag

    Args:
        path: Path to check

    Returns:
        True if file is hidden on the current platform
    """
    if path.name.startswith('.'):
        return True

    if os.name == 'nt' and path.exists():
        try:
            import ctypes
            attrs = ctypes.windll.kernel32.GetFileAttributesW(str(path))
            # FILE_ATTRIBUTE_HIDDEN = 2
            return attrs != -1 and bool(attrs & 2)
        except (AttributeError, OSError):
            pass

    return False


def should_scan_file(path: Path) -> bool:
    """
    Determine if a file should be considered by the media scanner.

    This does NOT check file content; it only excludes hidden, system and
    temporary files so no time is spent sniffing them. Media detection
    happens afterwards in detect_media_type().

    Args:
        path: Path to check

    Returns:
        True if the file should be scanned
    """
    if is_hidden(path):
        return False

    filename = path.name.lower()
    if filename in SYSTEM_FILES:
        return False

    if path.suffix.lower() in TEMP_EXTENSIONS:
        return False

    return True


def should_scan_directory(path: Path) -> bool:
    """
    Determine if a directory (and its subtree) should be scanned.

    Hidden and system directories are skipped, as are directories holding a
    ``.nomedia`` marker.
    """
    if is_hidden(path):
        return False

    if path.name.lower() in SYSTEM_DIRECTORIES:
        return False

    if (path / NOMEDIA_MARKER).exists():
        return False

    return True
