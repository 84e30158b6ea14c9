"""Path utilities for consistent path handling across packages."""

import os
import unicodedata
from pathlib import Path


def normalize_path(path: Path | str) -> str:
    """
    Normalize a path for consistent storage and comparison.

    Applies:
    - Unicode NFC normalization, so visually identical names stored by
      different filesystems (macOS NFD vs Linux NFC) compare equal
    - Forward slash conversion for cross-platform consistency

    Args:
        path: Path object or string to normalize

    Returns:
        Normalized path string with forward slashes and NFC Unicode normalization

    Examples:
        >>> normalize_path(Path("café/résumé.jpg"))
        'café/résumé.jpg'
        >>> normalize_path(r"C:\\Users\\test\\photos")
        'C:/Users/test/photos'
    """
    normalized = unicodedata.normalize('NFC', str(path))
    return normalized.replace('\\', '/')


def absolute_path(path: Path | str) -> str:
    """Resolve a user supplied path to its normalized absolute form."""
    return normalize_path(os.path.abspath(os.path.expanduser(str(path))))


def is_within(path: str, root: str) -> bool:
    """Return True if normalized ``path`` equals ``root`` or lies beneath it."""
    root = root.rstrip('/')
    return path == root or path.startswith(root + '/')
