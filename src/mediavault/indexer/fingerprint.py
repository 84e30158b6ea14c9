"""File fingerprinting utilities for change detection."""

import hashlib
import os
from pathlib import Path

__all__ = ['compute_fingerprint', 'compute_stat_fingerprint', 'compute_content_fingerprint']

# Fingerprint configuration
FINGERPRINT_HEAD_SIZE = 65536  # 64 KB from start
FINGERPRINT_TAIL_SIZE = 65536  # 64 KB from end


def compute_stat_fingerprint(stat_result: os.stat_result) -> str:
    """Size plus nanosecond modification time."""
    return f"stat:{stat_result.st_size}:{stat_result.st_mtime_ns}"


def compute_content_fingerprint(file_path: Path, file_size: int) -> str:
    """
    Compute a SHA-256 fingerprint of file head and tail.

    This is a fast approximation for change detection that reads only
    the first and last 64KB of the file, rather than the entire content.

    For files smaller than 128KB, reads the entire file.

    Args:
        file_path: Path to the file
        file_size: Size of the file in bytes

    Returns:
        Prefixed hexadecimal SHA-256 hash string

    Raises:
        OSError: If file cannot be read
    """
    hasher = hashlib.sha256()
    # Size is part of the digest so truncation in the middle is detected
    hasher.update(str(file_size).encode('ascii'))

    with open(file_path, 'rb') as f:
        if file_size <= FINGERPRINT_HEAD_SIZE + FINGERPRINT_TAIL_SIZE:
            hasher.update(f.read())
        else:
            hasher.update(f.read(FINGERPRINT_HEAD_SIZE))
            f.seek(file_size - FINGERPRINT_TAIL_SIZE)
            hasher.update(f.read(FINGERPRINT_TAIL_SIZE))

    return f"sha256:{hasher.hexdigest()}"


def compute_fingerprint(file_path: Path, mode: str = "stat") -> str:
    """
    Fingerprint a file for the configured change-detection mode.

    Args:
        file_path: Path to the file
        mode: 'stat' (size + mtime) or 'content' (head/tail SHA-256)

    Raises:
        ValueError: Unknown mode
        OSError: If file cannot be read
    """
    stat_result = file_path.stat()
    if mode == "stat":
        return compute_stat_fingerprint(stat_result)
    if mode == "content":
        return compute_content_fingerprint(file_path, stat_result.st_size)
    raise ValueError(f"Unknown fingerprint mode: {mode}")
