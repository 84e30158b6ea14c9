"""Error classes for the media indexer."""

from mediavault.common import MediaVaultError

EXTERNAL_TOOLS = ('ffprobe', 'ffmpeg', 'exiftool')


class IndexerError(MediaVaultError):
    """Base error for media indexer operations."""
    pass


class NotFoundError(IndexerError):
    """Unknown id, token, user, or a target that is gone."""
    pass


class UnauthorizedError(IndexerError):
    """Credentials (e.g. a share token password) are missing or wrong."""
    pass


class ForbiddenError(IndexerError):
    """The acting user does not own the entity."""
    pass


class ExpiredError(IndexerError):
    """Share token expiry is in the past."""
    pass


class UnsupportedMediaError(IndexerError):
    """File is unreadable or not a recognized photo/video.

    Non-fatal during scans: the file is skipped and reported as a warning.
    """
    pass


class InvalidArgumentError(IndexerError):
    """Bad configuration value or operation argument."""
    pass


class ConflictError(IndexerError):
    """Duplicate concurrent operation on the same entity or inconsistent catalog state."""
    pass


class PermissionDeniedError(IndexerError):
    """File or directory access was denied due to permissions."""
    pass


class CorruptedFileError(IndexerError):
    """File is corrupted or unreadable."""
    pass


class ParseError(IndexerError):
    """Failed to parse file metadata or tool output."""
    pass


class ToolNotFoundError(IndexerError):
    """Required external tool is not available."""
    pass


def classify_error(exception: Exception) -> str:
    """
    Classify an exception into an error category for processing error records.

    Args:
        exception: The exception to classify

    Returns:
        Error category string: 'permission', 'corrupted', 'io', 'parse',
        'unsupported', 'tool_missing', or 'unknown'
    """
    if isinstance(exception, (PermissionDeniedError, PermissionError)):
        return 'permission'
    elif isinstance(exception, CorruptedFileError):
        return 'corrupted'
    elif isinstance(exception, UnsupportedMediaError):
        return 'unsupported'
    elif isinstance(exception, ParseError):
        return 'parse'
    elif isinstance(exception, ToolNotFoundError):
        return 'tool_missing'
    elif isinstance(exception, FileNotFoundError) and exception.filename in EXTERNAL_TOOLS:
        # subprocess raises FileNotFoundError naming the missing executable
        return 'tool_missing'
    elif isinstance(exception, OSError):
        return 'io'
    elif isinstance(exception, (ValueError, KeyError, AttributeError)):
        return 'parse'
    else:
        return 'unknown'
