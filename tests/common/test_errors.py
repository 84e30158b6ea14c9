"""Tests for the error hierarchy and error classification."""

import pytest

from mediavault.common import MediaVaultError
from mediavault.indexer.errors import (
    ConflictError,
    CorruptedFileError,
    IndexerError,
    NotFoundError,
    ParseError,
    PermissionDeniedError,
    ToolNotFoundError,
    UnsupportedMediaError,
    classify_error,
)


class TestMediaVaultError:
    """Tests for the base error."""

    def test_message_and_context(self):
        error = NotFoundError("Album not found", album_id="a1")
        assert str(error) == "Album not found"
        assert error.message == "Album not found"
        assert error.context == {'album_id': "a1"}

    def test_hierarchy(self):
        assert issubclass(IndexerError, MediaVaultError)
        assert issubclass(ConflictError, IndexerError)
        with pytest.raises(MediaVaultError):
            raise ConflictError("busy")


class TestClassifyError:
    """Tests for classify_error."""

    @pytest.mark.parametrize("exception,category", [
        (PermissionDeniedError("denied"), 'permission'),
        (PermissionError(13, "Permission denied"), 'permission'),
        (CorruptedFileError("bad"), 'corrupted'),
        (UnsupportedMediaError("not media"), 'unsupported'),
        (ParseError("bad json"), 'parse'),
        (ToolNotFoundError("ffprobe not found", tool='ffprobe'), 'tool_missing'),
        (FileNotFoundError(2, "No such file", "ffmpeg"), 'tool_missing'),
        (FileNotFoundError(2, "No such file", "/photos/a.jpg"), 'io'),
        (OSError("disk"), 'io'),
        (ValueError("bad value"), 'parse'),
        (KeyError("missing"), 'parse'),
        (RuntimeError("?"), 'unknown'),
    ])
    def test_categories(self, exception, category):
        assert classify_error(exception) == category
