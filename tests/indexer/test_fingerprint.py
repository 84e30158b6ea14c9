"""Tests for file fingerprints."""

import os

import pytest

from mediavault.indexer.fingerprint import (
    FINGERPRINT_HEAD_SIZE,
    FINGERPRINT_TAIL_SIZE,
    compute_content_fingerprint,
    compute_fingerprint,
)


@pytest.fixture
def sample(tmp_path):
    path = tmp_path / "sample.bin"
    path.write_bytes(b"Original content" * 1000)
    return path


class TestStatFingerprint:
    """Tests for size + mtime fingerprints."""

    def test_format(self, sample):
        stat = sample.stat()
        assert compute_fingerprint(sample) == f"stat:{stat.st_size}:{stat.st_mtime_ns}"

    def test_touch_changes_fingerprint(self, sample):
        before = compute_fingerprint(sample)
        stat = sample.stat()
        os.utime(sample, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
        assert compute_fingerprint(sample) != before


class TestContentFingerprint:
    """Tests for head/tail SHA-256 fingerprints."""

    def test_change_detection(self, sample):
        before = compute_fingerprint(sample, mode="content")
        sample.write_bytes(b"Modified content" * 1000)
        assert compute_fingerprint(sample, mode="content") != before
        assert before.startswith("sha256:")

    def test_identical_files_same_fingerprint(self, sample, tmp_path):
        copy = tmp_path / "copy.bin"
        copy.write_bytes(sample.read_bytes())
        assert compute_fingerprint(copy, mode="content") == compute_fingerprint(sample, mode="content")

    def test_touch_keeps_fingerprint(self, sample):
        before = compute_fingerprint(sample, mode="content")
        stat = sample.stat()
        os.utime(sample, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
        assert compute_fingerprint(sample, mode="content") == before

    def test_large_file_middle_is_not_read(self, tmp_path):
        size = FINGERPRINT_HEAD_SIZE + FINGERPRINT_TAIL_SIZE + 1024
        first = tmp_path / "first.bin"
        second = tmp_path / "second.bin"
        first.write_bytes(b"a" * size)
        second.write_bytes(b"a" * FINGERPRINT_HEAD_SIZE + b"b" * 1024 + b"a" * FINGERPRINT_TAIL_SIZE)

        assert compute_content_fingerprint(first, size) == compute_content_fingerprint(second, size)

    def test_tail_change_is_detected(self, tmp_path):
        size = FINGERPRINT_HEAD_SIZE + FINGERPRINT_TAIL_SIZE + 1024
        first = tmp_path / "first.bin"
        second = tmp_path / "second.bin"
        first.write_bytes(b"a" * size)
        second.write_bytes(b"a" * (size - 1) + b"z")

        assert compute_content_fingerprint(first, size) != compute_content_fingerprint(second, size)

    def test_empty_file(self, tmp_path):
        empty = tmp_path / "empty.bin"
        empty.write_bytes(b"")
        assert compute_fingerprint(empty, mode="content").startswith("sha256:")


def test_unknown_mode(sample):
    with pytest.raises(ValueError):
        compute_fingerprint(sample, mode="crc")


def test_missing_file(tmp_path):
    with pytest.raises(OSError):
        compute_fingerprint(tmp_path / "gone.bin")
