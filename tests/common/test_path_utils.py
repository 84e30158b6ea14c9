"""Tests for path utilities."""

import os
import unicodedata
from pathlib import Path

import pytest

from mediavault.common import absolute_path, is_within, normalize_path


class TestNormalizePath:
    """Tests for normalize_path function."""

    def test_forward_slashes(self):
        assert normalize_path(r"C:\Users\test\photos\image.jpg") == "C:/Users/test/photos/image.jpg"

    def test_unicode_normalization(self):
        decomposed = unicodedata.normalize('NFD', "café/résumé.jpg")
        assert normalize_path(decomposed) == unicodedata.normalize('NFC', "café/résumé.jpg")

    def test_relative_path(self):
        assert normalize_path(Path("photos/2023/image.jpg")) == "photos/2023/image.jpg"

    def test_already_normalized(self):
        path = "/home/user/photos/image.jpg"
        assert normalize_path(normalize_path(path)) == path


class TestAbsolutePath:
    """Tests for absolute_path function."""

    def test_resolves_relative_to_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert absolute_path("photos") == normalize_path(os.path.join(str(tmp_path), "photos"))

    def test_collapses_parent_segments(self, tmp_path):
        assert absolute_path(tmp_path / "a" / ".." / "b") == normalize_path(tmp_path / "b")

    def test_expands_home(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("USERPROFILE", str(tmp_path))
        assert absolute_path("~/photos") == normalize_path(tmp_path / "photos")


class TestIsWithin:
    """Tests for is_within function."""

    @pytest.mark.parametrize("path,root,expected", [
        ("/photos", "/photos", True),
        ("/photos/2023/a.jpg", "/photos", True),
        ("/photos/2023", "/photos/", True),
        ("/photos-archive/a.jpg", "/photos", False),
        ("/pho", "/photos", False),
        ("/", "/photos", False),
    ])
    def test_containment(self, path, root, expected):
        assert is_within(path, root) is expected
