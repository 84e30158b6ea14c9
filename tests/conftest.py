"""Shared fixtures for the mediavault test suite."""

from datetime import datetime
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest
from PIL import ExifTags, Image

from mediavault.indexer.catalog import MediaCatalog
from mediavault.indexer.config import FacesConfig, MediaVaultConfig, ScannerConfig, ThumbnailConfig
from mediavault.indexer.faces.clusterer import FaceClusterer
from mediavault.indexer.faces.detector import DetectedFace
from mediavault.indexer.library import MediaLibrary
from mediavault.indexer.metadata.extractor import MetadataExtractor
from mediavault.indexer.models import FaceRectangle, SiteInfo, ThumbnailFilter
from mediavault.indexer.scan_job import ScanJob
from mediavault.indexer.thumbnails import ThumbnailGenerator


def embedding(*values: float, size: int = 8) -> np.ndarray:
    """Small float32 embedding; missing trailing values are zero."""
    vector = np.zeros(size, dtype=np.float32)
    vector[:len(values)] = values
    return vector


class FakeFaceDetector:
    """Face detector returning a fixed list of faces for every image."""

    def __init__(self, faces: Optional[List[DetectedFace]] = None, error: Optional[Exception] = None):
        self.faces = faces or []
        self.error = error
        self.calls = 0

    def detect(self, image: Image.Image) -> List[DetectedFace]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.faces)


def detected_face(*values: float) -> DetectedFace:
    return DetectedFace(
        rectangle=FaceRectangle(min_x=0.1, max_x=0.4, min_y=0.2, max_y=0.6),
        embedding=embedding(*values),
    )


@pytest.fixture
def catalog(tmp_path):
    """Migrated catalog with site info initialized."""
    catalog = MediaCatalog(tmp_path / "catalog.db")
    catalog.initialize()
    catalog.initialize_site_info(SiteInfo(
        periodic_scan_interval=0,
        concurrent_workers=2,
        thumbnail_method=ThumbnailFilter.LANCZOS,
    ))
    yield catalog
    catalog.close()


@pytest.fixture
def user(catalog):
    return catalog.create_user("alice")


@pytest.fixture
def other_user(catalog):
    return catalog.create_user("bob")


@pytest.fixture
def make_jpeg():
    """Factory writing a small JPEG, optionally with EXIF shot date and orientation."""

    def _make(path: Path, size=(64, 48), color='red', date_shot: Optional[datetime] = None,
              orientation: Optional[int] = None, make: Optional[str] = None) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        image = Image.new('RGB', size, color=color)
        exif = Image.Exif()
        if make is not None:
            exif[ExifTags.Base.Make] = make
        if orientation is not None:
            exif[ExifTags.Base.Orientation] = orientation
        if date_shot is not None:
            exif[ExifTags.Base.DateTimeOriginal] = date_shot.strftime("%Y:%m:%d %H:%M:%S")
        if len(exif):
            image.save(path, 'JPEG', exif=exif)
        else:
            image.save(path, 'JPEG')
        return path

    return _make


@pytest.fixture
def photos_root(tmp_path):
    root = tmp_path / "photos"
    root.mkdir()
    return root


@pytest.fixture
def thumbnails(tmp_path):
    return ThumbnailGenerator(
        cache_path=tmp_path / "cache",
        thumbnail_size=32,
        use_ffmpeg=False,
    )


@pytest.fixture
def clusterer(catalog):
    return FaceClusterer(catalog, similarity_threshold=0.6)


@pytest.fixture
def make_job(catalog, thumbnails, clusterer):
    """Factory building scan jobs that need no external tools."""
    extractor = MetadataExtractor(use_ffprobe=False)

    def _make(user_id: str, **kwargs) -> ScanJob:
        return ScanJob(
            user_id,
            catalog=catalog,
            extractor=extractor,
            thumbnails=thumbnails,
            clusterer=clusterer,
            **kwargs,
        )

    return _make


@pytest.fixture
def library_config(tmp_path):
    """Service configuration that needs no external tools or face models."""
    return MediaVaultConfig(
        scanner=ScannerConfig(
            database_path=str(tmp_path / "data" / "mediavault.db"),
            cache_path=str(tmp_path / "cache"),
            concurrent_workers=2,
            use_ffprobe=False,
            use_ffmpeg=False,
            progress_interval=1,
        ),
        thumbnails=ThumbnailConfig(thumbnail_size=32),
        faces=FacesConfig(enabled=False),
    )


@pytest.fixture
def library(library_config):
    library = MediaLibrary(library_config)
    yield library
    library.close()
