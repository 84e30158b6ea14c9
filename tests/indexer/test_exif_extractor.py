"""Tests for EXIF extraction and photo metadata."""

import json
import subprocess
from datetime import datetime

import pytest
from PIL import Image
from PIL.TiffImagePlugin import IFDRational

from mediavault.indexer.errors import ParseError, ToolNotFoundError, UnsupportedMediaError
from mediavault.indexer.metadata import MetadataExtractor, extract_exif, extract_exif_with_exiftool
from mediavault.indexer.metadata.exif_extractor import (
    GPS_IFD,
    _extract_gps_data,
    _format_exposure_time,
    _parse_exif_datetime,
    _parse_rational,
)
from mediavault.indexer.models import MediaType


class FakeExif:
    """Minimal stand-in for Pillow's Exif exposing get_ifd()."""

    def __init__(self, ifds):
        self.ifds = ifds

    def get_ifd(self, tag):
        return self.ifds.get(tag, {})


class TestExtractExif:
    """Tests for reading EXIF from Pillow images."""

    def test_reads_maker_and_date(self, make_jpeg, tmp_path):
        path = make_jpeg(tmp_path / "a.jpg", date_shot=datetime(2021, 7, 4, 10, 15, 0), make="Nikon")

        with Image.open(path) as img:
            exif = extract_exif(img)

        assert exif.maker == "Nikon"
        assert exif.date_shot == datetime(2021, 7, 4, 10, 15, 0)
        assert exif.gps_latitude is None

    def test_image_without_exif(self, make_jpeg, tmp_path):
        with Image.open(make_jpeg(tmp_path / "plain.jpg")) as img:
            assert extract_exif(img) is None


class TestGpsData:
    """Tests for GPS coordinate conversion."""

    def test_southern_western_coordinates(self):
        exif = FakeExif({GPS_IFD: {
            1: 'S',
            2: (33.0, 51.0, 36.0),
            3: 'W',
            4: (151.0, 12.0, 0.0),
            5: b'\x01',
            6: IFDRational(10, 1),
        }})

        gps = _extract_gps_data(exif)

        assert gps['gps_latitude'] == pytest.approx(-33.86)
        assert gps['gps_longitude'] == pytest.approx(-151.2)
        assert gps['gps_altitude'] == pytest.approx(-10.0)

    def test_missing_ref_is_ignored(self):
        gps = _extract_gps_data(FakeExif({GPS_IFD: {2: (1.0, 0.0, 0.0)}}))
        assert gps == {}

    def test_single_rational_coordinate_is_ignored(self):
        gps = _extract_gps_data(FakeExif({GPS_IFD: {
            1: 'N',
            2: IFDRational(5, 1),
            3: 'E',
            4: (2.0, 21.0, 0.0),
        }}))

        assert 'gps_latitude' not in gps
        assert gps['gps_longitude'] == pytest.approx(2.35)

    def test_no_gps_ifd(self):
        assert _extract_gps_data(FakeExif({})) == {}


class TestValueParsing:
    """Tests for EXIF value helpers."""

    @pytest.mark.parametrize("value,expected", [
        (IFDRational(1, 100), "1/100"),
        (IFDRational(5, 2), "2.5"),
        (0.004, "1/250"),
        (0, None),
        (None, None),
    ])
    def test_exposure_time(self, value, expected):
        assert _format_exposure_time(value) == expected

    def test_rational_zero_denominator(self):
        assert _parse_rational((1, 0)) is None
        assert _parse_rational((3, 2)) == 1.5
        assert _parse_rational("f/2.8") is None

    @pytest.mark.parametrize("value", ["0000:00:00 00:00:00", "", "garbage", None])
    def test_placeholder_dates(self, value):
        assert _parse_exif_datetime(value) is None

    def test_trailing_nul(self):
        assert _parse_exif_datetime("2020:01:02 03:04:05\x00") == datetime(2020, 1, 2, 3, 4, 5)


class TestExiftool:
    """Tests for RAW extraction through exiftool."""

    def test_parses_json(self, monkeypatch, tmp_path):
        payload = [{
            'Make': "Canon",
            'Model': "EOS R5",
            'DateTimeOriginal': "2022:03:01 08:00:00",
            'ISO': 400,
            'FNumber': 4.0,
            'ExposureTime': 0.01,
            'GPSLatitude': 48.5,
            'ImageWidth': 8192,
            'ImageHeight': 5464,
        }]

        def fake_run(args, **kwargs):
            assert args[0] == 'exiftool'
            return subprocess.CompletedProcess(args, 0, stdout=json.dumps(payload), stderr="")

        monkeypatch.setattr(subprocess, 'run', fake_run)

        exif, size = extract_exif_with_exiftool(tmp_path / "shot.cr2")

        assert exif.maker == "Canon"
        assert exif.camera == "EOS R5"
        assert exif.date_shot == datetime(2022, 3, 1, 8, 0, 0)
        assert exif.iso == 400
        assert exif.exposure == "1/100"
        assert exif.gps_latitude == 48.5
        assert size == (8192, 5464)

    def test_missing_tool(self, monkeypatch, tmp_path):
        def fake_run(args, **kwargs):
            raise FileNotFoundError(args[0])

        monkeypatch.setattr(subprocess, 'run', fake_run)
        with pytest.raises(ToolNotFoundError):
            extract_exif_with_exiftool(tmp_path / "shot.cr2")

    def test_invalid_output(self, monkeypatch, tmp_path):
        monkeypatch.setattr(
            subprocess, 'run',
            lambda args, **kwargs: subprocess.CompletedProcess(args, 0, stdout="not json", stderr=""),
        )
        with pytest.raises(ParseError):
            extract_exif_with_exiftool(tmp_path / "shot.cr2")


class TestMetadataExtractor:
    """Tests for combined photo metadata."""

    def test_photo_dimensions_and_capture_date(self, make_jpeg, tmp_path):
        shot = datetime(2020, 2, 29, 23, 59, 0)
        path = make_jpeg(tmp_path / "a.jpg", size=(64, 48), date_shot=shot)

        metadata = MetadataExtractor(use_ffprobe=False).extract(path)

        assert metadata.media_type == MediaType.PHOTO
        assert metadata.mime_type == 'image/jpeg'
        assert (metadata.width, metadata.height) == (64, 48)
        assert metadata.capture_date == shot

    def test_rotated_orientation_swaps_dimensions(self, make_jpeg, tmp_path):
        path = make_jpeg(tmp_path / "portrait.jpg", size=(64, 48), orientation=6)

        metadata = MetadataExtractor(use_ffprobe=False).extract(path)

        assert metadata.exif.orientation == 6
        assert (metadata.width, metadata.height) == (48, 64)

    def test_truncated_image(self, make_jpeg, tmp_path):
        path = make_jpeg(tmp_path / "cut.jpg")
        path.write_bytes(path.read_bytes()[:20])

        with pytest.raises(UnsupportedMediaError):
            MetadataExtractor(use_ffprobe=False).extract(path)

    def test_raw_without_exiftool(self, monkeypatch, tmp_path):
        path = tmp_path / "shot.nef"
        path.write_bytes(b"opaque raw payload")

        def fake_run(args, **kwargs):
            raise FileNotFoundError(args[0])

        monkeypatch.setattr(subprocess, 'run', fake_run)
        with pytest.raises(UnsupportedMediaError):
            MetadataExtractor(use_ffprobe=False, use_exiftool=True).extract(path)
