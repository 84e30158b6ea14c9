"""Tests for ffprobe video metadata parsing."""

import json
import subprocess
from datetime import datetime, timezone

import pytest

from mediavault.indexer.errors import ParseError, ToolNotFoundError
from mediavault.indexer.metadata import MetadataExtractor, extract_video_metadata, parse_ffprobe_output
from mediavault.indexer.models import MediaType

PHONE_CLIP = {
    'format': {
        'duration': "12.480000",
        'bit_rate': "17000000",
        'tags': {'creation_time': "2023-08-14T17:02:11.000000Z"},
    },
    'streams': [
        {
            'codec_type': 'video',
            'codec_name': 'hevc',
            'width': 1920,
            'height': 1080,
            'avg_frame_rate': "30000/1001",
            'color_space': 'bt2020nc',
            'color_transfer': 'arib-std-b67',
            'side_data_list': [{'rotation': -90}],
        },
        {
            'codec_type': 'audio',
            'codec_name': 'aac',
            'channels': 2,
            'sample_rate': "48000",
        },
    ],
}


class TestParseFfprobeOutput:
    """Tests for turning ffprobe JSON into VideoMetadata."""

    def test_phone_clip(self):
        video = parse_ffprobe_output(PHONE_CLIP)

        assert video.duration == pytest.approx(12.48)
        assert video.bitrate == 17000000
        assert video.codec == 'hevc'
        assert video.framerate == pytest.approx(29.97, rel=1e-3)
        assert video.color_profile == 'bt2020nc/arib-std-b67'
        assert video.audio == 'aac, 2 channels, 48000 Hz'
        assert video.creation_time == datetime(2023, 8, 14, 17, 2, 11, tzinfo=timezone.utc)

    def test_rotation_swaps_dimensions(self):
        video = parse_ffprobe_output(PHONE_CLIP)
        assert (video.width, video.height) == (1080, 1920)

    def test_rotate_tag(self):
        video = parse_ffprobe_output({'streams': [
            {'codec_type': 'video', 'width': 640, 'height': 480, 'tags': {'rotate': "180"}},
        ]})
        assert (video.width, video.height) == (640, 480)

    def test_unknown_frame_rate_falls_back(self):
        video = parse_ffprobe_output({'streams': [
            {'codec_type': 'video', 'avg_frame_rate': "0/0", 'r_frame_rate': "25/1", 'bit_rate': "800"},
        ]})
        assert video.framerate == 25.0
        assert video.bitrate == 800

    def test_pixel_format_when_color_unknown(self):
        video = parse_ffprobe_output({'streams': [
            {'codec_type': 'video', 'color_space': 'unknown', 'pix_fmt': 'yuv420p'},
        ]})
        assert video.color_profile == 'yuv420p'

    def test_mono_audio_only(self):
        video = parse_ffprobe_output({'streams': [
            {'codec_type': 'audio', 'codec_name': 'opus', 'channels': 1},
        ]})
        assert video.audio == 'opus, 1 channel'
        assert video.width is None

    def test_empty_output(self):
        video = parse_ffprobe_output({})
        assert video.duration is None
        assert video.creation_time is None

    def test_bad_creation_time(self):
        video = parse_ffprobe_output({'format': {'tags': {'creation_time': "yesterday"}}})
        assert video.creation_time is None


class TestExtractVideoMetadata:
    """Tests for running ffprobe."""

    def test_runs_ffprobe(self, monkeypatch, tmp_path):
        def fake_run(args, **kwargs):
            assert args[0] == 'ffprobe'
            return subprocess.CompletedProcess(args, 0, stdout=json.dumps(PHONE_CLIP), stderr="")

        monkeypatch.setattr(subprocess, 'run', fake_run)
        assert extract_video_metadata(tmp_path / "clip.mp4").codec == 'hevc'

    def test_missing_ffprobe(self, monkeypatch, tmp_path):
        def fake_run(args, **kwargs):
            raise FileNotFoundError(args[0])

        monkeypatch.setattr(subprocess, 'run', fake_run)
        with pytest.raises(ToolNotFoundError):
            extract_video_metadata(tmp_path / "clip.mp4")

    def test_ffprobe_failure(self, monkeypatch, tmp_path):
        def fake_run(args, **kwargs):
            raise subprocess.CalledProcessError(1, args, stderr="moov atom not found")

        monkeypatch.setattr(subprocess, 'run', fake_run)
        with pytest.raises(ParseError):
            extract_video_metadata(tmp_path / "clip.mp4")


class TestVideoExtraction:
    """Tests for video handling in MetadataExtractor."""

    @pytest.fixture
    def clip(self, tmp_path):
        path = tmp_path / "clip.mov"
        path.write_bytes(b"not really a movie")
        return path

    def test_without_ffprobe(self, clip):
        metadata = MetadataExtractor(use_ffprobe=False).extract(clip)

        assert metadata.media_type == MediaType.VIDEO
        assert metadata.video is None
        assert metadata.capture_date is None

    def test_missing_ffprobe_is_not_fatal(self, clip, monkeypatch):
        def fake_run(args, **kwargs):
            raise FileNotFoundError(args[0])

        monkeypatch.setattr(subprocess, 'run', fake_run)
        extractor = MetadataExtractor(use_ffprobe=True)

        assert extractor.extract(clip).video is None
        assert extractor.extract(clip).video is None

    def test_probed_dimensions(self, clip, monkeypatch):
        monkeypatch.setattr(
            subprocess, 'run',
            lambda args, **kwargs: subprocess.CompletedProcess(args, 0, stdout=json.dumps(PHONE_CLIP), stderr=""),
        )

        metadata = MetadataExtractor(use_ffprobe=True).extract(clip)

        assert (metadata.width, metadata.height) == (1080, 1920)
        assert metadata.capture_date == datetime(2023, 8, 14, 17, 2, 11, tzinfo=timezone.utc)
