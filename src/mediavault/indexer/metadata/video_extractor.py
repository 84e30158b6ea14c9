"""Video metadata extraction using ffprobe."""

import json
import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import ParseError, ToolNotFoundError
from ..models import VideoMetadata

logger = logging.getLogger(__name__)


def extract_video_metadata(file_path: Path) -> VideoMetadata:
    """
    Extract video metadata using ffprobe.

    Args:
        file_path: Path to video file

    Returns:
        VideoMetadata; fields ffprobe does not report stay None

    Raises:
        ToolNotFoundError: If ffprobe is not available
        ParseError: If ffprobe fails or its output cannot be parsed
    """
    try:
        result = subprocess.run(
            [
                'ffprobe',
                '-v', 'quiet',
                '-print_format', 'json',
                '-show_format',
                '-show_streams',
                str(file_path)
            ],
            capture_output=True,
            text=True,
            encoding='utf-8',  # Explicitly use UTF-8 to handle non-ASCII paths
            check=True,
            timeout=30
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError("ffprobe not found", tool='ffprobe') from e
    except subprocess.CalledProcessError as e:
        raise ParseError("ffprobe failed", path=str(file_path), stderr=e.stderr) from e
    except subprocess.TimeoutExpired as e:
        raise ParseError("ffprobe timed out", path=str(file_path)) from e

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ParseError("Invalid ffprobe output", path=str(file_path)) from e

    return parse_ffprobe_output(data)


def parse_ffprobe_output(data: Dict[str, Any]) -> VideoMetadata:
    """
    Build VideoMetadata from ffprobe's ``-show_format -show_streams`` JSON.

    Only the first video stream and the first audio stream are considered.
    Width and height are swapped for videos recorded with a 90/270 degree
    rotation so they describe the displayed frame.
    """
    metadata = VideoMetadata()
    fmt = data.get('format', {})
    streams = data.get('streams', [])

    metadata.duration = _parse_float(fmt.get('duration'))
    metadata.bitrate = _parse_int(fmt.get('bit_rate'))
    metadata.creation_time = _parse_creation_time(fmt.get('tags', {}).get('creation_time'))

    video_stream = next((s for s in streams if s.get('codec_type') == 'video'), None)
    audio_stream = next((s for s in streams if s.get('codec_type') == 'audio'), None)

    if video_stream is not None:
        metadata.width = _parse_int(video_stream.get('width'))
        metadata.height = _parse_int(video_stream.get('height'))
        metadata.codec = video_stream.get('codec_name')
        metadata.framerate = (
            _parse_frame_rate(video_stream.get('avg_frame_rate'))
            or _parse_frame_rate(video_stream.get('r_frame_rate'))
        )
        if metadata.bitrate is None:
            metadata.bitrate = _parse_int(video_stream.get('bit_rate'))
        metadata.color_profile = _describe_color(video_stream)
        if metadata.creation_time is None:
            metadata.creation_time = _parse_creation_time(
                video_stream.get('tags', {}).get('creation_time')
            )

        if _rotation(video_stream) in (90, 270) and metadata.width and metadata.height:
            metadata.width, metadata.height = metadata.height, metadata.width

    if audio_stream is not None:
        metadata.audio = _describe_audio(audio_stream)

    return metadata


def _rotation(stream: Dict[str, Any]) -> int:
    rotate = stream.get('tags', {}).get('rotate')
    if rotate is None:
        for side_data in stream.get('side_data_list', []):
            if 'rotation' in side_data:
                rotate = side_data['rotation']
                break
    value = _parse_int(rotate)
    return abs(value) % 360 if value is not None else 0


def _describe_color(stream: Dict[str, Any]) -> Optional[str]:
    """Human-readable color profile, e.g. 'bt709' or 'bt2020nc/arib-std-b67'."""
    parts = []
    for key in ('color_space', 'color_transfer'):
        value = stream.get(key)
        if value and value != 'unknown' and value not in parts:
            parts.append(value)
    if not parts and stream.get('pix_fmt'):
        parts.append(stream['pix_fmt'])
    return '/'.join(parts) or None


def _describe_audio(stream: Dict[str, Any]) -> Optional[str]:
    """Audio track summary, e.g. 'aac, 2 channels, 48000 Hz'."""
    parts = []
    if stream.get('codec_name'):
        parts.append(stream['codec_name'])
    channels = _parse_int(stream.get('channels'))
    if channels:
        parts.append(f"{channels} channel{'s' if channels != 1 else ''}")
    sample_rate = _parse_int(stream.get('sample_rate'))
    if sample_rate:
        parts.append(f"{sample_rate} Hz")
    return ', '.join(parts) or None


def _parse_creation_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.debug(f"Could not parse creation time: {{'value': {value!r}}}")
        return None


def _parse_float(value) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _parse_int(value) -> Optional[int]:
    try:
        return int(float(value)) if value is not None else None
    except (TypeError, ValueError):
        return None


def _parse_frame_rate(frame_rate_str: Optional[str]) -> Optional[float]:
    """
    Parse frame rate string to float.

    ffprobe returns frame rate as "30000/1001" or "30/1"; "0/0" means unknown.
    """
    if not frame_rate_str:
        return None
    try:
        if '/' in frame_rate_str:
            numerator, denominator = frame_rate_str.split('/')
            den = float(denominator)
            if den == 0:
                return None
            return float(numerator) / den or None
        return float(frame_rate_str) or None
    except ValueError:
        logger.warning(f"Could not parse frame rate: {{'value': {frame_rate_str!r}}}")
        return None
