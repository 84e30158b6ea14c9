"""EXIF metadata extraction using Pillow and ExifTool."""

import json
import logging
import math
import re
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from PIL import Image
from PIL.ExifTags import GPSTAGS, TAGS
from PIL.TiffImagePlugin import IFDRational

from ..errors import ParseError, ToolNotFoundError
from ..models import MediaExif

logger = logging.getLogger(__name__)

EXIF_IFD = 0x8769
GPS_IFD = 0x8825

EXPOSURE_PROGRAMS = {
    0: "Not defined",
    1: "Manual",
    2: "Normal program",
    3: "Aperture priority",
    4: "Shutter priority",
    5: "Creative program",
    6: "Action program",
    7: "Portrait mode",
    8: "Landscape mode",
}


def extract_exif(image: Image.Image) -> Optional[MediaExif]:
    """
    Extract EXIF metadata from an opened Pillow image.

    Fields that are absent or unparseable stay None; a broken EXIF block
    never fails the caller.

    Args:
        image: Opened Pillow image

    Returns:
        MediaExif, or None if the image carries no EXIF at all
    """
    try:
        exif_data = image.getexif()
    except Exception as e:
        logger.warning(f"Failed to read EXIF block: {{'error': {str(e)!r}}}")
        return None

    if not exif_data:
        return None

    tags: Dict[str, Any] = {}
    for tag_id, value in exif_data.items():
        tags[TAGS.get(tag_id, tag_id)] = value
    try:
        for tag_id, value in exif_data.get_ifd(EXIF_IFD).items():
            tags[TAGS.get(tag_id, tag_id)] = value
    except Exception as e:
        logger.debug(f"No Exif sub-IFD: {{'error': {str(e)!r}}}")

    exif = MediaExif(
        camera=_clean_string(tags.get('Model')),
        maker=_clean_string(tags.get('Make')),
        lens=_clean_string(tags.get('LensModel')),
        date_shot=_parse_exif_datetime(tags.get('DateTimeOriginal') or tags.get('DateTimeDigitized')),
        exposure=_format_exposure_time(tags.get('ExposureTime')),
        aperture=_parse_rational(tags.get('FNumber')),
        iso=_parse_iso(tags.get('ISOSpeedRatings')),
        focal_length=_parse_rational(tags.get('FocalLength')),
        flash=_parse_flash(tags.get('Flash')),
        exposure_program=EXPOSURE_PROGRAMS.get(tags.get('ExposureProgram')),
        orientation=_parse_int(tags.get('Orientation')),
    )

    gps = _extract_gps_data(exif_data)
    exif.gps_latitude = gps.get('gps_latitude')
    exif.gps_longitude = gps.get('gps_longitude')
    exif.gps_altitude = gps.get('gps_altitude')

    return exif


def _extract_gps_data(exif_data) -> Dict[str, float]:
    """
    Extract GPS coordinates from EXIF data.

    Returns:
        Dictionary with any of gps_latitude, gps_longitude, gps_altitude
    """
    gps_info = {}

    try:
        gps_ifd = exif_data.get_ifd(GPS_IFD)
    except Exception as e:
        logger.debug(f"No GPS IFD: {{'error': {str(e)!r}}}")
        return gps_info

    if not gps_ifd:
        return gps_info

    gps_data = {GPSTAGS.get(tag_id, tag_id): value for tag_id, value in gps_ifd.items()}

    if 'GPSLatitude' in gps_data and 'GPSLatitudeRef' in gps_data:
        lat = _convert_gps_coordinate(gps_data['GPSLatitude'])
        if lat is not None:
            if gps_data['GPSLatitudeRef'] == 'S':
                lat = -lat
            gps_info['gps_latitude'] = lat

    if 'GPSLongitude' in gps_data and 'GPSLongitudeRef' in gps_data:
        lon = _convert_gps_coordinate(gps_data['GPSLongitude'])
        if lon is not None:
            if gps_data['GPSLongitudeRef'] == 'W':
                lon = -lon
            gps_info['gps_longitude'] = lon

    if 'GPSAltitude' in gps_data:
        altitude = _parse_rational(gps_data['GPSAltitude'])
        if altitude is not None:
            if gps_data.get('GPSAltitudeRef') in (1, b'\x01'):
                altitude = -altitude  # Below sea level
            gps_info['gps_altitude'] = altitude

    return gps_info


def _convert_gps_coordinate(coord_tuple) -> Optional[float]:
    """Convert (degrees, minutes, seconds) to decimal degrees; None if malformed."""
    try:
        if not coord_tuple or len(coord_tuple) < 3:
            return None

        degrees, minutes, seconds = (_parse_rational(part) for part in coord_tuple[:3])
    except (TypeError, ValueError, ZeroDivisionError):
        return None

    if degrees is None or minutes is None or seconds is None:
        return None

    return degrees + (minutes / 60.0) + (seconds / 3600.0)


def _parse_rational(value) -> Optional[float]:
    """
    Parse EXIF rational value to float.

    Args:
        value: Rational value (can be int, float, IFDRational, or tuple)

    Returns:
        Float value or None (also for zero denominators)
    """
    if isinstance(value, (int, float, IFDRational)):
        result = float(value)
    elif isinstance(value, tuple) and len(value) == 2:
        numerator, denominator = value
        if denominator == 0:
            return None
        result = float(numerator) / float(denominator)
    else:
        return None

    if math.isnan(result) or math.isinf(result):
        return None
    return result


def _parse_int(value) -> Optional[int]:
    if isinstance(value, int):
        return value
    return None


def _parse_iso(value) -> Optional[int]:
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, tuple) and value:
        return int(value[0])
    return None


def _clean_string(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode('utf-8', errors='replace')
    value = str(value).strip('\x00 ').strip()
    return value or None


def _parse_exif_datetime(value) -> Optional[datetime]:
    """
    Parse EXIF datetime ("2020:01:01 12:00:00").

    Returns:
        Naive datetime or None for empty/placeholder values
    """
    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value.strip('\x00 ').strip()[:19], "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None


def _format_exposure_time(value) -> Optional[str]:
    """
    Format exposure time as fraction string.

    Returns:
        String like "1/100" or "2.5", or None
    """
    seconds = _parse_rational(value)
    if seconds is None or seconds <= 0:
        return None
    if seconds < 1:
        return f"1/{round(1 / seconds)}"
    return f"{seconds:g}"


def _parse_flash(value) -> Optional[str]:
    """Describe the EXIF flash bitmask."""
    if not isinstance(value, int):
        return None
    if value & 0x1:
        return "Flash fired"
    return "Flash did not fire"


def extract_exif_with_exiftool(file_path: Path) -> Tuple[MediaExif, Optional[Tuple[int, int]]]:
    """
    Extract EXIF metadata from RAW image files using ExifTool.

    Used for RAW formats that Pillow cannot read (CR2, NEF, ARW, DNG, etc.)

    Returns:
        (exif, (width, height) or None)

    Raises:
        ToolNotFoundError: If exiftool is not available
        ParseError: If exiftool fails or its output cannot be parsed
    """
    try:
        result = subprocess.run(
            [
                'exiftool',
                '-json',
                '-n',
                '-DateTimeOriginal',
                '-CreateDate',
                '-GPSLatitude',
                '-GPSLongitude',
                '-GPSAltitude',
                '-Make',
                '-Model',
                '-LensModel',
                '-FocalLength',
                '-FNumber',
                '-ExposureTime',
                '-ExposureProgram',
                '-ISO',
                '-Orientation',
                '-Flash',
                '-ImageWidth',
                '-ImageHeight',
                str(file_path)
            ],
            capture_output=True,
            text=True,
            check=True,
            timeout=30
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError("exiftool not found", tool='exiftool') from e
    except subprocess.CalledProcessError as e:
        raise ParseError("exiftool failed", path=str(file_path), stderr=e.stderr) from e
    except subprocess.TimeoutExpired as e:
        raise ParseError("exiftool timed out", path=str(file_path)) from e

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise ParseError("Invalid exiftool output", path=str(file_path)) from e

    if not data:
        return MediaExif(), None

    raw = data[0]
    exif = MediaExif(
        camera=_clean_string(raw.get('Model')),
        maker=_clean_string(raw.get('Make')),
        lens=_clean_string(raw.get('LensModel')),
        date_shot=_parse_exif_datetime(raw.get('DateTimeOriginal') or raw.get('CreateDate')),
        exposure=_format_exposure_time(_parse_exiftool_number(raw.get('ExposureTime'))),
        aperture=_parse_exiftool_number(raw.get('FNumber')),
        iso=_parse_int(raw.get('ISO')),
        focal_length=_parse_exiftool_number(raw.get('FocalLength')),
        flash=_parse_flash(raw.get('Flash')),
        exposure_program=EXPOSURE_PROGRAMS.get(raw.get('ExposureProgram')),
        orientation=_parse_int(raw.get('Orientation')),
        gps_latitude=_parse_exiftool_number(raw.get('GPSLatitude')),
        gps_longitude=_parse_exiftool_number(raw.get('GPSLongitude')),
        gps_altitude=_parse_exiftool_number(raw.get('GPSAltitude')),
    )

    size = None
    if 'ImageWidth' in raw and 'ImageHeight' in raw:
        size = (int(raw['ImageWidth']), int(raw['ImageHeight']))

    return exif, size


def _parse_exiftool_number(value) -> Optional[float]:
    """Parse ExifTool numeric value, removing units."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(r"-?[\d.]+", str(value))
    if match:
        try:
            return float(match.group())
        except ValueError:
            return None
    return None
