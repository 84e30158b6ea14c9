"""Metadata extraction modules."""

from .exif_extractor import extract_exif, extract_exif_with_exiftool
from .video_extractor import extract_video_metadata, parse_ffprobe_output
from .extractor import ExtractedMetadata, MetadataExtractor

__all__ = [
    'extract_exif',
    'extract_exif_with_exiftool',
    'extract_video_metadata',
    'parse_ffprobe_output',
    'ExtractedMetadata',
    'MetadataExtractor',
]
