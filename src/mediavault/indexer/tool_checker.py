"""Availability checks for the external media tools."""

import logging
import shutil
from typing import Dict

from .errors import ToolNotFoundError

logger = logging.getLogger(__name__)

TOOL_CAPABILITIES = {
    'ffprobe': 'video metadata extraction',
    'ffmpeg': 'video keyframes and web transcoding',
    'exiftool': 'RAW format EXIF extraction',
}


def check_tool_availability() -> Dict[str, bool]:
    """
    Check which external tools are on PATH.

    Returns:
        Dictionary mapping tool names ('ffprobe', 'ffmpeg', 'exiftool') to availability
    """
    return {tool: shutil.which(tool) is not None for tool in TOOL_CAPABILITIES}


def check_required_tools(
    use_ffprobe: bool = False,
    use_ffmpeg: bool = False,
    use_exiftool: bool = False,
    strict: bool = False,
) -> Dict[str, bool]:
    """
    Check the tools enabled in the configuration.

    A missing tool degrades scanning (videos keep unset metadata, no web
    renditions, RAW files are skipped), so by default it is only logged.

    Args:
        use_ffprobe: ffprobe enabled in config
        use_ffmpeg: ffmpeg enabled in config
        use_exiftool: exiftool enabled in config
        strict: Raise instead of warning about a missing enabled tool

    Returns:
        Availability of every tool

    Raises:
        ToolNotFoundError: strict is set and an enabled tool is missing
    """
    tools = check_tool_availability()
    enabled = {'ffprobe': use_ffprobe, 'ffmpeg': use_ffmpeg, 'exiftool': use_exiftool}

    for tool, wanted in enabled.items():
        if not wanted:
            logger.info(f"Tool disabled: {{'tool': {tool!r}, 'reason': 'config'}}")
        elif tools[tool]:
            logger.info(f"Tool available: {{'tool': {tool!r}, 'capability': {TOOL_CAPABILITIES[tool]!r}}}")
        elif strict:
            raise ToolNotFoundError(
                f"Tool '{tool}' is enabled in config but not available.\n\n{_get_installation_instructions(tool)}",
                tool=tool,
            )
        else:
            logger.warning(
                f"Tool not found: {{'tool': {tool!r}, 'capability': {TOOL_CAPABILITIES[tool]!r}}}\n"
                f"{_get_installation_instructions(tool)}"
            )

    return tools


def _get_installation_instructions(tool_name: str) -> str:
    """Get installation instructions for a missing tool."""
    ffmpeg = (
        "ffmpeg and ffprobe are part of FFmpeg. Install it:\n"
        "  - Windows: Download from https://ffmpeg.org/download.html\n"
        "  - macOS: brew install ffmpeg\n"
        "  - Linux: sudo apt-get install ffmpeg (Debian/Ubuntu)"
    )
    instructions = {
        'ffprobe': ffmpeg,
        'ffmpeg': ffmpeg,
        'exiftool': (
            "ExifTool is needed for RAW formats. Install it:\n"
            "  - Windows: Download from https://exiftool.org/\n"
            "  - macOS: brew install exiftool\n"
            "  - Linux: sudo apt-get install libimage-exiftool-perl"
        ),
    }
    return instructions.get(tool_name, f"Please install {tool_name}")
