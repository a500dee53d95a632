"""Clipforge - multi-clip video generation from ordered clip prompts.

A project is a list of clips; each clip is rendered as an image, then
animated into a short video, and the finished clips are compiled into one
final video. Prompts can be written by hand or synthesized from a creative
style by the script template engine.

Call validate_dependencies() during application startup before compiling.
"""

import logging
import shutil
import subprocess

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies() -> None:
    """Check that ffmpeg and ffprobe are available for final video compilation.

    Raises:
        RuntimeError: If either tool is not found, or ffmpeg is not functional.
    """
    missing = [tool for tool in ("ffmpeg", "ffprobe") if shutil.which(tool) is None]
    if missing:
        raise RuntimeError(
            f"{' and '.join(missing)} not found on PATH. Both ship with ffmpeg and "
            "are required to compile the final video.\n"
            "Ubuntu/Debian: sudo apt-get install ffmpeg\n"
            "macOS: brew install ffmpeg\n"
            "Windows: https://ffmpeg.org/download.html"
        )
    try:
        result = subprocess.run(
            ["ffmpeg", "-version"],
            capture_output=True,
            check=True,
            text=True,
        )
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"ffmpeg is installed but not functional: {e}") from e
    logger.info(f"ffmpeg validated: {result.stdout.splitlines()[0]}")
