"""
Audio helpers: recognised extensions and call duration extraction.

Duration is read with mutagen from the file's bytes. Any failure (corrupt
file, unsupported codec, unreadable file) falls back to "0:00" so a missing
duration never prevents a call from being recorded.
"""

import io
import logging
from pathlib import Path
from typing import Optional, Union

from mutagen import File as MutagenFile

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = frozenset({'.wav', '.mp3', '.m4a', '.aac', '.flac', '.ogg'})
UNKNOWN_DURATION = '0:00'


def is_audio_file(file_name: Union[str, Path]) -> bool:
    """Check the extension against the recognised audio formats."""
    return Path(file_name).suffix.lower() in AUDIO_EXTENSIONS


def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as M:SS (minutes unpadded, seconds zero-padded)."""
    if not seconds or seconds < 0:
        return UNKNOWN_DURATION
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


def extract_duration_seconds(data: bytes) -> Optional[float]:
    """Return the playable length of an audio buffer, or None if unknown."""
    if not data:
        return None

    audio = MutagenFile(io.BytesIO(data))
    if audio is None:
        # mutagen couldn't identify the file type
        return None

    info = getattr(audio, 'info', None)
    length = getattr(info, 'length', None)
    return float(length) if length else None


def read_call_duration(file_path: Union[str, Path]) -> str:
    """Read an audio file and return its duration formatted as M:SS."""
    try:
        data = Path(file_path).read_bytes()
        seconds = extract_duration_seconds(data)
    except Exception as e:
        logger.warning(f"Failed to extract audio duration from {file_path}: {e}")
        return UNKNOWN_DURATION

    if seconds is None:
        logger.warning(f"Could not determine duration of {file_path}, using {UNKNOWN_DURATION}")
        return UNKNOWN_DURATION

    formatted = format_duration(seconds)
    logger.info(f"Extracted audio duration: {formatted} ({seconds:.1f}s)")
    return formatted
