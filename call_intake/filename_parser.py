"""
Parsing of recording filenames produced by the TP recording system.

Format: {staffCode}-{clientIdentifier}_{YYYYMMDDHHMMSS}_mix.{ext}
Example: 0400-01052913391_20250915134049_mix.wav
"""

import re
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .audio import AUDIO_EXTENSIONS

logger = logging.getLogger(__name__)

# Client identifiers this long are phone numbers (010XXXXXXXX), shorter ones are TP codes
PHONE_MIN_DIGITS = 9

_EXTENSION_PATTERN = '|'.join(ext.lstrip('.') for ext in sorted(AUDIO_EXTENSIONS))
FILENAME_PATTERN = re.compile(
    rf'^(\d+)-(\d+)_(\d{{14}})_mix\.({_EXTENSION_PATTERN})$',
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ParsedFilename:
    """Metadata encoded in a recording filename."""

    staff_code: str
    client_identifier: str
    call_datetime: datetime
    is_client_phone: bool
    original_file_name: str


def parse_recording_filename(file_name: str) -> Optional[ParsedFilename]:
    """
    Parse a recording filename.

    Returns None when the name does not follow the TP convention; this is a
    normal outcome, not an error.
    """
    match = FILENAME_PATTERN.match(file_name)
    if not match:
        logger.debug(f"File '{file_name}' does not match TP naming convention")
        return None

    staff_code, client_identifier, stamp, _ext = match.groups()

    try:
        call_datetime = datetime(
            int(stamp[0:4]),
            int(stamp[4:6]),
            int(stamp[6:8]),
            int(stamp[8:10]),
            int(stamp[10:12]),
            int(stamp[12:14]),
        )
    except ValueError:
        # e.g. month 13 or day 32
        logger.debug(f"File '{file_name}' has an invalid timestamp: {stamp}")
        return None

    return ParsedFilename(
        staff_code=staff_code,
        client_identifier=client_identifier,
        call_datetime=call_datetime,
        is_client_phone=len(client_identifier) >= PHONE_MIN_DIGITS,
        original_file_name=file_name,
    )
