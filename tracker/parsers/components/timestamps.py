"""
Sandstorm Tracker - Log Timestamps
Parses and rewrites engine timestamps such as 2025.10.04-14.31.05:706
"""

import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from tracker.utils.exceptions import TimestampParseError

LOG_TIMESTAMP_FORMAT = '%Y.%m.%d-%H.%M.%S'
TIMESTAMP_PREFIX = re.compile(r'^\[(\d{4}\.\d{2}\.\d{2}-\d{2}\.\d{2}\.\d{2}:\d{1,3})\]')


def parse_log_timestamp(text: str) -> datetime:
    """Parse an engine timestamp into a UTC datetime.

    The part after the last colon is a millisecond count of one to three
    digits taken literally, so ``:7`` is 7 ms and ``:790`` is 790 ms.
    """
    if not isinstance(text, str):
        raise TimestampParseError(f"Invalid log timestamp: {text!r}")

    head, sep, millis = text.strip().rpartition(':')
    if not sep or not millis.isdigit() or len(millis) > 3:
        raise TimestampParseError(f"Invalid log timestamp: {text!r}")

    try:
        base = datetime.strptime(head, LOG_TIMESTAMP_FORMAT)
    except ValueError as e:
        raise TimestampParseError(f"Invalid log timestamp: {text!r}") from e

    return base.replace(tzinfo=timezone.utc) + timedelta(milliseconds=int(millis))


def format_log_timestamp(dt: datetime) -> str:
    """Format a datetime the way the engine writes it"""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return f"{dt.strftime(LOG_TIMESTAMP_FORMAT)}:{dt.microsecond // 1000:03d}"


def extract_timestamp(line: str) -> Optional[str]:
    """Return the raw bracketed timestamp at the start of a line"""
    match = TIMESTAMP_PREFIX.match(line)
    return match.group(1) if match else None


def replace_timestamp(line: str, new_time: datetime) -> str:
    """Swap the leading timestamp of a line, leaving other lines untouched"""
    if not TIMESTAMP_PREFIX.match(line):
        return line
    return TIMESTAMP_PREFIX.sub(f"[{format_log_timestamp(new_time)}]", line, count=1)


def shift_timestamps(lines: List[str], base_time: datetime) -> List[str]:
    """Rebase every timestamped line so the first one lands on base_time.

    Used to replay a recorded log as if it were being written now. Lines
    whose timestamp cannot be parsed are passed through as they are.
    """
    origin = None
    for line in lines:
        raw = extract_timestamp(line)
        if raw is None:
            continue
        try:
            origin = parse_log_timestamp(raw)
            break
        except TimestampParseError:
            continue

    if origin is None:
        return list(lines)

    shifted = []
    for line in lines:
        raw = extract_timestamp(line)
        if raw is None:
            shifted.append(line)
            continue
        try:
            offset = parse_log_timestamp(raw) - origin
        except TimestampParseError:
            shifted.append(line)
            continue
        shifted.append(replace_timestamp(line, base_time + offset))
    return shifted
