"""
Sandstorm Tracker - File Tailer
Reads newly appended complete lines from a growing log file by byte offset
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiofiles

from tracker.utils.exceptions import WatchException

logger = logging.getLogger(__name__)


@dataclass
class TailCursor:
    """Read position within one watched file"""
    file_path: str
    byte_offset: int = 0
    last_line_seen: Optional[str] = None
    file_size_at_last_read: int = 0

    def reset(self):
        self.byte_offset = 0
        self.last_line_seen = None
        self.file_size_at_last_read = 0

    def to_state(self) -> Dict[str, Any]:
        return {
            'file_path': self.file_path,
            'byte_offset': self.byte_offset,
            'last_line_seen': self.last_line_seen,
            'file_size_at_last_read': self.file_size_at_last_read,
            'saved_at': datetime.now(timezone.utc),
        }

    @classmethod
    def from_state(cls, file_path: str, state: Optional[Dict[str, Any]]) -> 'TailCursor':
        if not state or state.get('file_path') != file_path:
            return cls(file_path)
        return cls(
            file_path=file_path,
            byte_offset=int(state.get('byte_offset', 0)),
            last_line_seen=state.get('last_line_seen'),
            file_size_at_last_read=int(state.get('file_size_at_last_read', 0)),
        )


class FileTailer:
    """Forwards each complete line of a file exactly once"""

    def __init__(self, file_path: str, cursor: Optional[TailCursor] = None, encoding: str = 'utf-8'):
        self.file_path = file_path
        self.cursor = cursor or TailCursor(file_path)
        self.encoding = encoding
        # A resumed cursor must prove the file was not replaced while we were away
        self._verify_on_next_read = self.cursor.byte_offset > 0

    async def read_new_lines(self) -> List[str]:
        """Return complete lines appended since the last read"""
        cursor = self.cursor
        try:
            size = os.stat(self.file_path).st_size
        except FileNotFoundError:
            logger.debug(f"{self.file_path} not present yet")
            return []
        except OSError as e:
            raise WatchException(f"Cannot stat {self.file_path}: {e}") from e

        if size < cursor.byte_offset:
            logger.info(f"🔄 {self.file_path} shrank from {cursor.byte_offset} to {size} bytes, "
                        f"restarting from the beginning")
            cursor.reset()
        elif self._verify_on_next_read and not await self._offset_still_valid():
            logger.info(f"🔄 {self.file_path} was replaced since the last run, restarting from the beginning")
            cursor.reset()
        self._verify_on_next_read = False

        if size == cursor.byte_offset:
            cursor.file_size_at_last_read = size
            return []

        try:
            async with aiofiles.open(self.file_path, 'rb') as f:
                await f.seek(cursor.byte_offset)
                data = await f.read(size - cursor.byte_offset)
        except OSError as e:
            raise WatchException(f"Cannot read {self.file_path}: {e}") from e

        end = data.rfind(b'\n')
        if end == -1:
            # Only a partial line so far
            cursor.file_size_at_last_read = size
            return []

        text = data[:end + 1].decode(self.encoding, errors='replace')
        if cursor.byte_offset == 0:
            text = text.lstrip('\ufeff')
        lines = [line.rstrip('\r') for line in text.split('\n')[:-1]]
        lines = [line for line in lines if line.strip()]

        cursor.byte_offset += end + 1
        cursor.file_size_at_last_read = size

        if not lines:
            return []
        if len(lines) == 1 and lines[0] == cursor.last_line_seen:
            logger.debug(f"Repeated last line in {self.file_path}, nothing new")
            return []

        cursor.last_line_seen = lines[-1]
        return lines

    async def _offset_still_valid(self) -> bool:
        """Check that the bytes before the offset still end with the last line seen"""
        cursor = self.cursor
        if not cursor.last_line_seen:
            return True

        expected = cursor.last_line_seen.encode(self.encoding)
        start = max(0, cursor.byte_offset - len(expected) - 2)
        try:
            async with aiofiles.open(self.file_path, 'rb') as f:
                await f.seek(start)
                tail = await f.read(cursor.byte_offset - start)
        except OSError as e:
            raise WatchException(f"Cannot read {self.file_path}: {e}") from e

        return tail.rstrip(b'\r\n').endswith(expected)
