"""
Dedicated Tail State Manager
Persists the byte cursor of each watched log so restarts resume where they stopped
"""

import logging
from typing import Dict

from tracker.watchers.file_tailer import TailCursor

logger = logging.getLogger(__name__)

PARSER_TYPE = "log_tailer"


class TailStateManager:
    """Loads and saves tail cursors through the database gateway"""

    def __init__(self, db_manager):
        self.db_manager = db_manager
        self._saved: Dict[str, int] = {}

    async def load_cursor(self, server_id: str, file_path: str) -> TailCursor:
        """Get the stored cursor for a server, or a fresh one"""
        state = await self.db_manager.get_parser_state(server_id, PARSER_TYPE)
        cursor = TailCursor.from_state(file_path, state)
        if cursor.byte_offset:
            logger.info(f"🔥 Resuming {server_id} at byte {cursor.byte_offset} of {file_path}")
        else:
            logger.info(f"🧊 No stored cursor for {server_id}, reading {file_path} from the beginning")
        self._saved[server_id] = cursor.byte_offset
        return cursor

    async def save_cursor(self, server_id: str, cursor: TailCursor, force: bool = False) -> bool:
        """Persist a cursor unless it has not moved since the last save"""
        if not force and self._saved.get(server_id) == cursor.byte_offset:
            return True

        saved = await self.db_manager.save_parser_state(server_id, PARSER_TYPE, cursor.to_state())
        if saved:
            self._saved[server_id] = cursor.byte_offset
            logger.debug(f"Saved cursor for {server_id}: byte {cursor.byte_offset}")
        return saved

    async def reset_cursor(self, server_id: str) -> bool:
        """Forget the stored cursor (force reprocessing)"""
        self._saved.pop(server_id, None)
        return await self.db_manager.reset_parser_state(server_id, PARSER_TYPE)
