"""
Sandstorm Tracker - Database Models and Architecture
Upsert-by-natural-key gateway over MongoDB
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from tracker.models.operations import WriteOp

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Persistence gateway:
    - Every write is an upsert keyed by a natural key
    - Parser cursors are stored per server so restarts resume cleanly
    """

    COLLECTIONS = (
        'servers', 'players', 'player_sessions', 'matches', 'match_participants',
        'kill_events', 'weapon_stats', 'parser_states', 'log_files',
    )

    def __init__(self, mongo_client: AsyncIOMotorClient, database_name: str = 'sandstorm_tracker'):
        self.client = mongo_client
        self.db: AsyncIOMotorDatabase = mongo_client[database_name]

        # Collections
        self.servers = self.db.servers
        self.players = self.db.players
        self.player_sessions = self.db.player_sessions
        self.matches = self.db.matches
        self.match_participants = self.db.match_participants
        self.kill_events = self.db.kill_events
        self.weapon_stats = self.db.weapon_stats
        self.parser_states = self.db.parser_states
        self.log_files = self.db.log_files

    async def initialize_database(self):
        """Initialize database with proper setup"""
        await self.initialize_indexes()

    async def initialize_indexes(self):
        """Create the unique natural-key indexes"""
        try:
            logger.info("Creating database indexes...")
            await self._create_all_indexes_safely()
            logger.info("Database initialization completed successfully")
        except Exception as e:
            logger.error(f"Critical database initialization failure: {e}")
            raise

    async def _create_all_indexes_safely(self):
        """Create all indexes, one failure never blocks the rest"""
        indexes = [
            ('servers', [('server_id', 1)], True),
            ('players', [('server_id', 1), ('player_key', 1)], True),
            ('player_sessions', [('server_id', 1), ('player_key', 1), ('join_time', 1)], True),
            ('player_sessions', [('server_id', 1), ('status', 1)], False),
            ('matches', [('server_id', 1), ('match_id', 1)], True),
            ('matches', [('server_id', 1), ('status', 1)], False),
            ('match_participants', [('match_id', 1), ('player_key', 1)], True),
            ('kill_events', [('server_id', 1), ('timestamp', 1), ('killer_key', 1),
                             ('victim_key', 1), ('weapon', 1), ('credit', 1)], True),
            ('kill_events', [('server_id', 1), ('match_id', 1)], False),
            ('weapon_stats', [('server_id', 1), ('player_key', 1), ('weapon', 1)], True),
            ('parser_states', [('server_id', 1), ('parser_type', 1)], True),
            ('log_files', [('server_id', 1), ('opened_at', 1)], True),
        ]

        for collection_name, keys, unique in indexes:
            try:
                await getattr(self, collection_name).create_index(keys, unique=unique)
                logger.debug(f"{collection_name} index created: {keys}")
            except Exception as e:
                logger.warning(f"{collection_name} index creation: {e}")

    async def apply_operation(self, op: WriteOp) -> bool:
        """Apply a single write operation"""
        try:
            collection = getattr(self, op.collection)
            await collection.update_one(op.key, op.to_update(), upsert=op.upsert)
            return True
        except PyMongoError as e:
            logger.error(f"Failed to write {op.collection} {op.key}: {e}")
            return False

    async def apply_operations(self, ops: Iterable[WriteOp]) -> int:
        """Apply writes in order, returning how many succeeded"""
        applied = 0
        for op in ops:
            if await self.apply_operation(op):
                applied += 1
        return applied

    async def get_parser_state(self, server_id: str, parser_type: str = "log_tailer") -> Dict[str, Any]:
        """Get parser state for a specific server"""
        try:
            state = await self.parser_states.find_one({
                "server_id": server_id,
                "parser_type": parser_type
            })
            return state if state else {}
        except Exception as e:
            logger.error(f"Failed to get parser state: {e}")
            return {}

    async def save_parser_state(self, server_id: str, parser_type: str, state_data: Dict[str, Any]) -> bool:
        """Save parser state using a replace strategy with duplicate-key retry"""
        server_id = str(server_id).strip()
        if not server_id:
            logger.error("Invalid empty server_id for parser state")
            return False

        filter_doc = {"server_id": server_id, "parser_type": parser_type}
        replacement_doc = {
            "server_id": server_id,
            "parser_type": parser_type,
            "last_updated": datetime.now(timezone.utc),
            **state_data
        }

        max_retries = 3
        for attempt in range(max_retries):
            try:
                result = await self.parser_states.replace_one(filter_doc, replacement_doc, upsert=True)
                if result.upserted_id:
                    logger.debug(f"Created new parser state for {server_id}")
                else:
                    logger.debug(f"Updated parser state for {server_id}")
                return True
            except PyMongoError as e:
                error_str = str(e)
                if "E11000" in error_str and attempt < max_retries - 1:
                    logger.debug(f"Duplicate key on attempt {attempt + 1} for {server_id}, retrying...")
                    await asyncio.sleep(0.1)
                    continue
                logger.error(f"Failed to save parser state for {server_id}: {e}")
                return False
        return False

    async def reset_parser_state(self, server_id: str, parser_type: str = "log_tailer") -> bool:
        """Forget the stored cursor so the next run starts from the beginning"""
        try:
            await self.parser_states.delete_one({"server_id": server_id, "parser_type": parser_type})
            logger.info(f"Reset parser state for {server_id}")
            return True
        except PyMongoError as e:
            logger.error(f"Failed to reset parser state for {server_id}: {e}")
            return False

    async def abort_orphaned_state(self, server_id: str, at: datetime) -> int:
        """Close matches and sessions left open by a previous run"""
        try:
            matches = await self.matches.update_many(
                {"server_id": server_id, "status": "active"},
                {"$set": {"status": "aborted", "end_time": at, "end_reason": "tracker_restart"},
                 "$currentDate": {"last_updated": True}}
            )
            sessions = await self.player_sessions.update_many(
                {"server_id": server_id, "status": "open"},
                {"$set": {"status": "closed", "leave_time": at, "close_reason": "tracker_restart"},
                 "$currentDate": {"last_updated": True}}
            )
            closed = matches.modified_count + sessions.modified_count
            if closed:
                logger.info(f"🧊 Closed {matches.modified_count} matches and {sessions.modified_count} "
                            f"sessions left open on {server_id}")
            return closed
        except PyMongoError as e:
            logger.error(f"Failed to close orphaned state for {server_id}: {e}")
            return 0

    def close(self):
        self.client.close()
